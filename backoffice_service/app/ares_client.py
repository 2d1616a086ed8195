import asyncio
import logging
import os

import aiohttp

from .errors import NotFound, UpstreamFailure

logger = logging.getLogger(__name__)

ARES_BASE_URL = os.getenv(
    "ARES_BASE_URL",
    "https://ares.gov.cz/ekonomicke-subjekty-v-ares/rest/ekonomicke-subjekty",
)


def parse_company(ico: str, data: dict) -> dict:
    return {
        "company_name": data.get("obchodniJmeno") or "",
        "company_id": ico,
        "vat_id": data.get("dic") or "",
        "address": (data.get("sidlo") or {}).get("textovaAdresa") or "",
    }


async def fetch_company(ico: str) -> dict:
    """Данные фирмы из чешского реестра ARES по IČO."""
    ico = ico.strip()
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                    f"{ARES_BASE_URL}/{ico}",
                    headers={"Accept": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=10)
            ) as response:
                if response.status == 404:
                    raise NotFound(f"Company with IČO {ico} not found")
                if response.status != 200:
                    logger.error(f"ARES error: HTTP {response.status}")
                    raise UpstreamFailure(f"ARES responded with status {response.status}")
                data = await response.json()
    except aiohttp.ClientError as e:
        logger.error(f"Cannot connect to ARES: {e}")
        raise UpstreamFailure("ARES registry unavailable") from e
    except asyncio.TimeoutError as e:
        logger.error("ARES timeout")
        raise UpstreamFailure("ARES registry timeout") from e

    return parse_company(ico, data)
