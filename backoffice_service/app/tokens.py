"""Токены доступа к порталу самообслуживания.

Токен - это секрет на предъявителя: кто его знает, тот может заполнить
одну конкретную отложенную резервацию. Жизненный цикл токена:
live -> redeemed (клиент заполнил данные) или live -> revoked (отмена).
Оба конечных состояния необратимы, поэтому повторное использование
токена даёт NotFound.
"""
import logging
import secrets
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models
from .errors import NotFound, PreconditionFailed, Reason

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class PortalTokenService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def issue(self, reservation_id: int) -> str:
        result = await self.db.execute(
            select(models.PortalToken).where(
                models.PortalToken.reservation_id == reservation_id,
                models.PortalToken.status == models.PortalTokenStatus.LIVE,
            )
        )
        if result.scalars().first() is not None:
            raise PreconditionFailed(
                Reason.TOKEN_ALREADY_ISSUED,
                f"Reservation {reservation_id} already has a live portal token",
            )

        token = generate_token()
        self.db.add(models.PortalToken(
            token=token,
            reservation_id=reservation_id,
            status=models.PortalTokenStatus.LIVE,
            created_at=datetime.utcnow(),
        ))
        await self.db.flush()
        logger.info(f"Portal token issued for reservation {reservation_id}")
        return token

    async def resolve(self, token: str) -> models.PortalToken:
        if not token:
            raise NotFound("Portal token not found")
        result = await self.db.execute(
            select(models.PortalToken).where(
                models.PortalToken.token == token,
                models.PortalToken.status == models.PortalTokenStatus.LIVE,
            )
        )
        portal_token = result.scalar_one_or_none()
        if portal_token is None:
            raise NotFound("Portal token not found or no longer valid")
        return portal_token

    async def _close(self, token: str, status: str) -> bool:
        result = await self.db.execute(
            update(models.PortalToken)
            .where(
                models.PortalToken.token == token,
                models.PortalToken.status == models.PortalTokenStatus.LIVE,
            )
            .values(status=status, closed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def redeem(self, token: str):
        if not await self._close(token, models.PortalTokenStatus.REDEEMED):
            raise NotFound("Portal token not found or no longer valid")

    async def revoke_for_reservation(self, reservation_id: int) -> int:
        result = await self.db.execute(
            update(models.PortalToken)
            .where(
                models.PortalToken.reservation_id == reservation_id,
                models.PortalToken.status == models.PortalTokenStatus.LIVE,
            )
            .values(status=models.PortalTokenStatus.REVOKED, closed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Portal token revoked for reservation {reservation_id}")
        return result.rowcount
