import asyncio
import logging
import os
from datetime import datetime
from typing import List

import aiohttp
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models
from .errors import PreconditionFailed, Reason, UpstreamFailure, NotFound
from .repositories import (
    CustomerRepository, ReservationRepository, VehicleRepository, CompanySettingsRepository,
    unit_of_work,
)

logger = logging.getLogger(__name__)

CONTRACT_TEMPLATE = """VEHICLE RENTAL CONTRACT

Lessor: {company_name}, {company_address}, company id {company_ico}
Lessee: {customer_name}, {customer_address}
Driver licence: {driver_license_number}
Email: {customer_email}, phone: {customer_phone}

Vehicle: {vehicle_name} ({vehicle_make} {vehicle_model}, {vehicle_year})
Licence plate: {license_plate}

Rental period: {start_date} - {end_date}
Price: {total_price}

The lessee undertakes to return the vehicle in the condition in which it
was handed over and to observe the rental terms and conditions.
"""


def build_snapshot(reservation: models.Reservation, customer: models.Customer,
                   vehicle: models.Vehicle, settings: models.CompanySettings) -> dict:
    """Снимок данных резервации для генератора договора."""
    return {
        "reservation_id": reservation.id,
        "start_date": reservation.start_date.isoformat() if reservation.start_date else None,
        "end_date": reservation.end_date.isoformat() if reservation.end_date else None,
        "total_price": reservation.total_price,
        "customer": {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
            "driver_license_number": customer.driver_license_number,
            "company_name": customer.company_name,
            "company_id": customer.company_id,
            "vat_id": customer.vat_id,
        },
        "vehicle": {
            "name": vehicle.name,
            "make": vehicle.make,
            "model": vehicle.model,
            "year": vehicle.year,
            "license_plate": vehicle.license_plate,
        },
        "company": {
            "name": settings.company_name,
            "address": settings.company_address,
            "ico": settings.company_ico,
        },
    }


def render_template(snapshot: dict) -> str:
    customer = snapshot["customer"]
    vehicle = snapshot["vehicle"]
    company = snapshot["company"]
    return CONTRACT_TEMPLATE.format(
        company_name=company["name"],
        company_address=company["address"],
        company_ico=company["ico"],
        customer_name=f"{customer['first_name']} {customer['last_name']}",
        customer_address=customer["address"],
        driver_license_number=customer["driver_license_number"],
        customer_email=customer["email"],
        customer_phone=customer["phone"],
        vehicle_name=vehicle["name"],
        vehicle_make=vehicle["make"],
        vehicle_model=vehicle["model"],
        vehicle_year=vehicle["year"],
        license_plate=vehicle["license_plate"],
        start_date=snapshot["start_date"],
        end_date=snapshot["end_date"],
        total_price=snapshot["total_price"],
    )


class ContractGenerator:
    """Внешний сервис генерации текста договора.

    Если CONTRACT_GENERATOR_URL не задан, текст собирается из шаблона.
    """

    def __init__(self, url: str = None, timeout: float = None):
        self.url = url if url is not None else os.getenv("CONTRACT_GENERATOR_URL")
        self.timeout = timeout or float(os.getenv("CONTRACT_GENERATOR_TIMEOUT", "30"))

    async def generate(self, snapshot: dict) -> str:
        if not self.url:
            return render_template(snapshot)

        try:
            async with aiohttp.ClientSession() as session:
                logger.info(f"Requesting contract text for reservation {snapshot['reservation_id']}")
                async with session.post(
                        self.url,
                        json={"reservation": snapshot},
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Contract generator error: {response.status} - {error_text}")
                        raise UpstreamFailure("Contract generator returned an error")
                    data = await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Cannot reach contract generator: {e}")
            raise UpstreamFailure("Contract generator unavailable") from e
        except asyncio.TimeoutError as e:
            logger.error("Contract generator timeout")
            raise UpstreamFailure("Contract generator timeout") from e

        text = data.get("text")
        if not text:
            raise UpstreamFailure("Contract generator returned no text")
        return text


contract_generator = ContractGenerator()


class ContractService:
    def __init__(self, db: AsyncSession, generator: ContractGenerator = None):
        self.db = db
        self.generator = generator or contract_generator

    async def generate_for_reservation(self, reservation_id: int) -> models.Contract:
        reservation = await ReservationRepository(self.db).get(reservation_id)
        if reservation.customer_id is None:
            raise PreconditionFailed(
                Reason.CUSTOMER_REQUIRED, "Contract needs a reservation with a customer"
            )
        customer = await CustomerRepository(self.db).get(reservation.customer_id)
        vehicle = await VehicleRepository(self.db).get(reservation.vehicle_id)
        settings = await CompanySettingsRepository(self.db).get()

        # генерация - сетевой вызов, выполняется до начала записи
        text = await self.generator.generate(build_snapshot(reservation, customer, vehicle, settings))

        async with unit_of_work(self.db, "save contract"):
            contract = models.Contract(
                reservation_id=reservation.id,
                customer_id=customer.id,
                vehicle_id=vehicle.id,
                generated_at=datetime.utcnow(),
                contract_text=text,
            )
            self.db.add(contract)
        await self.db.refresh(contract)
        logger.info(f"Contract {contract.id} generated for reservation {reservation.id}")
        return contract

    async def list(self) -> List[models.Contract]:
        result = await self.db.execute(
            select(models.Contract).order_by(models.Contract.generated_at.desc())
        )
        return list(result.scalars().all())

    async def get(self, contract_id: int) -> models.Contract:
        contract = await self.db.get(models.Contract, contract_id)
        if contract is None:
            raise NotFound(f"Contract {contract_id} not found")
        return contract
