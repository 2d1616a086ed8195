"""Хранилища поверх асинхронной сессии SQLAlchemy.

Репозитории не делают commit: транзакцией управляет вызывающий код
(машина состояний резерваций, финансы), чтобы один переход был одной
единицей работы.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update, func
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models
from .errors import NotFound, RentalError, UpstreamFailure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(db: AsyncSession, operation: str):
    """Коммит при успехе, откат при любой ошибке.

    Ошибки драйвера (включая нарушение уникальности) превращаются в
    UpstreamFailure: операцию можно повторить.
    """
    try:
        yield
        await db.commit()
    except RentalError as e:
        await db.rollback()
        logger.warning(f"{operation} rejected: {e.kind} ({e.reason}) - {e.message}")
        raise
    except DBAPIError as e:
        await db.rollback()
        logger.error(f"{operation} failed, database error: {e}")
        raise UpstreamFailure(f"Database unavailable during {operation}") from e
    except Exception:
        await db.rollback()
        raise


class VehicleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, vehicle_id: int, for_update: bool = False) -> models.Vehicle:
        query = select(models.Vehicle).where(models.Vehicle.id == vehicle_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        vehicle = result.scalar_one_or_none()
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} not found")
        return vehicle

    async def list_all(self) -> List[models.Vehicle]:
        result = await self.db.execute(select(models.Vehicle).order_by(models.Vehicle.name))
        return list(result.scalars().all())

    async def list_available(self) -> List[models.Vehicle]:
        result = await self.db.execute(
            select(models.Vehicle)
            .where(models.Vehicle.status == models.VehicleStatus.AVAILABLE)
            .order_by(models.Vehicle.name)
        )
        return list(result.scalars().all())

    async def set_status(self, vehicle_id: int, status: str):
        await self.db.execute(
            update(models.Vehicle)
            .where(models.Vehicle.id == vehicle_id)
            .values(status=status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )

    async def set_current_mileage(self, vehicle_id: int, value: int):
        await self.db.execute(
            update(models.Vehicle)
            .where(models.Vehicle.id == vehicle_id)
            .values(current_mileage=value, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )


class ReservationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, reservation: models.Reservation) -> models.Reservation:
        self.db.add(reservation)
        await self.db.flush()
        return reservation

    async def get(self, reservation_id: int) -> models.Reservation:
        result = await self.db.execute(
            select(models.Reservation).where(models.Reservation.id == reservation_id)
        )
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} not found")
        return reservation

    async def list(self, status: Optional[str] = None, skip: int = 0, limit: int = 100):
        query = select(models.Reservation)
        if status:
            query = query.where(models.Reservation.status == status)
        query = query.order_by(models.Reservation.start_date.desc(), models.Reservation.id.desc())
        result = await self.db.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all())

    async def list_by_status(self, statuses) -> List[models.Reservation]:
        result = await self.db.execute(
            select(models.Reservation).where(models.Reservation.status.in_(statuses))
        )
        return list(result.scalars().all())

    async def list_by_vehicle_and_status(self, vehicle_id: int, statuses) -> List[models.Reservation]:
        result = await self.db.execute(
            select(models.Reservation).where(
                models.Reservation.vehicle_id == vehicle_id,
                models.Reservation.status.in_(statuses),
            )
        )
        return list(result.scalars().all())

    async def transition(self, reservation_id: int, expected_statuses, new_status: str, **fields) -> bool:
        """Атомарный compare-and-set статуса.

        Возвращает False, если статус уже изменился (проиграли гонку).
        """
        result = await self.db.execute(
            update(models.Reservation)
            .where(
                models.Reservation.id == reservation_id,
                models.Reservation.status.in_(expected_statuses),
            )
            .values(status=new_status, **fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class CustomerRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, customer: models.Customer) -> models.Customer:
        self.db.add(customer)
        await self.db.flush()
        return customer

    async def get(self, customer_id: int) -> models.Customer:
        result = await self.db.execute(
            select(models.Customer).where(models.Customer.id == customer_id)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found")
        return customer

    async def list(self, skip: int = 0, limit: int = 100) -> List[models.Customer]:
        result = await self.db.execute(
            select(models.Customer)
            .order_by(models.Customer.last_name, models.Customer.first_name)
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(select(func.count(models.Customer.id)))
        return result.scalar_one()


class LedgerRepository:
    """Финансовый журнал: доходы и расходы."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _record(self, type_: str, amount: float, date: datetime, description: str,
                      reservation_id: int = None, vehicle_id: int = None) -> models.FinancialTransaction:
        transaction = models.FinancialTransaction(
            type=type_,
            amount=amount,
            date=date,
            description=description,
            related_reservation_id=reservation_id,
            related_vehicle_id=vehicle_id,
        )
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def record_income(self, amount: float, date: datetime, description: str,
                            reservation_id: int = None, vehicle_id: int = None):
        return await self._record(
            models.TransactionType.INCOME, amount, date, description, reservation_id, vehicle_id
        )

    async def record_expense(self, amount: float, date: datetime, description: str,
                             vehicle_id: int = None):
        return await self._record(
            models.TransactionType.EXPENSE, amount, date, description, vehicle_id=vehicle_id
        )

    async def list(self, type_: Optional[str] = None) -> List[models.FinancialTransaction]:
        query = select(models.FinancialTransaction)
        if type_:
            query = query.where(models.FinancialTransaction.type == type_)
        result = await self.db.execute(query.order_by(models.FinancialTransaction.date.desc()))
        return list(result.scalars().all())

    async def list_for_reservation(self, reservation_id: int) -> List[models.FinancialTransaction]:
        result = await self.db.execute(
            select(models.FinancialTransaction).where(
                models.FinancialTransaction.related_reservation_id == reservation_id
            )
        )
        return list(result.scalars().all())


class CompanySettingsRepository:
    SETTINGS_ID = 1

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self) -> models.CompanySettings:
        result = await self.db.execute(
            select(models.CompanySettings).where(models.CompanySettings.id == self.SETTINGS_ID)
        )
        settings = result.scalar_one_or_none()
        if settings is None:
            # настройки ещё не сохранялись, отдаём пустые
            settings = models.CompanySettings(
                id=self.SETTINGS_ID, company_name="", company_address="", company_ico="", bank_account=""
            )
        return settings

    async def upsert(self, **fields) -> models.CompanySettings:
        settings = await self.db.get(models.CompanySettings, self.SETTINGS_ID)
        if settings is None:
            settings = models.CompanySettings(id=self.SETTINGS_ID)
            self.db.add(settings)
        for field, value in fields.items():
            setattr(settings, field, value)
        await self.db.flush()
        return settings
