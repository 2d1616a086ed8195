import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models
from .errors import NotFound, PreconditionFailed, Reason
from .repositories import (
    CustomerRepository, LedgerRepository, ReservationRepository, VehicleRepository, unit_of_work,
)

logger = logging.getLogger(__name__)

INVOICE_DUE_DAYS = 14

# номер счёта = число счетов за год + 1, поэтому подсчёт и вставка идут под одной блокировкой
invoice_numbering_lock = asyncio.Lock()


def invoice_number(year: int, sequence: int) -> str:
    return f"FAKT-{year}-{sequence}"


def invoice_due_date(issue_date: datetime, payment_method: str) -> datetime:
    # наличные - оплата в день выставления
    if payment_method == models.PaymentMethod.CASH:
        return issue_date
    return issue_date + timedelta(days=INVOICE_DUE_DAYS)


def invoice_line_items(reservation: models.Reservation, vehicle: models.Vehicle) -> list:
    surcharge = reservation.mileage_surcharge or 0
    items = [{
        "description": f"Vehicle rental: {vehicle.name}",
        "amount": (reservation.total_price or 0) - surcharge,
    }]
    if surcharge:
        items.append({"description": "Excess mileage", "amount": surcharge})
    return items


def summarize(transactions) -> dict:
    income = sum(t.amount for t in transactions if t.type == models.TransactionType.INCOME)
    expenses = sum(t.amount for t in transactions if t.type == models.TransactionType.EXPENSE)

    monthly = OrderedDict()
    for t in sorted(transactions, key=lambda t: t.date):
        if t.type != models.TransactionType.INCOME:
            continue
        month = t.date.strftime("%Y-%m")
        monthly[month] = monthly.get(month, 0) + t.amount

    return {
        "total_income": income,
        "total_expenses": expenses,
        "net": income - expenses,
        "monthly_income": [{"month": m, "amount": a} for m, a in monthly.items()],
    }


class FinancialService:
    def __init__(self, db: AsyncSession, invoice_lock: asyncio.Lock = None):
        self.db = db
        self.ledger = LedgerRepository(db)
        self.invoice_lock = invoice_lock or invoice_numbering_lock

    async def list_transactions(self, type_: Optional[str] = None):
        return await self.ledger.list(type_)

    async def summary(self) -> dict:
        return summarize(await self.ledger.list())

    async def add_expense(self, amount: float, date: datetime, description: str,
                          vehicle_id: int = None) -> models.FinancialTransaction:
        async with unit_of_work(self.db, "add expense"):
            transaction = await self.ledger.record_expense(amount, date, description, vehicle_id)
        await self.db.refresh(transaction)
        logger.info(f"Expense recorded: {amount} - {description}")
        return transaction

    async def add_service_record(self, vehicle_id: int, description: str, cost: float,
                                 mileage: int, service_date: datetime) -> models.ServiceRecord:
        """Сервисная запись автоматически попадает в расходы."""
        async with unit_of_work(self.db, "add service record"):
            vehicle = await VehicleRepository(self.db).get(vehicle_id)
            record = models.ServiceRecord(
                vehicle_id=vehicle_id,
                description=description,
                cost=cost,
                mileage=mileage,
                service_date=service_date,
            )
            self.db.add(record)
            await self.ledger.record_expense(
                cost, service_date, f"Service: {vehicle.name} - {description}", vehicle_id
            )
        await self.db.refresh(record)
        return record

    async def list_service_records(self, vehicle_id: int) -> List[models.ServiceRecord]:
        result = await self.db.execute(
            select(models.ServiceRecord)
            .where(models.ServiceRecord.vehicle_id == vehicle_id)
            .order_by(models.ServiceRecord.service_date.desc())
        )
        return list(result.scalars().all())

    async def delete_service_record(self, record_id: int):
        async with unit_of_work(self.db, "delete service record"):
            record = await self.db.get(models.ServiceRecord, record_id)
            if record is None:
                raise NotFound(f"Service record {record_id} not found")
            await self.db.delete(record)

    async def list_invoices(self) -> List[models.Invoice]:
        result = await self.db.execute(select(models.Invoice).order_by(models.Invoice.issue_date.desc()))
        return list(result.scalars().all())

    async def create_invoice(self, reservation_id: int, issue_date: datetime = None) -> models.Invoice:
        reservation = await ReservationRepository(self.db).get(reservation_id)
        if reservation.status != models.ReservationStatus.COMPLETED:
            raise PreconditionFailed(
                Reason.RESERVATION_NOT_COMPLETED, "Only completed reservations can be invoiced"
            )

        customer = await CustomerRepository(self.db).get(reservation.customer_id)
        vehicle = await VehicleRepository(self.db).get(reservation.vehicle_id)
        issue_date = issue_date or datetime.utcnow()

        async with self.invoice_lock:
            async with unit_of_work(self.db, "create invoice"):
                existing = await self.db.execute(
                    select(models.Invoice).where(models.Invoice.reservation_id == reservation_id)
                )
                if existing.scalar_one_or_none() is not None:
                    raise PreconditionFailed(
                        Reason.INVOICE_EXISTS, f"Reservation {reservation_id} is already invoiced"
                    )

                count = await self.db.execute(
                    select(func.count(models.Invoice.id))
                    .where(models.Invoice.invoice_number.like(f"FAKT-{issue_date.year}-%"))
                )
                invoice = models.Invoice(
                    invoice_number=invoice_number(issue_date.year, count.scalar_one() + 1),
                    reservation_id=reservation.id,
                    issue_date=issue_date,
                    due_date=invoice_due_date(issue_date, reservation.payment_method),
                    total_amount=reservation.total_price,
                    payment_method=reservation.payment_method,
                    line_items=invoice_line_items(reservation, vehicle),
                    customer_details_snapshot={
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
                    vehicle_details_snapshot={
                        "name": vehicle.name,
                        "make": vehicle.make,
                        "model": vehicle.model,
                        "year": vehicle.year,
                        "license_plate": vehicle.license_plate,
                    },
                )
                self.db.add(invoice)

        await self.db.refresh(invoice)
        logger.info(f"Invoice {invoice.invoice_number} issued for reservation {reservation_id}")
        return invoice
