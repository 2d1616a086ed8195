"""Жизненный цикл резервации.

Состояния: pending-customer -> scheduled -> active -> completed, а также
cancelled из pending-customer или scheduled. Каждый переход выполняется как
одна единица работы: compare-and-set статуса, изменения автомобиля,
записи в журнале и токены коммитятся вместе или не коммитятся вовсе.

Проверка доступности и вставка резервации выполняются под блокировкой
автомобиля, иначе две параллельные брони на один интервал пройдут обе.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .availability import find_conflicts
from .errors import (
    InvalidTransition, IntervalConflict, NotFound, PreconditionFailed, Reason,
)
from .pricing import calculate_price, calculate_mileage_surcharge, rental_duration
from .repositories import (
    VehicleRepository, ReservationRepository, CustomerRepository, LedgerRepository, unit_of_work,
)
from .tokens import PortalTokenService

logger = logging.getLogger(__name__)

Status = models.ReservationStatus


class VehicleLocks:
    """Один писатель на автомобиль внутри процесса."""

    def __init__(self):
        self._locks = {}

    def for_vehicle(self, vehicle_id: int) -> asyncio.Lock:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = self._locks[vehicle_id] = asyncio.Lock()
        return lock


vehicle_locks = VehicleLocks()


class ReservationService:
    def __init__(self, db: AsyncSession, locks: VehicleLocks = None):
        self.db = db
        self.locks = locks or vehicle_locks
        self.vehicles = VehicleRepository(db)
        self.reservations = ReservationRepository(db)
        self.customers = CustomerRepository(db)
        self.ledger = LedgerRepository(db)
        self.tokens = PortalTokenService(db)

    def _unit_of_work(self, operation: str):
        return unit_of_work(self.db, operation)

    async def _ensure_free(self, vehicle: models.Vehicle, start: datetime, end: datetime,
                           exclude_id: Optional[int] = None):
        if vehicle.status == models.VehicleStatus.MAINTENANCE:
            raise PreconditionFailed(
                Reason.VEHICLE_IN_MAINTENANCE, f"Vehicle {vehicle.id} is in maintenance"
            )
        existing = await self.reservations.list_by_vehicle_and_status(vehicle.id, Status.OCCUPYING)
        conflicts = [
            r for r in find_conflicts(start, end, existing, vehicle_id=vehicle.id)
            if r.id != exclude_id
        ]
        if conflicts:
            raise IntervalConflict(vehicle.id, [r.id for r in conflicts])

    async def get(self, reservation_id: int) -> models.Reservation:
        return await self.reservations.get(reservation_id)

    async def create_full_reservation(self, customer_id: int, vehicle_id: int,
                                      start: datetime, end: datetime,
                                      notes: Optional[str] = None) -> models.Reservation:
        return await self._schedule(vehicle_id, start, end, notes, customer_id=customer_id)

    async def create_reservation_for_new_customer(self, customer_data: dict, vehicle_id: int,
                                                  start: datetime, end: datetime,
                                                  notes: Optional[str] = None) -> models.Reservation:
        """Онлайн-портал: клиент и резервация создаются в одной транзакции."""
        return await self._schedule(vehicle_id, start, end, notes, customer_data=customer_data)

    async def _schedule(self, vehicle_id: int, start: datetime, end: datetime, notes: Optional[str],
                        customer_id: Optional[int] = None,
                        customer_data: Optional[dict] = None) -> models.Reservation:
        rental_duration(start, end)

        async with self.locks.for_vehicle(vehicle_id):
            async with self._unit_of_work("create reservation"):
                vehicle = await self.vehicles.get(vehicle_id, for_update=True)
                await self._ensure_free(vehicle, start, end)

                if customer_data is not None:
                    customer = await self.customers.insert(models.Customer(**customer_data))
                else:
                    customer = await self.customers.get(customer_id)

                reservation = await self.reservations.insert(models.Reservation(
                    customer_id=customer.id,
                    vehicle_id=vehicle_id,
                    start_date=start,
                    end_date=end,
                    status=Status.SCHEDULED,
                    notes=notes,
                    total_price=calculate_price(vehicle, start, end),
                    created_at=datetime.utcnow(),
                ))

        await self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} scheduled: vehicle {vehicle_id}, "
            f"{start.isoformat()} - {end.isoformat()}, price {reservation.total_price}"
        )
        return reservation

    async def create_pending_reservation(self, vehicle_id: int):
        """Заготовка для портала самообслуживания: только автомобиль и токен."""
        async with self.locks.for_vehicle(vehicle_id):
            async with self._unit_of_work("create pending reservation"):
                vehicle = await self.vehicles.get(vehicle_id, for_update=True)
                if vehicle.status != models.VehicleStatus.AVAILABLE:
                    raise PreconditionFailed(
                        Reason.VEHICLE_UNAVAILABLE,
                        f"Vehicle {vehicle_id} is not available ({vehicle.status})",
                    )
                reservation = await self.reservations.insert(models.Reservation(
                    vehicle_id=vehicle_id,
                    status=Status.PENDING_CUSTOMER,
                    created_at=datetime.utcnow(),
                ))
                token = await self.tokens.issue(reservation.id)

        await self.db.refresh(reservation)
        logger.info(f"Pending reservation {reservation.id} created for vehicle {vehicle_id}")
        return reservation, token

    async def resolve_token(self, token: str) -> models.Reservation:
        portal_token = await self.tokens.resolve(token)
        reservation = await self.reservations.get(portal_token.reservation_id)
        if reservation.status != Status.PENDING_CUSTOMER:
            raise NotFound("Portal token not found or no longer valid")
        return reservation

    async def complete_customer_details(self, token: str, customer_data: dict,
                                        start: datetime, end: datetime) -> models.Reservation:
        rental_duration(start, end)
        reservation = await self.resolve_token(token)
        vehicle_id = reservation.vehicle_id

        async with self.locks.for_vehicle(vehicle_id):
            async with self._unit_of_work("complete customer details"):
                # токен могли погасить, пока ждали блокировку
                await self.tokens.redeem(token)

                vehicle = await self.vehicles.get(vehicle_id, for_update=True)
                await self._ensure_free(vehicle, start, end, exclude_id=reservation.id)

                customer = await self.customers.insert(models.Customer(**customer_data))
                moved = await self.reservations.transition(
                    reservation.id,
                    (Status.PENDING_CUSTOMER,),
                    Status.SCHEDULED,
                    customer_id=customer.id,
                    start_date=start,
                    end_date=end,
                    total_price=calculate_price(vehicle, start, end),
                )
                if not moved:
                    raise InvalidTransition("complete customer details for", reservation.status)

        await self.db.refresh(reservation)
        logger.info(f"Reservation {reservation.id} completed by customer {customer.id} via portal")
        return reservation

    async def activate(self, reservation_id: int, start_mileage: int,
                       signature_url: Optional[str]) -> models.Reservation:
        """Выдача автомобиля клиенту."""
        async with self._unit_of_work("activate reservation"):
            reservation = await self.reservations.get(reservation_id)
            if reservation.status != Status.SCHEDULED:
                raise InvalidTransition("activate", reservation.status)
            if not signature_url:
                raise PreconditionFailed(Reason.SIGNATURE_REQUIRED, "Handover signature is required")

            vehicle = await self.vehicles.get(reservation.vehicle_id, for_update=True)
            if start_mileage < vehicle.current_mileage:
                raise PreconditionFailed(
                    Reason.ODOMETER_BELOW_CURRENT,
                    f"Start mileage {start_mileage} is below the vehicle's current "
                    f"mileage {vehicle.current_mileage}",
                )

            moved = await self.reservations.transition(
                reservation_id,
                (Status.SCHEDULED,),
                Status.ACTIVE,
                start_mileage=start_mileage,
                handover_signature_url=signature_url,
            )
            if not moved:
                raise InvalidTransition("activate", reservation.status)
            await self.vehicles.set_status(vehicle.id, models.VehicleStatus.RENTED)

        await self.db.refresh(reservation)
        await self.db.refresh(vehicle)
        logger.info(f"Reservation {reservation_id} activated at {start_mileage} km")
        return reservation

    async def complete(self, reservation_id: int, end_mileage: int, notes: Optional[str],
                       payment_method: str, signature_url: Optional[str]) -> models.Reservation:
        """Возврат автомобиля: пробег, доплата за километры и запись дохода."""
        async with self._unit_of_work("complete reservation"):
            reservation = await self.reservations.get(reservation_id)
            if reservation.status != Status.ACTIVE:
                raise InvalidTransition("complete", reservation.status)
            if not signature_url:
                raise PreconditionFailed(Reason.SIGNATURE_REQUIRED, "Return signature is required")
            if payment_method not in models.PaymentMethod.ALL:
                raise PreconditionFailed(
                    Reason.INVALID_PAYMENT_METHOD, f"Unknown payment method '{payment_method}'"
                )
            if end_mileage <= reservation.start_mileage:
                raise PreconditionFailed(
                    Reason.ODOMETER_NOT_INCREASED,
                    f"End mileage {end_mileage} must be greater than start mileage "
                    f"{reservation.start_mileage}",
                )

            vehicle = await self.vehicles.get(reservation.vehicle_id, for_update=True)
            if end_mileage < vehicle.current_mileage:
                raise PreconditionFailed(
                    Reason.ODOMETER_BELOW_CURRENT,
                    f"End mileage {end_mileage} is below the vehicle's current "
                    f"mileage {vehicle.current_mileage}",
                )

            surcharge = calculate_mileage_surcharge(
                reservation.start_date, reservation.end_date, end_mileage - reservation.start_mileage
            )
            final_price = (reservation.total_price or 0) + surcharge

            moved = await self.reservations.transition(
                reservation_id,
                (Status.ACTIVE,),
                Status.COMPLETED,
                end_mileage=end_mileage,
                notes=notes,
                payment_method=payment_method,
                return_signature_url=signature_url,
                mileage_surcharge=surcharge,
                total_price=final_price,
            )
            if not moved:
                raise InvalidTransition("complete", reservation.status)

            await self.vehicles.set_status(vehicle.id, models.VehicleStatus.AVAILABLE)
            await self.vehicles.set_current_mileage(vehicle.id, end_mileage)

            description = f"Rental: {vehicle.name}"
            if reservation.customer_id is not None:
                customer = await self.customers.get(reservation.customer_id)
                description += f" - {customer.first_name} {customer.last_name}"
            await self.ledger.record_income(
                final_price, datetime.utcnow(), description,
                reservation_id=reservation_id, vehicle_id=vehicle.id,
            )

        await self.db.refresh(reservation)
        await self.db.refresh(vehicle)
        logger.info(
            f"Reservation {reservation_id} completed at {end_mileage} km, "
            f"final price {final_price} ({payment_method})"
        )
        return reservation

    async def cancel(self, reservation_id: int) -> models.Reservation:
        cancellable = (Status.SCHEDULED, Status.PENDING_CUSTOMER)

        async with self._unit_of_work("cancel reservation"):
            reservation = await self.reservations.get(reservation_id)
            if reservation.status not in cancellable:
                raise InvalidTransition("cancel", reservation.status)

            if not await self.reservations.transition(reservation_id, cancellable, Status.CANCELLED):
                raise InvalidTransition("cancel", reservation.status)
            await self.tokens.revoke_for_reservation(reservation_id)

        await self.db.refresh(reservation)
        logger.info(f"Reservation {reservation_id} cancelled")
        return reservation
