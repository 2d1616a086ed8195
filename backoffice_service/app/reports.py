from datetime import datetime, time

from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .repositories import CustomerRepository, ReservationRepository, VehicleRepository


async def dashboard_stats(db: AsyncSession, now: datetime = None) -> dict:
    """Сводка для главной страницы: сегодняшние выдачи и возвраты."""
    now = now or datetime.utcnow()
    today_start = datetime.combine(now.date(), time.min)
    today_end = datetime.combine(now.date(), time.max)

    vehicles = await VehicleRepository(db).list_all()
    reservations = await ReservationRepository(db).list_by_status(
        (models.ReservationStatus.SCHEDULED, models.ReservationStatus.ACTIVE)
    )
    scheduled = [r for r in reservations if r.status == models.ReservationStatus.SCHEDULED]
    active = [r for r in reservations if r.status == models.ReservationStatus.ACTIVE]

    return {
        "available_vehicles": sum(1 for v in vehicles if v.status == models.VehicleStatus.AVAILABLE),
        "total_vehicles": len(vehicles),
        "upcoming_reservations": len(scheduled),
        "due_back": sum(1 for r in active if r.end_date <= today_end),
        "total_customers": await CustomerRepository(db).count(),
        "todays_departures": [r for r in scheduled if today_start <= r.start_date <= today_end],
        "todays_arrivals": [r for r in active if today_start <= r.end_date <= today_end],
    }
