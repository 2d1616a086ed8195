from datetime import datetime

from .errors import InvalidInterval
from .models import ReservationStatus, VehicleStatus


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Полуоткрытые интервалы [start, end): стык "конец == начало" не конфликт
    return a_start < b_end and a_end > b_start


def occupies(reservation) -> bool:
    return (
        reservation.status in ReservationStatus.OCCUPYING
        and reservation.start_date is not None
        and reservation.end_date is not None
    )


def find_conflicts(start: datetime, end: datetime, reservations, vehicle_id=None) -> list:
    """Резервации, которые пересекаются с интервалом [start, end)."""
    if end <= start:
        raise InvalidInterval()

    return [
        r for r in reservations
        if occupies(r)
        and (vehicle_id is None or r.vehicle_id == vehicle_id)
        and intervals_overlap(start, end, r.start_date, r.end_date)
    ]


def available_vehicles(start: datetime, end: datetime, reservations, vehicles) -> list:
    """Автомобили, свободные на весь интервал и не стоящие на обслуживании."""
    busy = {r.vehicle_id for r in find_conflicts(start, end, reservations)}
    return [
        v for v in vehicles
        if v.status != VehicleStatus.MAINTENANCE and v.id not in busy
    ]
