from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backoffice_service.app.availability import (
    available_vehicles, find_conflicts, intervals_overlap,
)
from backoffice_service.app.errors import InvalidInterval
from backoffice_service.app.models import ReservationStatus, VehicleStatus

BASE = datetime(2030, 6, 1, 0, 0)


def at(hour):
    return BASE + timedelta(hours=hour)


def reservation(vehicle_id, start, end, status=ReservationStatus.SCHEDULED, id_=1):
    return SimpleNamespace(id=id_, vehicle_id=vehicle_id, start_date=at(start), end_date=at(end), status=status)


def vehicle(id_, status=VehicleStatus.AVAILABLE):
    return SimpleNamespace(id=id_, status=status)


@pytest.mark.parametrize("a, b, expected", [
    ((9, 13), (10, 11), True),
    ((9, 13), (12, 15), True),
    ((9, 13), (7, 10), True),
    ((9, 13), (13, 15), False),
    ((9, 13), (5, 9), False),
    ((9, 13), (14, 16), False),
])
def test_overlap_matches_half_open_predicate(a, b, expected):
    a1, a2 = at(a[0]), at(a[1])
    b1, b2 = at(b[0]), at(b[1])
    assert intervals_overlap(a1, a2, b1, b2) is expected
    assert intervals_overlap(b1, b2, a1, a2) is expected
    assert expected == (a1 < b2 and a2 > b1)


def test_no_reservations_returns_all_except_maintenance():
    fleet = [vehicle(1), vehicle(2, VehicleStatus.MAINTENANCE), vehicle(3, VehicleStatus.RENTED)]
    free = available_vehicles(at(9), at(13), [], fleet)
    assert [v.id for v in free] == [1, 3]


def test_conflicting_vehicle_is_excluded():
    fleet = [vehicle(1), vehicle(2)]
    booked = [reservation(1, 10, 12)]
    assert [v.id for v in available_vehicles(at(9), at(13), booked, fleet)] == [2]


def test_back_to_back_booking_keeps_vehicle_available():
    fleet = [vehicle(1)]
    booked = [reservation(1, 5, 9)]
    assert [v.id for v in available_vehicles(at(9), at(13), booked, fleet)] == [1]


@pytest.mark.parametrize("status", [ReservationStatus.COMPLETED, ReservationStatus.CANCELLED])
def test_finished_reservations_do_not_occupy(status):
    fleet = [vehicle(1)]
    booked = [reservation(1, 10, 12, status=status)]
    assert [v.id for v in available_vehicles(at(9), at(13), booked, fleet)] == [1]


def test_pending_placeholder_without_dates_does_not_occupy():
    placeholder = SimpleNamespace(
        id=7, vehicle_id=1, start_date=None, end_date=None, status=ReservationStatus.PENDING_CUSTOMER
    )
    assert find_conflicts(at(9), at(13), [placeholder]) == []


def test_find_conflicts_filters_by_vehicle():
    booked = [reservation(1, 10, 12, id_=1), reservation(2, 10, 12, id_=2)]
    assert [r.id for r in find_conflicts(at(9), at(13), booked, vehicle_id=2)] == [2]


def test_zero_duration_candidate_is_rejected():
    with pytest.raises(InvalidInterval):
        available_vehicles(at(9), at(9), [], [vehicle(1)])
