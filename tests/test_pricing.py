from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backoffice_service.app.errors import InvalidInterval
from backoffice_service.app.pricing import (
    calculate_price, calculate_mileage_surcharge, rental_days,
)

RATES = SimpleNamespace(rate4h=500, rate12h=900, daily_rate=1200)
START = datetime(2030, 5, 1, 9, 0)


@pytest.mark.parametrize("hours, expected", [
    (1, 500),
    (4.0, 500),
    (4.0000001, 900),
    (12.0, 900),
    (12.0000001, 1200),
    (24, 1200),
    (25, 2 * 1200),
    (48, 2 * 1200),
    (48.0001, 3 * 1200),
])
def test_price_tiers(hours, expected):
    assert calculate_price(RATES, START, START + timedelta(hours=hours)) == expected


def test_price_is_deterministic():
    end = START + timedelta(hours=30)
    assert calculate_price(RATES, START, end) == calculate_price(RATES, START, end)


@pytest.mark.parametrize("end", [START, START - timedelta(minutes=1)])
def test_price_rejects_empty_or_negative_interval(end):
    with pytest.raises(InvalidInterval):
        calculate_price(RATES, START, end)


def test_rental_days_counts_started_days():
    assert rental_days(START, START + timedelta(hours=3)) == 1
    assert rental_days(START, START + timedelta(days=1)) == 1
    assert rental_days(START, START + timedelta(days=1, seconds=1)) == 2


def test_mileage_within_allowance_is_free():
    assert calculate_mileage_surcharge(START, START + timedelta(hours=4), 300) == 0


def test_mileage_over_allowance_is_charged_per_km():
    # два начатых дня = 600 км включено
    assert calculate_mileage_surcharge(START, START + timedelta(hours=30), 650) == 150
