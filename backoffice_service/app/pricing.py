from datetime import datetime, timedelta
import logging

from .errors import InvalidInterval

logger = logging.getLogger(__name__)

FOUR_HOURS = timedelta(hours=4)
TWELVE_HOURS = timedelta(hours=12)
ONE_DAY = timedelta(days=1)

# Лимит пробега на каждый начатый день аренды и цена за километр сверх него
DAILY_KM_ALLOWANCE = 300
EXCESS_KM_RATE = 3.0


def rental_duration(start: datetime, end: datetime) -> timedelta:
    if end <= start:
        raise InvalidInterval()
    return end - start


def rental_days(start: datetime, end: datetime) -> int:
    """Количество начатых суток, минимум одни."""
    days, remainder = divmod(rental_duration(start, end), ONE_DAY)
    if remainder:
        days += 1
    return max(1, days)


def calculate_price(rates, start: datetime, end: datetime) -> float:
    """Тарифная стоимость аренды.

    ``rates`` - любой объект с атрибутами ``rate4h``, ``rate12h`` и
    ``daily_rate`` (например, модель Vehicle). До 4 часов включительно
    действует тариф 4h, до 12 часов - тариф 12h, дальше оплачивается каждый
    начатый день.
    """
    duration = rental_duration(start, end)

    if duration <= FOUR_HOURS:
        return rates.rate4h
    if duration <= TWELVE_HOURS:
        return rates.rate12h
    return rental_days(start, end) * rates.daily_rate


def calculate_mileage_surcharge(start: datetime, end: datetime, km_driven: int) -> float:
    allowance = rental_days(start, end) * DAILY_KM_ALLOWANCE
    km_over = max(0, km_driven - allowance)
    if km_over:
        logger.info(f"Mileage allowance exceeded: {km_driven} km driven, {allowance} km included")
    return km_over * EXCESS_KM_RATE
