from datetime import datetime
from zoneinfo import ZoneInfo

from config import SALON_TIMEZONE

SALON_TZ = ZoneInfo(SALON_TIMEZONE)


def salon_now() -> datetime:
    """Текущее время салона без tzinfo (в таком виде время хранится в БД)."""
    return datetime.now(SALON_TZ).replace(tzinfo=None)


def to_salon_naive(value: datetime) -> datetime:
    # Время без зоны считаем уже местным временем салона
    if value.tzinfo is None:
        return value
    return value.astimezone(SALON_TZ).replace(tzinfo=None)


def localize(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(SALON_TZ)
    return value.replace(tzinfo=SALON_TZ)
