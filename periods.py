from datetime import date, datetime
from typing import Iterator
from zoneinfo import ZoneInfo

from config import get_settings


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(key: str) -> date:
    year, month = key.split("-")
    return date(int(year), int(month), 1)


def add_months(base: date, months: int, *, day: int = 1) -> date:
    """Shift ``base`` by ``months``, clamping ``day`` to the target month's length."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(day, days_in_month(year, month)))


def shift_month_key(key: str, months: int) -> str:
    return month_key(add_months(parse_month_key(key), months))


def iter_month_keys(start: date, end: date) -> Iterator[str]:
    current = start.replace(day=1)
    last = end.replace(day=1)
    while current <= last:
        yield month_key(current)
        current = add_months(current, 1)
