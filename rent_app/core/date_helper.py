import calendar
from datetime import date, datetime, time, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from .settings import settings


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now(tz_name: str | None = None) -> datetime:
    return datetime.now(ZoneInfo(tz_name or settings.REMINDER_TIMEZONE))


def local_today(tz_name: str | None = None) -> date:
    return local_now(tz_name).date()


def clamp_to_month(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def due_date_in_month(reference: date, due_day: int) -> date:
    return clamp_to_month(reference.year, reference.month, due_day)


def next_due_date(today: date, due_day: int) -> date:
    """Upcoming due date used for reminders.

    Strictly before the due day means this month, anything else rolls to
    next month. The day is clamped, so a due day of 31 lands on Feb 28/29.
    """
    if today.day < due_day:
        return due_date_in_month(today, due_day)
    return due_date_in_month(today + relativedelta(months=1), due_day)


def current_due_date(today: date, due_day: int) -> date:
    """Due date a payment made today is booked against."""
    this_month = due_date_in_month(today, due_day)
    if today <= this_month:
        return this_month
    return due_date_in_month(today + relativedelta(months=1), due_day)


def month_bounds(reference: date) -> Tuple[date, date]:
    first = reference.replace(day=1)
    last = reference.replace(day=calendar.monthrange(reference.year, reference.month)[1])
    return first, last


def parse_gateway_timestamp(raw) -> datetime | None:
    """Gateway timestamps come as yyyyMMddHHmmss, sometimes as a number."""
    if raw is None:
        return None
    value = str(raw).strip()
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y%m%d%H%M%S")
    except ValueError:
        return None


def gateway_timestamp(moment: datetime | None = None) -> str:
    moment = moment or local_now()
    return moment.strftime("%Y%m%d%H%M%S")


def in_quiet_hours(moment: time, start: time | None, end: time | None) -> bool:
    if start is None or end is None or start == end:
        return False
    if start < end:
        return start <= moment < end
    return moment >= start or moment < end
