import calendar
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil import parser as dateparser

DATE_FILTERS = ("all", "today", "tomorrow", "week", "month")


def parse_event_date(value: Optional[str], today: Optional[date] = None) -> Optional[date]:
  """Parse a display-form event date ("6/1/2024", "Saturday, June 1, 2024", "Sat, Jun 1")."""
  if not value:
    return None
  today = today or date.today()
  default = datetime(today.year, 1, 1)
  try:
    return dateparser.parse(value, default=default).date()
  except (ValueError, OverflowError, TypeError):
    return None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
  """Parse a provider timestamp, ISO first, then anything dateutil understands."""
  if not value:
    return None
  try:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
  except ValueError:
    pass
  try:
    return dateparser.parse(value)
  except (ValueError, OverflowError):
    return None


def to_local_naive(value: datetime) -> datetime:
  if value.tzinfo is None:
    return value
  return value.astimezone().replace(tzinfo=None)


def format_display_date(value: date) -> str:
  return f"{value.month}/{value.day}/{value.year}"


def format_long_date(value: date) -> str:
  return f"{value.strftime('%A')}, {value.strftime('%B')} {value.day}, {value.year}"


def format_display_time(value: datetime) -> str:
  return value.strftime("%I:%M %p")


def add_month(value: date) -> date:
  month = value.month + 1
  year = value.year + (1 if month > 12 else 0)
  month = month if month <= 12 else 1
  last_day = calendar.monthrange(year, month)[1]
  return date(year, month, min(value.day, last_day))


def matches_date_filter(event_date: Optional[str], bucket: Optional[str], today: Optional[date] = None) -> bool:
  """Check an event's display date against a date bucket relative to local midnight today."""
  if not bucket or bucket == "all":
    return True
  if bucket not in DATE_FILTERS:
    raise ValueError(f"Unsupported date filter: {bucket}")

  today = today or date.today()
  parsed = parse_event_date(event_date, today)
  if parsed is None:
    return False

  if bucket == "today":
    return parsed == today
  if bucket == "tomorrow":
    return parsed == today + timedelta(days=1)
  if bucket == "week":
    return parsed <= today + timedelta(days=7)
  return parsed <= add_month(today)
