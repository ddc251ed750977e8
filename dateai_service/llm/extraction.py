import logging
import re
import time
import uuid
from typing import Callable, Dict, List, Optional

from dateai_service.categories import EVENT_CATEGORIES
from dateai_service.dates import format_display_date, parse_event_date
from dateai_service.models import Event, EventLocation, Venue
from dateai_service.providers.base import is_valid_event
from dateai_service.providers.geocoding import MapboxGeocoder

logger = logging.getLogger("dateai_service")

_EVENT_BLOCK = re.compile(r"EVENT_START\n([\s\S]*?)EVENT_END")
_TIME = re.compile(r"\d{1,2}:\d{2}\s*(?:AM|PM)", re.IGNORECASE)
FIELDS = ("Title", "Date", "Time", "Location", "Category", "Price", "Description")


def _field(block: str, name: str) -> Optional[str]:
  match = re.search(rf"{name}:[ \t]*(.+)", block, re.IGNORECASE)
  return match.group(1).strip() if match else None


def _parse_date(value: str) -> str:
  parsed = parse_event_date(value)
  return format_display_date(parsed) if parsed else value


def _parse_time(value: str) -> str:
  match = _TIME.search(value)
  return match.group(0) if match else value


def _parse_category(value: str) -> Optional[str]:
  category = value.lower().strip()
  return category if category in EVENT_CATEGORIES else None


_PARSERS: Dict[str, Callable[[str], Optional[str]]] = {
  "Title": str.strip,
  "Date": _parse_date,
  "Time": _parse_time,
  "Location": str.strip,
  "Category": _parse_category,
  "Price": str.strip,
  "Description": str.strip,
}


def parse_event_blocks(content: str) -> List[Dict[str, str]]:
  """Split LLM output into one field dict per EVENT_START/EVENT_END block."""
  blocks: List[Dict[str, str]] = []
  for match in _EVENT_BLOCK.finditer(content or ""):
    fields: Dict[str, str] = {}
    for name in FIELDS:
      raw = _field(match.group(1), name)
      if raw is None:
        continue
      value = _PARSERS[name](raw)
      if value:
        fields[name] = value
    blocks.append(fields)
  return blocks


async def extract_events(content: str, geocoder: Optional[MapboxGeocoder]) -> List[Event]:
  """Turn LLM event blocks into canonical events, geocoding each Location line.

  Blocks without a title, without a resolvable location, or that fail event
  validation are dropped.
  """
  events: List[Event] = []
  for fields in parse_event_blocks(content):
    address = fields.get("Location")
    if not fields.get("Title") or not address or geocoder is None:
      continue
    try:
      suggestions = await geocoder.search_locations(address)
    except Exception as exc:
      logger.warning("Error getting location coordinates for %r: %s", address, exc)
      continue
    if not suggestions or len(suggestions[0].center) < 2:
      continue

    longitude, latitude = suggestions[0].center[:2]
    place_parts = [part.strip() for part in suggestions[0].place_name.split(",")]
    city = place_parts[1] if len(place_parts) > 1 else ""
    event = Event(
      id=f"ai-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
      title=fields["Title"],
      description=fields.get("Description", ""),
      date=fields.get("Date", ""),
      time=fields.get("Time", "Time TBA"),
      location=EventLocation(latitude=latitude, longitude=longitude, address=address),
      category=fields.get("Category", "special"),
      priceRange=fields.get("Price"),
      venue=Venue(
        name=address.split(",")[0].strip(),
        city=city,
        state=place_parts[2] if len(place_parts) > 2 else "",
        generalInfo=f"Located in {city or 'the area'}",
      ),
    )
    if is_valid_event(event):
      events.append(event)
  return events
