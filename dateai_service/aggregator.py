import asyncio
import logging
import re
from datetime import date
from functools import cmp_to_key
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from dateai_service.cache import TtlCache
from dateai_service.dates import matches_date_filter, parse_event_date
from dateai_service.geo import calculate_distance
from dateai_service.models import Event, EventFilter, EventSearchParams
from dateai_service.providers.base import EventProvider, ProviderOutcome, is_valid_event

logger = logging.getLogger("dateai_service")

CACHE_DURATION = 30 * 60 * 1000  # 30 minutes
SEARCH_RADIUS = 100  # miles

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def _dedupe_key(event: Event) -> Tuple[str, str, float, float]:
  return (event.title.lower(), event.date, event.location.latitude, event.location.longitude)


def remove_duplicates(events: Sequence[Event]) -> List[Event]:
  """Keep the first event for each (title, date, lat, lon); later duplicates are dropped."""
  seen = set()
  unique: List[Event] = []
  for event in events:
    key = _dedupe_key(event)
    if key in seen:
      continue
    seen.add(key)
    unique.append(event)
  return unique


def parse_price(price_range: Optional[str]) -> Optional[float]:
  """First number in a free-form price string ("$25-$50" -> 25.0), None when there is none."""
  if not price_range:
    return None
  match = _NUMBER.search(price_range)
  return float(match.group(0)) if match else None


def matches_price_bucket(price: float, bucket: str) -> bool:
  if bucket == "free":
    return price == 0
  if bucket == "0-25":
    return price <= 25
  if bucket == "25-50":
    return 25 < price <= 50
  if bucket == "50-100":
    return 50 < price <= 100
  if bucket == "100+":
    return price > 100
  return False


def with_distance(events: Sequence[Event], latitude: float, longitude: float) -> List[Event]:
  return [
    event.model_copy(
      update={
        "distance": calculate_distance(latitude, longitude, event.location.latitude, event.location.longitude)
      }
    )
    for event in events
  ]


def filter_events(
  events: Sequence[Event],
  filters: EventFilter,
  has_location: bool = False,
  today: Optional[date] = None,
) -> List[Event]:
  """Apply category, date bucket, price bucket and distance filters.

  Distance is read from each event's precomputed `distance`, so the ceiling only
  applies when the search carried a query point.
  """
  today = today or date.today()
  filtered: List[Event] = []
  for event in events:
    if filters.category != "all" and event.category != filters.category:
      continue
    if not matches_date_filter(event.date, filters.date, today):
      continue
    if filters.priceRange:
      price = parse_price(event.priceRange)
      if price is None:
        continue
      if not any(matches_price_bucket(price, bucket) for bucket in filters.priceRange):
        continue
    if has_location and filters.distance and event.distance is not None:
      if event.distance > filters.distance:
        continue
    filtered.append(event)
  return filtered


def sort_events(events: Sequence[Event], by: Optional[str] = None, today: Optional[date] = None) -> List[Event]:
  """Sort by date ascending, ties broken by distance when both events carry one."""
  parsed: Dict[int, date] = {
    id(event): parse_event_date(event.date, today) or date.max for event in events
  }

  def by_distance(a: Event, b: Event) -> int:
    if a.distance and b.distance:
      return (a.distance > b.distance) - (a.distance < b.distance)
    return 0

  def by_date(a: Event, b: Event) -> int:
    left, right = parsed[id(a)], parsed[id(b)]
    return (left > right) - (left < right)

  def compare(a: Event, b: Event) -> int:
    if by == "distance":
      return by_distance(a, b) or by_date(a, b)
    return by_date(a, b) or by_distance(a, b)

  return sorted(events, key=cmp_to_key(compare))


class EventAggregator:
  """Fans out to every event provider, caches the merged snapshot and filters views of it."""

  def __init__(self, providers: List[EventProvider], cache: Optional[TtlCache] = None) -> None:
    self.providers = providers
    self.cache = cache if cache is not None else TtlCache(CACHE_DURATION)

  @staticmethod
  def cache_key(params: EventSearchParams) -> Hashable:
    latitude = round(params.latitude, 2) if params.latitude is not None else None
    longitude = round(params.longitude, 2) if params.longitude is not None else None
    return (latitude, longitude, params.radius, (params.keyword or "").lower())

  async def fetch_all_events(self, params: EventSearchParams) -> List[Event]:
    logger.info("Fetching events from %s sources with params: %s", len(self.providers), params)
    if not self.providers:
      return []

    gathered = await asyncio.gather(
      *(provider.fetch(params) for provider in self.providers),
      return_exceptions=True,
    )

    all_events: List[Event] = []
    for provider, outcome in zip(self.providers, gathered):
      if isinstance(outcome, Exception):
        logger.warning("Provider %s failed: %s", provider.name, outcome)
        continue
      if not isinstance(outcome, ProviderOutcome):
        continue
      if not outcome.ok:
        logger.warning("- %s: failed (%s)", provider.name, outcome.error)
        continue
      logger.info("- %s: %s events", provider.name, len(outcome.events))
      all_events.extend(event for event in outcome.events if is_valid_event(event))

    unique = remove_duplicates(all_events)
    logger.info("Total unique events: %s (from %s)", len(unique), len(all_events))
    return unique

  async def search_all_events(
    self,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: Optional[float] = None,
    keyword: Optional[str] = None,
    size: Optional[int] = None,
    filters: Optional[EventFilter] = None,
    today: Optional[date] = None,
  ) -> List[Event]:
    params = EventSearchParams(
      latitude=latitude,
      longitude=longitude,
      radius=radius or SEARCH_RADIUS,
      keyword=keyword,
    )
    key = self.cache_key(params)
    events = self.cache.get(key)
    if events is not None:
      logger.info("Using cached events")
    else:
      logger.info("Cache expired or not found, fetching fresh events")
      events = await self.fetch_all_events(params)
      self.cache.set(key, events)

    has_location = bool(latitude and longitude)
    if has_location:
      events = with_distance(events, latitude, longitude)
    else:
      events = list(events)

    try:
      if filters:
        events = filter_events(events, filters, has_location=has_location, today=today)
      events = sort_events(events, by=filters.sortBy if filters else None, today=today)
    except Exception:
      logger.exception("Error filtering events")
      raise

    if size and size > 0:
      events = events[:size]
    logger.info("Returning %s filtered events", len(events))
    return events
