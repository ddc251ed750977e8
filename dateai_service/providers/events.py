import logging
import os
import re
import time
import uuid
from datetime import date, datetime, time as dt_time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from dateai_service.categories import classify_category
from dateai_service.dates import (
  format_display_date,
  format_display_time,
  format_long_date,
  parse_datetime,
  to_local_naive,
)
from dateai_service.geo import calculate_distance
from dateai_service.models import Attraction, Event, EventLocation, EventSearchParams, Venue
from dateai_service.providers.base import (
  REQUEST_TIMEOUT,
  EventProvider,
  format_amount,
  is_valid_event,
  provider_timeout,
  to_float,
)
from dateai_service.providers.geocoding import MapboxGeocoder

logger = logging.getLogger("dateai_service")

_GOOGLE_COORDS = re.compile(r"!3d(-?\d+\.\d+)!4d(-?\d+\.\d+)")
_CLOCK_TIME = re.compile(r"\d\s*(?:AM|PM)|\d:\d", re.IGNORECASE)


def _random_id(prefix: str) -> str:
  return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _text(value: Any) -> Optional[str]:
  if value is None:
    return None
  if isinstance(value, dict):
    parts = [str(part) for part in value.values() if part]
    return " ".join(parts) or None
  return str(value)


def _join(parts: List[Any]) -> str:
  return ", ".join(str(part) for part in parts if part)


def _format_price_range(price: Any) -> str:
  if not price:
    return "Price TBA"
  if isinstance(price, str):
    return price
  if isinstance(price, (int, float)):
    return f"${format_amount(price)}"
  if isinstance(price, dict) and price.get("min") and price.get("max"):
    return f"${format_amount(price['min'])}-${format_amount(price['max'])}"
  return "Price TBA"


class TicketmasterProvider(EventProvider):
  name = "ticketmaster"
  base_url = "https://app.ticketmaster.com/discovery/v2/events.json"
  page_size = 100
  max_pages = 4
  max_events = 400

  def _build_query(self, params: EventSearchParams) -> Dict[str, str]:
    query = {
      "apikey": self.api_key,
      "size": str(self.page_size),
      "unit": "miles",
      "sort": "date,asc",
      "includeTBA": "yes",
      "includeTest": "no",
      "latlong": f"{params.latitude},{params.longitude}",
      "radius": str(int(params.radius or 10)),
    }
    if params.keyword:
      query["keyword"] = params.keyword
    return query

  async def _fetch_all_pages(self, client: httpx.AsyncClient, query: Dict[str, str]) -> List[dict]:
    all_events: List[dict] = []
    page = 0
    has_more_pages = True
    while has_more_pages and page < self.max_pages and len(all_events) < self.max_events:
      page_query = dict(query, page=str(page), size=str(self.page_size))
      data = await self._get_json(client, self.base_url, params=page_query)
      events = (data.get("_embedded") or {}).get("events")
      if not events:
        break
      all_events.extend(events)
      has_more_pages = (data.get("page") or {}).get("totalPages", 0) > page + 1
      page += 1
    return all_events[: self.max_events]

  async def _search(self, params: EventSearchParams) -> List[Event]:
    # All pages run under the single timeout applied in fetch().
    async with self._client() as client:
      raw_events = await self._fetch_all_pages(client, self._build_query(params))
    logger.info("Ticketmaster returned %s events", len(raw_events))
    events = self._format_all(raw_events, lambda raw: self._format_event(raw, params))
    logger.info("Formatted %s valid Ticketmaster events", len(events))
    return events

  def _format_event(self, raw: dict, params: EventSearchParams) -> Optional[Event]:
    venue = (((raw.get("_embedded") or {}).get("venues")) or [None])[0] or {}
    venue_location = venue.get("location") or {}
    latitude = to_float(venue_location.get("latitude"))
    longitude = to_float(venue_location.get("longitude"))
    if not latitude or not longitude:
      return None

    images = raw.get("images") or []
    image = next(
      (img for img in images if img.get("ratio") == "16_9" and (img.get("width") or 0) > 1000),
      images[0] if images else None,
    )

    classification = (raw.get("classifications") or [{}])[0] or {}
    segment_name = ((classification.get("segment") or {}).get("name") or "").lower()
    genre_name = ((classification.get("genre") or {}).get("name") or "").lower()
    if "comedy" in genre_name:
      category = "comedy"
    else:
      category = classify_category(segment_name)

    dates = raw.get("dates") or {}
    start = dates.get("start") or {}
    start_dt = parse_datetime(start.get("dateTime"))
    if start_dt:
      local_dt = to_local_naive(start_dt)
      display_date = format_display_date(local_dt.date())
      display_time = format_display_time(local_dt)
    elif start.get("localDate"):
      display_date = format_display_date(date.fromisoformat(start["localDate"]))
      display_time = start.get("localTime") or "Time TBA"
    else:
      display_date = "Date TBA"
      display_time = start.get("localTime") or "Time TBA"

    price_ranges = raw.get("priceRanges") or []
    if price_ranges:
      price_range = f"${format_amount(price_ranges[0].get('min'))}-${format_amount(price_ranges[0].get('max'))}"
    else:
      price_range = "Price TBA"

    city = (venue.get("city") or {}).get("name") or ""
    state = (venue.get("state") or {}).get("stateCode") or ""
    distance = None
    if params.latitude and params.longitude:
      distance = calculate_distance(params.latitude, params.longitude, latitude, longitude)

    return Event(
      id=f"ticketmaster-{raw['id']}",
      title=raw.get("name") or "",
      description=raw.get("description") or raw.get("info") or raw.get("pleaseNote") or "No description available",
      date=display_date,
      time=display_time,
      location=EventLocation(
        latitude=latitude,
        longitude=longitude,
        address=f"{venue.get('name') or ''}, {city}, {state}",
      ),
      category=category,
      subcategory=(classification.get("genre") or {}).get("name") or "Various",
      priceRange=price_range,
      status=(dates.get("status") or {}).get("code") or "active",
      distance=distance,
      imageUrl=image.get("url") if image else None,
      ticketUrl=raw.get("url"),
      venue=Venue(
        name=venue.get("name") or "",
        city=city,
        state=state,
        capacity=venue.get("capacity"),
        generalInfo=_text(venue.get("generalInfo")),
      ),
      attractions=[
        Attraction(
          name=attraction.get("name") or "",
          type=attraction.get("type"),
          image=((attraction.get("images") or [{}])[0] or {}).get("url"),
          url=attraction.get("url"),
        )
        for attraction in (raw.get("_embedded") or {}).get("attractions") or []
      ],
    )


class RapidApiEventsProvider(EventProvider):
  name = "rapidapi"
  host = "real-time-events-search.p.rapidapi.com"
  limit = 100

  def __init__(
    self,
    api_key: str,
    geocoder: Optional[MapboxGeocoder] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    super().__init__(api_key, timeout=timeout, transport=transport)
    self.geocoder = geocoder

  async def _search(self, params: EventSearchParams) -> List[Event]:
    city = None
    if self.geocoder:
      city = await self.geocoder.reverse_city(params.latitude, params.longitude)
    city = city or "Events"
    query = f"{params.keyword or 'Events'} in {city} from {format_display_date(date.today())}"

    headers = {"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.host}
    async with self._client() as client:
      data = await self._get_json(
        client,
        f"https://{self.host}/search-events",
        params={"query": query, "limit": self.limit},
        headers=headers,
      )

    raw_events = data.get("data")
    if not isinstance(raw_events, list):
      logger.info("No events found in RapidAPI response")
      return []
    logger.info("RapidAPI returned %s events for query=%s", len(raw_events), query)

    start_of_today = datetime.combine(date.today(), dt_time.min)
    events = self._format_all(raw_events, lambda raw: self._format_event(raw, start_of_today))
    return [event for event in events if is_valid_event(event)]

  def _format_event(self, raw: dict, start_of_today: datetime) -> Optional[Event]:
    venue = raw.get("venue") or {}
    latitude = to_float(venue.get("latitude"))
    longitude = to_float(venue.get("longitude"))
    if not latitude or not longitude:
      return None

    start_dt = parse_datetime(raw.get("start_date"))
    if start_dt is None:
      return None
    start_dt = to_local_naive(start_dt)
    if start_dt < start_of_today:
      return None

    title = raw.get("name") or raw.get("title") or ""
    return Event(
      id=_random_id("rapid"),
      title=title,
      description=raw.get("description") or "No description available",
      date=format_long_date(start_dt.date()),
      time=format_display_time(start_dt),
      location=EventLocation(
        latitude=latitude,
        longitude=longitude,
        address=_join([venue.get("name"), venue.get("address"), venue.get("city"), venue.get("state")]),
      ),
      category=classify_category(title, raw.get("category"), raw.get("description")),
      subcategory=raw.get("category") or "Various",
      status="active",
      imageUrl=raw.get("image_url"),
      ticketUrl=raw.get("ticket_url"),
      priceRange=_format_price_range(raw.get("price_range")),
      venue=Venue(
        name=venue.get("name") or "",
        city=venue.get("city") or "",
        state=venue.get("state") or "",
        capacity=venue.get("capacity"),
        generalInfo=_text(venue.get("description")),
      ),
      attractions=[
        Attraction(
          name=performer.get("name") or "",
          type=performer.get("type"),
          image=performer.get("image_url"),
          url=performer.get("url"),
        )
        for performer in raw.get("performers") or []
      ],
    )


class EventbriteRapidApiProvider(EventProvider):
  name = "eventbrite"
  host = "eventbrite-api3.p.rapidapi.com"

  def __init__(
    self,
    api_key: str,
    geocoder: Optional[MapboxGeocoder] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    super().__init__(api_key, timeout=timeout, transport=transport)
    self.geocoder = geocoder

  async def _search(self, params: EventSearchParams) -> List[Event]:
    city = None
    if self.geocoder:
      city = await self.geocoder.reverse_city(params.latitude, params.longitude)
    if not city:
      logger.info("Could not determine city name for Eventbrite search")
      return []

    radius_km = round((params.radius or 10) * 1.60934)
    headers = {"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.host}
    async with self._client() as client:
      data = await self._get_json(
        client,
        f"https://{self.host}/events/search",
        params={"location.address": city, "location.within": f"{radius_km}km"},
        headers=headers,
      )

    raw_events = data.get("events")
    if not isinstance(raw_events, list):
      logger.info("No events found in Eventbrite response")
      return []
    events = self._format_all(raw_events, self._format_event)
    logger.info("Found %s valid Eventbrite events in %s", len(events), city)
    return events

  def _format_event(self, raw: dict) -> Optional[Event]:
    venue = raw.get("venue") or {}
    latitude = to_float(venue.get("latitude"))
    longitude = to_float(venue.get("longitude"))
    if not latitude or not longitude:
      return None

    start_dt = parse_datetime((raw.get("start") or {}).get("local"))
    if start_dt is None:
      return None
    address = venue.get("address") or {}
    title = (raw.get("name") or {}).get("text") or ""
    category_name = (raw.get("category") or {}).get("name")
    return Event(
      id=f"eventbrite-{raw['id']}",
      title=title,
      description=(raw.get("description") or {}).get("text") or "No description available",
      date=format_display_date(start_dt.date()),
      time=format_display_time(start_dt),
      location=EventLocation(
        latitude=latitude,
        longitude=longitude,
        address=_join([venue.get("name"), address.get("address_1"), address.get("city"), address.get("region")]),
      ),
      category=classify_category(title, category_name),
      subcategory=category_name or "Various",
      status=raw.get("status") or "active",
      imageUrl=(raw.get("logo") or {}).get("url"),
      ticketUrl=raw.get("url"),
      venue=Venue(
        name=venue.get("name") or "",
        city=address.get("city") or "",
        state=address.get("region") or "",
      ),
    )


def split_google_when(when: Optional[str]) -> Tuple[str, str]:
  """Split a Google Events "when" string into (date, time).

  "Sat, Jun 1, 7 – 10 PM" has the date in its first two parts. A two-part
  string is date-only unless the second part reads like a clock time.
  """
  parts = (when or "").split(", ")
  if len(parts) >= 3:
    return ", ".join(parts[:2]), ", ".join(parts[2:])
  if len(parts) == 2 and _CLOCK_TIME.search(parts[1]):
    return parts[0], parts[1]
  return ", ".join(parts), ""


class GoogleEventsProvider(EventProvider):
  name = "google"
  base_url = "https://serpapi.com/search.json"

  def __init__(
    self,
    api_key: str,
    geocoder: Optional[MapboxGeocoder] = None,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    super().__init__(api_key, timeout=timeout, transport=transport)
    self.geocoder = geocoder

  async def _search(self, params: EventSearchParams) -> List[Event]:
    place = params.keyword
    if not place and self.geocoder:
      place = await self.geocoder.reverse_city(params.latitude, params.longitude)
    query = {
      "engine": "google_events",
      "q": f"Events in {place or 'events'}",
      "hl": "en",
      "gl": "us",
      "api_key": self.api_key,
    }
    async with self._client() as client:
      data = await self._get_json(client, self.base_url, params=query)

    raw_events = data.get("events_results") or []
    logger.info("Google Events returned %s events for q=%s", len(raw_events), query["q"])
    return self._format_all(raw_events, self._format_event)

  def _format_event(self, raw: dict) -> Optional[Event]:
    latitude = longitude = 0.0
    link = (raw.get("event_location_map") or {}).get("serpapi_link") or ""
    match = _GOOGLE_COORDS.search(link)
    if match:
      latitude = float(match.group(1))
      longitude = float(match.group(2))
    if not latitude or not longitude:
      return None

    date_part, time_part = split_google_when((raw.get("date") or {}).get("when"))

    address = raw.get("address")
    address_list = address if isinstance(address, list) else []
    locality = address_list[1].split(", ") if len(address_list) > 1 else []
    venue = raw.get("venue") or {}
    title = raw.get("title") or ""
    return Event(
      id=_random_id("google"),
      title=title,
      description=raw.get("description") or "No description available",
      date=date_part,
      time=time_part or "Time TBA",
      location=EventLocation(
        latitude=latitude,
        longitude=longitude,
        address=", ".join(address_list) if address_list else (address or "Location TBA"),
      ),
      category=classify_category(title, raw.get("description")),
      subcategory="Various",
      status="active",
      imageUrl=raw.get("thumbnail"),
      ticketUrl=((raw.get("ticket_info") or [{}])[0] or {}).get("link"),
      venue=Venue(
        name=venue.get("name") or (address_list[0] if address_list else "Venue TBA"),
        city=locality[0] if locality else "",
        state=locality[1] if len(locality) > 1 else "",
        rating=venue.get("rating"),
        reviews=venue.get("reviews"),
      ),
    )


def build_event_providers(
  geocoder: Optional[MapboxGeocoder] = None,
  transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[EventProvider]:
  """Create the enabled event providers, in the order their results are merged."""
  providers: List[EventProvider] = []
  timeout = provider_timeout()
  ticketmaster_key = os.getenv("TICKETMASTER_API_KEY")
  rapidapi_key = os.getenv("RAPIDAPI_KEY")
  serpapi_key = os.getenv("SERPAPI_API_KEY")

  if ticketmaster_key:
    providers.append(TicketmasterProvider(ticketmaster_key, timeout=timeout, transport=transport))
  else:
    logger.info("TICKETMASTER_API_KEY not set; Ticketmaster provider disabled.")
  if rapidapi_key:
    providers.append(RapidApiEventsProvider(rapidapi_key, geocoder, timeout=timeout, transport=transport))
    providers.append(EventbriteRapidApiProvider(rapidapi_key, geocoder, timeout=timeout, transport=transport))
  else:
    logger.info("RAPIDAPI_KEY not set; RapidAPI and Eventbrite providers disabled.")
  if serpapi_key:
    providers.append(GoogleEventsProvider(serpapi_key, geocoder, timeout=timeout, transport=transport))
  else:
    logger.info("SERPAPI_API_KEY not set; Google Events provider disabled.")

  logger.info("Event providers enabled: %s", [provider.name for provider in providers])
  return providers
