from typing import List, Optional

import pytest

from dateai_service.models import Event, EventLocation, EventSearchParams, Venue
from dateai_service.providers.base import EventProvider


def make_event(
  id: str,
  title: str = "Jazz Night",
  date: str = "2024-06-01",
  latitude: float = 38.9,
  longitude: float = -77.0,
  category: str = "live-music",
  price: Optional[str] = None,
  description: str = "An evening of live jazz",
  distance: Optional[float] = None,
) -> Event:
  return Event(
    id=id,
    title=title,
    description=description,
    date=date,
    time="07:00 PM",
    location=EventLocation(latitude=latitude, longitude=longitude, address="1 Main St, Washington, DC"),
    category=category,
    priceRange=price,
    distance=distance,
    venue=Venue(name="Blues Alley", city="Washington", state="DC"),
  )


class StubProvider(EventProvider):
  """Provider returning canned events and counting upstream calls."""

  def __init__(self, name: str, events: Optional[List[Event]] = None, error: Optional[Exception] = None) -> None:
    super().__init__(api_key="test-key", timeout=1.0)
    self.name = name
    self.events = events or []
    self.error = error
    self.calls = 0

  async def _search(self, params: EventSearchParams) -> List[Event]:
    self.calls += 1
    if self.error:
      raise self.error
    return list(self.events)


class FakeClock:
  def __init__(self, now: int = 1_700_000_000_000) -> None:
    self.now = now

  def __call__(self) -> int:
    return self.now

  def advance(self, ms: int) -> None:
    self.now += ms


class StubGeocoder:
  def __init__(self, city: Optional[str] = "Washington", suggestions=None) -> None:
    self.city = city
    self.suggestions = suggestions or {}
    self.reverse_calls = 0

  async def reverse_city(self, latitude: float, longitude: float) -> Optional[str]:
    self.reverse_calls += 1
    return self.city

  async def search_locations(self, query: str):
    return self.suggestions.get(query, [])


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()
