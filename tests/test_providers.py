"""Provider adapters exercised against canned upstream payloads."""
import asyncio
from datetime import datetime

import httpx
import pytest

from dateai_service.cache import TtlCache
from dateai_service.models import EventSearchParams
from dateai_service.providers.base import format_amount, is_valid_event
from dateai_service.providers.events import (
  EventbriteRapidApiProvider,
  GoogleEventsProvider,
  RapidApiEventsProvider,
  TicketmasterProvider,
  build_event_providers,
  split_google_when,
)
from dateai_service.providers.geocoding import GEOCODE_CACHE_DURATION, MapboxGeocoder

from tests.conftest import StubGeocoder, make_event

PARAMS = EventSearchParams(latitude=38.9, longitude=-77.0, radius=10)


def _tm_event(idx, **overrides):
  raw = {
    "id": f"G{idx}",
    "name": f"Concert {idx}",
    "url": "https://ticketmaster.com/e",
    "images": [
      {"ratio": "4_3", "width": 300, "url": "https://img/small.jpg"},
      {"ratio": "16_9", "width": 2048, "url": "https://img/large.jpg"},
    ],
    "dates": {"start": {"localDate": "2024-06-01", "localTime": "19:00:00"}, "status": {"code": "onsale"}},
    "classifications": [{"segment": {"name": "Music"}, "genre": {"name": "Jazz"}}],
    "priceRanges": [{"min": 25.0, "max": 50.5}],
    "_embedded": {
      "venues": [
        {
          "name": "Blues Alley",
          "city": {"name": "Washington"},
          "state": {"stateCode": "DC"},
          "location": {"latitude": "38.905", "longitude": "-77.062"},
          "generalInfo": {"generalRule": "21+"},
        }
      ],
      "attractions": [{"name": "The Trio", "type": "attraction", "images": [{"url": "https://img/a.jpg"}]}],
    },
  }
  raw.update(overrides)
  return raw


class TestTicketmaster:
  @pytest.mark.asyncio
  async def test_formats_events(self):
    seen = []

    def handler(request):
      seen.append(request.url.params)
      return httpx.Response(200, json={"_embedded": {"events": [_tm_event(1)]}, "page": {"totalPages": 1}})

    provider = TicketmasterProvider("tm-key", transport=httpx.MockTransport(handler))
    outcome = await provider.fetch(PARAMS)

    assert outcome.ok
    [event] = outcome.events
    assert event.id == "ticketmaster-G1"
    assert event.category == "live-music"
    assert event.date == "6/1/2024"
    assert event.priceRange == "$25-$50.5"
    assert event.imageUrl == "https://img/large.jpg"
    assert event.venue.generalInfo == "21+"
    assert event.attractions[0].name == "The Trio"
    assert event.distance > 0
    assert is_valid_event(event)
    assert seen[0]["latlong"] == "38.9,-77.0"
    assert seen[0]["radius"] == "10"

  @pytest.mark.asyncio
  async def test_comedy_genre_wins_over_segment(self):
    raw = _tm_event(1, classifications=[{"segment": {"name": "Arts & Theatre"}, "genre": {"name": "Comedy"}}])
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"_embedded": {"events": [raw]}}))
    [event] = await TicketmasterProvider("k", transport=transport).search(PARAMS)
    assert event.category == "comedy"

  @pytest.mark.asyncio
  async def test_stops_at_page_cap(self):
    calls = []

    def handler(request):
      page = int(request.url.params["page"])
      calls.append(page)
      return httpx.Response(200, json={"_embedded": {"events": [_tm_event(page)]}, "page": {"totalPages": 10}})

    events = await TicketmasterProvider("k", transport=httpx.MockTransport(handler)).search(PARAMS)
    assert calls == [0, 1, 2, 3]
    assert len(events) == 4

  @pytest.mark.asyncio
  async def test_stops_when_page_is_empty(self):
    calls = []

    def handler(request):
      calls.append(request.url.params["page"])
      if len(calls) == 1:
        return httpx.Response(200, json={"_embedded": {"events": [_tm_event(1)]}, "page": {"totalPages": 3}})
      return httpx.Response(200, json={"page": {"totalPages": 3}})

    events = await TicketmasterProvider("k", transport=httpx.MockTransport(handler)).search(PARAMS)
    assert calls == ["0", "1"]
    assert len(events) == 1

  @pytest.mark.asyncio
  async def test_events_without_venue_coordinates_are_dropped(self):
    raw = _tm_event(1, _embedded={"venues": [{"name": "Somewhere"}]})
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"_embedded": {"events": [raw]}}))
    assert await TicketmasterProvider("k", transport=transport).search(PARAMS) == []

  @pytest.mark.asyncio
  async def test_http_error_becomes_failure(self):
    transport = httpx.MockTransport(lambda r: httpx.Response(500, text="upstream down"))
    outcome = await TicketmasterProvider("k", transport=transport).fetch(PARAMS)
    assert not outcome.ok
    assert outcome.events == []
    assert "500" in outcome.error

  @pytest.mark.asyncio
  async def test_slow_upstream_times_out(self):
    async def handler(request):
      await asyncio.sleep(1)
      return httpx.Response(200, json={})

    provider = TicketmasterProvider("k", timeout=0.05, transport=httpx.MockTransport(handler))
    outcome = await provider.fetch(PARAMS)
    assert outcome.timed_out
    assert outcome.events == []

  @pytest.mark.asyncio
  async def test_missing_location_skips_upstream(self):
    def handler(request):
      raise AssertionError("upstream should not be called")

    provider = TicketmasterProvider("k", transport=httpx.MockTransport(handler))
    outcome = await provider.fetch(EventSearchParams())
    assert outcome.ok and outcome.events == []

  def test_query_uses_radius_and_keyword(self):
    params = EventSearchParams(latitude=38.9, longitude=-77.0, radius=100, keyword="jazz")
    query = TicketmasterProvider("k")._build_query(params)
    assert query["radius"] == "100"
    assert query["keyword"] == "jazz"
    assert query["latlong"] == "38.9,-77.0"


class TestRapidApiEvents:
  @pytest.mark.asyncio
  async def test_formats_and_drops_past_events(self):
    queries = []

    def handler(request):
      queries.append(request.url.params["query"])
      assert request.headers["X-RapidAPI-Key"] == "rapid-key"
      venue = {"name": "9:30 Club", "address": "815 V St NW", "city": "Washington", "state": "DC",
               "latitude": 38.918, "longitude": -77.023}
      return httpx.Response(
        200,
        json={
          "data": [
            {"name": "Indie Rock Concert", "start_date": "2099-06-01T20:00:00", "venue": venue,
             "price_range": {"min": 20, "max": 35}},
            {"name": "Old Show", "start_date": "2000-01-01T20:00:00", "venue": venue},
            {"name": "No Venue", "start_date": "2099-06-01T20:00:00"},
          ]
        },
      )

    provider = RapidApiEventsProvider("rapid-key", StubGeocoder("Washington"), transport=httpx.MockTransport(handler))
    events = await provider.search(PARAMS)

    assert queries[0].startswith("Events in Washington from ")
    [event] = events
    assert event.title == "Indie Rock Concert"
    assert event.category == "live-music"
    assert event.date == "Monday, June 1, 2099"
    assert event.time == "08:00 PM"
    assert event.priceRange == "$20-$35"
    assert event.id.startswith("rapid-")


class TestEventbrite:
  @pytest.mark.asyncio
  async def test_no_city_means_no_request(self):
    def handler(request):
      raise AssertionError("upstream should not be called")

    provider = EventbriteRapidApiProvider("k", StubGeocoder(city=None), transport=httpx.MockTransport(handler))
    outcome = await provider.fetch(PARAMS)
    assert outcome.ok and outcome.events == []

  @pytest.mark.asyncio
  async def test_formats_events(self):
    def handler(request):
      assert request.url.params["location.within"] == "16km"
      return httpx.Response(
        200,
        json={
          "events": [
            {
              "id": "42",
              "name": {"text": "Pottery Workshop"},
              "description": {"text": "Learn the wheel"},
              "start": {"local": "2024-06-01T14:00:00"},
              "venue": {"name": "Clay Studio", "latitude": "38.91", "longitude": "-77.04",
                        "address": {"address_1": "1 Clay St", "city": "Washington", "region": "DC"}},
            }
          ]
        },
      )

    provider = EventbriteRapidApiProvider("k", StubGeocoder(), transport=httpx.MockTransport(handler))
    [event] = await provider.search(PARAMS)
    assert event.id == "eventbrite-42"
    assert event.category == "educational"
    assert event.date == "6/1/2024"
    assert event.location.address == "Clay Studio, 1 Clay St, Washington, DC"


class TestGoogleEvents:
  @pytest.mark.asyncio
  async def test_parses_coordinates_and_when(self):
    def handler(request):
      assert request.url.params["q"] == "Events in Washington"
      return httpx.Response(
        200,
        json={
          "events_results": [
            {
              "title": "Street Food Festival",
              "date": {"when": "Sat, Jun 1, 7 – 10 PM"},
              "address": ["Union Market", "Washington, DC"],
              "event_location_map": {"serpapi_link": "https://serpapi.com/x!3d38.908!4d-76.997!"},
              "ticket_info": [{"link": "https://tickets"}],
            },
            {"title": "Nowhere Party", "date": {"when": "Sun, Jun 2"}},
          ]
        },
      )

    provider = GoogleEventsProvider("serp", StubGeocoder(), transport=httpx.MockTransport(handler))
    [event] = await provider.search(PARAMS)
    assert event.location.latitude == 38.908
    assert event.location.longitude == -76.997
    assert event.date == "Sat, Jun 1"
    assert event.time == "7 – 10 PM"
    assert event.category == "food-drink"
    assert event.venue.city == "Washington"
    assert event.venue.state == "DC"
    assert event.ticketUrl == "https://tickets"

  @pytest.mark.asyncio
  async def test_date_only_when_keeps_both_parts_as_date(self):
    payload = {
      "events_results": [
        {
          "title": "Farmers Market",
          "date": {"when": "Sat, Jun 1"},
          "address": ["Dupont Circle", "Washington, DC"],
          "event_location_map": {"serpapi_link": "https://serpapi.com/x!3d38.909!4d-77.043!"},
        }
      ]
    }
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json=payload))
    [event] = await GoogleEventsProvider("serp", StubGeocoder(), transport=transport).search(PARAMS)
    assert event.date == "Sat, Jun 1"
    assert event.time == "Time TBA"

  @pytest.mark.parametrize(
    "when,expected",
    [
      ("Sat, Jun 1, 7 – 10 PM", ("Sat, Jun 1", "7 – 10 PM")),
      ("Sat, Jun 1", ("Sat, Jun 1", "")),
      ("Jun 1, 7 PM", ("Jun 1", "7 PM")),
      ("Jun 1, 19:30", ("Jun 1", "19:30")),
      ("Tomorrow", ("Tomorrow", "")),
      (None, ("", "")),
    ],
  )
  def test_split_google_when(self, when, expected):
    assert split_google_when(when) == expected


def test_build_event_providers_follows_env(monkeypatch):
  monkeypatch.setenv("TICKETMASTER_API_KEY", "tm")
  monkeypatch.delenv("RAPIDAPI_KEY", raising=False)
  monkeypatch.setenv("SERPAPI_API_KEY", "serp")
  providers = build_event_providers(StubGeocoder())
  assert [provider.name for provider in providers] == ["ticketmaster", "google"]


def test_is_valid_event_rejects_missing_fields():
  assert is_valid_event(make_event("a"))
  assert not is_valid_event(make_event("a", latitude=0.0))
  assert not is_valid_event(make_event("a", date=""))


def test_format_amount():
  assert format_amount(25.0) == "25"
  assert format_amount(12.5) == "12.5"


class TestMapboxGeocoder:
  @pytest.mark.asyncio
  async def test_reverse_city(self):
    def handler(request):
      assert request.url.path.endswith("/-77.0,38.9.json")
      return httpx.Response(200, json={"features": [{"text": "Washington"}]})

    geocoder = MapboxGeocoder("token", transport=httpx.MockTransport(handler))
    assert await geocoder.reverse_city(38.9, -77.0) == "Washington"

  @pytest.mark.asyncio
  async def test_reverse_city_without_token(self):
    assert await MapboxGeocoder(None).reverse_city(38.9, -77.0) is None

  @pytest.mark.asyncio
  async def test_search_locations_caches_and_falls_back_to_stale(self, clock):
    responses = [
      httpx.Response(
        200,
        json={"features": [{"id": "place.1", "place_name": "Washington, DC", "center": [-77.0, 38.9]}]},
      ),
      httpx.Response(503),
    ]

    def handler(request):
      return responses.pop(0)

    geocoder = MapboxGeocoder(
      "token",
      transport=httpx.MockTransport(handler),
      cache=TtlCache(GEOCODE_CACHE_DURATION, clock=clock),
    )
    first = await geocoder.search_locations("Washington")
    assert first[0].place_name == "Washington, DC"

    again = await geocoder.search_locations("Washington")
    assert again == first
    assert len(responses) == 1

    clock.advance(GEOCODE_CACHE_DURATION)
    stale = await geocoder.search_locations("Washington")
    assert stale == first

  @pytest.mark.asyncio
  async def test_short_or_unconfigured_queries_return_nothing(self):
    assert await MapboxGeocoder("token").search_locations("W") == []
    assert await MapboxGeocoder(None).search_locations("Washington") == []
