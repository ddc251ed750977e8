"""Tests for the restaurant proxy, its upstream sources and the paginated service."""
from datetime import datetime

import httpx
import pytest

from dateai_service.models import RestaurantFilter
from dateai_service.providers.restaurants import (
  DEFAULT_PHOTO,
  RapidApiRestaurantSource,
  RestaurantProxy,
  YelpRestaurantSource,
  dedupe_restaurants,
)
from dateai_service.restaurant_service import (
  CACHE_DURATION,
  PAGE_SIZE,
  RestaurantFetchError,
  RestaurantService,
  cache_key,
  format_restaurant,
)
from dateai_service.cache import TtlCache

LAT, LON = 38.9, -77.0


def _result(idx, **overrides):
  result = {
    "restaurant_id": f"r{idx}",
    "name": f"Place {idx}",
    "cuisines": ["Italian"],
    "address": {"street": "1 Main St", "city": "Washington", "state": "DC", "postal_code": "20001"},
    "latitude": LAT + idx * 0.001,
    "longitude": LON,
    "rating": 4.5,
    "review_count": 10,
    "price_level": 2,
    "is_open_now": True,
    "photo": {"url": "https://example.com/p.jpg"},
    "distance": 500,
    "transactions": [],
    "source": "yelp",
  }
  result.update(overrides)
  return result


class StubProxy:
  def __init__(self, payload):
    self.payload = payload
    self.calls = 0

  async def search(self, latitude, longitude):
    self.calls += 1
    if isinstance(self.payload, Exception):
      raise self.payload
    return self.payload


class TestRestaurantService:
  @pytest.mark.asyncio
  async def test_second_call_within_ttl_uses_cache(self, clock):
    proxy = StubProxy({"results": [_result(1)]})
    service = RestaurantService(proxy, cache=TtlCache(CACHE_DURATION, clock=clock))

    first = await service.search_restaurants(LAT, LON)
    clock.advance(CACHE_DURATION - 1)
    second = await service.search_restaurants(LAT, LON)

    assert proxy.calls == 1
    assert first == second
    clock.advance(1)
    await service.search_restaurants(LAT, LON)
    assert proxy.calls == 2

  @pytest.mark.asyncio
  async def test_different_filters_use_separate_entries(self, clock):
    proxy = StubProxy({"results": [_result(1)]})
    service = RestaurantService(proxy, cache=TtlCache(CACHE_DURATION, clock=clock))
    await service.search_restaurants(LAT, LON)
    await service.search_restaurants(LAT, LON, filters=RestaurantFilter(rating=4))
    assert proxy.calls == 2

  @pytest.mark.asyncio
  async def test_pagination(self, clock):
    proxy = StubProxy({"results": [_result(i) for i in range(25)]})
    service = RestaurantService(proxy, cache=TtlCache(CACHE_DURATION, clock=clock))

    page_one = await service.search_restaurants(LAT, LON, page=1)
    page_two = await service.search_restaurants(LAT, LON, page=2)

    assert len(page_one.restaurants) == PAGE_SIZE
    assert page_one.hasMore is True
    assert page_one.totalCount == 25
    assert len(page_two.restaurants) == 5
    assert page_two.hasMore is False

  @pytest.mark.asyncio
  async def test_fetch_restaurants_returns_every_record(self, clock):
    proxy = StubProxy({"results": [_result(i) for i in range(25)]})
    service = RestaurantService(proxy, cache=TtlCache(CACHE_DURATION, clock=clock))
    assert len(await service.fetch_restaurants(LAT, LON)) == 25
    await service.search_restaurants(LAT, LON, page=2)
    assert proxy.calls == 1

  @pytest.mark.asyncio
  async def test_error_payload_raises(self, clock):
    service = RestaurantService(StubProxy({"error": "No restaurant sources configured"}))
    with pytest.raises(RestaurantFetchError):
      await service.search_restaurants(LAT, LON)

  @pytest.mark.asyncio
  async def test_upstream_exception_propagates(self):
    service = RestaurantService(StubProxy(httpx.ConnectError("down")))
    with pytest.raises(httpx.ConnectError):
      await service.search_restaurants(LAT, LON)

  @pytest.mark.asyncio
  async def test_filters_applied(self):
    results = [
      _result(1, rating=3.0),
      _result(2, price_level=3),
      _result(3, cuisines=["Thai"]),
      _result(4, distance=20000),
      _result(5, is_open_now=False),
      _result(6),
    ]
    service = RestaurantService(StubProxy({"results": results}))
    filters = RestaurantFilter(categories=["italian"], price=["2"], rating=4, distance=5, openNow=True)
    page = await service.search_restaurants(LAT, LON, filters=filters)
    assert [r.id for r in page.restaurants] == ["r6"]

  @pytest.mark.asyncio
  async def test_malformed_records_are_skipped(self):
    service = RestaurantService(StubProxy({"results": [{"restaurant_id": "x"}, _result(1)]}))
    page = await service.search_restaurants(LAT, LON)
    assert [r.id for r in page.restaurants] == ["r1"]


def test_format_restaurant_defaults():
  restaurant = format_restaurant(
    {"restaurant_id": "a", "name": "Diner", "photo": None, "is_open_now": False},
    LAT,
    LON,
  )
  assert restaurant.price == "$$"
  assert restaurant.image_url == DEFAULT_PHOTO
  assert restaurant.is_closed is True
  assert restaurant.coordinates.latitude == LAT
  assert len(restaurant.photos) == 3


def test_cache_key_includes_filters():
  assert cache_key(LAT, LON, None) == "38.9,-77.0-null"
  assert cache_key(LAT, LON, RestaurantFilter()) != cache_key(LAT, LON, RestaurantFilter(rating=4))


class TestDedupe:
  def test_near_identical_coordinates_collapse(self):
    a = {"name": "Rose's Luxury", "latitude": 38.88, "longitude": -76.99}
    b = {"name": "rose's luxury", "latitude": 38.88005, "longitude": -76.99005}
    assert dedupe_restaurants([a, b]) == [a]

  def test_same_name_far_apart_kept(self):
    a = {"name": "Chipotle", "latitude": 38.88, "longitude": -76.99}
    b = {"name": "Chipotle", "latitude": 38.90, "longitude": -76.99}
    assert len(dedupe_restaurants([a, b])) == 2


def _yelp_handler(request: httpx.Request) -> httpx.Response:
  assert request.headers["Authorization"] == "Bearer yelp-key"
  assert request.url.params["sort_by"] == "distance"
  return httpx.Response(
    200,
    json={
      "businesses": [
        {
          "id": "y1",
          "name": "Rose's Luxury",
          "categories": [{"alias": "newamerican", "title": "New American"}],
          "location": {"address1": "717 8th St SE", "city": "Washington", "state": "DC", "zip_code": "20003"},
          "coordinates": {"latitude": 38.88, "longitude": -76.99},
          "rating": 4.5,
          "review_count": 2000,
          "price": "$$$",
          "is_closed": False,
          "image_url": "https://example.com/rose.jpg",
          "distance": 1200.5,
        }
      ]
    },
  )


def _rapid_handler(request: httpx.Request) -> httpx.Response:
  assert request.method == "POST"
  assert request.headers["X-RapidAPI-Key"] == "rapid-key"
  return httpx.Response(
    200,
    json=[
      {"id": 7, "name": "rose's luxury", "latitude": 38.88005, "longitude": -76.99005},
      {"id": 8, "name": "Ben's Chili Bowl", "latitude": 38.917, "longitude": -77.028, "cuisine": "Diner"},
    ],
  )


class TestRestaurantProxy:
  @pytest.mark.asyncio
  async def test_merges_sources_and_dedupes(self):
    yelp = YelpRestaurantSource("yelp-key", transport=httpx.MockTransport(_yelp_handler))
    rapid = RapidApiRestaurantSource(
      "rapid-key",
      transport=httpx.MockTransport(_rapid_handler),
      now=datetime(2024, 6, 1, 12, 0),
    )
    data = await RestaurantProxy([yelp, rapid]).search(LAT, LON)

    names = [item["name"] for item in data["results"]]
    assert names == ["Rose's Luxury", "Ben's Chili Bowl"]
    rose, bens = data["results"]
    assert rose["price_level"] == 3
    assert rose["source"] == "yelp"
    assert bens["cuisines"] == ["Diner"]
    assert bens["rating"] == 4.0
    assert bens["is_open_now"] is True
    assert len(bens["hours"][0]["open"]) == 7

  @pytest.mark.asyncio
  async def test_failing_source_yields_no_results(self):
    failing = YelpRestaurantSource("yelp-key", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    data = await RestaurantProxy([failing]).search(LAT, LON)
    assert data == {"results": []}

  @pytest.mark.asyncio
  async def test_no_sources_reports_error(self):
    assert "error" in await RestaurantProxy([]).search(LAT, LON)

  def test_rapidapi_closed_outside_assumed_hours(self):
    source = RapidApiRestaurantSource("k", now=datetime(2024, 6, 1, 23, 30))
    assert source.transform({"id": 1, "name": "Late"})["is_open_now"] is False
