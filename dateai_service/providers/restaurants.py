import asyncio
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from dateai_service.providers.base import REQUEST_TIMEOUT, provider_timeout

logger = logging.getLogger("dateai_service")

DEFAULT_PHOTO = "https://images.unsplash.com/photo-1517248135467-4c7edcad34c4"
DUPLICATE_THRESHOLD = 0.0001  # degrees


class RestaurantSource(ABC):
  """One restaurant upstream. Failures are logged and yield no results."""

  name = "restaurant_source"

  def __init__(
    self,
    api_key: str,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    self.api_key = api_key
    self.timeout = timeout
    self.transport = transport

  def _client(self, **kwargs: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=self.timeout, transport=self.transport, **kwargs)

  async def fetch(self, latitude: float, longitude: float) -> List[Dict[str, Any]]:
    try:
      raw = await self._fetch(latitude, longitude)
    except Exception as exc:
      logger.warning("%s restaurant lookup failed: %s", self.name, exc)
      return []
    results: List[Dict[str, Any]] = []
    for item in raw:
      try:
        results.append(self.transform(item))
      except Exception as exc:
        logger.warning("Error transforming %s restaurant: %s", self.name, exc)
    return results

  @abstractmethod
  async def _fetch(self, latitude: float, longitude: float) -> List[dict]:
    raise NotImplementedError

  @abstractmethod
  def transform(self, item: dict) -> Dict[str, Any]:
    raise NotImplementedError


class YelpRestaurantSource(RestaurantSource):
  name = "yelp"
  base_url = "https://api.yelp.com/v3/businesses/search"

  async def _fetch(self, latitude: float, longitude: float) -> List[dict]:
    headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
    params = {
      "latitude": latitude,
      "longitude": longitude,
      "radius": 16000,
      "sort_by": "distance",
      "limit": 50,
    }
    async with self._client(headers=headers) as client:
      resp = await client.get(self.base_url, params=params)
      if resp.status_code != 200:
        raise RuntimeError(f"Yelp API responded with status {resp.status_code}")
      data = resp.json()
    return data.get("businesses") or []

  def transform(self, business: dict) -> Dict[str, Any]:
    location = business.get("location") or {}
    coordinates = business.get("coordinates") or {}
    is_open_now = not business.get("is_closed")
    return {
      "restaurant_id": business["id"],
      "name": business["name"],
      "cuisines": [cat.get("title") for cat in business.get("categories") or [] if cat.get("title")],
      "address": {
        "street": location.get("address1"),
        "city": location.get("city"),
        "state": location.get("state"),
        "postal_code": location.get("zip_code"),
      },
      "latitude": coordinates.get("latitude"),
      "longitude": coordinates.get("longitude"),
      "rating": business.get("rating"),
      "review_count": business.get("review_count"),
      "price_level": len(business.get("price") or "") or 2,
      "is_open_now": is_open_now,
      "hours": business.get("hours") or [
        {
          "hours_type": "REGULAR",
          "is_open_now": is_open_now,
          "open": [],
        }
      ],
      "photo": {"url": business.get("image_url")},
      "website": business.get("url"),
      "phone": business.get("phone"),
      "formatted_phone": business.get("display_phone"),
      "distance": business.get("distance"),
      "transactions": business.get("transactions") or [],
      "source": "yelp",
    }


class RapidApiRestaurantSource(RestaurantSource):
  name = "rapidapi"
  host = "restaurants-near-me-usa.p.rapidapi.com"

  def __init__(
    self,
    api_key: str,
    timeout: float = REQUEST_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    now: Optional[datetime] = None,
  ) -> None:
    super().__init__(api_key, timeout=timeout, transport=transport)
    self.now = now

  async def _fetch(self, latitude: float, longitude: float) -> List[dict]:
    headers = {
      "content-type": "application/json",
      "X-RapidAPI-Key": self.api_key,
      "X-RapidAPI-Host": self.host,
    }
    body = {
      "lat1": latitude - 0.1,
      "lat2": latitude + 0.1,
      "long1": longitude - 0.1,
      "long2": longitude + 0.1,
    }
    async with self._client(headers=headers) as client:
      resp = await client.post(f"https://{self.host}/restaurants/location/within-boundary", json=body)
      if resp.status_code != 200:
        raise RuntimeError(f"RapidAPI responded with status {resp.status_code}")
      data = resp.json()
    return data or []

  def transform(self, restaurant: dict) -> Dict[str, Any]:
    # This upstream has no opening hours; assume 11:00-23:00 every day.
    current_hour = (self.now or datetime.now()).hour
    is_open_now = 11 <= current_hour < 23
    address = restaurant.get("address") or {}
    cuisines = restaurant.get("cuisine") or []
    if isinstance(cuisines, str):
      cuisines = [cuisines]
    return {
      "restaurant_id": restaurant["id"],
      "name": restaurant["name"],
      "cuisines": cuisines,
      "address": {
        "street": address.get("street"),
        "city": address.get("city"),
        "state": address.get("state"),
        "postal_code": address.get("postcode"),
      },
      "latitude": restaurant.get("latitude"),
      "longitude": restaurant.get("longitude"),
      "rating": restaurant.get("rating") or 4.0,
      "review_count": restaurant.get("reviews_count") or 0,
      "price_level": restaurant.get("price_level") or 2,
      "is_open_now": is_open_now,
      "hours": [
        {
          "hours_type": "REGULAR",
          "is_open_now": is_open_now,
          "open": [
            {"day": day, "start": "11:00", "end": "23:00", "is_overnight": False}
            for day in range(7)
          ],
        }
      ],
      "photo": {"url": restaurant.get("photo_url") or DEFAULT_PHOTO},
      "distance": restaurant.get("distance") or 0,
      "transactions": ["delivery", "pickup", "restaurant_reservation"],
      "source": "rapidapi",
    }


def _is_duplicate(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
  if (a.get("name") or "").lower() != (b.get("name") or "").lower():
    return False
  try:
    return (
      abs(float(a["latitude"]) - float(b["latitude"])) < DUPLICATE_THRESHOLD
      and abs(float(a["longitude"]) - float(b["longitude"])) < DUPLICATE_THRESHOLD
    )
  except (KeyError, TypeError, ValueError):
    return False


def dedupe_restaurants(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
  """Drop records with the same name (case-insensitive) at practically the same coordinates."""
  unique: List[Dict[str, Any]] = []
  for current in results:
    if not any(_is_duplicate(item, current) for item in unique):
      unique.append(current)
  return unique


class RestaurantProxy:
  """Merges every configured restaurant upstream into one deduplicated result set."""

  def __init__(self, sources: List[RestaurantSource]) -> None:
    self.sources = sources

  async def search(self, latitude: float, longitude: float) -> Dict[str, Any]:
    if not self.sources:
      return {"error": "No restaurant sources configured"}
    gathered = await asyncio.gather(*(source.fetch(latitude, longitude) for source in self.sources))
    merged = [item for results in gathered for item in results]
    unique = dedupe_restaurants(merged)
    logger.info(
      "Restaurant sources returned %s results (%s after dedupe)",
      len(merged),
      len(unique),
    )
    return {"results": unique}


def build_restaurant_proxy(transport: Optional[httpx.AsyncBaseTransport] = None) -> RestaurantProxy:
  sources: List[RestaurantSource] = []
  timeout = provider_timeout()
  yelp_key = os.getenv("YELP_API_KEY")
  rapidapi_key = os.getenv("RAPIDAPI_KEY")
  if yelp_key:
    sources.append(YelpRestaurantSource(yelp_key, timeout=timeout, transport=transport))
  else:
    logger.info("YELP_API_KEY not set; Yelp restaurant source disabled.")
  if rapidapi_key:
    sources.append(RapidApiRestaurantSource(rapidapi_key, timeout=timeout, transport=transport))
  else:
    logger.info("RAPIDAPI_KEY not set; RapidAPI restaurant source disabled.")
  return RestaurantProxy(sources)
