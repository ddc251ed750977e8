import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from dateai_service.cache import TtlCache
from dateai_service.geo import miles_to_meters
from dateai_service.models import Restaurant, RestaurantFilter, RestaurantPage
from dateai_service.providers.restaurants import DEFAULT_PHOTO, RestaurantProxy

logger = logging.getLogger("dateai_service")

CACHE_DURATION = 5 * 60 * 1000  # 5 minutes
PAGE_SIZE = 20

_EXTRA_PHOTOS = [
  "https://images.unsplash.com/photo-1552566626-52f8b828add9",
  "https://images.unsplash.com/photo-1544148103-0773bf10d330",
]


class RestaurantFetchError(RuntimeError):
  pass


def cache_key(latitude: float, longitude: float, filters: Optional[RestaurantFilter]) -> str:
  filters_json = json.dumps(filters.model_dump() if filters else None, separators=(",", ":"))
  return f"{latitude},{longitude}-{filters_json}"


def format_restaurant(result: Dict[str, Any], latitude: float, longitude: float) -> Restaurant:
  address = result.get("address") or {}
  photo_url = (result.get("photo") or {}).get("url") or DEFAULT_PHOTO
  is_open_now = bool(result.get("is_open_now"))
  price_level = result.get("price_level")
  return Restaurant(
    id=str(result.get("restaurant_id") or result.get("id")),
    name=result["name"],
    image_url=photo_url,
    url=result.get("website") or "",
    review_count=result.get("review_count") or 0,
    rating=result.get("rating") or 0,
    coordinates={
      "latitude": result.get("latitude") or latitude,
      "longitude": result.get("longitude") or longitude,
    },
    price="$" * int(price_level) if price_level else "$$",
    categories=[
      {"alias": cuisine.lower(), "title": cuisine} for cuisine in result.get("cuisines") or []
    ],
    location={
      "address1": address.get("street") or "",
      "city": address.get("city") or "",
      "state": address.get("state") or "",
      "country": address.get("country") or "US",
      "zip_code": address.get("postal_code") or "",
      "display_address": [
        part
        for part in [
          address.get("street"),
          ", ".join(p for p in [address.get("city"), address.get("state")] if p),
        ]
        if part
      ],
    },
    phone=result.get("phone") or "",
    display_phone=result.get("formatted_phone") or "",
    distance=result.get("distance") or 0,
    is_closed=not is_open_now,
    hours=result.get("hours") or [{"is_open_now": is_open_now, "open": []}],
    photos=[photo_url, *_EXTRA_PHOTOS],
    transactions=result.get("transactions") or [],
    source=result.get("source") or "rapidapi",
  )


def matches_filters(restaurant: Restaurant, filters: RestaurantFilter) -> bool:
  if filters.rating > 0 and restaurant.rating < filters.rating:
    return False
  if filters.price and str(len(restaurant.price or "")) not in filters.price:
    return False
  if filters.categories and not any(c.alias in filters.categories for c in restaurant.categories):
    return False
  if filters.distance > 0 and restaurant.distance > miles_to_meters(filters.distance):
    return False
  if filters.openNow and restaurant.is_closed:
    return False
  return True


def format_restaurants(
  results: List[Dict[str, Any]],
  latitude: float,
  longitude: float,
  filters: Optional[RestaurantFilter] = None,
) -> List[Restaurant]:
  restaurants: List[Restaurant] = []
  for result in results:
    try:
      restaurant = format_restaurant(result, latitude, longitude)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
      logger.warning("Error formatting restaurant: %s", exc)
      continue
    if filters and not matches_filters(restaurant, filters):
      continue
    restaurants.append(restaurant)
  return restaurants


def paginate(restaurants: List[Restaurant], page: int) -> RestaurantPage:
  start = (page - 1) * PAGE_SIZE
  return RestaurantPage(
    restaurants=restaurants[start:start + PAGE_SIZE],
    totalCount=len(restaurants),
    hasMore=start + PAGE_SIZE < len(restaurants),
  )


class RestaurantService:
  """Paginated restaurant search with one cache entry per location and filter set.

  Unlike event providers, upstream failures propagate to the caller.
  """

  def __init__(self, source: RestaurantProxy, cache: Optional[TtlCache] = None) -> None:
    self.source = source
    self.cache = cache if cache is not None else TtlCache(CACHE_DURATION)

  async def fetch_restaurants(
    self,
    latitude: float,
    longitude: float,
    filters: Optional[RestaurantFilter] = None,
  ) -> List[Restaurant]:
    """Every formatted, filtered restaurant around a point, served from cache when fresh."""
    key = cache_key(latitude, longitude, filters)
    cached = self.cache.get(key)
    if cached is not None:
      return cached

    try:
      data = await self.source.search(latitude, longitude)
      if data.get("error"):
        raise RestaurantFetchError(data["error"])
    except Exception as exc:
      logger.error("Error fetching restaurants: %s", exc)
      raise

    restaurants = format_restaurants(data.get("results") or [], latitude, longitude, filters)
    self.cache.set(
      key,
      restaurants,
      location=f"{latitude},{longitude}",
      filters=json.dumps(filters.model_dump() if filters else None),
    )
    return restaurants

  async def search_restaurants(
    self,
    latitude: float,
    longitude: float,
    page: int = 1,
    filters: Optional[RestaurantFilter] = None,
  ) -> RestaurantPage:
    restaurants = await self.fetch_restaurants(latitude, longitude, filters)
    return paginate(restaurants, page or 1)
