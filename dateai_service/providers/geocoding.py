import logging
import os
from typing import List, Optional
from urllib.parse import quote

import httpx

from dateai_service.cache import TtlCache
from dateai_service.models import LocationSuggestion

logger = logging.getLogger("dateai_service")

GEOCODE_CACHE_DURATION = 24 * 60 * 60 * 1000  # 24 hours


class MapboxGeocoder:
  """Reverse lookups for provider adapters and forward suggestions for free-text places."""

  base_url = "https://api.mapbox.com/geocoding/v5/mapbox.places"

  def __init__(
    self,
    access_token: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
    cache: Optional[TtlCache] = None,
    timeout: float = 8.0,
  ) -> None:
    self.access_token = access_token
    self.transport = transport
    self.timeout = timeout
    self.cache = cache if cache is not None else TtlCache(GEOCODE_CACHE_DURATION, stale_for=GEOCODE_CACHE_DURATION)

  def _client(self) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

  async def reverse_city(self, latitude: float, longitude: float) -> Optional[str]:
    """Return the place name around a point, None when nothing matches.

    Upstream failures raise so the calling adapter can log and drop its search.
    """
    if not self.access_token:
      logger.info("MAPBOX_TOKEN not set; reverse geocoding disabled.")
      return None
    url = f"{self.base_url}/{longitude},{latitude}.json"
    params = {"types": "place", "access_token": self.access_token}
    async with self._client() as client:
      resp = await client.get(url, params=params)
      resp.raise_for_status()
      data = resp.json()
    features = data.get("features") or []
    if not features:
      return None
    return features[0].get("text") or None

  async def search_locations(self, query: str) -> List[LocationSuggestion]:
    if not query or len(query) < 2:
      return []

    fresh = self.cache.get(query)
    if fresh is not None:
      return fresh
    stale = self.cache.peek(query)

    try:
      if not self.access_token:
        raise RuntimeError("Mapbox token is not configured")
      url = f"{self.base_url}/{quote(query)}.json"
      params = {
        "access_token": self.access_token,
        "types": "place,locality,neighborhood,address",
        "limit": 5,
      }
      async with self._client() as client:
        resp = await client.get(url, params=params)
        if resp.status_code != 200:
          raise RuntimeError(f"Failed to fetch location suggestions: {resp.status_code}")
        data = resp.json()
      features = data.get("features")
      if not isinstance(features, list):
        raise RuntimeError("Invalid response format from Mapbox API")
      suggestions = [
        LocationSuggestion(
          id=str(feature.get("id")),
          place_name=feature.get("place_name") or "",
          center=list(feature.get("center") or []),
        )
        for feature in features
      ]
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
      logger.warning("Error fetching location suggestions for %r: %s", query, exc)
      if stale is not None:
        logger.info("Returning expired cached suggestions for %r", query)
        return stale.value
      return []

    self.cache.set(query, suggestions)
    return suggestions


def build_geocoder(transport: Optional[httpx.AsyncBaseTransport] = None) -> MapboxGeocoder:
  token = os.getenv("MAPBOX_TOKEN")
  if not token:
    logger.info("MAPBOX_TOKEN not set; geocoding lookups will return no results.")
  return MapboxGeocoder(token, transport=transport)
