from dateai_service.providers.base import EventProvider, ProviderOutcome, is_valid_event
from dateai_service.providers.events import (
  TicketmasterProvider,
  RapidApiEventsProvider,
  EventbriteRapidApiProvider,
  GoogleEventsProvider,
  build_event_providers,
)
from dateai_service.providers.geocoding import MapboxGeocoder, build_geocoder
from dateai_service.providers.restaurants import (
  RestaurantProxy,
  RestaurantSource,
  YelpRestaurantSource,
  RapidApiRestaurantSource,
  build_restaurant_proxy,
)

__all__ = [
  "EventProvider",
  "ProviderOutcome",
  "is_valid_event",
  "TicketmasterProvider",
  "RapidApiEventsProvider",
  "EventbriteRapidApiProvider",
  "GoogleEventsProvider",
  "build_event_providers",
  "MapboxGeocoder",
  "build_geocoder",
  "RestaurantProxy",
  "RestaurantSource",
  "YelpRestaurantSource",
  "RapidApiRestaurantSource",
  "build_restaurant_proxy",
]
