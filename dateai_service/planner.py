import asyncio
import logging
import re
from typing import List, Optional

from dateai_service.aggregator import EventAggregator
from dateai_service.dates import format_display_date
from dateai_service.geo import meters_to_miles
from dateai_service.models import DatePlan, DatePlanRequest, Event, EventLocation, Restaurant, Venue
from dateai_service.restaurant_service import RestaurantService

logger = logging.getLogger("dateai_service")

# Minutes per mile: walking ~3mph, transit ~6mph, driving ~12mph in the city.
TRAVEL_MINUTES_PER_MILE = {"walking": 20, "transit": 10, "driving": 5}

EVENT_RADIUS_MILES = 25
EVENT_POOL_SIZE = 100

_START_TIME = re.compile(r"^\s*(\d{1,2}):(\d{2})")


class DatePlanError(ValueError):
  """Plan could not be built; the message is safe to show to the user."""


class PlanValidationError(DatePlanError):
  pass


class NoCandidatesError(DatePlanError):
  pass


def validate_date_plan_request(request: DatePlanRequest) -> None:
  if not request.date:
    raise PlanValidationError("Please select a date")
  if not request.startTime or not _START_TIME.match(request.startTime):
    raise PlanValidationError("Please select a start time")
  if not request.duration or request.duration < 2 or request.duration > 12:
    raise PlanValidationError("Duration must be between 2 and 12 hours")
  if not request.budget or request.budget < 20 or request.budget > 500:
    raise PlanValidationError("Budget must be between $20 and $500")
  if not request.location:
    raise PlanValidationError("Please select a location")
  if request.transportMode and request.transportMode not in TRAVEL_MINUTES_PER_MILE:
    raise PlanValidationError("Invalid transport mode")


def parse_price_digits(price_range: Optional[str]) -> int:
  # Strips every non-digit, so "$25-$50" reads as 2550.
  digits = re.sub(r"[^0-9]", "", price_range or "")
  return int(digits) if digits else 0


def restaurant_to_event(restaurant: Restaurant, request: DatePlanRequest) -> Event:
  return Event(
    id=f"restaurant-{restaurant.id}",
    title=restaurant.name,
    description=", ".join(c.title for c in restaurant.categories),
    date=format_display_date(request.date),
    time=request.startTime,
    location=EventLocation(
      latitude=restaurant.coordinates.latitude,
      longitude=restaurant.coordinates.longitude,
      address=", ".join(restaurant.location.display_address),
    ),
    category="food-drink",
    subcategory=restaurant.categories[0].title if restaurant.categories else "Restaurant",
    priceRange=restaurant.price,
    status="closed" if restaurant.is_closed else "open",
    distance=meters_to_miles(restaurant.distance) if restaurant.distance else None,
    imageUrl=restaurant.image_url,
    venue=Venue(
      name=restaurant.name,
      city=restaurant.location.city,
      state=restaurant.location.state,
      rating=restaurant.rating,
    ),
  )


def _contains(events: List[Event], candidate: Event) -> bool:
  return any(event is candidate for event in events)


def _first(options: List[Event], predicate) -> Optional[Event]:
  return next((option for option in options if predicate(option)), None)


def filter_by_budget(options: List[Event], budget: float) -> List[Event]:
  budget_per_activity = budget / 3
  return [
    option
    for option in options
    if not option.priceRange or parse_price_digits(option.priceRange) <= budget_per_activity
  ]


def filter_by_preferences(options: List[Event], preferences: Optional[List[str]]) -> List[Event]:
  if not preferences:
    return options
  terms = [pref.lower() for pref in preferences]
  preferred = [
    option
    for option in options
    if any(
      term in option.title.lower() or term in option.description.lower() or term in option.category.lower()
      for term in terms
    )
  ]
  return preferred or options


def select_stops(options: List[Event], start_time: str) -> List[Event]:
  """Greedy time-of-day selection: a meal, an activity, then one more stop if there is room."""
  hour = int(_START_TIME.match(start_time).group(1))
  selected: List[Event] = []

  def add(candidate: Optional[Event]) -> None:
    if candidate is not None:
      selected.append(candidate)

  if hour < 11:
    add(_first(options, lambda e: e.category == "food-drink" and "breakfast" in e.description.lower()))
    add(_first(options, lambda e: e.category in ("cultural", "outdoor") and not _contains(selected, e)))
  elif hour < 17:
    add(_first(options, lambda e: e.category == "food-drink"))
    add(_first(options, lambda e: e.category != "food-drink" and not _contains(selected, e)))
  else:
    add(_first(options, lambda e: e.category == "food-drink"))
    add(
      _first(
        options,
        lambda e: e.category in ("live-music", "performing-arts", "comedy") and not _contains(selected, e),
      )
    )

  if len(selected) < 3:
    first_category = selected[0].category if selected else None
    add(_first(options, lambda e: not _contains(selected, e) and e.category != first_category))

  if not selected and options:
    selected.append(options[0])
  return selected


def travel_times(stops: List[Event], transport_mode: Optional[str]) -> List[int]:
  minutes_per_mile = TRAVEL_MINUTES_PER_MILE.get(transport_mode or "driving", TRAVEL_MINUTES_PER_MILE["driving"])
  return [round((stop.distance or 1) * minutes_per_mile) for stop in stops[:-1]]


def total_cost(stops: List[Event]) -> int:
  return sum(parse_price_digits(stop.priceRange) for stop in stops)


class DatePlanner:
  def __init__(self, aggregator: EventAggregator, restaurant_service: RestaurantService) -> None:
    self.aggregator = aggregator
    self.restaurant_service = restaurant_service

  async def generate_date_plan(self, request: DatePlanRequest) -> DatePlan:
    validate_date_plan_request(request)
    location = request.location

    try:
      events, restaurants = await asyncio.gather(
        self.aggregator.search_all_events(
          latitude=location.latitude,
          longitude=location.longitude,
          radius=EVENT_RADIUS_MILES,
          size=EVENT_POOL_SIZE,
        ),
        self.restaurant_service.fetch_restaurants(location.latitude, location.longitude),
      )
    except Exception:
      logger.exception("Error generating date plan")
      raise

    options = events + [restaurant_to_event(r, request) for r in restaurants]
    if not options:
      raise NoCandidatesError("No venues or events found in the selected area")

    affordable = filter_by_budget(options, request.budget)
    if not affordable:
      raise NoCandidatesError("No options found within your budget")

    preferred = filter_by_preferences(affordable, request.preferences)
    stops = select_stops(preferred, request.startTime)
    logger.info("Selected %s stops from %s candidates", len(stops), len(preferred))

    return DatePlan(
      events=stops,
      totalCost=total_cost(stops),
      travelTimes=travel_times(stops, request.transportMode),
    )
