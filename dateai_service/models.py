import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dateai_service.categories import normalize_category


class EventLocation(BaseModel):
  latitude: float = 0.0
  longitude: float = 0.0
  address: str = ""


class Venue(BaseModel):
  name: str = ""
  city: str = ""
  state: str = ""
  capacity: Optional[int] = None
  generalInfo: Optional[str] = None
  rating: Optional[float] = None
  reviews: Optional[int] = None


class Attraction(BaseModel):
  name: str = ""
  type: Optional[str] = None
  image: Optional[str] = None
  url: Optional[str] = None


class Event(BaseModel):
  """Canonical event record every provider adapter converges to."""

  id: str
  title: str
  description: str = ""
  date: str = ""
  time: str = "Time TBA"
  location: EventLocation = EventLocation()
  category: str = "special"
  subcategory: str = "Various"
  priceRange: Optional[str] = None
  status: str = "active"
  distance: Optional[float] = None
  imageUrl: Optional[str] = None
  ticketUrl: Optional[str] = None
  venue: Venue = Venue()
  attractions: List[Attraction] = []

  @field_validator("category", mode="before")
  @classmethod
  def _canonical_category(cls, value: Any) -> str:
    return normalize_category(value if isinstance(value, str) else None)


class EventFilter(BaseModel):
  category: str = "all"
  date: str = "all"
  distance: float = 0
  priceRange: List[str] = []
  sortBy: Optional[Literal["date", "distance"]] = None


class EventSearchParams(BaseModel):
  """Geo query handed to every provider adapter."""

  latitude: Optional[float] = None
  longitude: Optional[float] = None
  radius: Optional[float] = None
  keyword: Optional[str] = None


class Coordinates(BaseModel):
  latitude: float
  longitude: float


class RestaurantCategory(BaseModel):
  alias: str
  title: str


class RestaurantLocation(BaseModel):
  address1: str = ""
  address2: Optional[str] = None
  address3: Optional[str] = None
  city: str = ""
  zip_code: str = ""
  country: str = "US"
  state: str = ""
  display_address: List[str] = []


class OpeningWindow(BaseModel):
  start: Optional[str] = None
  end: Optional[str] = None
  day: Optional[int] = None
  is_overnight: bool = False


class RestaurantHours(BaseModel):
  model_config = ConfigDict(extra="ignore")

  open: List[OpeningWindow] = []
  hours_type: str = "REGULAR"
  is_open_now: bool = False


class Restaurant(BaseModel):
  """Canonical restaurant record. Distance is in meters, unlike Event.distance."""

  id: str
  name: str
  image_url: str = ""
  url: str = ""
  review_count: int = 0
  rating: float = Field(default=0, ge=0, le=5)
  coordinates: Coordinates
  price: Optional[str] = None
  categories: List[RestaurantCategory] = []
  location: RestaurantLocation = RestaurantLocation()
  phone: str = ""
  display_phone: str = ""
  distance: float = 0
  is_closed: bool = False
  hours: List[RestaurantHours] = []
  photos: List[str] = []
  transactions: List[str] = []
  source: Literal["yelp", "rapidapi"] = "rapidapi"


class RestaurantFilter(BaseModel):
  categories: List[str] = []
  price: List[str] = []
  rating: float = 0
  distance: float = 0
  openNow: bool = False


class RestaurantPage(BaseModel):
  restaurants: List[Restaurant] = []
  totalCount: int = 0
  hasMore: bool = False


class GeoPoint(BaseModel):
  latitude: float
  longitude: float


class DatePlanRequest(BaseModel):
  """Planner input. Fields stay optional so the planner can report which one is missing."""

  date: Optional[datetime.date] = None
  startTime: Optional[str] = None
  duration: Optional[float] = None
  budget: Optional[float] = None
  location: Optional[GeoPoint] = None
  preferences: Optional[List[str]] = None
  transportMode: Optional[str] = None


class DatePlan(BaseModel):
  events: List[Event] = []
  totalCost: int = 0
  travelTimes: List[int] = []


class RouteRequest(BaseModel):
  stops: List[Event] = []


class RouteResponse(BaseModel):
  stops: List[Event] = []
  originalDistance: float = 0
  optimizedDistance: float = 0


class LocationSuggestion(BaseModel):
  id: str
  place_name: str
  center: List[float]


class ChatMessage(BaseModel):
  id: str
  role: str
  content: str
  events: Optional[List[Event]] = None


class ChatRequest(BaseModel):
  messages: List[ChatMessage] = Field(..., min_length=1)


class ChatCompletion(BaseModel):
  content: str
  events: List[Event] = []
  usage: Optional[Dict[str, Any]] = None
