import logging
import os
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from dateai_service.aggregator import EventAggregator
from dateai_service.llm import ChatError, ChatManager, get_ai_recommendations, get_chat_manager
from dateai_service.llm.recommendations import RecommendationType
from dateai_service.models import (
  ChatCompletion,
  ChatRequest,
  DatePlan,
  DatePlanRequest,
  Event,
  EventFilter,
  LocationSuggestion,
  RestaurantFilter,
  RestaurantPage,
  RouteRequest,
  RouteResponse,
)
from dateai_service.planner import DatePlanner, NoCandidatesError, PlanValidationError
from dateai_service.providers import (
  MapboxGeocoder,
  RestaurantProxy,
  build_event_providers,
  build_geocoder,
  build_restaurant_proxy,
)
from dateai_service.restaurant_service import RestaurantFetchError, RestaurantService
from dateai_service.route_optimizer import optimize_route, total_route_distance

# Load .env file when running locally so provider/LLM keys are picked up.
load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("dateai_service")

app = FastAPI(
  title="DateAI Service",
  version="0.1.0",
  description="Aggregates events and restaurants and builds date itineraries.",
)

app.add_middleware(
  CORSMiddleware,
  allow_origins=["*"],
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)


@lru_cache
def get_geocoder() -> MapboxGeocoder:
  return build_geocoder()


@lru_cache
def get_aggregator() -> EventAggregator:
  return EventAggregator(build_event_providers(get_geocoder()))


@lru_cache
def get_restaurant_proxy() -> RestaurantProxy:
  return build_restaurant_proxy()


@lru_cache
def get_restaurant_service() -> RestaurantService:
  return RestaurantService(get_restaurant_proxy())


@lru_cache
def get_chat() -> ChatManager:
  return get_chat_manager(get_geocoder())


def get_planner(
  aggregator: EventAggregator = Depends(get_aggregator),
  restaurants: RestaurantService = Depends(get_restaurant_service),
) -> DatePlanner:
  return DatePlanner(aggregator, restaurants)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/events", response_model=List[Event])
async def search_events(
  latitude: Optional[float] = None,
  longitude: Optional[float] = None,
  radius: Optional[float] = None,
  keyword: Optional[str] = None,
  size: Optional[int] = None,
  category: str = "all",
  date: str = "all",
  distance: float = 0,
  priceRange: List[str] = Query(default=[]),
  sortBy: Optional[str] = None,
  aggregator: EventAggregator = Depends(get_aggregator),
) -> List[Event]:
  try:
    filters = EventFilter(category=category, date=date, distance=distance, priceRange=priceRange, sortBy=sortBy)
    return await aggregator.search_all_events(
      latitude=latitude,
      longitude=longitude,
      radius=radius,
      keyword=keyword,
      size=size,
      filters=filters,
    )
  except ValueError as exc:
    raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/restaurants", response_model=RestaurantPage)
async def search_restaurants(
  latitude: float,
  longitude: float,
  page: int = 1,
  categories: List[str] = Query(default=[]),
  price: List[str] = Query(default=[]),
  rating: float = 0,
  distance: float = 0,
  openNow: bool = False,
  service: RestaurantService = Depends(get_restaurant_service),
) -> RestaurantPage:
  filters = RestaurantFilter(categories=categories, price=price, rating=rating, distance=distance, openNow=openNow)
  try:
    return await service.search_restaurants(latitude, longitude, page=page, filters=filters)
  except Exception as exc:
    logger.exception("Restaurant lookup failed")
    raise HTTPException(status_code=502, detail=f"Failed to fetch restaurants: {exc}") from exc


@app.get("/restaurants-proxy")
async def restaurants_proxy(
  latitude: Optional[float] = None,
  longitude: Optional[float] = None,
  proxy: RestaurantProxy = Depends(get_restaurant_proxy),
) -> dict:
  if latitude is None or longitude is None:
    raise HTTPException(status_code=400, detail="Latitude and longitude are required")
  data = await proxy.search(latitude, longitude)
  if data.get("error"):
    raise HTTPException(status_code=500, detail=data["error"])
  return data


@app.get("/locations", response_model=List[LocationSuggestion])
async def search_locations(q: str = "", geocoder: MapboxGeocoder = Depends(get_geocoder)) -> List[LocationSuggestion]:
  return await geocoder.search_locations(q)


@app.post("/date-plan", response_model=DatePlan)
async def date_plan(payload: DatePlanRequest, planner: DatePlanner = Depends(get_planner)) -> DatePlan:
  try:
    return await planner.generate_date_plan(payload)
  except PlanValidationError as exc:
    raise HTTPException(status_code=400, detail=str(exc)) from exc
  except NoCandidatesError as exc:
    raise HTTPException(status_code=404, detail=str(exc)) from exc
  except RestaurantFetchError as exc:
    raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/route/optimize", response_model=RouteResponse)
async def route_optimize(payload: RouteRequest) -> RouteResponse:
  optimized = optimize_route(payload.stops)
  return RouteResponse(
    stops=optimized,
    originalDistance=total_route_distance(payload.stops),
    optimizedDistance=total_route_distance(optimized),
  )


@app.post("/chat", response_model=ChatCompletion)
async def chat(payload: ChatRequest, manager: ChatManager = Depends(get_chat)) -> ChatCompletion:
  try:
    return await manager.get_completion(payload.messages)
  except Exception as exc:
    logger.exception("Chat completion failed")
    raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/recommendations", response_model=ChatCompletion)
async def recommendations(
  latitude: float,
  longitude: float,
  type: RecommendationType,
  radius: Optional[float] = None,
  preferences: List[str] = Query(default=[]),
  manager: ChatManager = Depends(get_chat),
) -> ChatCompletion:
  try:
    return await get_ai_recommendations(
      manager.clients["perplexity"],
      manager.clients["claude"],
      latitude,
      longitude,
      type,
      radius=radius,
      preferences=preferences or None,
    )
  except ChatError as exc:
    raise HTTPException(status_code=502, detail=str(exc)) from exc


if __name__ == "__main__":
  import uvicorn

  host = os.getenv("HOST", "0.0.0.0")
  port = int(os.getenv("PORT", "8000"))
  uvicorn.run("dateai_service.main:app", host=host, port=port, reload=True)
