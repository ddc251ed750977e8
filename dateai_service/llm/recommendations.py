import logging
import time
from typing import List, Literal, Optional

from dateai_service.llm.client import ChatClient, ChatError
from dateai_service.models import ChatCompletion, ChatMessage

logger = logging.getLogger("dateai_service")

RecommendationType = Literal["restaurants", "attractions", "activities", "nightlife", "cultural"]


def build_recommendation_prompt(
  latitude: float,
  longitude: float,
  kind: str,
  radius: Optional[float] = None,
  preferences: Optional[List[str]] = None,
) -> str:
  prompt = f"Find {kind} recommendations within {radius or 5} miles of coordinates ({latitude}, {longitude})"
  if preferences:
    prompt += f" that match these preferences: {', '.join(preferences)}"
  return prompt + ". Format each recommendation as an event."


async def get_ai_recommendations(
  primary: ChatClient,
  fallback: ChatClient,
  latitude: float,
  longitude: float,
  kind: RecommendationType,
  radius: Optional[float] = None,
  preferences: Optional[List[str]] = None,
) -> ChatCompletion:
  """Ask the primary backend for recommendations, falling back to the second one."""
  prompt = build_recommendation_prompt(latitude, longitude, kind, radius, preferences)
  messages = [ChatMessage(id=str(int(time.time() * 1000)), role="user", content=prompt)]
  try:
    return await primary.complete(messages)
  except Exception as exc:
    logger.error("%s API error: %s", primary.service, exc)
  try:
    return await fallback.complete(messages)
  except Exception as exc:
    logger.error("%s API error: %s", fallback.service, exc)
    raise ChatError("Failed to get recommendations from both AI services") from exc
