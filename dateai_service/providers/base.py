import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from dateai_service.categories import EVENT_CATEGORIES
from dateai_service.models import Event, EventSearchParams

logger = logging.getLogger("dateai_service")

REQUEST_TIMEOUT = 30.0


def provider_timeout() -> float:
  try:
    return float(os.getenv("PROVIDER_TIMEOUT_SECONDS", REQUEST_TIMEOUT))
  except ValueError:
    return REQUEST_TIMEOUT


class ProviderHTTPError(Exception):
  def __init__(self, source: str, status_code: int) -> None:
    super().__init__(f"{source} error: {status_code}")
    self.source = source
    self.status_code = status_code


@dataclass
class ProviderOutcome:
  """Result of one provider call: events on success, a reason on failure."""

  source: str
  events: List[Event] = field(default_factory=list)
  error: Optional[str] = None
  timed_out: bool = False

  @property
  def ok(self) -> bool:
    return self.error is None

  @classmethod
  def success(cls, source: str, events: List[Event]) -> "ProviderOutcome":
    return cls(source=source, events=events)

  @classmethod
  def failure(cls, source: str, reason: str, timed_out: bool = False) -> "ProviderOutcome":
    return cls(source=source, error=reason, timed_out=timed_out)


def is_valid_event(event: Event) -> bool:
  if not event.id or not event.title or not event.date:
    logger.debug("Invalid event: id=%s title=%s", event.id, event.title)
    return False
  location = event.location
  if not location or not location.latitude or not location.longitude or not location.address:
    logger.debug("Event missing coordinates: %s", event.title)
    return False
  return event.category in EVENT_CATEGORIES


def to_float(value: Any) -> Optional[float]:
  if value is None or value == "":
    return None
  try:
    return float(value)
  except (TypeError, ValueError):
    return None


def format_amount(value: Any) -> str:
  number = to_float(value)
  if number is None:
    return str(value)
  return str(int(number)) if number.is_integer() else str(number)


class EventProvider(ABC):
  """Provider interface: one upstream, normalized into canonical events."""

  name = "provider"

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

  async def _get_json(
    self,
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
  ) -> Dict[str, Any]:
    for attempt in range(2):
      try:
        resp = await client.get(url, params=params, headers=headers)
      except httpx.TimeoutException:
        raise
      except httpx.RequestError:
        if attempt == 1:
          raise
        await asyncio.sleep(0.25)
        continue
      if resp.status_code != 200:
        logger.warning(
          "%s request failed (status=%s, body=%s)",
          self.name,
          resp.status_code,
          resp.text[:200],
        )
        raise ProviderHTTPError(self.name, resp.status_code)
      return resp.json()
    return {}

  def _format_all(self, raw_events: List[Any], formatter: Callable[[Any], Optional[Event]]) -> List[Event]:
    events: List[Event] = []
    for raw in raw_events:
      try:
        event = formatter(raw)
      except Exception as exc:
        logger.warning("Error formatting %s event: %s", self.name, exc)
        continue
      if event is not None:
        events.append(event)
    return events

  async def fetch(self, params: EventSearchParams) -> ProviderOutcome:
    if not params.latitude or not params.longitude:
      logger.info("No location provided for %s search", self.name)
      return ProviderOutcome.success(self.name, [])
    try:
      events = await asyncio.wait_for(self._search(params), timeout=self.timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException):
      logger.warning("%s request timed out after %ss", self.name, self.timeout)
      return ProviderOutcome.failure(self.name, "timeout", timed_out=True)
    except Exception as exc:
      logger.warning("%s search failed: %s", self.name, exc)
      return ProviderOutcome.failure(self.name, str(exc) or exc.__class__.__name__)
    return ProviderOutcome.success(self.name, events)

  async def search(self, params: EventSearchParams) -> List[Event]:
    outcome = await self.fetch(params)
    return outcome.events

  @abstractmethod
  async def _search(self, params: EventSearchParams) -> List[Event]:
    raise NotImplementedError
