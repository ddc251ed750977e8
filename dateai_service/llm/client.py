import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import httpx

from dateai_service.llm.extraction import extract_events
from dateai_service.models import ChatCompletion, ChatMessage
from dateai_service.providers.geocoding import MapboxGeocoder

logger = logging.getLogger("dateai_service")

VALID_ROLES = ("user", "assistant", "system")

METRICS_WINDOW = 1000

EVENT_FORMAT_PROMPT = """
You are an AI assistant helping users plan dates and find events.
When events are mentioned in your responses, format them like this:

EVENT_START
Title: [Event Title]
Date: [Event Date in MM/DD/YYYY format]
Time: [Event Time in HH:MM AM/PM format]
Location: [Full address including venue name, street, city, state]
Category: [One of: live-music, comedy, sports-games, performing-arts, food-drink, cultural, social, educational, outdoor, special]
Price: [Price or price range if available]
Description: [Brief description]
EVENT_END
""".strip()


class ChatError(RuntimeError):
  pass


def validate_api_key(service: str, key: Optional[str]) -> None:
  if not key:
    raise ChatError(f"{service} API key is not configured")
  if service == "perplexity" and not key.startswith("pplx-"):
    raise ChatError("Invalid Perplexity API key format")
  if service == "claude" and not key.startswith("sk-ant-"):
    raise ChatError("Invalid Claude API key format")


def validate_messages(messages: List[ChatMessage]) -> None:
  if not messages:
    raise ChatError("Messages must be a non-empty array")
  for msg in messages:
    if not msg.id or not msg.role or not msg.content or msg.role not in VALID_ROLES:
      raise ChatError("Invalid message format")


@dataclass
class RequestMetric:
  service: str
  start: float
  end: float
  success: bool
  error: Optional[str] = None


@dataclass
class ChatMonitor:
  """Latency and error-rate bookkeeping per chat backend over the last METRICS_WINDOW requests."""

  metrics: Deque[RequestMetric] = field(default_factory=lambda: deque(maxlen=METRICS_WINDOW))
  error_counts: Dict[str, int] = field(default_factory=dict)

  def start_request(self) -> float:
    return time.monotonic()

  def end_request(self, service: str, start: float, success: bool, error: Optional[str] = None) -> None:
    end = time.monotonic()
    self.metrics.append(RequestMetric(service, start, end, success, error))
    if not success:
      self.error_counts[service] = self.error_counts.get(service, 0) + 1
    logger.info(
      "AI request metrics: service=%s duration_ms=%d success=%s error=%s",
      service,
      (end - start) * 1000,
      success,
      error,
    )

  def error_rate(self, service: str) -> float:
    outcomes = [m.success for m in self.metrics if m.service == service]
    return outcomes.count(False) / len(outcomes) if outcomes else 0

  def average_latency(self, service: str) -> float:
    durations = [m.end - m.start for m in self.metrics if m.service == service]
    return sum(durations) / len(durations) if durations else 0


class RateLimiter:
  def __init__(self, min_delay: float = 0.5) -> None:
    self.min_delay = min_delay
    self._last_request = 0.0

  async def wait_if_needed(self) -> None:
    elapsed = time.monotonic() - self._last_request
    if elapsed < self.min_delay:
      await asyncio.sleep(self.min_delay - elapsed)
    self._last_request = time.monotonic()


class ChatClient(ABC):
  service = "chat"

  def __init__(
    self,
    api_key: Optional[str],
    geocoder: Optional[MapboxGeocoder] = None,
    monitor: Optional[ChatMonitor] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    self.api_key = api_key
    self.geocoder = geocoder
    self.monitor = monitor or ChatMonitor()
    self.transport = transport

  async def complete(self, messages: List[ChatMessage]) -> ChatCompletion:
    validate_api_key(self.service, self.api_key)
    validate_messages(messages)
    start = self.monitor.start_request()
    try:
      completion = await self._complete(messages)
    except Exception as exc:
      self.monitor.end_request(self.service, start, False, str(exc))
      raise
    self.monitor.end_request(self.service, start, True)
    return completion

  @abstractmethod
  async def _complete(self, messages: List[ChatMessage]) -> ChatCompletion:
    raise NotImplementedError


class PerplexityChatClient(ChatClient):
  service = "perplexity"
  api_url = "https://api.perplexity.ai/chat/completions"
  max_retries = 3
  retry_delay = 1.0

  def __init__(
    self,
    api_key: Optional[str],
    model: str = "mixtral-8x7b-instruct",
    geocoder: Optional[MapboxGeocoder] = None,
    monitor: Optional[ChatMonitor] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    rate_limiter: Optional[RateLimiter] = None,
  ) -> None:
    super().__init__(api_key, geocoder=geocoder, monitor=monitor, transport=transport)
    self.model = model
    self.rate_limiter = rate_limiter or RateLimiter()

  async def _post(self, payload: dict) -> dict:
    headers = {"Authorization": f"Bearer {self.api_key}"}
    for attempt in range(self.max_retries):
      try:
        async with httpx.AsyncClient(timeout=30.0, headers=headers, transport=self.transport) as client:
          resp = await client.post(self.api_url, json=payload)
          if resp.status_code != 200:
            raise ChatError(f"Perplexity API error: {resp.status_code} - {resp.text[:200]}")
          return resp.json()
      except (httpx.RequestError, ChatError) as exc:
        if attempt == self.max_retries - 1:
          raise
        delay = self.retry_delay * (2 ** attempt)
        logger.info("Perplexity attempt %s failed (%s), retrying in %ss", attempt + 1, exc, delay)
        await asyncio.sleep(delay)
    raise ChatError("All retry attempts failed")

  async def _complete(self, messages: List[ChatMessage]) -> ChatCompletion:
    await self.rate_limiter.wait_if_needed()
    payload = {
      "model": self.model,
      "messages": [{"role": m.role, "content": m.content} for m in messages],
      "temperature": 0.7,
      "top_p": 0.9,
      "max_tokens": 4096,
      "presence_penalty": 0.6,
      "frequency_penalty": 0.5,
      "stream": False,
    }
    data = await self._post(payload)
    choice = (data.get("choices") or [{}])[0]
    content = (choice.get("message") or {}).get("content") or ""
    events = await extract_events(content, self.geocoder)
    usage = data.get("usage")
    logger.info(
      "Perplexity usage: %s finish_reason=%s events_extracted=%s",
      usage,
      choice.get("finish_reason"),
      len(events),
    )
    return ChatCompletion(content=content, events=events, usage=usage)


class ClaudeChatClient(ChatClient):
  service = "claude"
  api_url = "https://api.anthropic.com/v1/messages"

  def __init__(
    self,
    api_key: Optional[str],
    model: str = "claude-3-opus-20240229",
    geocoder: Optional[MapboxGeocoder] = None,
    monitor: Optional[ChatMonitor] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ) -> None:
    super().__init__(api_key, geocoder=geocoder, monitor=monitor, transport=transport)
    self.model = model

  async def _complete(self, messages: List[ChatMessage]) -> ChatCompletion:
    headers = {
      "x-api-key": self.api_key,
      "anthropic-version": "2023-06-01",
      "content-type": "application/json",
    }
    payload = {
      "model": self.model,
      "max_tokens": 1024,
      # Claude takes the system prompt separately and only user/assistant turns.
      "messages": [
        {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
        for m in messages
        if m.role != "system"
      ],
      "system": EVENT_FORMAT_PROMPT,
    }
    async with httpx.AsyncClient(timeout=30.0, headers=headers, transport=self.transport) as client:
      resp = await client.post(self.api_url, json=payload)
      if resp.status_code != 200:
        raise ChatError("Failed to get response from Claude API")
      data = resp.json()
    content = ((data.get("content") or [{}])[0] or {}).get("text") or ""
    events = await extract_events(content, self.geocoder)
    return ChatCompletion(content=content, events=events, usage=data.get("usage"))


class ChatManager:
  """Routes chat requests to the current backend and fails over after repeated errors."""

  retry_limit = 2

  def __init__(self, clients: Dict[str, ChatClient], current: str = "perplexity") -> None:
    self.clients = clients
    self.current = current
    self.failure_count: Dict[str, int] = {name: 0 for name in clients}

  def _alternative(self) -> str:
    return next((name for name in self.clients if name != self.current), self.current)

  async def _try(self, service: str, messages: List[ChatMessage]) -> ChatCompletion:
    try:
      completion = await self.clients[service].complete(messages)
    except Exception:
      self.failure_count[service] = self.failure_count.get(service, 0) + 1
      raise
    self.failure_count[service] = 0
    return completion

  async def get_completion(self, messages: List[ChatMessage]) -> ChatCompletion:
    if not any(m.role == "system" for m in messages):
      messages = [ChatMessage(id="system", role="system", content=EVENT_FORMAT_PROMPT), *messages]

    try:
      return await self._try(self.current, messages)
    except Exception as exc:
      logger.error("%s API error: %s", self.current, exc)
      if self.failure_count.get(self.current, 0) < self.retry_limit:
        raise

      alternative = self._alternative()
      if alternative == self.current:
        raise ChatError("All AI services failed. Please try again later.") from exc
      logger.info("Switching to %s", alternative)
      self.current = alternative
      try:
        return await self._try(alternative, messages)
      except Exception as alt_exc:
        logger.error("%s API error: %s", alternative, alt_exc)
        raise ChatError("All AI services failed. Please try again later.") from alt_exc


def get_chat_manager(
  geocoder: Optional[MapboxGeocoder] = None,
  transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChatManager:
  monitor = ChatMonitor()
  perplexity = PerplexityChatClient(
    os.getenv("PERPLEXITY_API_KEY"),
    model=os.getenv("PERPLEXITY_MODEL", "mixtral-8x7b-instruct"),
    geocoder=geocoder,
    monitor=monitor,
    transport=transport,
  )
  claude = ClaudeChatClient(
    os.getenv("ANTHROPIC_API_KEY"),
    model=os.getenv("CLAUDE_MODEL", "claude-3-opus-20240229"),
    geocoder=geocoder,
    monitor=monitor,
    transport=transport,
  )
  return ChatManager({"perplexity": perplexity, "claude": claude})
