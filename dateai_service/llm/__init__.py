from dateai_service.llm.client import (
  ChatClient,
  ChatError,
  ChatManager,
  ChatMonitor,
  ClaudeChatClient,
  PerplexityChatClient,
  get_chat_manager,
)
from dateai_service.llm.extraction import extract_events
from dateai_service.llm.recommendations import get_ai_recommendations

__all__ = [
  "ChatClient",
  "ChatError",
  "ChatManager",
  "ChatMonitor",
  "ClaudeChatClient",
  "PerplexityChatClient",
  "get_chat_manager",
  "extract_events",
  "get_ai_recommendations",
]
