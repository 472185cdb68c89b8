import os
from typing import Optional

from insightbot.services.llm.base import LLMProvider, LLMResponse, ToolCall
from insightbot.services.llm.openai_provider import OpenAIProvider

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
CHAT_MODEL = os.environ.get("OPENAI_CHAT_MODEL", "gpt-4.1-mini")

_llm_provider: Optional[OpenAIProvider] = None


def get_llm_provider() -> OpenAIProvider:
    """Get or create the shared OpenAI provider."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(api_key=OPENAI_API_KEY or "", default_model=CHAT_MODEL)
    return _llm_provider


__all__ = ["LLMProvider", "LLMResponse", "ToolCall", "OpenAIProvider", "get_llm_provider"]
