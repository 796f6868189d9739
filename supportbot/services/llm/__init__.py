from supportbot.services.llm.base import LLMError, LLMProvider, LLMResponse
from supportbot.services.llm.openrouter_provider import OpenRouterProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenRouterProvider"]
