from typing import Optional

import httpx

from supportbot.logging_config import get_logger
from supportbot.services.llm.base import LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openrouter")


class OpenRouterProvider(LLMProvider):
    """OpenAI-compatible chat completions endpoint (OpenRouter by default)."""

    def __init__(
        self,
        api_key: str,
        default_model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> LLMResponse:
        payload = {
            "model": self.default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"Completion request: model={self.default_model}, max_tokens={max_tokens}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as exc:
            raise LLMError(f"Completion request failed: {exc}") from exc

        if response.status_code != 200:
            logger.error(f"Completion error: {response.status_code} {response.text[:200]}")
            raise LLMError(f"Completion API error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError("Completion response is not JSON") from exc

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Completion response has no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        logger.debug(f"Completion content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content.strip(),
            model=data.get("model", self.default_model),
            usage=data.get("usage"),
        )
