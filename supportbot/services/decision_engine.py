"""Decides whether a chat message gets an answer, and what the answer is.

Pipeline, first decisive step wins:
    question heuristic -> preset Q&A -> answer cache -> AI classification
    -> knowledge-base contradiction check -> AI generation -> refusal filter.
"""

import asyncio
import re
from typing import Awaitable, Callable, Optional

from supportbot.logging_config import get_logger
from supportbot.schemas.chat import NormalizedMessage
from supportbot.schemas.tenant import PresetQA, TenantConfig
from supportbot.services.answer_cache import AnswerCache
from supportbot.services.knowledge_service import has_contradictions
from supportbot.services.llm.base import LLMError, LLMProvider
from supportbot.services.prompt_service import CLASSIFICATION_PROMPT, build_system_prompt, build_user_prompt
from supportbot.services.question_classifier import QuestionClassifier
from supportbot.services.rate_limiter import RateLimiter, ai_key
from supportbot.services.retry import retry_async

logger = get_logger("decision_engine")

DEFLECTION_MESSAGE = (
    "I noticed there's conflicting information in my knowledge base. "
    "Please contact the community administrators to clarify."
)

REFUSAL_PHRASES = (
    "sorry",
    "can't help",
    "cannot help",
    "unable to help",
    "don't have information",
    "not related to",
    "unrelated to",
    "off-topic",
    "not relevant",
    "outside my knowledge",
    "beyond my scope",
)

SHORT_PRESET_LENGTH = 5
CLASSIFICATION_MAX_TOKENS = 10
CLASSIFICATION_TEMPERATURE = 0.1
GENERATION_TEMPERATURE = 0.7
RATE_WINDOW_MS = 60_000

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    text = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def match_preset(message: str, presets: list[PresetQA]) -> Optional[PresetQA]:
    """Exact match, or containment for presets long enough not to over-match."""
    normalized = normalize_question(message)
    if not normalized:
        return None
    for preset in presets:
        if not preset.enabled:
            continue
        question = normalize_question(preset.question)
        if not question:
            continue
        if normalized == question:
            return preset
        if len(question) >= SHORT_PRESET_LENGTH and question in normalized:
            return preset
    return None


def is_refusal(answer: str) -> bool:
    lowered = answer.lower().replace("’", "'")
    return any(phrase in lowered for phrase in REFUSAL_PHRASES)


def mention_prefix(message: NormalizedMessage, text: str) -> str:
    username = message.author.username
    if not username or f"@{username}" in text:
        return text
    return f"@{username} {text}"


class DecisionEngine:
    def __init__(
        self,
        provider: LLMProvider,
        rate_limiter: RateLimiter,
        classifier: QuestionClassifier,
        *,
        answer_cache: Optional[AnswerCache] = None,
        ai_rate_limit_per_minute: int = 10,
        max_tokens: int = 300,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
        sleep_func: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.classifier = classifier
        self.answer_cache = answer_cache or AnswerCache(None)
        self.ai_rate_limit_per_minute = ai_rate_limit_per_minute
        self.max_tokens = max_tokens
        self.max_retries = max_retries
        self.retry_delay = retry_delay_ms / 1000
        self._sleep = sleep_func or asyncio.sleep

    async def decide(
        self,
        message: NormalizedMessage,
        tenant_id: str,
        config: TenantConfig,
        context_text: str = "",
        force_respond: bool = False,
    ) -> Optional[str]:
        log_context = {
            "tenant_id": tenant_id,
            "entity_id": message.entity_id,
            "force_respond": force_respond,
        }

        if not force_respond and not self.classifier.looks_like_question(message.content):
            logger.debug("Not a question, skipping", extra={"context": log_context})
            return None

        preset = match_preset(message.content, config.preset_qa)
        if preset is not None:
            logger.info("Preset answer matched", extra={"context": {**log_context, "preset_id": preset.id}})
            return preset.answer

        normalized = normalize_question(message.content)
        cached = await self.answer_cache.get(tenant_id, normalized)
        if cached is not None:
            logger.info("Answer cache hit", extra={"context": log_context})
            return mention_prefix(message, cached)

        if not self.rate_limiter.allow(ai_key(tenant_id), self.ai_rate_limit_per_minute, RATE_WINDOW_MS):
            logger.warning("AI rate limit reached, answer suppressed", extra={"context": log_context})
            return None

        if not force_respond and not await self.classify(message.content):
            logger.debug("Classifier rejected message", extra={"context": log_context})
            return None

        if has_contradictions(config.knowledge_base_text, tenant_id):
            if force_respond:
                return mention_prefix(message, DEFLECTION_MESSAGE)
            return None

        answer = await self.generate(message.content, config, context_text, force_respond, log_context)
        if answer is None:
            return None

        await self.answer_cache.set(tenant_id, normalized, answer)
        logger.info("Generated AI answer", extra={"context": {**log_context, "answer_length": len(answer)}})
        return mention_prefix(message, answer)

    async def classify(self, text: str) -> bool:
        """Ask the provider whether the message needs an answer. Failures are permissive."""
        try:
            response = await self.provider.complete(
                CLASSIFICATION_PROMPT,
                text,
                max_tokens=CLASSIFICATION_MAX_TOKENS,
                temperature=CLASSIFICATION_TEMPERATURE,
            )
        except LLMError as exc:
            logger.warning("Classification call failed, continuing", extra={"context": {"error": str(exc)}})
            return True
        return response.content.strip().upper() == "YES"

    async def generate(
        self,
        text: str,
        config: TenantConfig,
        context_text: str,
        force_respond: bool,
        log_context: dict,
    ) -> Optional[str]:
        system_prompt = build_system_prompt(config, force_respond)
        user_prompt = build_user_prompt(text, context_text)

        async def _call():
            return await self.provider.complete(
                system_prompt,
                user_prompt,
                max_tokens=self.max_tokens,
                temperature=GENERATION_TEMPERATURE,
            )

        try:
            response = await retry_async(
                _call,
                max_retries=self.max_retries,
                base_delay=self.retry_delay,
                operation="ai_generate",
                sleep_func=self._sleep,
            )
        except LLMError as exc:
            logger.error("AI generation failed", extra={"context": {**log_context, "error": str(exc)}})
            return None

        answer = response.content.strip()
        if not answer:
            return None
        if is_refusal(answer):
            logger.debug(
                "Filtered refusal-style answer",
                extra={"context": {**log_context, "answer_preview": answer[:100]}},
            )
            return None
        return answer

    async def clear_cache(self) -> int:
        return await self.answer_cache.clear()

    def get_stats(self) -> dict:
        return self.answer_cache.get_stats()
