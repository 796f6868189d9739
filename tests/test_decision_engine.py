from unittest.mock import AsyncMock, Mock

import pytest

from supportbot.schemas.tenant import PresetQA, TenantConfig
from supportbot.services.decision_engine import (
    DEFLECTION_MESSAGE,
    DecisionEngine,
    is_refusal,
    match_preset,
    normalize_question,
)
from supportbot.services.answer_cache import AnswerCache
from supportbot.services.llm.base import LLMError, LLMResponse
from supportbot.services.question_classifier import HeuristicClassifier
from supportbot.services.rate_limiter import RateLimiter

from conftest import FakeClock, FakeRedis, make_message

KB = "Payouts are sent every Friday. Refunds are processed within 48 hours."
CONFLICTING_KB = "Refunds are processed within 48 hours.\nRefunds take 24 hours for annual plans."


def llm(content: str) -> LLMResponse:
    return LLMResponse(content=content, model="test-model")


@pytest.fixture
def provider():
    provider = Mock()
    provider.complete = AsyncMock(side_effect=[llm("YES"), llm("Payouts go out every Friday.")])
    return provider


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)


@pytest.fixture
def engine(provider, clock, redis_client):
    return DecisionEngine(
        provider,
        RateLimiter(clock=clock),
        HeuristicClassifier(bot_username="supportbot"),
        answer_cache=AnswerCache(redis_client, ttl_seconds=300),
        ai_rate_limit_per_minute=10,
        max_retries=2,
        retry_delay_ms=10,
        sleep_func=AsyncMock(),
    )


def configured(**kwargs) -> TenantConfig:
    return TenantConfig(enabled=True, knowledge_base_text=kwargs.pop("knowledge_base_text", KB), **kwargs)


class TestHelpers:
    def test_normalize_question(self):
        assert normalize_question("  What's   the Refund policy?! ") == "whats the refund policy"

    def test_match_preset_contains_for_long_presets(self):
        presets = [PresetQA(question="refund policy", answer="48 hours")]
        assert match_preset("what's the refund policy", presets).answer == "48 hours"

    def test_short_presets_require_exact_match(self):
        presets = [PresetQA(question="fee", answer="$5")]
        assert match_preset("what is the fee", presets) is None
        assert match_preset("Fee?", presets).answer == "$5"

    def test_disabled_presets_ignored(self):
        presets = [PresetQA(question="refund policy", answer="48 hours", enabled=False)]
        assert match_preset("refund policy", presets) is None

    def test_is_refusal(self):
        assert is_refusal("Sorry, I can't help with that.") is True
        assert is_refusal("That topic is outside my knowledge base") is True
        assert is_refusal("Payouts go out every Friday.") is False


class TestPipeline:
    @pytest.mark.asyncio
    async def test_non_question_skipped_without_ai(self, engine, provider):
        answer = await engine.decide(make_message(content="gm everyone"), "tenant_a", configured())
        assert answer is None
        provider.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preset_short_circuits_ai(self, engine, provider):
        config = TenantConfig(enabled=True, preset_qa=[PresetQA(question="refund policy", answer="48 hours")])

        answer = await engine.decide(make_message(content="what's the refund policy"), "tenant_a", config)

        assert answer == "48 hours"
        provider.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generates_answer_with_mention(self, engine, provider):
        answer = await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())

        assert answer == "@alice Payouts go out every Friday."
        assert provider.complete.await_count == 2
        system_prompt = provider.complete.await_args_list[1].args[0]
        assert KB in system_prompt

    @pytest.mark.asyncio
    async def test_non_latin_question_reaches_ai(self, engine, provider):
        answer = await engine.decide(make_message(content="Как получить возврат денег?"), "tenant_a", configured())

        assert answer == "@alice Payouts go out every Friday."
        assert provider.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_no_mention_without_username(self, engine, provider):
        answer = await engine.decide(make_message(content="When are payouts sent?", username=None), "tenant_a", configured())

        assert answer == "Payouts go out every Friday."

    @pytest.mark.asyncio
    async def test_context_passed_to_generation(self, engine, provider):
        await engine.decide(
            make_message(content="When are payouts sent?"),
            "tenant_a",
            configured(),
            context_text="Recent conversation:\nbob: hi\n\n",
        )
        user_prompt = provider.complete.await_args_list[1].args[1]
        assert user_prompt == "Recent conversation:\nbob: hi\n\nWhen are payouts sent?"

    @pytest.mark.asyncio
    async def test_classifier_no_stops_pipeline(self, engine, provider):
        provider.complete = AsyncMock(return_value=llm("NO"))

        answer = await engine.decide(make_message(content="what do you all think?"), "tenant_a", configured())

        assert answer is None
        assert provider.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_classifier_failure_is_permissive(self, engine, provider):
        provider.complete = AsyncMock(side_effect=[LLMError("timeout"), llm("Every Friday.")])

        answer = await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())

        assert answer == "@alice Every Friday."

    @pytest.mark.asyncio
    async def test_forced_skips_heuristic_and_classifier(self, engine, provider):
        provider.complete = AsyncMock(return_value=llm("Hi! How can I help with this community?"))

        answer = await engine.decide(make_message(content="hello"), "tenant_a", configured(), force_respond=True)

        assert answer == "@alice Hi! How can I help with this community?"
        assert provider.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_refusal_filtered(self, engine, provider):
        provider.complete = AsyncMock(side_effect=[llm("YES"), llm("Sorry, I can't help with that.")])

        answer = await engine.decide(make_message(content="How do I reset my password?"), "tenant_a", configured())

        assert answer is None

    @pytest.mark.asyncio
    async def test_generation_failure_gives_no_answer(self, engine, provider):
        provider.complete = AsyncMock(side_effect=[llm("YES"), LLMError("502"), LLMError("502"), LLMError("502")])

        answer = await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())

        assert answer is None
        assert provider.complete.await_count == 4


class TestContradictions:
    @pytest.mark.asyncio
    async def test_contradiction_withholds_answer(self, engine, provider):
        answer = await engine.decide(
            make_message(content="How long do refunds take?"),
            "tenant_a",
            configured(knowledge_base_text=CONFLICTING_KB),
        )
        assert answer is None
        assert provider.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_contradiction_deflects_when_forced(self, engine, provider):
        answer = await engine.decide(
            make_message(content="@supportbot how long do refunds take?"),
            "tenant_a",
            configured(knowledge_base_text=CONFLICTING_KB),
            force_respond=True,
        )
        assert answer == f"@alice {DEFLECTION_MESSAGE}"
        provider.complete.assert_not_awaited()


class TestAnswerCache:
    @pytest.mark.asyncio
    async def test_repeat_question_served_from_cache(self, engine, provider, clock):
        first = await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())
        second = await engine.decide(
            make_message(entity_id="post_2", content="when are payouts sent", username="bob"),
            "tenant_a",
            configured(),
        )

        assert first == "@alice Payouts go out every Friday."
        assert second == "@bob Payouts go out every Friday."
        assert provider.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_cached_answers_expire(self, engine, provider, clock):
        await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())
        clock.advance(301)
        provider.complete = AsyncMock(side_effect=[llm("YES"), llm("Fridays.")])

        answer = await engine.decide(make_message(entity_id="post_2", content="When are payouts sent?"), "tenant_a", configured())

        assert answer == "@alice Fridays."
        assert provider.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_tenant(self, engine, provider):
        await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())
        provider.complete = AsyncMock(side_effect=[llm("YES"), llm("Mondays.")])

        answer = await engine.decide(make_message(entity_id="post_2", content="When are payouts sent?"), "tenant_b", configured())

        assert answer == "@alice Mondays."

    @pytest.mark.asyncio
    async def test_redis_failure_reads_as_miss(self, engine, provider, redis_client):
        redis_client.fail = True

        answer = await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())

        assert answer == "@alice Payouts go out every Friday."
        assert engine.get_stats()["answer_cache_hits"] == 0

    @pytest.mark.asyncio
    async def test_clear_cache_drops_answers(self, engine, provider):
        await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())

        assert await engine.clear_cache() == 1
        provider.complete = AsyncMock(side_effect=[llm("YES"), llm("Fridays.")])
        await engine.decide(make_message(entity_id="post_2", content="When are payouts sent?"), "tenant_a", configured())
        assert provider.complete.await_count == 2


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_ai_rate_limit_suppresses_answer(self, provider, clock):
        limiter = RateLimiter(clock=clock)
        engine = DecisionEngine(
            provider,
            limiter,
            HeuristicClassifier(),
            ai_rate_limit_per_minute=1,
            sleep_func=AsyncMock(),
        )

        await engine.decide(make_message(content="When are payouts sent?"), "tenant_a", configured())
        provider.complete.reset_mock()
        answer = await engine.decide(make_message(entity_id="p2", content="Where is the FAQ?"), "tenant_a", configured())

        assert answer is None
        provider.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preset_ignores_rate_limit(self, provider, clock):
        limiter = RateLimiter(clock=clock)
        for _ in range(5):
            limiter.allow("ai:tenant_a", 1, 60_000)
        engine = DecisionEngine(provider, limiter, HeuristicClassifier(), ai_rate_limit_per_minute=1)
        config = TenantConfig(enabled=True, preset_qa=[PresetQA(question="refund policy", answer="48 hours")])

        assert await engine.decide(make_message(content="refund policy?"), "tenant_a", config) == "48 hours"
