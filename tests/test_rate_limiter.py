from supportbot.services.rate_limiter import RateLimiter, ai_key, send_key

from conftest import FakeClock

WINDOW_MS = 60_000


class TestRateLimiterAllow:
    def test_allows_up_to_limit_then_denies(self):
        limiter = RateLimiter(clock=FakeClock())
        results = [limiter.allow("ai:tenant_a", 3, WINDOW_MS) for _ in range(4)]
        assert results == [True, True, True, False]

    def test_fresh_window_after_expiry(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(3):
            limiter.allow("send:feed", 2, WINDOW_MS)
        assert limiter.allow("send:feed", 2, WINDOW_MS) is False

        clock.advance(60.001)
        assert limiter.allow("send:feed", 2, WINDOW_MS) is True
        assert limiter.allow("send:feed", 2, WINDOW_MS) is True
        assert limiter.allow("send:feed", 2, WINDOW_MS) is False

    def test_window_not_reset_exactly_at_boundary(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.allow("k", 1, WINDOW_MS)
        clock.advance(60)
        assert limiter.allow("k", 1, WINDOW_MS) is False

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        assert limiter.allow(ai_key("a"), 1, WINDOW_MS) is True
        assert limiter.allow(ai_key("a"), 1, WINDOW_MS) is False
        assert limiter.allow(ai_key("b"), 1, WINDOW_MS) is True
        assert limiter.allow(send_key("a"), 1, WINDOW_MS) is True


class TestRateLimiterMaintenance:
    def test_sweep_removes_expired_windows(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.allow("old", 5, 1000)
        clock.advance(2)
        limiter.allow("new", 5, 1000)

        assert limiter.sweep() == 1
        stats = limiter.get_stats()
        assert stats["total_entries"] == 1
        assert stats["active_entries"] == 1

    def test_clear(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.allow("a", 1, WINDOW_MS)
        limiter.allow("b", 1, WINDOW_MS)
        limiter.clear()
        assert limiter.allow("a", 1, WINDOW_MS) is True
        limiter.clear()
        assert limiter.get_stats()["total_entries"] == 0


class TestKeyHelpers:
    def test_key_namespaces(self):
        assert ai_key("tenant_1") == "ai:tenant_1"
        assert send_key("chat_feed_9") == "send:chat_feed_9"
