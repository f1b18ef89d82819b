"""Unit tests for content_engine.resilience.context."""

from __future__ import annotations

from typing import Any

from content_engine.config import ResilienceSettings
from content_engine.resilience.context import ResilienceContext


class TestFromSettings:
    """Building a context from ResilienceSettings."""

    def test_tunables_are_applied(self, clock: Any) -> None:
        settings = ResilienceSettings(
            circuit_breaker_threshold=2,
            circuit_breaker_cooldown_seconds=3.0,
            cache_ttl_seconds=10.0,
            cache_max_entries=7,
        )
        context = ResilienceContext.from_settings(settings, clock=clock)
        assert context.breaker.threshold == 2
        assert context.breaker.cooldown_seconds == 3.0
        assert context.cache.ttl_seconds == 10.0
        assert context.cache.max_entries == 7

    def test_clock_is_shared(self, clock: Any) -> None:
        context = ResilienceContext.from_settings(
            ResilienceSettings(circuit_breaker_threshold=1), clock=clock
        )
        context.breaker.record_failure("OPENAI")
        context.cache.put("fp", "text")
        assert context.breaker.is_open("OPENAI") is True

        clock.advance(61.0)
        assert context.breaker.is_open("OPENAI") is False
        assert context.cache.get("fp") is None

    def test_separate_contexts_do_not_share_state(self) -> None:
        first = ResilienceContext()
        second = ResilienceContext()
        first.metrics.record_attempt("CLAUDE")
        assert second.metrics.snapshot() == {}


class TestSnapshotAndReset:
    """Diagnostics and manual reset."""

    def test_snapshot_covers_all_state(self, context: ResilienceContext) -> None:
        context.metrics.record_attempt("OPENAI")
        context.metrics.record_failure("OPENAI")
        context.breaker.record_failure("OPENAI")
        context.cache.put("fp", "text")
        context.cache.get("fp")

        snap = context.snapshot()
        assert snap["metrics"]["OPENAI"]["fail_count"] == 1
        assert snap["circuit_breakers"]["OPENAI"]["consecutive_failures"] == 1
        assert snap["cache"] == {"hits": 1, "misses": 0, "size": 1}

    def test_reset_clears_everything(self, context: ResilienceContext) -> None:
        for _ in range(5):
            context.breaker.record_failure("GEMINI")
        context.metrics.record_attempt("GEMINI")
        context.cache.put("fp", "text")
        assert context.breaker.is_open("GEMINI") is True

        context.reset()
        assert context.breaker.is_open("GEMINI") is False
        assert context.metrics.snapshot() == {}
        assert len(context.cache) == 0
