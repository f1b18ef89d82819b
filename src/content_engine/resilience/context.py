"""Process-wide resilience state owned by a single explicit object."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from content_engine.resilience.cache import ResponseCache
from content_engine.resilience.circuit_breaker import CircuitBreaker
from content_engine.resilience.metrics import MetricsTracker

if TYPE_CHECKING:
    from content_engine.config import ResilienceSettings


@dataclass
class ResilienceContext:
    """Circuit breakers, metrics and the response cache for one process.

    Construct one at startup and hand it to the orchestrator; tests build a
    fresh context each.
    """

    breaker: CircuitBreaker = field(default_factory=CircuitBreaker)
    cache: ResponseCache = field(default_factory=ResponseCache)
    metrics: MetricsTracker = field(default_factory=MetricsTracker)

    @classmethod
    def from_settings(
        cls,
        settings: ResilienceSettings,
        clock: Callable[[], float] = time.monotonic,
    ) -> ResilienceContext:
        """Build a context from config settings."""
        return cls(
            breaker=CircuitBreaker(
                threshold=settings.circuit_breaker_threshold,
                cooldown_seconds=settings.circuit_breaker_cooldown_seconds,
                clock=clock,
            ),
            cache=ResponseCache(
                ttl_seconds=settings.cache_ttl_seconds,
                max_entries=settings.cache_max_entries,
                clock=clock,
            ),
            metrics=MetricsTracker(),
        )

    def snapshot(self) -> dict[str, Any]:
        """Return per-provider metrics and breaker state plus cache stats."""
        return {
            "metrics": self.metrics.snapshot(),
            "circuit_breakers": self.breaker.snapshot(),
            "cache": self.cache.stats(),
        }

    def reset(self) -> None:
        """Reset breakers, metrics and the cache."""
        self.breaker.reset()
        self.metrics.reset()
        self.cache.clear()
