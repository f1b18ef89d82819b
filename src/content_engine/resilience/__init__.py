"""Resilience exports: breaker, cache, metrics, retry and their context."""

from content_engine.resilience.cache import ResponseCache, build_fingerprint
from content_engine.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerState
from content_engine.resilience.context import ResilienceContext
from content_engine.resilience.metrics import MetricsTracker, ProviderMetrics
from content_engine.resilience.retry import (
    RetryPolicy,
    compute_backoff_delay,
    retry_with_backoff,
)

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerState",
    "MetricsTracker",
    "ProviderMetrics",
    "ResilienceContext",
    "ResponseCache",
    "RetryPolicy",
    "build_fingerprint",
    "compute_backoff_delay",
    "retry_with_backoff",
]
