"""Per-provider circuit breaker with lazy cool-down reset."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

import structlog

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_COOLDOWN_SECONDS = 15.0

Clock = Callable[[], float]


@dataclass
class CircuitBreakerState:
    """Health of one provider."""

    consecutive_failures: int = 0
    last_failure_at: float | None = None
    is_open: bool = False


class CircuitBreaker:
    """Failure-counting breaker keyed by provider.

    A breaker opens once ``threshold`` consecutive failures are recorded and
    stays open until ``cooldown_seconds`` have elapsed since the last failure.
    The reset happens lazily the next time ``is_open`` is consulted, so no
    background timer is needed. Successes only decrement the failure count;
    they never close an open breaker early.
    """

    def __init__(
        self,
        threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        if threshold < 1:
            msg = f"threshold must be >= 1, got {threshold}"
            raise ValueError(msg)
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._states: dict[str, CircuitBreakerState] = {}

    def state(self, key: str) -> CircuitBreakerState:
        """Return (creating if needed) the state for ``key``."""
        return self._states.setdefault(key, CircuitBreakerState())

    def is_open(self, key: str) -> bool:
        """Whether the breaker for ``key`` is open.

        Resets the breaker as a side effect when the cool-down has elapsed.
        """
        state = self.state(key)
        if not state.is_open:
            return False
        last = state.last_failure_at
        if last is not None and self._clock() - last >= self.cooldown_seconds:
            state.is_open = False
            state.consecutive_failures = 0
            logger.info("circuit_breaker_reset", provider=key, reason="cooldown")
            return False
        return True

    def record_failure(self, key: str) -> None:
        """Count a failure and open the breaker at the threshold."""
        state = self.state(key)
        state.consecutive_failures += 1
        state.last_failure_at = self._clock()
        if state.consecutive_failures >= self.threshold and not state.is_open:
            state.is_open = True
            logger.warning(
                "circuit_breaker_opened",
                provider=key,
                consecutive_failures=state.consecutive_failures,
                cooldown_seconds=self.cooldown_seconds,
            )

    def record_success(self, key: str) -> None:
        """Decrement the failure count, floored at zero."""
        state = self.state(key)
        state.consecutive_failures = max(0, state.consecutive_failures - 1)

    def reset(self, key: str | None = None) -> None:
        """Manually close one breaker, or all of them when ``key`` is None."""
        keys = [key] if key is not None else list(self._states)
        for k in keys:
            self._states[k] = CircuitBreakerState()
        logger.info("circuit_breaker_manual_reset", providers=keys)

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Return a copy of every breaker state."""
        return {key: asdict(state) for key, state in self._states.items()}
