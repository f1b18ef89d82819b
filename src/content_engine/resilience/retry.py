"""Exponential backoff with jitter around any fallible async operation.

Built on tenacity. Retries wrap the *whole* orchestrated call (all
providers), which is orthogonal to the orchestrator's own per-call provider
fallback.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, Field
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from content_engine.exceptions import is_retryable

if TYPE_CHECKING:
    from content_engine.config import RetrySettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Backoff parameters; ``max_retries`` counts retries after the first try."""

    max_retries: int = Field(default=2, ge=0, le=10)
    initial_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=5.0, ge=0.0)
    multiplier: float = Field(default=1.5, ge=1.0)
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build a policy from config settings."""
        return cls(**settings.model_dump())


def compute_backoff_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """Delay to sleep after failed attempt number ``attempt`` (1-based).

    ``min(initial_delay * multiplier ** (attempt - 1), max_delay)``, scaled by
    a factor drawn from ``[0.5, 1.0]`` when jitter is enabled.

    Args:
        policy: Backoff parameters.
        attempt: Number of attempts made so far.
        rng: Optional random source, for deterministic tests.

    Returns:
        The delay in seconds.
    """
    raw = policy.initial_delay * policy.multiplier ** max(attempt - 1, 0)
    delay = min(raw, policy.max_delay)
    if policy.jitter:
        delay *= (rng or random).uniform(0.5, 1.0)
    return delay


class wait_backoff_jitter(wait_base):  # noqa: N801 - tenacity naming convention
    """tenacity wait strategy implementing ``compute_backoff_delay``."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        return compute_backoff_delay(self.policy, retry_state.attempt_number, self.rng)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    next_action = retry_state.next_action
    logger.warning(
        "retry_scheduled",
        attempt=retry_state.attempt_number,
        delay_seconds=round(next_action.sleep, 3) if next_action else None,
        error_type=type(error).__name__ if error else None,
        error=str(error) if error else None,
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run ``operation`` and retry it with backoff on retryable errors.

    Non-retryable errors (see ``is_retryable``) are re-raised immediately
    without consuming a retry. Once retries are exhausted the last error is
    re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory.
        policy: Backoff parameters; defaults to ``RetryPolicy()``.
        sleep: Awaitable sleep used between attempts.
        rng: Optional random source for jitter.

    Returns:
        The operation's result.
    """
    policy = policy or RetryPolicy()

    @retry(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_backoff_jitter(policy, rng),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    async def _attempt() -> T:
        return await operation()

    return await _attempt()
