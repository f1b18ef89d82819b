"""Shared pytest fixtures for the content-engine test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from pydantic import SecretStr

from content_engine.exceptions import ProviderCallError
from content_engine.orchestrator import GenerationOrchestrator
from content_engine.providers.base import GenerationOptions
from content_engine.providers.registry import ProviderConfig, ProviderRegistry
from content_engine.resilience.cache import ResponseCache
from content_engine.resilience.circuit_breaker import CircuitBreaker
from content_engine.resilience.context import ResilienceContext
from content_engine.resilience.metrics import MetricsTracker

# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove provider keys and CONTENT_ENGINE_ vars from the environment."""
    import os

    for name in list(os.environ):
        if name.startswith("CONTENT_ENGINE_"):
            monkeypatch.delenv(name, raising=False)
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> ManualClock:
    """Return a manual clock starting at t=1000s."""
    return ManualClock()


@pytest.fixture()
def context(clock: ManualClock) -> ResilienceContext:
    """Return a fresh resilience context driven by the manual clock."""
    return ResilienceContext(
        breaker=CircuitBreaker(threshold=5, cooldown_seconds=15.0, clock=clock),
        cache=ResponseCache(ttl_seconds=60.0, max_entries=100, clock=clock),
        metrics=MetricsTracker(),
    )


# ---------------------------------------------------------------------------
# Fake provider adapter
# ---------------------------------------------------------------------------


class FakeAdapter:
    """Scriptable in-memory provider adapter.

    ``response`` may be a list, consumed one entry per call (the last entry
    repeats). ``error`` is raised instead of answering; for streams it is
    raised after ``fail_after_tokens`` tokens.
    """

    def __init__(
        self,
        key: str = "FAKE",
        *,
        response: str | list[str] = '{"result": "ok"}',
        error: Exception | None = None,
        delay: float = 0.0,
        tokens: list[str] | None = None,
        token_delay: float = 0.0,
        fail_after_tokens: int | None = None,
        image_url: str = "https://images.example.com/generated.png",
    ) -> None:
        self.key = key
        self._responses = list(response) if isinstance(response, list) else [response]
        self.error = error
        self.delay = delay
        self.tokens = tokens
        self.token_delay = token_delay
        self.fail_after_tokens = fail_after_tokens
        self.image_url = image_url
        self.calls: list[tuple[str, str, GenerationOptions]] = []
        self.stream_calls = 0
        self.image_calls: list[tuple[str, str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.completed = 0
        self.cancelled = 0

    def _next_response(self) -> str:
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]

    def _raise(self) -> None:
        raise self.error or ProviderCallError(self.key, f"{self.key} exploded")

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> str:
        self.calls.append((system_prompt, user_prompt, options))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1
        if self.error is not None:
            raise self.error
        self.completed += 1
        return self._next_response()

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        self.stream_calls += 1
        tokens = self.tokens if self.tokens is not None else [self._next_response()]
        if self.error is not None and self.fail_after_tokens is None:
            self._raise()
        try:
            for index, token in enumerate(tokens):
                if self.fail_after_tokens is not None and index == self.fail_after_tokens:
                    self._raise()
                await asyncio.sleep(self.token_delay)
                yield token
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.fail_after_tokens is not None and self.fail_after_tokens >= len(tokens):
            self._raise()
        self.completed += 1

    async def generate_image(
        self,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
    ) -> str:
        self.image_calls.append((prompt, size, quality))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.image_url


def build_registry(
    adapters: dict[str, Any],
    *,
    disabled: tuple[str, ...] = (),
    uncredentialed: tuple[str, ...] = (),
    image: tuple[str, ...] = (),
    request_timeouts: dict[str, float] | None = None,
) -> ProviderRegistry:
    """Build a registry whose order follows ``adapters``."""
    timeouts = request_timeouts or {}
    configs = [
        ProviderConfig(
            key=key,
            enabled=key not in disabled,
            api_key=None if key in uncredentialed else SecretStr(f"{key.lower()}-key"),
            text_model=f"{key.lower()}-text",
            image_model=f"{key.lower()}-image" if key in image else None,
            request_timeout=timeouts.get(key),
        )
        for key in adapters
    ]
    return ProviderRegistry(configs, adapters)


@pytest.fixture()
def fake_adapter() -> type[FakeAdapter]:
    """Return the FakeAdapter class for building scripted providers."""
    return FakeAdapter


@pytest.fixture()
def make_registry() -> Callable[..., ProviderRegistry]:
    """Return a factory building registries from fake adapters."""
    return build_registry


@pytest.fixture()
def make_orchestrator(
    context: ResilienceContext,
) -> Callable[..., GenerationOrchestrator]:
    """Return a factory for orchestrators sharing the test's context."""

    def _make(adapters: dict[str, Any], **registry_kwargs: Any) -> GenerationOrchestrator:
        return GenerationOrchestrator(
            registry=build_registry(adapters, **registry_kwargs),
            context=context,
            default_options=GenerationOptions(timeout=5.0),
        )

    return _make
