"""Generation orchestrator: provider ordering, timeout race and fallback.

Providers are tried strictly one at a time. A provider whose breaker is
open is skipped; a provider that fails or loses the timeout race is
recorded as a failure and the next one is tried. The first success wins,
is recorded, optionally cached, and returned. A call that outlives its
timeout is cancelled and abandoned: nothing it does afterwards reaches
metrics, breakers or the cache.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict

from content_engine.exceptions import (
    AllProvidersExhaustedError,
    GenerationAbortedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from content_engine.providers.base import GenerationOptions
from content_engine.providers.registry import Capability
from content_engine.resilience.cache import build_fingerprint
from content_engine.resilience.context import ResilienceContext

if TYPE_CHECKING:
    from content_engine.config import Settings
    from content_engine.providers.base import ProviderAdapter
    from content_engine.providers.registry import ProviderConfig, ProviderRegistry

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

CACHE_PROVIDER = "cache"


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


class StreamEventKind(StrEnum):
    """Kinds of events produced by ``GenerationOrchestrator.stream``."""

    TOKEN = "token"
    RESTART = "restart"
    DONE = "done"


class StreamEvent(BaseModel):
    """One event of a streamed generation.

    ``restart`` means the provider that produced the preceding tokens failed
    and another provider is taking over; consumers discard partial text.
    ``done`` carries the full text of the winning provider.
    """

    model_config = ConfigDict(frozen=True)

    kind: StreamEventKind
    provider: str
    text: str = ""


_TOKEN = "token"
_END = "end"
_ERROR = "error"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class GenerationOrchestrator:
    """Adapter-agnostic coordinator over a provider registry.

    Attributes:
        registry: Providers and their adapters.
        context: Shared breaker, metrics and cache state.
        default_options: Options used when a call passes none.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        context: ResilienceContext | None = None,
        default_options: GenerationOptions | None = None,
    ) -> None:
        self.registry = registry
        self.context = context or ResilienceContext()
        self.default_options = default_options or GenerationOptions()
        self._abandoned: set[asyncio.Future[Any]] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> GenerationOrchestrator:
        """Build the registry, context and defaults from settings."""
        from content_engine.providers.registry import ProviderRegistry

        return cls(
            registry=ProviderRegistry.from_settings(settings),
            context=ResilienceContext.from_settings(settings.resilience),
            default_options=GenerationOptions(
                timeout=settings.resilience.default_timeout_seconds
            ),
        )

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def provider_order(self, options: GenerationOptions) -> list[ProviderConfig]:
        """Return the try-order for one call.

        A known ``preferred_provider`` goes first and the rest keep registry
        order. Otherwise providers are sorted by descending ranking score;
        the sort is stable, so ties keep registry order.
        """
        providers = self.registry.list_providers()
        preferred = options.preferred_provider
        if preferred is not None:
            if preferred in self.registry:
                first = self.registry.get(preferred)
                return [first, *(p for p in providers if p.key != preferred)]
            logger.warning("preferred_provider_unknown", provider=preferred)

        metrics = self.context.metrics
        return sorted(providers, key=lambda p: metrics.ranking_score(p.key), reverse=True)

    def _require_usable(
        self,
        order: list[ProviderConfig],
        capability: Capability,
    ) -> None:
        if not any(self.registry.is_usable(p, capability) for p in order):
            msg = f"No AI provider is enabled and configured for {capability.value}"
            raise ProviderUnavailableError(msg)

    def _is_skipped(self, provider: ProviderConfig, capability: Capability) -> bool:
        if not self.registry.is_usable(provider, capability):
            logger.debug("provider_skipped_unusable", provider=provider.key)
            return True
        if self.context.breaker.is_open(provider.key):
            logger.info(
                "provider_skipped_circuit_open",
                provider=provider.key,
                state=self.context.breaker.snapshot().get(provider.key),
            )
            return True
        return False

    @staticmethod
    def _timeout_for(provider: ProviderConfig, options: GenerationOptions) -> float:
        if provider.request_timeout is not None:
            return min(options.timeout, provider.request_timeout)
        return options.timeout

    # ------------------------------------------------------------------
    # Outcome bookkeeping
    # ------------------------------------------------------------------

    # Attempts are counted when they settle; aborted or cancelled ones are not.

    def _record_success(self, key: str, started: float) -> float:
        latency_ms = (time.perf_counter() - started) * 1000
        self.context.metrics.record_attempt(key)
        self.context.metrics.record_success(key, latency_ms)
        self.context.breaker.record_success(key)
        return latency_ms

    def _record_failure(self, key: str, exc: Exception) -> None:
        self.context.metrics.record_attempt(key)
        self.context.metrics.record_failure(key)
        self.context.breaker.record_failure(key)
        if isinstance(exc, ProviderTimeoutError):
            logger.warning("provider_timeout", provider=key, timeout=exc.timeout)
        else:
            logger.warning(
                "provider_failed",
                provider=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _abandon(self, task: asyncio.Future[Any]) -> None:
        """Keep a reference to a cancelled loser until it finishes."""

        def _discard(done: asyncio.Future[Any]) -> None:
            self._abandoned.discard(done)
            if not done.cancelled():
                done.exception()

        self._abandoned.add(task)
        task.add_done_callback(_discard)

    async def _race(
        self,
        key: str,
        call: Awaitable[str],
        timeout: float,
    ) -> str:
        """Race ``call`` against ``timeout``; the loser is abandoned."""
        task = asyncio.ensure_future(call)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            self._abandon(task)
            raise
        if task in done:
            return task.result()
        task.cancel()
        self._abandon(task)
        raise ProviderTimeoutError(key, timeout)

    async def _with_fallback(
        self,
        order: list[ProviderConfig],
        capability: Capability,
        call: Callable[[ProviderAdapter], Awaitable[str]],
        options: GenerationOptions,
    ) -> tuple[str, str]:
        """Try providers in ``order`` until one succeeds.

        Returns:
            ``(provider_key, text)`` of the winning provider.

        Raises:
            ProviderUnavailableError: If no provider in ``order`` is usable.
            AllProvidersExhaustedError: If every usable provider failed or
                was skipped.
        """
        self._require_usable(order, capability)

        attempted: list[str] = []
        last_error: Exception | None = None
        for provider in order:
            if self._is_skipped(provider, capability):
                continue

            key = provider.key
            timeout = self._timeout_for(provider, options)
            adapter = self.registry.adapter_for(key)
            attempted.append(key)
            logger.info("provider_attempt", provider=key, timeout=timeout)
            started = time.perf_counter()
            try:
                text = await self._race(key, call(adapter), timeout)
            except Exception as exc:
                self._record_failure(key, exc)
                last_error = exc
                continue

            latency_ms = self._record_success(key, started)
            logger.info(
                "provider_succeeded", provider=key, latency_ms=round(latency_ms, 1)
            )
            return key, text

        logger.error("all_providers_exhausted", attempted=attempted)
        raise AllProvidersExhaustedError(attempted, last_error) from last_error

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate text with provider fallback.

        Args:
            system_prompt: System instructions.
            user_prompt: The user prompt.
            options: Generation options; defaults to ``default_options``.

        Returns:
            The raw text of the first provider that succeeded, or a live
            cached response for an identical request.

        Raises:
            ProviderUnavailableError: If no provider is usable at all.
            AllProvidersExhaustedError: If every usable provider failed or
                was skipped, chaining the last provider error.
        """
        options = options or self.default_options
        cache = self.context.cache

        fingerprint: str | None = None
        if options.enable_cache:
            fingerprint = build_fingerprint(system_prompt, user_prompt, options)
            cached = cache.get(fingerprint)
            if cached is not None:
                logger.info("cache_hit", key=fingerprint[:16])
                return cached

        _, text = await self._with_fallback(
            self.provider_order(options),
            Capability.TEXT,
            lambda adapter: adapter.complete(system_prompt, user_prompt, options),
            options,
        )
        if fingerprint is not None:
            cache.put(fingerprint, text)
        return text

    async def generate_image(
        self,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
    ) -> str:
        """Generate an image with the first usable image-capable provider.

        Returns:
            The image URL.

        Raises:
            ProviderUnavailableError: If no provider supports images.
            AllProvidersExhaustedError: If every image provider failed.
        """
        options = self.default_options
        order = [
            p
            for p in self.registry.list_providers()
            if Capability.IMAGE in p.capabilities
        ]
        _, url = await self._with_fallback(
            order,
            Capability.IMAGE,
            lambda adapter: adapter.generate_image(prompt, size=size, quality=quality),
            options,
        )
        return url

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a generation as a sequence of ``StreamEvent``s.

        Uses the same ordering, breaker and fallback rules as ``generate``.
        The per-provider timeout is a deadline over the whole provider
        stream. Closing the generator, cancelling the consuming task or
        setting ``abort_event`` cancels the in-flight provider stream;
        aborted attempts are recorded as neither success nor failure.

        Args:
            system_prompt: System instructions.
            user_prompt: The user prompt.
            options: Generation options; defaults to ``default_options``.
            abort_event: Optional event the caller sets to abort.

        Yields:
            Token events, a restart event per fallback after partial
            output, and a final done event with the full text.

        Raises:
            GenerationAbortedError: If ``abort_event`` was set.
            ProviderUnavailableError: If no provider is usable at all.
            AllProvidersExhaustedError: If every usable provider failed.
        """
        options = options or self.default_options
        cache = self.context.cache

        fingerprint: str | None = None
        if options.enable_cache:
            fingerprint = build_fingerprint(system_prompt, user_prompt, options)
            cached = cache.get(fingerprint)
            if cached is not None:
                logger.info("cache_hit", key=fingerprint[:16], streaming=True)
                for kind in (StreamEventKind.TOKEN, StreamEventKind.DONE):
                    yield StreamEvent(kind=kind, provider=CACHE_PROVIDER, text=cached)
                return

        order = self.provider_order(options)
        self._require_usable(order, Capability.TEXT)

        attempted: list[str] = []
        last_error: Exception | None = None
        for provider in order:
            if self._is_skipped(provider, Capability.TEXT):
                continue
            if abort_event is not None and abort_event.is_set():
                logger.info("stream_aborted", provider=provider.key)
                raise GenerationAbortedError("Generation aborted by caller")

            key = provider.key
            timeout = self._timeout_for(provider, options)
            adapter = self.registry.adapter_for(key)
            attempted.append(key)
            logger.info("provider_attempt", provider=key, timeout=timeout, streaming=True)
            started = time.perf_counter()

            parts: list[str] = []
            tokens = self._stream_provider(
                key, adapter, system_prompt, user_prompt, options, timeout, abort_event
            )
            try:
                async with aclosing(tokens):
                    async for token in tokens:
                        parts.append(token)
                        yield StreamEvent(
                            kind=StreamEventKind.TOKEN, provider=key, text=token
                        )
            except GenerationAbortedError:
                logger.info("stream_aborted", provider=key, tokens=len(parts))
                raise
            except Exception as exc:
                self._record_failure(key, exc)
                last_error = exc
                if parts:
                    yield StreamEvent(kind=StreamEventKind.RESTART, provider=key)
                continue

            text = "".join(parts)
            latency_ms = self._record_success(key, started)
            logger.info(
                "provider_succeeded",
                provider=key,
                latency_ms=round(latency_ms, 1),
                streaming=True,
            )
            if fingerprint is not None:
                cache.put(fingerprint, text)
            yield StreamEvent(kind=StreamEventKind.DONE, provider=key, text=text)
            return

        logger.error("all_providers_exhausted", attempted=attempted, streaming=True)
        raise AllProvidersExhaustedError(attempted, last_error) from last_error

    async def stream_text(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
        on_token: Callable[[str], None] | None = None,
        abort_event: asyncio.Event | None = None,
    ) -> str:
        """Stream a generation, invoking ``on_token`` per token.

        Tokens from a provider that later failed have already been passed to
        ``on_token``; only the returned string is authoritative.

        Returns:
            The full text of the winning provider.
        """
        async with aclosing(
            self.stream(system_prompt, user_prompt, options, abort_event)
        ) as events:
            async for event in events:
                if event.kind is StreamEventKind.TOKEN and on_token is not None:
                    on_token(event.text)
                elif event.kind is StreamEventKind.DONE:
                    return event.text
        msg = "stream ended without a result"
        raise RuntimeError(msg)

    # ------------------------------------------------------------------
    # Streaming internals
    # ------------------------------------------------------------------

    async def _stream_provider(
        self,
        key: str,
        adapter: ProviderAdapter,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
        timeout: float,
        abort_event: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        """Yield one provider's tokens under a deadline and abort signal.

        The provider stream is pumped by its own task into a queue, so that
        the deadline and abort can cancel it at any await point.
        """
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

        async def _pump() -> None:
            try:
                async for token in adapter.stream(system_prompt, user_prompt, options):
                    await queue.put((_TOKEN, token))
            except Exception as exc:
                await queue.put((_ERROR, exc))
            else:
                await queue.put((_END, None))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        producer = asyncio.ensure_future(_pump())
        try:
            while True:
                kind, payload = await self._next_item(
                    queue, key, deadline, timeout, abort_event
                )
                if kind == _END:
                    return
                if kind == _ERROR:
                    raise payload
                yield payload
        finally:
            if not producer.done():
                producer.cancel()
                self._abandon(producer)

    @staticmethod
    async def _next_item(
        queue: asyncio.Queue[tuple[str, Any]],
        key: str,
        deadline: float,
        timeout: float,
        abort_event: asyncio.Event | None,
    ) -> tuple[str, Any]:
        if abort_event is not None and abort_event.is_set():
            raise GenerationAbortedError("Generation aborted by caller")
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise ProviderTimeoutError(key, timeout)

        getter = asyncio.ensure_future(queue.get())
        waiters: set[asyncio.Future[Any]] = {getter}
        aborter: asyncio.Future[Any] | None = None
        if abort_event is not None:
            aborter = asyncio.ensure_future(abort_event.wait())
            waiters.add(aborter)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if aborter is not None and aborter in done:
            raise GenerationAbortedError("Generation aborted by caller")
        if getter in done:
            return getter.result()
        raise ProviderTimeoutError(key, timeout)
