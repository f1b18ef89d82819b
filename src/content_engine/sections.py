"""Bounded-parallel generation of named content sections.

Each section runs the full pipeline: orchestrated generation wrapped in
retry-with-backoff, safe JSON extraction (with one stricter JSON-only
regeneration on malformed output), then schema recovery. A failing section
is reported in its ``SectionResult`` and never aborts its siblings.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from content_engine.exceptions import (
    ErrorCategory,
    MalformedResponseError,
    categorize_error,
)
from content_engine.logging import section_logging_context
from content_engine.parsing import parse_json_safe
from content_engine.providers.base import GenerationOptions
from content_engine.resilience.retry import RetryPolicy, retry_with_backoff
from content_engine.schemas.registry import SchemaRegistry

if TYPE_CHECKING:
    from content_engine.config import Settings
    from content_engine.orchestrator import GenerationOrchestrator

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 3

BatchStrategy = Literal["chunked", "pool"]

STRICT_JSON_SYSTEM_PROMPT = (
    "You are a structured content generator. Return ONLY valid JSON: "
    "no markdown code blocks, no commentary before or after the object."
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def _json_options() -> GenerationOptions:
    return GenerationOptions(json_mode=True)


class SectionTask(BaseModel):
    """One section to generate."""

    key: str = Field(min_length=1, description="Section identifier, e.g. offer.")
    system_prompt: str
    user_prompt: str
    options: GenerationOptions = Field(default_factory=_json_options)
    schema_name: str | None = Field(
        default=None, description="Content schema used to recover the result."
    )


class SectionResult(BaseModel):
    """Outcome of one section; replaced wholesale, never mutated."""

    model_config = ConfigDict(frozen=True)

    key: str
    raw_text: str | None = None
    parsed: Any = None
    success: bool
    error: str | None = None
    error_category: ErrorCategory | None = None
    schema_valid: bool | None = None


class FailedSection(BaseModel):
    """A failed section as listed in a batch report."""

    key: str
    error: str
    error_category: ErrorCategory


class BatchReport(BaseModel):
    """Aggregate of a batch, keyed by section."""

    results: dict[str, SectionResult] = Field(default_factory=dict)

    @property
    def total(self) -> int:
        """Number of sections in the batch."""
        return len(self.results)

    @property
    def successful(self) -> int:
        """Number of sections that produced content."""
        return sum(1 for r in self.results.values() if r.success)

    @property
    def failed(self) -> list[FailedSection]:
        """Failed sections with their error categories."""
        return [
            FailedSection(
                key=r.key,
                error=r.error or "unknown error",
                error_category=r.error_category or ErrorCategory.UNKNOWN,
            )
            for r in self.results.values()
            if not r.success
        ]

    def content(self) -> dict[str, Any]:
        """Parsed content of every successful section."""
        return {k: r.parsed for k, r in self.results.items() if r.success}

    def summary(self) -> str:
        """Human-readable outcome naming every section that failed."""
        line = f"Generated {self.successful}/{self.total} sections"
        failed = self.failed
        if not failed:
            return line
        names = ", ".join(f"{f.key} ({f.error_category.value})" for f in failed)
        return f"{line}; could not generate: {names}"


ProgressCallback = Callable[[SectionResult, int, int], None]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class SectionGenerator:
    """Runs section tasks through the generation pipeline.

    Attributes:
        orchestrator: Generation orchestrator shared by all sections.
        schemas: Registry used for schema recovery.
        retry_policy: Backoff policy around each orchestrated call.
        concurrency_limit: Maximum sections in flight at once.
        strategy: ``"chunked"`` waits for each chunk of ``concurrency_limit``
            sections before starting the next; ``"pool"`` refills a slot as
            soon as it frees up.
        inter_prompt_delay: Pause in seconds before each section starts.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        schemas: SchemaRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        strategy: BatchStrategy = "chunked",
        inter_prompt_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency_limit < 1:
            msg = f"concurrency_limit must be >= 1, got {concurrency_limit}"
            raise ValueError(msg)
        if strategy not in ("chunked", "pool"):
            msg = f"Unknown batch strategy: {strategy!r}"
            raise ValueError(msg)
        self.orchestrator = orchestrator
        self.schemas = schemas or SchemaRegistry.default()
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency_limit = concurrency_limit
        self.strategy = strategy
        self.inter_prompt_delay = inter_prompt_delay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        orchestrator: GenerationOrchestrator,
        schemas: SchemaRegistry | None = None,
    ) -> SectionGenerator:
        """Build a generator from config settings."""
        return cls(
            orchestrator=orchestrator,
            schemas=schemas,
            retry_policy=RetryPolicy.from_settings(settings.retry),
            concurrency_limit=settings.batch.concurrency_limit,
            strategy=settings.batch.strategy,
            inter_prompt_delay=settings.batch.inter_prompt_delay,
        )

    async def _generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> str:
        return await retry_with_backoff(
            lambda: self.orchestrator.generate(system_prompt, user_prompt, options),
            self.retry_policy,
            sleep=self._sleep,
        )

    @staticmethod
    def _failure(key: str, exc: Exception, raw_text: str | None = None) -> SectionResult:
        category = categorize_error(exc)
        logger.error(
            "section_failed",
            section=key,
            error_category=category.value,
            error=str(exc),
        )
        return SectionResult(
            key=key,
            raw_text=raw_text,
            success=False,
            error=str(exc),
            error_category=category,
        )

    async def generate_section(self, task: SectionTask) -> SectionResult:
        """Generate, parse and recover one section; never raises on failure.

        Args:
            task: The section to generate.

        Returns:
            A successful result, or a failed one carrying the error category.
        """
        with section_logging_context(task.key, schema=task.schema_name) as log:
            try:
                raw = await self._generate(
                    task.system_prompt, task.user_prompt, task.options
                )
            except Exception as exc:
                return self._failure(task.key, exc)

            try:
                parsed = parse_json_safe(raw)
            except MalformedResponseError:
                log.warning("section_json_retry", section=task.key)
                strict_options = task.options.model_copy(update={"json_mode": True})
                try:
                    raw = await self._generate(
                        STRICT_JSON_SYSTEM_PROMPT, task.user_prompt, strict_options
                    )
                    parsed = parse_json_safe(raw)
                except Exception as exc:
                    return self._failure(task.key, exc, raw_text=raw)

            schema_valid: bool | None = None
            if task.schema_name is not None:
                recovery = self.schemas.recover(task.schema_name, parsed)
                parsed = recovery.value
                schema_valid = recovery.valid

            return SectionResult(
                key=task.key,
                raw_text=raw,
                parsed=parsed,
                success=True,
                schema_valid=schema_valid,
            )

    async def generate_all(
        self,
        tasks: list[SectionTask],
        on_progress: ProgressCallback | None = None,
    ) -> BatchReport:
        """Generate every task with at most ``concurrency_limit`` in flight.

        With the ``"chunked"`` strategy sections start in chunks of
        ``concurrency_limit`` and each chunk finishes before the next starts;
        with ``"pool"`` a new section starts as soon as a slot frees up.

        Args:
            tasks: Sections to generate; keys must be unique.
            on_progress: Called with ``(result, completed, total)`` as each
                section finishes.

        Returns:
            A report keyed by section, in task order.

        Raises:
            ValueError: If two tasks share a key.
        """
        keys = [t.key for t in tasks]
        if len(set(keys)) != len(keys):
            msg = f"Duplicate section keys: {keys}"
            raise ValueError(msg)

        total = len(tasks)
        results: dict[str, SectionResult] = {}
        completed = 0

        logger.info(
            "batch_start",
            sections=total,
            concurrency_limit=self.concurrency_limit,
            strategy=self.strategy,
        )

        async def _run(task: SectionTask) -> None:
            nonlocal completed
            if self.inter_prompt_delay > 0:
                await self._sleep(self.inter_prompt_delay)
            result = await self.generate_section(task)
            results[task.key] = result
            completed += 1
            if on_progress is not None:
                on_progress(result, completed, total)

        if self.strategy == "pool":
            semaphore = asyncio.Semaphore(self.concurrency_limit)

            async def _pooled(task: SectionTask) -> None:
                async with semaphore:
                    await _run(task)

            await asyncio.gather(*(_pooled(task) for task in tasks))
        else:
            size = self.concurrency_limit
            for start in range(0, total, size):
                chunk = tasks[start : start + size]
                await asyncio.gather(*(_run(task) for task in chunk))
                logger.debug(
                    "batch_chunk_complete", chunk=start // size, completed=completed
                )

        report = BatchReport(results={key: results[key] for key in keys})
        logger.info(
            "batch_complete",
            successful=report.successful,
            total=report.total,
            failed=[f.key for f in report.failed],
        )
        return report
