"""Rolling per-provider call metrics used to rank providers."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ProviderMetrics(BaseModel):
    """Counters and running latency average for one provider."""

    total_calls: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    fail_count: int = Field(default=0, ge=0)
    avg_response_time_ms: float = Field(default=0.0, ge=0.0)

    @property
    def success_rate(self) -> float:
        """``success_count / max(total_calls, 1)``."""
        return self.success_count / max(self.total_calls, 1)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class MetricsTracker:
    """Accumulates call outcomes per provider.

    Metrics never gate eligibility; they only order providers.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, ProviderMetrics] = {}

    def get(self, key: str) -> ProviderMetrics:
        """Return (creating if needed) the metrics for ``key``."""
        return self._metrics.setdefault(key, ProviderMetrics())

    def record_attempt(self, key: str) -> None:
        """Count one call started against ``key``."""
        self.get(key).total_calls += 1

    def record_success(self, key: str, latency_ms: float) -> None:
        """Count a success and fold ``latency_ms`` into the running average.

        Args:
            key: Provider key.
            latency_ms: Observed call latency in milliseconds.
        """
        metrics = self.get(key)
        metrics.success_count += 1
        n = metrics.success_count
        metrics.avg_response_time_ms = (
            metrics.avg_response_time_ms * (n - 1) + max(latency_ms, 0.0)
        ) / n

    def record_failure(self, key: str) -> None:
        """Count a failed call against ``key``."""
        self.get(key).fail_count += 1

    def success_rate(self, key: str) -> float:
        """Observed success rate in ``[0, 1]``."""
        return self.get(key).success_rate

    def ranking_score(self, key: str) -> float:
        """Sort key for provider ordering.

        A provider with no recorded calls scores 1.0, tying with the best
        providers; ties keep registry order.
        """
        metrics = self.get(key)
        if metrics.total_calls == 0:
            return 1.0
        return metrics.success_rate

    def reset(self) -> None:
        """Forget all recorded metrics."""
        self._metrics.clear()

    def snapshot(self) -> dict[str, dict[str, float]]:
        """Return a serializable copy of every provider's metrics."""
        return {
            key: {**m.model_dump(), "success_rate": m.success_rate}
            for key, m in self._metrics.items()
        }
