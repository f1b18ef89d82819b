"""Short-TTL in-memory cache of raw provider responses.

Deduplicates identical requests made within the TTL window. Entries are
keyed by a SHA-256 fingerprint of the system prompt, the user prompt and
the entire options bag. The map is bounded: once it grows past
``max_entries`` the oldest-inserted entry is evicted (insertion order, not
LRU). Expired entries are removed lazily on lookup.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, NamedTuple

import structlog

if TYPE_CHECKING:
    from content_engine.providers.base import GenerationOptions

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_TTL_SECONDS = 60.0
DEFAULT_MAX_ENTRIES = 100
_CACHE_VERSION = "v1"


def build_fingerprint(
    system_prompt: str,
    user_prompt: str,
    options: GenerationOptions,
) -> str:
    """Build a deterministic cache key for one request.

    Args:
        system_prompt: System instructions.
        user_prompt: The user prompt.
        options: Full options bag; every field takes part in the key.

    Returns:
        A hex SHA-256 digest string.
    """
    key_parts = {
        "version": _CACHE_VERSION,
        "system_prompt": system_prompt,
        "user_prompt": user_prompt,
        "options": options.model_dump(mode="json"),
    }
    serialized = json.dumps(key_parts, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()


class CacheEntry(NamedTuple):
    """One cached response and its insertion time."""

    value: str
    timestamp: float


class ResponseCache:
    """Bounded TTL cache keyed by request fingerprint.

    Attributes:
        ttl_seconds: Age after which an entry is invalid.
        max_entries: Size cap enforced on insertion.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, fingerprint: str) -> str | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() - entry.timestamp > self.ttl_seconds:
            del self._entries[fingerprint]
            self._misses += 1
            logger.debug("cache_expired", key=fingerprint[:16])
            return None
        self._hits += 1
        return entry.value

    def put(self, fingerprint: str, value: str) -> None:
        """Insert or overwrite an entry, evicting the oldest past the cap."""
        # Overwrites re-insert so the entry moves to the newest position.
        self._entries.pop(fingerprint, None)
        self._entries[fingerprint] = CacheEntry(value=value, timestamp=self._clock())
        if len(self._entries) > self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("cache_evicted", key=oldest[:16])

    def clear(self) -> None:
        """Remove every entry."""
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache_cleared", entries=count)

    def stats(self) -> dict[str, int]:
        """Return hit / miss counters and the current size."""
        return {"hits": self._hits, "misses": self._misses, "size": len(self._entries)}
