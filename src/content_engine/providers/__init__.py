"""Provider registry, adapter protocol and the litellm-backed adapter."""

from __future__ import annotations

from content_engine.providers.base import GenerationOptions, ProviderAdapter
from content_engine.providers.registry import (
    Capability,
    ProviderConfig,
    ProviderRegistry,
)

__all__ = [
    "Capability",
    "GenerationOptions",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderRegistry",
]
