"""Generation options and the provider adapter protocol.

Each upstream AI service is wrapped by one adapter that translates the
generic ``GenerationOptions`` into the provider's native request shape and
raises ``ProviderCallError`` for every upstream failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

DEFAULT_MAX_TOKENS = 6000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 90.0


class GenerationOptions(BaseModel):
    """Options bag submitted with every generation request.

    The whole bag takes part in the response-cache fingerprint, so two
    requests differing only in ``max_tokens`` never share a cache entry.
    """

    model_config = ConfigDict(frozen=True)

    json_mode: bool = False
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    timeout: float = Field(
        default=DEFAULT_TIMEOUT_SECONDS,
        gt=0.0,
        description="Per-provider timeout in seconds.",
    )
    preferred_provider: str | None = None
    enable_cache: bool = True


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capability set every provider adapter implements."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> str:
        """Return the full completion text for one request."""
        ...

    def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        """Yield completion text incrementally as it arrives."""
        ...

    async def generate_image(
        self,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
    ) -> str:
        """Return the URL of a generated image."""
        ...
