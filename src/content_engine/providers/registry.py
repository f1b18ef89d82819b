"""Provider registry: static description of each upstream AI service.

The registry is built once at startup from ``Settings`` and never mutated
afterwards. It answers which providers exist, in what order, and whether a
given provider may be used for a capability. Health (circuit breaker) and
ranking (metrics) live in ``content_engine.resilience``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from content_engine.exceptions import ProviderUnavailableError

if TYPE_CHECKING:
    from content_engine.config import Settings
    from content_engine.providers.base import ProviderAdapter

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class Capability(StrEnum):
    """What a provider can be asked to do."""

    TEXT = "text"
    IMAGE = "image"


class ProviderConfig(BaseModel):
    """Immutable identity of one upstream AI service."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(description="Symbolic provider key, e.g. OPENAI.")
    enabled: bool = True
    api_key: SecretStr | None = None
    text_model: str
    image_model: str | None = None
    request_timeout: float | None = Field(default=None, gt=0.0)

    @property
    def credential_present(self) -> bool:
        """Whether a non-blank credential is configured."""
        return self.api_key is not None and bool(
            self.api_key.get_secret_value().strip()
        )

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Capabilities implied by the configured models."""
        caps = {Capability.TEXT}
        if self.image_model:
            caps.add(Capability.IMAGE)
        return frozenset(caps)


class ProviderRegistry:
    """Ordered collection of providers and their adapters.

    Attributes:
        providers: Provider configs in registry (fallback) order.
    """

    def __init__(
        self,
        providers: list[ProviderConfig],
        adapters: dict[str, ProviderAdapter],
    ) -> None:
        keys = [p.key for p in providers]
        if len(set(keys)) != len(keys):
            msg = f"Duplicate provider keys: {keys}"
            raise ValueError(msg)
        missing = [key for key in keys if key not in adapters]
        if missing:
            msg = f"No adapter registered for providers: {missing}"
            raise ValueError(msg)
        self._providers = list(providers)
        self._by_key = {p.key: p for p in providers}
        self._adapters = dict(adapters)

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderRegistry:
        """Build the default OPENAI / CLAUDE / GEMINI registry.

        Args:
            settings: Loaded application settings.

        Returns:
            A registry whose adapters call the providers through litellm.
        """
        from content_engine.providers.litellm_adapter import LiteLLMAdapter

        providers: list[ProviderConfig] = []
        for key, entry in settings.providers.ordered():
            api_key = entry.resolved_api_key()
            providers.append(
                ProviderConfig(
                    key=key,
                    enabled=entry.enabled,
                    api_key=SecretStr(api_key) if api_key else None,
                    text_model=entry.text_model,
                    image_model=entry.image_model,
                    request_timeout=entry.request_timeout,
                )
            )
        adapters: dict[str, ProviderAdapter] = {
            p.key: LiteLLMAdapter(p) for p in providers
        }
        registry = cls(providers, adapters)
        logger.info(
            "provider_registry_built",
            providers=[
                {"key": p.key, "usable": registry.is_usable(p)} for p in providers
            ],
        )
        return registry

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def list_providers(self) -> list[ProviderConfig]:
        """Return providers in registry order."""
        return list(self._providers)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def get(self, key: str) -> ProviderConfig:
        """Return the config for ``key``.

        Raises:
            KeyError: If the key is not registered.
        """
        return self._by_key[key]

    def adapter_for(self, key: str) -> ProviderAdapter:
        """Return the adapter that serves provider ``key``."""
        return self._adapters[key]

    # ------------------------------------------------------------------
    # Usability
    # ------------------------------------------------------------------

    @staticmethod
    def is_usable(
        provider: ProviderConfig,
        capability: Capability = Capability.TEXT,
    ) -> bool:
        """True iff the provider is enabled, credentialed and capable."""
        return (
            provider.enabled
            and provider.credential_present
            and capability in provider.capabilities
        )

    def usable(self, capability: Capability = Capability.TEXT) -> list[ProviderConfig]:
        """Return usable providers for ``capability`` in registry order."""
        return [p for p in self._providers if self.is_usable(p, capability)]

    def first_available(
        self,
        capability: Capability = Capability.TEXT,
    ) -> ProviderConfig:
        """Return the first usable provider in registry order.

        Args:
            capability: Capability the caller needs.

        Returns:
            The first usable provider config.

        Raises:
            ProviderUnavailableError: If no provider is usable.
        """
        for provider in self._providers:
            if self.is_usable(provider, capability):
                return provider
        msg = f"No AI provider is enabled and configured for {capability.value}"
        raise ProviderUnavailableError(msg)

    def status(self) -> dict[str, dict[str, Any]]:
        """Return per-provider configuration status for diagnostics."""
        return {
            p.key: {
                "name": p.key,
                "enabled": p.enabled,
                "credential_present": p.credential_present,
                "text_model": p.text_model,
                "image_model": p.image_model,
                "supports_text": Capability.TEXT in p.capabilities,
                "supports_image": Capability.IMAGE in p.capabilities,
                "usable": self.is_usable(p),
            }
            for p in self._providers
        }
