"""Unit tests for content_engine.providers.registry."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import SecretStr, ValidationError

from content_engine.config import Settings
from content_engine.exceptions import ProviderUnavailableError
from content_engine.providers.base import ProviderAdapter
from content_engine.providers.litellm_adapter import LiteLLMAdapter
from content_engine.providers.registry import (
    Capability,
    ProviderConfig,
    ProviderRegistry,
)


def _config(key: str, **kwargs: Any) -> ProviderConfig:
    kwargs.setdefault("api_key", SecretStr("secret"))
    return ProviderConfig(key=key, text_model=f"{key.lower()}-text", **kwargs)


class TestProviderConfig:
    """Credential and capability derivation."""

    def test_credential_present(self) -> None:
        assert _config("OPENAI").credential_present is True

    @pytest.mark.parametrize("api_key", [None, SecretStr(""), SecretStr("   ")])
    def test_blank_or_missing_credential(self, api_key: SecretStr | None) -> None:
        assert _config("OPENAI", api_key=api_key).credential_present is False

    def test_text_only_without_image_model(self) -> None:
        assert _config("CLAUDE").capabilities == frozenset({Capability.TEXT})

    def test_image_model_adds_capability(self) -> None:
        config = _config("OPENAI", image_model="dall-e-3")
        assert Capability.IMAGE in config.capabilities

    def test_frozen(self) -> None:
        config = _config("OPENAI")
        with pytest.raises(ValidationError):
            config.enabled = False  # type: ignore[misc]


class TestProviderRegistry:
    """Lookup, usability and status reporting."""

    def test_rejects_duplicate_keys(self, fake_adapter: Any) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            ProviderRegistry(
                [_config("OPENAI"), _config("OPENAI")],
                {"OPENAI": fake_adapter("OPENAI")},
            )

    def test_rejects_missing_adapter(self) -> None:
        with pytest.raises(ValueError, match="No adapter"):
            ProviderRegistry([_config("OPENAI")], {})

    def test_list_preserves_order(self, make_registry: Any, fake_adapter: Any) -> None:
        registry = make_registry(
            {"OPENAI": fake_adapter(), "CLAUDE": fake_adapter(), "GEMINI": fake_adapter()}
        )
        assert [p.key for p in registry.list_providers()] == ["OPENAI", "CLAUDE", "GEMINI"]
        assert "CLAUDE" in registry
        assert "MISTRAL" not in registry

    def test_get_unknown_raises_key_error(self, make_registry: Any, fake_adapter: Any) -> None:
        registry = make_registry({"OPENAI": fake_adapter()})
        with pytest.raises(KeyError):
            registry.get("MISTRAL")

    def test_usable_requires_enabled_and_credential(
        self, make_registry: Any, fake_adapter: Any
    ) -> None:
        registry = make_registry(
            {"OPENAI": fake_adapter(), "CLAUDE": fake_adapter(), "GEMINI": fake_adapter()},
            disabled=("OPENAI",),
            uncredentialed=("CLAUDE",),
        )
        assert [p.key for p in registry.usable()] == ["GEMINI"]
        assert registry.first_available().key == "GEMINI"

    def test_first_available_by_capability(
        self, make_registry: Any, fake_adapter: Any
    ) -> None:
        registry = make_registry(
            {"CLAUDE": fake_adapter(), "OPENAI": fake_adapter()}, image=("OPENAI",)
        )
        assert registry.first_available(Capability.TEXT).key == "CLAUDE"
        assert registry.first_available(Capability.IMAGE).key == "OPENAI"

    def test_first_available_raises_when_none_usable(
        self, make_registry: Any, fake_adapter: Any
    ) -> None:
        registry = make_registry({"OPENAI": fake_adapter()}, disabled=("OPENAI",))
        with pytest.raises(ProviderUnavailableError):
            registry.first_available()

    def test_status_report(self, make_registry: Any, fake_adapter: Any) -> None:
        registry = make_registry(
            {"OPENAI": fake_adapter(), "CLAUDE": fake_adapter()},
            uncredentialed=("CLAUDE",),
            image=("OPENAI",),
        )
        report = registry.status()
        assert report["OPENAI"] == {
            "name": "OPENAI",
            "enabled": True,
            "credential_present": True,
            "text_model": "openai-text",
            "image_model": "openai-image",
            "supports_text": True,
            "supports_image": True,
            "usable": True,
        }
        assert report["CLAUDE"]["usable"] is False
        assert report["CLAUDE"]["supports_image"] is False


class TestFromSettings:
    """The default registry is built from settings and environment keys."""

    def test_builds_three_providers(
        self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("CONTENT_ENGINE_PROVIDERS__GEMINI__ENABLED", "false")
        registry = ProviderRegistry.from_settings(Settings())

        assert [p.key for p in registry.list_providers()] == ["OPENAI", "CLAUDE", "GEMINI"]
        assert [p.key for p in registry.usable()] == ["OPENAI"]
        assert registry.get("OPENAI").image_model == "dall-e-3"
        adapter = registry.adapter_for("CLAUDE")
        assert isinstance(adapter, LiteLLMAdapter)
        assert isinstance(adapter, ProviderAdapter)

    def test_fake_adapter_satisfies_protocol(self, fake_adapter: Any) -> None:
        assert isinstance(fake_adapter(), ProviderAdapter)
