"""Engine settings: defaults, then YAML, then env, then overrides.

Sources are merged by pydantic-settings, with a YAML file as the lowest
non-default layer. ``.env`` files and ``CONTENT_ENGINE_`` variables are
read too; ``__`` reaches into sub-models, e.g.
``CONTENT_ENGINE_PROVIDERS__CLAUDE__ENABLED=false``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class ProviderSettings(BaseModel):
    """Configuration for one upstream AI provider.

    ``api_key_env`` names the conventional environment variable consulted
    when ``api_key`` is not set explicitly.
    """

    enabled: bool = True
    api_key: SecretStr | None = None
    api_key_env: str = ""
    text_model: str
    image_model: str | None = None
    request_timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Per-provider timeout override in seconds.",
    )

    def resolved_api_key(self) -> str | None:
        """Return the explicit key, falling back to ``api_key_env``.

        Returns:
            The credential string, or None when no non-blank key is found.
        """
        if self.api_key is not None:
            value = self.api_key.get_secret_value().strip()
            if value:
                return value
        if self.api_key_env:
            value = os.environ.get(self.api_key_env, "").strip()
            if value:
                return value
        return None


class OpenAISettings(ProviderSettings):
    """OpenAI text and image models."""

    api_key_env: str = "OPENAI_API_KEY"
    text_model: str = "gpt-4o-mini"
    image_model: str | None = "dall-e-3"


class ClaudeSettings(ProviderSettings):
    """Anthropic Claude text model."""

    api_key_env: str = "ANTHROPIC_API_KEY"
    text_model: str = "claude-3-5-haiku-20241022"


class GeminiSettings(ProviderSettings):
    """Google Gemini text model."""

    api_key_env: str = "GEMINI_API_KEY"
    text_model: str = "gemini-2.0-flash-lite"


class ProvidersSettings(BaseModel):
    """All configured providers, in registry (fallback) order."""

    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)

    def ordered(self) -> list[tuple[str, ProviderSettings]]:
        """Return ``(PROVIDER_KEY, settings)`` pairs in registry order."""
        return [
            ("OPENAI", self.openai),
            ("CLAUDE", self.claude),
            ("GEMINI", self.gemini),
        ]


class ResilienceSettings(BaseModel):
    """Circuit breaker, cache and timeout tunables."""

    circuit_breaker_threshold: int = Field(default=5, ge=1, le=100)
    circuit_breaker_cooldown_seconds: float = Field(default=15.0, gt=0.0)
    cache_ttl_seconds: float = Field(default=60.0, gt=0.0)
    cache_max_entries: int = Field(default=100, ge=1)
    default_timeout_seconds: float = Field(
        default=90.0, gt=0.0, description="Per-provider call timeout in seconds."
    )


class RetrySettings(BaseModel):
    """Whole-call retry/backoff policy."""

    max_retries: int = Field(default=2, ge=0, le=10)
    initial_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=5.0, ge=0.0)
    multiplier: float = Field(default=1.5, ge=1.0)
    jitter: bool = True


class BatchSettings(BaseModel):
    """Bounded-parallel section generation."""

    concurrency_limit: int = Field(default=3, ge=1, le=50)
    strategy: Literal["chunked", "pool"] = Field(
        default="chunked",
        description=(
            "chunked: start a chunk of concurrency_limit sections and wait for all "
            "of them; pool: start the next section as soon as a slot frees up."
        ),
    )
    inter_prompt_delay: float = Field(
        default=0.0,
        ge=0.0,
        description="Pause in seconds before each section starts.",
    )


class LoggingSettings(BaseModel):
    """Log level, renderer and optional log file."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (layered resolution)
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path("content_engine.yaml")


class Settings(BaseSettings):
    """Resolved engine settings.

    Later layers override earlier ones: field defaults, then the YAML file
    (``content_engine.yaml`` or the ``--config`` path), then ``.env`` and
    ``CONTENT_ENGINE_*`` environment variables, then keyword overrides given
    to :meth:`load`.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_ENGINE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file=str(_DEFAULT_CONFIG_PATH),
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Put the YAML source below env and dotenv, using any ``load`` path."""
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", str(_DEFAULT_CONFIG_PATH)
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Build settings from every layer.

        Args:
            config_path: YAML file to read instead of ``content_engine.yaml``.
            **overrides: Field values that beat every other source.

        Raises:
            ValidationError: If a merged value is rejected.
        """
        cls._config_path_override = config_path
        try:
            settings = cls(**overrides)
        finally:
            cls._config_path_override = None
        logger.debug(
            "settings_loaded",
            config_path=str(config_path) if config_path else None,
            providers=[key for key, p in settings.providers.ordered() if p.enabled],
        )
        return settings


def format_validation_error(exc: ValidationError) -> str:
    """Render ``exc`` as one indented ``location: message`` line per error."""
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None and not isinstance(raw_input, dict):
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
