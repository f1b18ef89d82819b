"""Provider adapter backed by litellm.

A single adapter class serves OpenAI, Claude and Gemini: litellm accepts
provider-prefixed model identifiers (``anthropic/claude-3-5-haiku-...``)
and exposes one request shape for all of them. Provider SDK exceptions are
translated into ``ProviderCallError`` here and never escape the adapter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from content_engine.exceptions import ProviderCallError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from content_engine.providers.base import GenerationOptions
    from content_engine.providers.registry import ProviderConfig

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_PROVIDER_PREFIX: dict[str, str] = {
    "OPENAI": "openai",
    "CLAUDE": "anthropic",
    "GEMINI": "gemini",
}

# Providers that accept ``response_format={"type": "json_object"}``.
_NATIVE_JSON_MODE = frozenset({"OPENAI"})

JSON_ONLY_INSTRUCTION = (
    "\n\nIMPORTANT: Return ONLY valid JSON, no markdown code blocks."
)


def _resolve_model(key: str, model_id: str) -> str:
    """Build a litellm model identifier for a provider key.

    Args:
        key: Provider key (OPENAI, CLAUDE, GEMINI).
        model_id: Bare model identifier.

    Returns:
        A litellm-compatible model identifier string.

    Raises:
        ValueError: If the provider key has no litellm prefix.
    """
    try:
        prefix = _PROVIDER_PREFIX[key]
    except KeyError:
        msg = f"Unsupported provider for litellm: {key!r}"
        raise ValueError(msg) from None
    return f"{prefix}/{model_id}"


def _translate_error(provider: str, exc: Exception) -> ProviderCallError:
    status = getattr(exc, "status_code", None)
    return ProviderCallError(
        provider,
        f"{provider} API error: {exc}",
        status_code=status if isinstance(status, int) else None,
    )


class LiteLLMAdapter:
    """Adapter for one provider, calling it through litellm.

    Attributes:
        config: The provider this adapter serves.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self._text_model = _resolve_model(config.key, config.text_model)

    # ------------------------------------------------------------------
    # Request shaping
    # ------------------------------------------------------------------

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> dict[str, Any]:
        """Translate generic options into litellm keyword arguments.

        Args:
            system_prompt: System instructions.
            user_prompt: The user prompt.
            options: Generic generation options.

        Returns:
            Keyword arguments for ``litellm.acompletion``.
        """
        if options.json_mode and self.config.key not in _NATIVE_JSON_MODE:
            user_prompt = user_prompt + JSON_ONLY_INSTRUCTION

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        request: dict[str, Any] = {
            "model": self._text_model,
            "messages": messages,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if options.json_mode and self.config.key in _NATIVE_JSON_MODE:
            request["response_format"] = {"type": "json_object"}
        if self.config.api_key is not None:
            request["api_key"] = self.config.api_key.get_secret_value()
        return request

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> str:
        """Return the full completion text.

        Raises:
            ProviderCallError: On any upstream failure or empty response.
        """
        import litellm

        request = self.build_request(system_prompt, user_prompt, options)
        try:
            response = await litellm.acompletion(**request)
        except Exception as exc:
            raise _translate_error(self.config.key, exc) from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise ProviderCallError(
                self.config.key, f"{self.config.key} returned no choices"
            ) from exc
        if not content:
            raise ProviderCallError(
                self.config.key, f"{self.config.key} returned an empty response"
            )
        return str(content)

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions,
    ) -> AsyncIterator[str]:
        """Yield text deltas as they arrive.

        Raises:
            ProviderCallError: On any upstream failure.
        """
        import litellm

        request = self.build_request(system_prompt, user_prompt, options)
        try:
            response = await litellm.acompletion(stream=True, **request)
            async for chunk in response:
                choices = getattr(chunk, "choices", None)
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta is not None else None
                if text:
                    yield text
        except ProviderCallError:
            raise
        except Exception as exc:
            raise _translate_error(self.config.key, exc) from exc

    async def generate_image(
        self,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
    ) -> str:
        """Generate one image and return its URL.

        Raises:
            ProviderCallError: If the provider has no image model or the
                call fails.
        """
        import litellm

        if not self.config.image_model:
            raise ProviderCallError(
                self.config.key, f"{self.config.key} has no image model configured"
            )
        request: dict[str, Any] = {
            "model": _resolve_model(self.config.key, self.config.image_model),
            "prompt": prompt,
            "n": 1,
            "size": size,
            "quality": quality,
        }
        if self.config.api_key is not None:
            request["api_key"] = self.config.api_key.get_secret_value()

        try:
            response = await litellm.aimage_generation(**request)
        except Exception as exc:
            raise _translate_error(self.config.key, exc) from exc

        data = getattr(response, "data", None) or []
        url: str | None = None
        if data:
            item = data[0]
            url = item.get("url") if isinstance(item, dict) else getattr(item, "url", None)
        if not url:
            raise ProviderCallError(
                self.config.key, f"{self.config.key} returned no image URL"
            )
        logger.info("image_generated", provider=self.config.key, size=size)
        return str(url)
