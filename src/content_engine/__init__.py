"""content-engine: multi-provider LLM generation for marketing content."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("content-engine")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
