"""Content schema exports."""

from content_engine.schemas.registry import (
    SchemaIssue,
    SchemaRecovery,
    SchemaRegistry,
    ValidationResult,
)

__all__ = [
    "SchemaIssue",
    "SchemaRecovery",
    "SchemaRegistry",
    "ValidationResult",
]
