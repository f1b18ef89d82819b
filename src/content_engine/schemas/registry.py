"""Named content schemas: validation, field stripping and recovery.

Validation is a recovery step, not a gate. A model that adds a field the
schema does not declare should still yield usable content, so
``recover`` falls back to the stripped value instead of failing.
"""

from __future__ import annotations

import types
from typing import Any, Union, get_args, get_origin

import structlog
from pydantic import BaseModel, Field, ValidationError

from content_engine.exceptions import SchemaNotFoundError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class SchemaIssue(BaseModel):
    """One validation problem, located by a dotted path of wire keys."""

    path: str
    message: str
    code: str


class ValidationResult(BaseModel):
    """Outcome of ``SchemaRegistry.validate``."""

    success: bool
    data: Any = None
    errors: list[SchemaIssue] = Field(default_factory=list)


class SchemaRecovery(BaseModel):
    """Outcome of ``SchemaRegistry.recover``.

    Attributes:
        value: The content to hand on: validated data when possible,
            otherwise the stripped value.
        valid: Whether ``value`` passed validation.
        stripped: Whether undeclared fields had to be removed.
        errors: Validation issues of the original value.
    """

    value: Any = None
    valid: bool
    stripped: bool = False
    errors: list[SchemaIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Annotation helpers
# ---------------------------------------------------------------------------


def _unwrap_optional(annotation: Any) -> list[Any]:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return [arg for arg in get_args(annotation) if arg is not type(None)]
    return [annotation]


def _model_type(annotation: Any) -> type[BaseModel] | None:
    for candidate in _unwrap_optional(annotation):
        if isinstance(candidate, type) and issubclass(candidate, BaseModel):
            return candidate
    return None


def _list_item_model(annotation: Any) -> type[BaseModel] | None:
    for candidate in _unwrap_optional(annotation):
        if get_origin(candidate) in (list, tuple, set, frozenset):
            args = get_args(candidate)
            if args:
                return _model_type(args[0])
    return None


def _strip(model: type[BaseModel], value: dict[str, Any]) -> dict[str, Any]:
    stripped: dict[str, Any] = {}
    for name, field in model.model_fields.items():
        wire_key = field.alias or name
        if wire_key in value:
            raw = value[wire_key]
        elif name in value:
            raw = value[name]
        else:
            continue

        nested = _model_type(field.annotation)
        item_model = _list_item_model(field.annotation)
        if nested is not None and isinstance(raw, dict):
            stripped[wire_key] = _strip(nested, raw)
        elif item_model is not None and isinstance(raw, list):
            stripped[wire_key] = [
                _strip(item_model, item) if isinstance(item, dict) else item
                for item in raw
            ]
        else:
            stripped[wire_key] = raw
    return stripped


def _issues(exc: ValidationError) -> list[SchemaIssue]:
    return [
        SchemaIssue(
            path=".".join(str(part) for part in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in exc.errors()
    ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SchemaRegistry:
    """Maps schema names to pydantic models."""

    def __init__(self, schemas: dict[str, type[BaseModel]] | None = None) -> None:
        self._schemas: dict[str, type[BaseModel]] = dict(schemas or {})

    @classmethod
    def default(cls) -> SchemaRegistry:
        """Registry preloaded with the sample section schemas."""
        from content_engine.schemas.catalog import DEFAULT_SCHEMAS

        return cls(DEFAULT_SCHEMAS)

    def register(self, name: str, model: type[BaseModel]) -> None:
        """Add or replace the schema called ``name``."""
        self._schemas[name] = model

    def names(self) -> list[str]:
        """Registered schema names, in registration order."""
        return list(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def get(self, name: str) -> type[BaseModel]:
        """Return the model registered as ``name``.

        Raises:
            SchemaNotFoundError: If ``name`` is not registered.
        """
        try:
            return self._schemas[name]
        except KeyError:
            msg = f"No schema found for section: {name}"
            raise SchemaNotFoundError(msg) from None

    def structure(self, name: str) -> dict[str, Any]:
        """JSON Schema (wire keys) for ``name``, for use in prompts."""
        return self.get(name).model_json_schema(by_alias=True)

    def validate(self, name: str, value: Any) -> ValidationResult:
        """Validate ``value`` against schema ``name``; never raises.

        Returns:
            A result whose ``data`` is the validated content keyed by wire
            names on success.
        """
        if name not in self._schemas:
            return ValidationResult(
                success=False,
                errors=[
                    SchemaIssue(
                        path="",
                        message=f"No schema found for section: {name}",
                        code="schema_not_found",
                    )
                ],
            )
        model = self._schemas[name]
        try:
            instance = model.model_validate(value)
        except ValidationError as exc:
            return ValidationResult(success=False, errors=_issues(exc))
        return ValidationResult(
            success=True, data=instance.model_dump(mode="json", by_alias=True)
        )

    def strip_extra_fields(self, name: str, value: Any) -> Any:
        """Drop every key not declared by schema ``name``; never raises.

        Nested objects and lists of objects are stripped recursively. Missing
        keys stay missing. An unknown schema returns ``value`` unchanged and a
        non-object value yields ``{}``.
        """
        if name not in self._schemas:
            logger.warning("schema_not_found", schema=name)
            return value
        if not isinstance(value, dict):
            return {}
        return _strip(self._schemas[name], value)

    def recover(self, name: str, value: Any) -> SchemaRecovery:
        """Validate, falling back to the stripped value on mismatch."""
        result = self.validate(name, value)
        if result.success:
            return SchemaRecovery(value=result.data, valid=True)

        stripped = self.strip_extra_fields(name, value)
        retry = self.validate(name, stripped)
        logger.warning(
            "schema_mismatch_recovered",
            schema=name,
            valid_after_strip=retry.success,
            errors=[issue.model_dump() for issue in result.errors[:10]],
        )
        return SchemaRecovery(
            value=retry.data if retry.success else stripped,
            valid=retry.success,
            stripped=True,
            errors=result.errors,
        )
