"""Safe JSON extraction from raw LLM output.

Model output is often almost-JSON: wrapped in markdown fences, preceded by
prose ("Sure! Here is..."), cut off mid-object, or JSON encoded twice.
``parse_json_safe`` first tries a direct parse and then walks a prioritized
chain of recovery strategies, stopping at the first success. Each strategy
is a pure function ``str -> value`` that raises ``ValueError`` when it does
not apply, so every heuristic can be tested in isolation.

Nothing here evaluates code; the only operations are string cleanup and
``json.loads``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel, Field

from content_engine.exceptions import MalformedResponseError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

ERROR_PREFIX_CHARS = 200
_MAX_NESTED_DEPTH = 5
_MAX_TRUNCATION_STEPS = 20

_LEADING_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_TRAILING_FENCE_RE = re.compile(r"\r?\n?[ \t]*```\s*$")
_FENCED_BLOCK_RE = re.compile(r"```(?:[A-Za-z0-9_-]*)[ \t]*\r?\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$]*)\s*:")

_SMART_CHARS = str.maketrans(
    {
        "\u201c": '"',
        "\u201d": '"',
        "\u201e": '"',
        "\u201f": '"',
        "\u2033": '"',
        "\u2018": "'",
        "\u2019": "'",
        "\u201a": "'",
        "\u201b": "'",
        "\u2032": "'",
        "\u00a0": " ",
    }
)

_CLOSERS = {"{": "}", "[": "]"}

Strategy = Callable[[str], Any]


# ---------------------------------------------------------------------------
# Text cleanup helpers
# ---------------------------------------------------------------------------


def strip_code_fences(text: str) -> str:
    """Remove a leading ```` ```json ```` / ```` ``` ```` marker and its closer."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    stripped = _LEADING_FENCE_RE.sub("", stripped, count=1)
    stripped = _TRAILING_FENCE_RE.sub("", stripped, count=1)
    return stripped.strip()


def _first_opener(text: str) -> int:
    positions = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    return min(positions) if positions else -1


def extract_json_span(text: str) -> str:
    """Return the substring from the first ``{``/``[`` to the last ``}``/``]``.

    Raises:
        ValueError: If the text contains no complete bracketed span.
    """
    start = _first_opener(text)
    end = max(text.rfind("}"), text.rfind("]"))
    if start < 0 or end <= start:
        msg = "no bracketed JSON span found"
        raise ValueError(msg)
    return text[start : end + 1]


def normalize_smart_quotes(text: str) -> str:
    """Replace typographic quotes and non-breaking spaces with ASCII."""
    return text.translate(_SMART_CHARS)


def remove_trailing_commas(text: str) -> str:
    """Drop commas directly before a closing ``}`` or ``]``."""
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def strip_control_characters(text: str) -> str:
    """Remove control characters other than tab, newline and carriage return."""
    return _CONTROL_CHARS_RE.sub("", text)


def escape_newlines_in_strings(text: str) -> str:
    """Escape bare newlines, carriage returns and tabs inside string literals."""
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            continue
        if escaped:
            escaped = False
            out.append(ch)
        elif ch == "\\":
            escaped = True
            out.append(ch)
        elif ch == '"':
            in_string = False
            out.append(ch)
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        else:
            out.append(ch)
    return "".join(out)


def quote_bare_keys(text: str) -> str:
    """Quote unquoted object keys such as ``{name: "x"}``."""
    return _UNQUOTED_KEY_RE.sub(r'\1"\2":', text)


def close_truncated(text: str) -> str:
    """Close an unterminated string and any open brackets.

    A dangling ``,`` is dropped and a dangling ``:`` gets a ``null`` value
    so that the closed text has a chance to parse.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()

    closed = text
    if in_string:
        if escaped:
            closed = closed[:-1]
        closed += '"'
    closed = closed.rstrip()
    if closed.endswith(","):
        closed = closed[:-1]
    elif closed.endswith(":"):
        closed += " null"
    return closed + "".join(reversed(stack))


def _last_top_level_comma(text: str) -> int:
    """Index of the last comma outside string literals, or -1."""
    last = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == ",":
            last = i
    return last


def _clean(text: str) -> str:
    cleaned = normalize_smart_quotes(text)
    cleaned = strip_control_characters(cleaned)
    cleaned = escape_newlines_in_strings(cleaned)
    cleaned = remove_trailing_commas(cleaned)
    return cleaned


def decode_nested_strings(value: Any, depth: int = 0) -> Any:
    """Recursively decode string values that hold JSON objects or arrays."""
    if depth > _MAX_NESTED_DEPTH:
        return value
    if isinstance(value, str):
        candidate = value.strip()
        if candidate[:1] in ("{", "[") and candidate[-1:] in ("}", "]"):
            try:
                return decode_nested_strings(json.loads(candidate), depth + 1)
            except ValueError:
                return value
        return value
    if isinstance(value, dict):
        return {k: decode_nested_strings(v, depth + 1) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_nested_strings(v, depth + 1) for v in value]
    return value


# ---------------------------------------------------------------------------
# Recovery strategies (tried in order)
# ---------------------------------------------------------------------------


def _parse_fenced_block(text: str) -> Any:
    match = _FENCED_BLOCK_RE.search(text)
    if match is None:
        msg = "no fenced block"
        raise ValueError(msg)
    return json.loads(match.group(1).strip())


def _parse_span(text: str) -> Any:
    return json.loads(extract_json_span(text))


def _parse_repaired(text: str) -> Any:
    span = extract_json_span(text)
    cleaned = _clean(span)
    try:
        return json.loads(cleaned)
    except ValueError:
        return json.loads(quote_bare_keys(cleaned))


def _parse_truncated(text: str) -> Any:
    start = _first_opener(text)
    if start < 0:
        msg = "no JSON opener found"
        raise ValueError(msg)
    candidate = _clean(text[start:])
    last_error: ValueError | None = None
    for _ in range(_MAX_TRUNCATION_STEPS):
        try:
            return json.loads(remove_trailing_commas(close_truncated(candidate)))
        except ValueError as exc:
            last_error = exc
        cut = _last_top_level_comma(candidate)
        if cut <= 0:
            break
        candidate = candidate[:cut]
    raise last_error or ValueError("truncation repair failed")


def _parse_double_encoded(text: str) -> Any:
    candidate = text.strip()
    if not (candidate.startswith('"') and candidate.endswith('"')):
        candidate = extract_json_span(candidate)
        candidate = f'"{candidate}"'
    inner = json.loads(candidate)
    # Each level must shrink the text, which bounds the recursion.
    if not isinstance(inner, str) or len(inner) >= len(text.strip()):
        msg = "not a double-encoded JSON string"
        raise ValueError(msg)
    return parse_json_safe(inner, log_errors=False)


RECOVERY_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("fenced_block", _parse_fenced_block),
    ("extract_span", _parse_span),
    ("repair", _parse_repaired),
    ("close_truncated", _parse_truncated),
    ("double_encoded", _parse_double_encoded),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _fail(
    message: str,
    text: str,
    *,
    throw_on_error: bool,
    log_errors: bool,
    default_value: Any,
) -> Any:
    prefix = text[:ERROR_PREFIX_CHARS]
    if log_errors:
        logger.warning("json_parse_failed", error=message, text_prefix=prefix)
    if throw_on_error:
        raise MalformedResponseError(
            f"{message}. Text starts with: {prefix!r}", text_prefix=prefix
        )
    return default_value


def parse_json_safe(
    text: Any,
    *,
    throw_on_error: bool = True,
    log_errors: bool = True,
    default_value: Any = None,
    decode_nested: bool = False,
) -> Any:
    """Parse raw model output into a JSON value.

    Args:
        text: Raw provider output.
        throw_on_error: Raise on failure instead of returning the default.
        log_errors: Emit structured log events about recovery and failure.
        default_value: Returned on failure when ``throw_on_error`` is False.
        decode_nested: Also decode string values that hold JSON, even when
            the text parsed directly.

    Returns:
        The parsed value, or ``default_value`` on failure.

    Raises:
        MalformedResponseError: If nothing parses and ``throw_on_error``.
    """
    if not isinstance(text, str) or not text.strip():
        return _fail(
            f"Invalid JSON input: expected non-empty string, got {type(text).__name__}",
            text if isinstance(text, str) else "",
            throw_on_error=throw_on_error,
            log_errors=log_errors,
            default_value=default_value,
        )

    candidate = strip_code_fences(text)
    try:
        value = json.loads(candidate)
    except ValueError as exc:
        first_error = exc
    else:
        if decode_nested:
            return decode_nested_strings(value)
        return value

    for name, strategy in RECOVERY_STRATEGIES:
        try:
            value = strategy(candidate)
        except (ValueError, MalformedResponseError):
            continue
        if log_errors:
            logger.info("json_repair_succeeded", strategy=name)
        return decode_nested_strings(value)

    return _fail(
        f"JSON parsing failed after all recovery attempts: {first_error}",
        text,
        throw_on_error=throw_on_error,
        log_errors=log_errors,
        default_value=default_value,
    )


class StructureValidation(BaseModel):
    """Result of a required-keys check."""

    valid: bool
    missing: list[str] = Field(default_factory=list)


def validate_json_structure(
    value: Any,
    required_keys: list[str] | tuple[str, ...] = (),
) -> StructureValidation:
    """Check that ``value`` is an object holding every required key."""
    if not isinstance(value, dict):
        return StructureValidation(valid=False, missing=["root object"])
    missing = [key for key in required_keys if key not in value]
    return StructureValidation(valid=not missing, missing=missing)


def parse_and_validate_json(
    text: Any,
    required_keys: list[str] | tuple[str, ...] = (),
    *,
    throw_on_error: bool = True,
    log_errors: bool = True,
    default_value: Any = None,
) -> Any:
    """Parse ``text`` and require the given top-level keys.

    Raises:
        MalformedResponseError: If parsing fails or keys are missing and
            ``throw_on_error`` is set.
    """
    value = parse_json_safe(
        text,
        throw_on_error=throw_on_error,
        log_errors=log_errors,
        default_value=default_value,
    )
    if value is None or not required_keys:
        return value
    check = validate_json_structure(value, required_keys)
    if check.valid:
        return value
    return _fail(
        f"JSON missing required keys: {', '.join(check.missing)}",
        text,
        throw_on_error=throw_on_error,
        log_errors=log_errors,
        default_value=default_value,
    )
