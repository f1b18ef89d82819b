"""Unit tests for content_engine.parsing - safe JSON extraction."""

from __future__ import annotations

import json
from typing import Any

import pytest

from content_engine.exceptions import MalformedResponseError
from content_engine.parsing import (
    RECOVERY_STRATEGIES,
    close_truncated,
    decode_nested_strings,
    escape_newlines_in_strings,
    extract_json_span,
    normalize_smart_quotes,
    parse_and_validate_json,
    parse_json_safe,
    quote_bare_keys,
    remove_trailing_commas,
    strip_code_fences,
    validate_json_structure,
)

# ---------------------------------------------------------------------------
# Cleanup helpers
# ---------------------------------------------------------------------------


class TestStripCodeFences:
    """Only a leading fence marker and its closer are removed."""

    def test_json_fence(self) -> None:
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self) -> None:
        assert strip_code_fences('```\n[1]\n```') == "[1]"

    def test_text_without_leading_fence_untouched(self) -> None:
        text = 'Here:\n```json\n{"a": 1}\n```'
        assert strip_code_fences(text) == text


class TestHelpers:
    """Individual string repairs."""

    def test_extract_span(self) -> None:
        assert extract_json_span('Sure! {"a": 1} Hope that helps.') == '{"a": 1}'

    def test_extract_span_missing(self) -> None:
        with pytest.raises(ValueError):
            extract_json_span("no brackets at all")

    def test_smart_quotes(self) -> None:
        assert normalize_smart_quotes("\u201cquoted\u201d \u2018it\u2019s\u2019") == (
            "\"quoted\" 'it's'"
        )

    def test_trailing_commas(self) -> None:
        assert remove_trailing_commas('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'

    def test_escape_newlines_only_inside_strings(self) -> None:
        text = '{\n"a": "one\ntwo"\n}'
        assert escape_newlines_in_strings(text) == '{\n"a": "one\\ntwo"\n}'

    def test_quote_bare_keys(self) -> None:
        assert quote_bare_keys('{name: "x", count: 2}') == '{"name": "x", "count": 2}'

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"a": "unfinis', '{"a": "unfinis"}'),
            ('{"a": [1, 2', '{"a": [1, 2]}'),
            ('{"a": 1,', '{"a": 1}'),
            ('{"a":', '{"a": null}'),
            ('[{"x": 1}, {"x": 2', '[{"x": 1}, {"x": 2}]'),
        ],
    )
    def test_close_truncated(self, text: str, expected: str) -> None:
        assert close_truncated(text) == expected

    def test_decode_nested_strings(self) -> None:
        value = {"outer": '{"inner": "[1, 2]"}', "plain": "text {not json}"}
        assert decode_nested_strings(value) == {
            "outer": {"inner": [1, 2]},
            "plain": "text {not json}",
        }

    def test_strategy_order(self) -> None:
        assert [name for name, _ in RECOVERY_STRATEGIES] == [
            "fenced_block",
            "extract_span",
            "repair",
            "close_truncated",
            "double_encoded",
        ]


# ---------------------------------------------------------------------------
# parse_json_safe
# ---------------------------------------------------------------------------


class TestParseJsonSafe:
    """Recovery of almost-JSON model output."""

    @pytest.mark.parametrize(
        "value",
        [
            {"a": 1},
            [1, 2, 3],
            '{"a": 1}',
            "[1, 2]",
            "just text",
            "",
            {"outer": {"inner": [{"deep": None}, "x"]}, "flag": False},
            {"payload": '{"still": "a string"}'},
            0,
            -3.25,
            True,
            False,
            None,
            [],
            {},
        ],
    )
    def test_serialized_values_round_trip(self, value: Any) -> None:
        assert parse_json_safe(json.dumps(value), throw_on_error=True) == value

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"a": 1}', {"a": 1}),
            ('```json\n{"a":1}\n```', {"a": 1}),
            ('Sure! {"a":1}', {"a": 1}),
            ('{"a": 1}\n\nLet me know if you need changes.', {"a": 1}),
            ('Here you go:\n```json\n{"a": 1}\n```\nEnjoy!', {"a": 1}),
            ("Result: [1, 2, 3] done", [1, 2, 3]),
            ('{"a": [1, 2,],}', {"a": [1, 2]}),
            ("{\u201ca\u201d: \u201cb\u201d}", {"a": "b"}),
            ('{"a": "line1\nline2"}', {"a": "line1\nline2"}),
            ('{a: 1, b: "x"}', {"a": 1, "b": "x"}),
        ],
    )
    def test_recovers(self, text: str, expected: Any) -> None:
        assert parse_json_safe(text) == expected

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ('{"a": 1, "b": "unfinis', {"a": 1, "b": "unfinis"}),
            ('{"items": [{"x": 1}, {"x": 2', {"items": [{"x": 1}, {"x": 2}]}),
            ('{"a": 1, "b":', {"a": 1, "b": None}),
            ('{"a": 1, "bc', {"a": 1}),
        ],
    )
    def test_recovers_truncation(self, text: str, expected: Any) -> None:
        assert parse_json_safe(text) == expected

    def test_double_encoded_string_decoded_on_request(self) -> None:
        text = '"{\\"a\\": 1}"'
        assert parse_json_safe(text) == '{"a": 1}'
        assert parse_json_safe(text, decode_nested=True) == {"a": 1}

    def test_escaped_quotes_without_wrapper(self) -> None:
        assert parse_json_safe('{\\"a\\": 1}') == {"a": 1}

    def test_plain_json_string_value_stays_string(self) -> None:
        assert parse_json_safe('"just text"') == "just text"

    def test_nested_strings_decoded_on_request(self) -> None:
        text = '{"data": "{\\"x\\": 2}"}'
        assert parse_json_safe(text) == {"data": '{"x": 2}'}
        assert parse_json_safe(text, decode_nested=True) == {"data": {"x": 2}}

    def test_unparseable_raises(self) -> None:
        with pytest.raises(MalformedResponseError) as excinfo:
            parse_json_safe("I cannot help with that.")
        assert "JSON parsing failed" in str(excinfo.value)
        assert excinfo.value.text_prefix == "I cannot help with that."

    def test_error_prefix_truncated(self) -> None:
        with pytest.raises(MalformedResponseError) as excinfo:
            parse_json_safe("x" * 500)
        assert excinfo.value.text_prefix == "x" * 200

    def test_unparseable_returns_default(self) -> None:
        default = {"fallback": True}
        result = parse_json_safe("not json", throw_on_error=False, default_value=default)
        assert result is default

    def test_unparseable_default_is_none(self) -> None:
        assert parse_json_safe("not json", throw_on_error=False) is None

    @pytest.mark.parametrize("text", ["", "   ", None, 42])
    def test_invalid_input(self, text: Any) -> None:
        with pytest.raises(MalformedResponseError, match="expected non-empty string"):
            parse_json_safe(text)
        assert parse_json_safe(text, throw_on_error=False, default_value=[]) == []


# ---------------------------------------------------------------------------
# Structure validation
# ---------------------------------------------------------------------------


class TestStructureValidation:
    """Required top-level keys."""

    def test_all_present(self) -> None:
        check = validate_json_structure({"a": 1, "b": 2}, ["a", "b"])
        assert check.valid is True
        assert check.missing == []

    def test_missing_keys(self) -> None:
        check = validate_json_structure({"a": 1}, ["a", "b", "c"])
        assert check.valid is False
        assert check.missing == ["b", "c"]

    def test_non_object(self) -> None:
        check = validate_json_structure([1, 2], ["a"])
        assert check.valid is False
        assert check.missing == ["root object"]

    def test_parse_and_validate(self) -> None:
        value = parse_and_validate_json('```json\n{"offer": {}}\n```', ["offer"])
        assert value == {"offer": {}}

    def test_parse_and_validate_missing_raises(self) -> None:
        with pytest.raises(MalformedResponseError, match="missing required keys: offer"):
            parse_and_validate_json('{"message": {}}', ["offer"])

    def test_parse_and_validate_missing_returns_default(self) -> None:
        result = parse_and_validate_json(
            '{"message": {}}', ["offer"], throw_on_error=False, default_value={}
        )
        assert result == {}
