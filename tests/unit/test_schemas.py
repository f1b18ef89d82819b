"""Unit tests for content_engine.schemas - validation, stripping, recovery."""

from __future__ import annotations

import copy
from typing import Any

import pytest
from pydantic import BaseModel

from content_engine.exceptions import SchemaNotFoundError
from content_engine.schemas import SchemaRegistry

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def registry() -> SchemaRegistry:
    return SchemaRegistry.default()


@pytest.fixture()
def ideal_client() -> dict[str, Any]:
    return {
        "idealClientSnapshot": {
            "bestIdealClient": "Coaches earning 10k a month who want to scale to 50k.",
            "topChallenges": ["Inconsistent leads", "Underpricing", "No time"],
            "whatTheyWant": ["Predictable revenue", "Premium clients", "Freedom"],
            "whatMakesThemPay": ["A proven system", "Fast results"],
            "howToTalkToThem": ["Be direct", "Share numbers", "Skip the jargon"],
        }
    }


@pytest.fixture()
def offer() -> dict[str, Any]:
    return {
        "signatureOffer": {
            "offerName": "Scale Sprint",
            "whoItsFor": "Service founders stuck below their first 20k month.",
            "thePromise": "Build a repeatable premium offer and sell it to ten clients in 90 days.",
            "offerMode": "Transformation",
            "sevenStepBlueprint": {
                f"step{n}": f"Step {n}: milestone" for n in range(1, 8)
            },
            "tier1SignatureOffer": {
                "delivery": "Weekly live group calls",
                "whatTheyGet": "Twelve live sessions, templates, and a private community for peers.",
                "recommendedPrice": "$2,000",
            },
            "cta": "Book a strategy call today",
        }
    }


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class TestLookup:
    """Registration and lookup by name."""

    def test_default_names(self, registry: SchemaRegistry) -> None:
        assert registry.names() == ["idealClient", "message", "offer"]
        assert "offer" in registry
        assert "pricing" not in registry

    def test_get_unknown_raises(self, registry: SchemaRegistry) -> None:
        with pytest.raises(SchemaNotFoundError, match="pricing"):
            registry.get("pricing")

    def test_register_custom(self) -> None:
        class Headline(BaseModel):
            title: str

        registry = SchemaRegistry()
        registry.register("headline", Headline)
        assert registry.validate("headline", {"title": "Hi"}).success is True

    def test_structure_uses_wire_keys(self, registry: SchemaRegistry) -> None:
        structure = registry.structure("message")
        assert "signatureMessage" in structure["properties"]
        nested = structure["$defs"]["SignatureMessage"]["properties"]
        assert set(nested) == {"oneLiner", "spokenVersion"}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidate:
    """validate() never raises and reports located issues."""

    def test_valid_ideal_client(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        result = registry.validate("idealClient", ideal_client)
        assert result.success is True
        assert result.errors == []
        assert result.data == ideal_client

    def test_valid_offer(self, registry: SchemaRegistry, offer: dict[str, Any]) -> None:
        result = registry.validate("offer", offer)
        assert result.success is True
        assert result.data["signatureOffer"]["offerMode"] == "Transformation"

    def test_wrong_list_length(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        ideal_client["idealClientSnapshot"]["topChallenges"] = ["Only one"]
        result = registry.validate("idealClient", ideal_client)
        assert result.success is False
        issue = result.errors[0]
        assert issue.path == "idealClientSnapshot.topChallenges"
        assert issue.code == "too_short"

    def test_invalid_enum(self, registry: SchemaRegistry, offer: dict[str, Any]) -> None:
        offer["signatureOffer"]["offerMode"] = "Hybrid"
        result = registry.validate("offer", offer)
        assert result.success is False
        assert result.errors[0].path == "signatureOffer.offerMode"

    def test_extra_field_rejected(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        ideal_client["commentary"] = "Here is your content!"
        result = registry.validate("idealClient", ideal_client)
        assert result.success is False
        assert result.errors[0].code == "extra_forbidden"

    def test_unknown_schema(self, registry: SchemaRegistry) -> None:
        result = registry.validate("pricing", {})
        assert result.success is False
        assert result.errors[0].code == "schema_not_found"


# ---------------------------------------------------------------------------
# Stripping and recovery
# ---------------------------------------------------------------------------


class TestStripExtraFields:
    """strip_extra_fields keeps only declared keys, recursively."""

    def test_strips_nested_extras(
        self, registry: SchemaRegistry, offer: dict[str, Any]
    ) -> None:
        noisy = copy.deepcopy(offer)
        noisy["explanation"] = "extra"
        noisy["signatureOffer"]["bonus"] = "extra"
        noisy["signatureOffer"]["tier1SignatureOffer"]["upsell"] = "extra"
        assert registry.strip_extra_fields("offer", noisy) == offer

    def test_missing_keys_stay_missing(self, registry: SchemaRegistry) -> None:
        value = {"signatureMessage": {"oneLiner": "I help founders sell premium offers."}}
        assert registry.strip_extra_fields("message", value) == value

    def test_accepts_field_names(self, registry: SchemaRegistry) -> None:
        value = {"signature_message": {"one_liner": "I help founders sell premium offers."}}
        assert registry.strip_extra_fields("message", value) == {
            "signatureMessage": {"oneLiner": "I help founders sell premium offers."}
        }

    def test_unknown_schema_returns_value(self, registry: SchemaRegistry) -> None:
        value = {"anything": 1}
        assert registry.strip_extra_fields("pricing", value) is value

    def test_non_object_yields_empty(self, registry: SchemaRegistry) -> None:
        assert registry.strip_extra_fields("offer", ["not", "an", "object"]) == {}


class TestRecover:
    """recover() falls back to the stripped value instead of failing."""

    def test_valid_value_untouched(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        recovery = registry.recover("idealClient", ideal_client)
        assert recovery.valid is True
        assert recovery.stripped is False
        assert recovery.value == ideal_client

    def test_extra_fields_recovered(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        noisy = copy.deepcopy(ideal_client)
        noisy["idealClientSnapshot"]["confidence"] = 0.9
        recovery = registry.recover("idealClient", noisy)
        assert recovery.valid is True
        assert recovery.stripped is True
        assert recovery.value == ideal_client
        assert recovery.errors[0].code == "extra_forbidden"

    def test_still_invalid_after_strip(
        self, registry: SchemaRegistry, ideal_client: dict[str, Any]
    ) -> None:
        ideal_client["idealClientSnapshot"]["whatMakesThemPay"] = ["one"]
        ideal_client["note"] = "remove me"
        recovery = registry.recover("idealClient", ideal_client)
        assert recovery.valid is False
        assert recovery.stripped is True
        assert "note" not in recovery.value
        assert recovery.value["idealClientSnapshot"]["whatMakesThemPay"] == ["one"]
