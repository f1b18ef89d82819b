"""Sample section schemas.

The full section catalog belongs to the calling application; these three
schemas cover the core business sections and double as fixtures. Field
names are snake_case in Python and camelCase on the wire (the shape the
models are asked to return).
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SectionModel(BaseModel):
    """Base for content schemas: camelCase aliases, no undeclared keys."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ---------------------------------------------------------------------------
# Ideal client
# ---------------------------------------------------------------------------


class IdealClientSnapshot(SectionModel):
    best_ideal_client: str = Field(
        min_length=20,
        max_length=500,
        description="One sentence describing the ideal premium buyer",
    )
    top_challenges: list[str] = Field(
        min_length=3, max_length=3, description="Exactly 3 top challenges they face"
    )
    what_they_want: list[str] = Field(
        min_length=3, max_length=3, description="Exactly 3 desired outcomes"
    )
    what_makes_them_pay: list[str] = Field(
        min_length=2, max_length=2, description="Exactly 2 payment triggers"
    )
    how_to_talk_to_them: list[str] = Field(
        min_length=3, max_length=3, description="Exactly 3 coffee-talk lines"
    )


class IdealClientSection(SectionModel):
    ideal_client_snapshot: IdealClientSnapshot


# ---------------------------------------------------------------------------
# Signature message
# ---------------------------------------------------------------------------


class SignatureMessage(SectionModel):
    one_liner: str = Field(
        min_length=20,
        max_length=300,
        description="I help [X] do [Y] without [Z], in one sentence",
    )
    spoken_version: str = Field(
        min_length=100,
        max_length=800,
        description="30-second spoken version for video, stage or sales",
    )


class MessageSection(SectionModel):
    signature_message: SignatureMessage


# ---------------------------------------------------------------------------
# Signature offer
# ---------------------------------------------------------------------------


class OfferMode(StrEnum):
    TRANSFORMATION = "Transformation"
    SERVICE_DELIVERY = "Service Delivery"


class SevenStepBlueprint(SectionModel):
    """Names of the seven program steps."""

    step1: str = Field(min_length=5, max_length=100)
    step2: str = Field(min_length=5, max_length=100)
    step3: str = Field(min_length=5, max_length=100)
    step4: str = Field(min_length=5, max_length=100)
    step5: str = Field(min_length=5, max_length=100)
    step6: str = Field(min_length=5, max_length=100)
    step7: str = Field(min_length=5, max_length=100)


class Tier1SignatureOffer(SectionModel):
    """Tier 1 offer, delivered as a live group."""

    delivery: str = Field(min_length=10, max_length=200)
    what_they_get: str = Field(min_length=50, max_length=800)
    recommended_price: str = Field(min_length=5, max_length=100)


class SignatureOffer(SectionModel):
    offer_name: str = Field(min_length=5, max_length=100)
    who_its_for: str = Field(min_length=20, max_length=300)
    the_promise: str = Field(min_length=50, max_length=500)
    offer_mode: OfferMode
    seven_step_blueprint: SevenStepBlueprint
    tier1_signature_offer: Tier1SignatureOffer
    cta: str = Field(min_length=10, max_length=200)


class OfferSection(SectionModel):
    signature_offer: SignatureOffer


DEFAULT_SCHEMAS: dict[str, type[BaseModel]] = {
    "idealClient": IdealClientSection,
    "message": MessageSection,
    "offer": OfferSection,
}
