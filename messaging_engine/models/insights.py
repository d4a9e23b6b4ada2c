"""Structured product insights distilled from raw documentation."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNKNOWN = "unknown"


class ExtractedInsights(BaseModel):
    # Model replies use camelCase keys
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    product_name: str = ""
    product_capabilities: List[str] = Field(default_factory=list)
    key_differentiators: List[str] = Field(default_factory=list)
    target_personas: List[str] = Field(default_factory=list)
    pain_points_addressed: List[str] = Field(default_factory=list)
    claims_and_metrics: List[str] = Field(default_factory=list)
    technical_details: List[str] = Field(default_factory=list)
    summary: str = ""
    domain: str = UNKNOWN
    category: str = UNKNOWN
    product_type: str = UNKNOWN

    @field_validator(
        "product_capabilities",
        "key_differentiators",
        "target_personas",
        "pain_points_addressed",
        "claims_and_metrics",
        "technical_details",
        mode="before",
    )
    @classmethod
    def _coerce_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return [str(item) for item in v if item]

    @field_validator("domain", "category", "product_type", mode="before")
    @classmethod
    def _default_unknown(cls, v):
        return v or UNKNOWN

    @field_validator("summary", "product_name", mode="before")
    @classmethod
    def _default_empty(cls, v):
        return v or ""


class NarrativeArc(BaseModel):
    problem: str = ""
    insight: str = ""
    approach: str = ""
    outcome: str = ""


class StrongClaim(BaseModel):
    claim: str
    evidence: str = ""


class DeepPoVInsights(ExtractedInsights):
    """Insights plus the product's argued point of view."""

    point_of_view: str = ""
    thesis: str = ""
    contrarian_take: str = ""
    narrative_arc: NarrativeArc = Field(default_factory=NarrativeArc)
    strongest_claims: List[StrongClaim] = Field(default_factory=list)

    @field_validator("narrative_arc", mode="before")
    @classmethod
    def _default_arc(cls, v):
        return v or {}
