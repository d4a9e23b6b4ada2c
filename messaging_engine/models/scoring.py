"""
Quality scoring models: per-voice thresholds and ensemble results.

``ScoreResult`` is frozen; new content always gets a new result.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_THRESHOLDS: Dict[str, float] = {
    "slop_max": 5.0,
    "vendor_speak_max": 5.0,
    "authenticity_min": 6.0,
    "specificity_min": 6.0,
    "persona_min": 6.0,
    "narrative_arc_min": 5.0,
}

# Stored voice profiles use camelCase keys
_THRESHOLD_ALIASES: Dict[str, str] = {
    "slopMax": "slop_max",
    "vendorSpeakMax": "vendor_speak_max",
    "authenticityMin": "authenticity_min",
    "specificityMin": "specificity_min",
    "personaMin": "persona_min",
    "narrativeArcMin": "narrative_arc_min",
}


class ScoringThresholds(BaseModel):
    """Three ceilings (lower is better) and three floors (higher is better)."""

    model_config = ConfigDict(frozen=True)

    slop_max: float = Field(5.0, ge=0, le=10)
    vendor_speak_max: float = Field(5.0, ge=0, le=10)
    authenticity_min: float = Field(6.0, ge=0, le=10)
    specificity_min: float = Field(6.0, ge=0, le=10)
    persona_min: float = Field(6.0, ge=0, le=10)
    narrative_arc_min: float = Field(5.0, ge=0, le=10)

    @classmethod
    def parse(cls, raw: Any) -> "ScoringThresholds":
        """Build thresholds from a JSON string, mapping or model.

        Missing, out-of-range or non-numeric keys keep their defaults; input
        that cannot be read at all yields the default thresholds.
        """
        if isinstance(raw, ScoringThresholds):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                return cls()
        if not isinstance(raw, dict):
            return cls()

        values: Dict[str, float] = {}
        for key, value in raw.items():
            field = _THRESHOLD_ALIASES.get(key, key)
            if field not in DEFAULT_THRESHOLDS or isinstance(value, bool):
                continue
            try:
                number = float(value)
            except (TypeError, ValueError):
                continue
            if 0 <= number <= 10:
                values[field] = number
        return cls(**values)


class ScorerHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: int
    failed: List[str] = Field(default_factory=list)
    total: int


class SlopMatch(BaseModel):
    pattern: str
    category: str
    index: int
    context: str = ""


class SlopAnalysis(BaseModel):
    score: float
    matches: List[SlopMatch] = Field(default_factory=list)
    assessment: str = ""
    suggestions: List[str] = Field(default_factory=list)


class VendorSpeakAnalysis(BaseModel):
    score: float
    examples: Dict[str, List[str]] = Field(default_factory=dict)
    counts: Dict[str, int] = Field(default_factory=dict)
    assessment: str = ""
    suggestions: List[str] = Field(default_factory=list)


class JudgeScore(BaseModel):
    """Result of a pure model-judged dimension."""

    score: float
    assessment: str = ""
    details: Dict[str, List[str]] = Field(default_factory=dict)


class PersonaScore(BaseModel):
    persona: str
    score: float
    feedback: str = ""
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)


class ScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    slop_score: float
    vendor_speak_score: float
    authenticity_score: float
    specificity_score: float
    persona_avg_score: float
    narrative_arc_score: float
    persona_scores: List[PersonaScore] = Field(default_factory=list)
    slop_analysis: Optional[SlopAnalysis] = None
    scorer_health: ScorerHealth

    def snapshot(self) -> Dict[str, float]:
        """Compact score dict stored on step events and variants."""
        return {
            "slop": self.slop_score,
            "vendor_speak": self.vendor_speak_score,
            "authenticity": self.authenticity_score,
            "specificity": self.specificity_score,
            "persona_avg": self.persona_avg_score,
            "narrative_arc": self.narrative_arc_score,
        }
