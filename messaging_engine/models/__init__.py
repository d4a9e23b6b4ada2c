"""Pydantic models shared across the messaging engine."""

from messaging_engine.models.evidence import EvidenceBundle, PractitionerQuote
from messaging_engine.models.insights import DeepPoVInsights, ExtractedInsights, NarrativeArc, StrongClaim
from messaging_engine.models.jobs import (
    GenerationOutcome,
    GenerationPrompt,
    JobRecord,
    JobSubmission,
    StepEvent,
    Traceability,
    VariantRecord,
    VoiceProfile,
)
from messaging_engine.models.llm import (
    CallContext,
    GroundedSearchResult,
    JSONResult,
    LLMCallRecord,
    LLMResponse,
    ResearchResult,
    ResearchSource,
    TokenUsage,
)
from messaging_engine.models.scoring import (
    JudgeScore,
    PersonaScore,
    ScoreResult,
    ScorerHealth,
    ScoringThresholds,
    SlopAnalysis,
    SlopMatch,
    VendorSpeakAnalysis,
)

__all__ = [
    "EvidenceBundle",
    "PractitionerQuote",
    "DeepPoVInsights",
    "ExtractedInsights",
    "NarrativeArc",
    "StrongClaim",
    "GenerationOutcome",
    "GenerationPrompt",
    "JobRecord",
    "JobSubmission",
    "StepEvent",
    "Traceability",
    "VariantRecord",
    "VoiceProfile",
    "CallContext",
    "GroundedSearchResult",
    "JSONResult",
    "LLMCallRecord",
    "LLMResponse",
    "ResearchResult",
    "ResearchSource",
    "TokenUsage",
    "JudgeScore",
    "PersonaScore",
    "ScoreResult",
    "ScorerHealth",
    "ScoringThresholds",
    "SlopAnalysis",
    "SlopMatch",
    "VendorSpeakAnalysis",
]
