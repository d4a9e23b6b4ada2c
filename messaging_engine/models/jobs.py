"""
Job, step-event, voice and variant models.

``JobRecord`` and ``VariantRecord`` are the shapes handed to the storage
collaborator; ``model_dump(mode="json")`` yields the persisted payload.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messaging_engine.contracts import AssetType, EvidenceLevel, JobStatus, PipelineName, StepStatus
from messaging_engine.models.evidence import PractitionerQuote
from messaging_engine.models.llm import utcnow
from messaging_engine.models.scoring import ScoreResult, ScorerHealth, ScoringThresholds


def new_id() -> str:
    return str(uuid.uuid4())


class JobSubmission(BaseModel):
    """Caller request for one generation run."""

    product_docs: str
    existing_messaging: Optional[str] = None
    prompt: Optional[str] = None
    voice_profile_ids: List[str] = Field(default_factory=list)
    asset_types: List[AssetType] = Field(default_factory=list)
    model: Optional[str] = None
    pipeline: PipelineName = PipelineName.STANDARD
    session_id: Optional[str] = None

    @field_validator("pipeline", mode="before")
    @classmethod
    def _resolve_pipeline(cls, v):
        return PipelineName.resolve(v)


class VoiceProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    description: str = ""
    voice_guide: str = ""
    scoring_thresholds: ScoringThresholds = Field(default_factory=ScoringThresholds)
    example_phrases: List[str] = Field(default_factory=list)

    @field_validator("scoring_thresholds", mode="before")
    @classmethod
    def _parse_thresholds(cls, v):
        return ScoringThresholds.parse(v)


class StepEvent(BaseModel):
    step: str
    status: StepStatus = StepStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    model: Optional[str] = None
    draft: Optional[str] = None
    scores: Optional[Dict[str, float]] = None
    scorer_health: Optional[ScorerHealth] = None


class JobRecord(BaseModel):
    id: str = Field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    current_step: Optional[str] = None
    progress: int = 0
    steps: List[StepEvent] = Field(default_factory=list)
    submission: JobSubmission
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    retry_count: int = 0
    completed_items: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class GenerationPrompt(BaseModel):
    system: str
    user: str
    timestamp: datetime = Field(default_factory=utcnow)


class Traceability(BaseModel):
    practitioner_quotes: List[PractitionerQuote] = Field(default_factory=list)
    generation_prompt: Optional[GenerationPrompt] = None


class VariantRecord(BaseModel):
    """Stored candidate for one asset type x voice pair. Never edited."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    job_id: str
    asset_type: AssetType
    voice_profile_id: str
    title: str
    content: str
    slop_score: Optional[float]
    vendor_speak_score: Optional[float]
    authenticity_score: Optional[float]
    specificity_score: Optional[float]
    persona_avg_score: Optional[float]
    narrative_arc_score: Optional[float]
    passes_gates: bool
    needs_manual_review: bool = False
    status: str = "draft"
    evidence_level: EvidenceLevel = EvidenceLevel.PRODUCT_ONLY
    metadata: Dict[str, Any] = Field(default_factory=dict)
    traceability: Traceability = Field(default_factory=Traceability)
    created_at: datetime = Field(default_factory=utcnow)


class GenerationOutcome(BaseModel):
    """Result of generate-and-score or the refinement loop."""

    content: str
    scores: ScoreResult
    passes_gates: bool
    needs_manual_review: bool = False
    iterations: int = 0
