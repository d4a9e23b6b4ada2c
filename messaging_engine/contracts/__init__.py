"""contracts
============

Canonical vocabularies shared by the dispatcher, scoring ensemble and
pipeline layers.

This module contains **zero** runtime side-effects; it only defines the
string enums that travel between layers and into the job/variant records
handed to the storage collaborator.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    """Lifecycle status of a generation job.

    Declaration order is the forward order of the state machine; ``FAILED``
    sits outside the ordering and is reachable from any non-terminal state.
    """

    PENDING = "pending"
    RESEARCH = "research"
    GENERATE = "generate"
    SCORE = "score"
    STORE = "store"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"


class PipelineName(str, Enum):
    """Named generation strategies a job can request."""

    STANDARD = "standard"
    OUTSIDE_IN = "outside-in"
    ADVERSARIAL = "adversarial"
    MULTI_PERSPECTIVE = "multi-perspective"
    STRAIGHT_THROUGH = "straight-through"

    @classmethod
    def resolve(cls, value: Optional[str]) -> "PipelineName":
        """Map a raw pipeline key to a strategy, defaulting to ``standard``."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.STANDARD


# ---------------------------------------------------------------------------
# Content vocabulary
# ---------------------------------------------------------------------------


class AssetType(str, Enum):
    BATTLECARD = "battlecard"
    TALK_TRACK = "talk_track"
    LAUNCH_MESSAGING = "launch_messaging"
    SOCIAL_HOOK = "social_hook"
    ONE_PAGER = "one_pager"
    EMAIL_COPY = "email_copy"
    MESSAGING_TEMPLATE = "messaging_template"
    NARRATIVE = "narrative"

    @property
    def label(self) -> str:
        return ASSET_TYPE_LABELS[self]

    @property
    def spaced(self) -> str:
        """``talk_track`` -> ``talk track`` for use inside prose."""
        return self.value.replace("_", " ")


ASSET_TYPE_LABELS = {
    AssetType.BATTLECARD: "Battlecard",
    AssetType.TALK_TRACK: "Talk Track",
    AssetType.LAUNCH_MESSAGING: "Launch Messaging",
    AssetType.SOCIAL_HOOK: "Social Hook",
    AssetType.ONE_PAGER: "One-Pager",
    AssetType.EMAIL_COPY: "Email Copy",
    AssetType.MESSAGING_TEMPLATE: "Messaging Template",
    AssetType.NARRATIVE: "Narrative",
}


class EvidenceLevel(str, Enum):
    """How much third-party corroboration backs a generation job."""

    STRONG = "strong"
    PARTIAL = "partial"
    PRODUCT_ONLY = "product-only"


# ---------------------------------------------------------------------------
# Model routing
# ---------------------------------------------------------------------------


class ModelTask(str, Enum):
    """Task families resolved to concrete model ids by the active profile."""

    FLASH = "flash"
    PRO = "pro"
    DEEP_RESEARCH = "deep_research"
    GENERATION = "generation"
    SCORING = "scoring"
    DESLOP = "deslop"


class Backend(str, Enum):
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENAI = "openai"


__all__ = [
    "JobStatus",
    "StepStatus",
    "PipelineName",
    "AssetType",
    "ASSET_TYPE_LABELS",
    "EvidenceLevel",
    "ModelTask",
    "Backend",
]
