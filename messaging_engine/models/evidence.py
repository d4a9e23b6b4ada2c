"""
Evidence models produced by community research and carried into prompts,
grounding validation and variant traceability.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from messaging_engine.contracts import EvidenceLevel


class PractitionerQuote(BaseModel):
    text: str
    source: str = Field(..., description="Hostname the quote was cited from")
    source_url: str = ""


class EvidenceBundle(BaseModel):
    """Community research result for one job."""

    post_count: int = 0
    practitioner_quotes: List[PractitionerQuote] = Field(default_factory=list)
    context_text: str = ""
    evidence_level: EvidenceLevel = EvidenceLevel.PRODUCT_ONLY
    source_counts: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "post_count": 4,
                "practitioner_quotes": [
                    {
                        "text": "Our deploys stall for 20 minutes on cache warmup",
                        "source": "news.ycombinator.com",
                        "source_url": "https://news.ycombinator.com/item?id=1",
                    }
                ],
                "context_text": "## Verified Community Evidence (USE ONLY THESE)\n\n...",
                "evidence_level": "strong",
                "source_counts": {"deep_research": 1, "news.ycombinator.com": 2},
            }
        }
    }

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "EvidenceBundle":
        return cls(error=error)
