"""
Shared plumbing for model-judged quality dimensions.

Each judge sends a rubric prompt through the dispatcher's JSON mode on the
scoring model and validates the reply into a pydantic verdict.  Any failure
surfaces as ``ScorerFailure`` so the ensemble can record the dimension in
scorer health instead of silently substituting a value.
"""

from __future__ import annotations

from typing import List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, Field, field_validator

from messaging_engine.contracts import ModelTask
from messaging_engine.core.exceptions import ScorerFailure
from messaging_engine.models.llm import CallContext
from messaging_engine.services.llm_client import llm_client

logger = structlog.get_logger(__name__)

JUDGE_TEMPERATURE = 0.2
JUDGE_CONTENT_CHARS = 2500

VerdictT = TypeVar("VerdictT", bound="Verdict")


class Verdict(BaseModel):
    score: float
    assessment: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float, str)):
            raise ValueError(f"score must be a number, got {v!r}")
        return max(0.0, min(10.0, float(v)))


class SuggestionVerdict(Verdict):
    suggestions: List[str] = Field(default_factory=list)


async def run_judge(
    dimension: str,
    prompt: str,
    verdict_model: Type[VerdictT],
    *,
    temperature: float = JUDGE_TEMPERATURE,
    context: Optional[CallContext] = None,
) -> VerdictT:
    try:
        result = await llm_client.generate_json(
            prompt,
            response_model=verdict_model,
            task=ModelTask.SCORING,
            temperature=temperature,
            max_parse_retries=2,
            context=context,
        )
    except Exception as e:
        logger.warning("quality_judge_failed", dimension=dimension, error=str(e))
        raise ScorerFailure(dimension, str(e)) from e
    return result.data
