"""
Quality scoring ensemble.

Six dimensions are scored concurrently and independently.  A scorer that
raises contributes the neutral default and is named in ``ScorerHealth``;
``score_content`` itself never raises.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, Sequence, Tuple

import structlog

from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import DEFAULT_THRESHOLDS, ScoreResult, ScorerHealth, ScoringThresholds
from messaging_engine.services.quality.llm_judges import (
    analyze_authenticity,
    analyze_narrative_arc,
    analyze_specificity,
)
from messaging_engine.services.quality.persona_critic import (
    PersonaContext,
    PersonaCriticPanel,
    average_persona_score,
    persona_panel,
)
from messaging_engine.services.quality.slop_detector import analyze_slop
from messaging_engine.services.quality.vendor_speak import analyze_vendor_speak
from messaging_engine.utils.otel import otel_span

logger = structlog.get_logger(__name__)

NEUTRAL_SCORE = 5.0
DIMENSIONS: Tuple[str, ...] = (
    "slop",
    "vendor_speak",
    "authenticity",
    "specificity",
    "persona",
    "narrative_arc",
)


async def score_content(
    content: str,
    product_context: Sequence[str] = (),
    persona_context: Optional[PersonaContext] = None,
    *,
    panel: Optional[PersonaCriticPanel] = None,
    context: Optional[CallContext] = None,
) -> ScoreResult:
    panel = panel or persona_panel
    ctx = (context or CallContext()).with_purpose("scoring")

    scorers: List[Awaitable[Any]] = [
        analyze_slop(content, context=ctx),
        analyze_vendor_speak(content, context=ctx),
        analyze_authenticity(content, context=ctx),
        analyze_specificity(content, list(product_context), context=ctx),
        panel.score(content, persona_context, context=ctx),
        analyze_narrative_arc(content, context=ctx),
    ]
    with otel_span("quality.score_content", {"content_chars": len(content), "job_id": ctx.job_id}):
        outcomes = await asyncio.gather(*scorers, return_exceptions=True)

    failed: List[str] = []
    for dimension, outcome in zip(DIMENSIONS, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, Exception):
            logger.warning("scorer_failed_using_default", dimension=dimension, error=str(outcome))
            failed.append(dimension)

    slop, vendor, authenticity, specificity, personas, narrative = (
        None if isinstance(o, Exception) else o for o in outcomes
    )
    health = ScorerHealth(succeeded=len(DIMENSIONS) - len(failed), failed=failed, total=len(DIMENSIONS))
    if failed:
        logger.warning("scorer_health_degraded", succeeded=health.succeeded, failed=failed, total=health.total)

    return ScoreResult(
        slop_score=slop.score if slop else NEUTRAL_SCORE,
        vendor_speak_score=vendor.score if vendor else NEUTRAL_SCORE,
        authenticity_score=authenticity.score if authenticity else NEUTRAL_SCORE,
        specificity_score=specificity.score if specificity else NEUTRAL_SCORE,
        persona_avg_score=average_persona_score(personas) if personas else NEUTRAL_SCORE,
        narrative_arc_score=narrative.score if narrative else NEUTRAL_SCORE,
        persona_scores=personas or [],
        slop_analysis=slop,
        scorer_health=health,
    )


def check_quality_gates(scores: ScoreResult, thresholds: Optional[ScoringThresholds] = None) -> bool:
    """True only when every ceiling and every floor holds. Bounds are inclusive."""
    t = thresholds or ScoringThresholds(**DEFAULT_THRESHOLDS)
    return (
        scores.slop_score <= t.slop_max
        and scores.vendor_speak_score <= t.vendor_speak_max
        and scores.authenticity_score >= t.authenticity_min
        and scores.specificity_score >= t.specificity_min
        and scores.persona_avg_score >= t.persona_min
        and scores.narrative_arc_score >= t.narrative_arc_min
    )


def total_quality_score(scores: ScoreResult) -> float:
    # Ceilings are inverted so that higher is better everywhere; range 0-60
    return (
        (10 - scores.slop_score)
        + (10 - scores.vendor_speak_score)
        + scores.authenticity_score
        + scores.specificity_score
        + scores.persona_avg_score
        + scores.narrative_arc_score
    )
