"""
Pipeline primitives shared by every strategy: generation, generate-and-score,
the refinement loop, variant storage and job finalization.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from messaging_engine.contracts import AssetType, EvidenceLevel, JobStatus, ModelTask, StepStatus
from messaging_engine.core import config
from messaging_engine.models.evidence import EvidenceBundle
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.jobs import (
    GenerationOutcome,
    GenerationPrompt,
    JobSubmission,
    Traceability,
    VariantRecord,
    VoiceProfile,
)
from messaging_engine.models.llm import CallContext, LLMResponse
from messaging_engine.models.scoring import ScoreResult, ScoringThresholds
from messaging_engine.services.llm_client import llm_client
from messaging_engine.services.pipeline.job_store import JobStore
from messaging_engine.services.pipeline.storage import (
    InMemoryVariantStore,
    InMemoryVoiceProfiles,
    NoOpSourceItemResetter,
    SourceItemResetter,
    VariantStore,
    VoiceProfileSource,
)
from messaging_engine.services.prompts import BannedPhraseProvider, asset_temperature, build_refinement_prompt
from messaging_engine.services.quality.grounding_validator import validate_grounding
from messaging_engine.services.quality.persona_critic import PersonaContext, PersonaCriticPanel
from messaging_engine.services.quality.scoring import check_quality_gates, score_content, total_quality_score
from messaging_engine.services.quality.slop_detector import deslop

logger = structlog.get_logger(__name__)

REFINEMENT_TEMPERATURE = 0.5
# Refinement is skipped when this many scorers degraded on the first pass
MANUAL_REVIEW_FAILED_SCORERS = 2


@dataclass
class PipelineRuntime:
    """Collaborators a job run needs. Construct one per process (or per test)."""

    jobs: JobStore = field(default_factory=JobStore)
    variants: VariantStore = field(default_factory=InMemoryVariantStore)
    voices: VoiceProfileSource = field(default_factory=InMemoryVoiceProfiles)
    banned_phrases: BannedPhraseProvider = field(default_factory=BannedPhraseProvider)
    personas: PersonaCriticPanel = field(default_factory=PersonaCriticPanel)
    source_items: SourceItemResetter = field(default_factory=NoOpSourceItemResetter)
    max_parallel_variants: int = config.MAX_PARALLEL_VARIANTS
    refinement_max_iterations: int = config.REFINEMENT_MAX_ITERATIONS
    template_dir: Optional[str] = None


@dataclass
class JobInputs:
    job_id: str
    submission: JobSubmission
    voices: List[VoiceProfile]
    context: CallContext

    @property
    def asset_types(self) -> List[AssetType]:
        return list(self.submission.asset_types)

    @property
    def model(self) -> Optional[str]:
        return self.submission.model

    @property
    def total_items(self) -> int:
        return len(self.submission.asset_types) * len(self.voices)


# ────────────────────────────────────────────────────────────
#  Generation
# ────────────────────────────────────────────────────────────


async def generate_content(
    prompt: str,
    *,
    system_prompt: Optional[str] = None,
    temperature: Optional[float] = None,
    model: Optional[str] = None,
    context: Optional[CallContext] = None,
) -> LLMResponse:
    """Content generation. A caller-selected model routes to its backend;
    otherwise the profile's generation model is used."""
    return await llm_client.generate(
        prompt,
        system_prompt=system_prompt,
        model=model,
        task=ModelTask.GENERATION,
        temperature=temperature,
        context=context,
    )


async def score_against_gates(
    content: str,
    scoring_context: str,
    thresholds: ScoringThresholds,
    *,
    persona_context: Optional[PersonaContext] = None,
    panel: Optional[PersonaCriticPanel] = None,
    context: Optional[CallContext] = None,
) -> GenerationOutcome:
    scores = await score_content(content, [scoring_context], persona_context, panel=panel, context=context)
    return GenerationOutcome(content=content, scores=scores, passes_gates=check_quality_gates(scores, thresholds))


async def generate_and_score(
    user_prompt: str,
    system_prompt: str,
    *,
    asset_type: AssetType,
    scoring_context: str,
    thresholds: ScoringThresholds,
    model: Optional[str] = None,
    persona_context: Optional[PersonaContext] = None,
    panel: Optional[PersonaCriticPanel] = None,
    context: Optional[CallContext] = None,
) -> GenerationOutcome:
    response = await generate_content(
        user_prompt,
        system_prompt=system_prompt,
        temperature=asset_temperature(asset_type),
        model=model,
        context=context,
    )
    return await score_against_gates(
        response.text,
        scoring_context,
        thresholds,
        persona_context=persona_context,
        panel=panel,
        context=context,
    )


# ────────────────────────────────────────────────────────────
#  Refinement loop
# ────────────────────────────────────────────────────────────


async def refinement_loop(
    content: str,
    *,
    scoring_context: str,
    thresholds: ScoringThresholds,
    voice: VoiceProfile,
    asset_type: AssetType,
    system_prompt: str,
    model: Optional[str] = None,
    max_iterations: int = 3,
    initial_scores: Optional[ScoreResult] = None,
    persona_context: Optional[PersonaContext] = None,
    panel: Optional[PersonaCriticPanel] = None,
    context: Optional[CallContext] = None,
) -> GenerationOutcome:
    """Refine until the gates pass, the score plateaus or iterations run out.

    The returned content is always the best-scoring version seen; a
    refinement that does not strictly raise the total score is discarded.
    """
    scores = initial_scores
    if scores is None:
        scores = await score_content(content, [scoring_context], persona_context, panel=panel, context=context)

    failed = scores.scorer_health.failed
    if len(failed) >= MANUAL_REVIEW_FAILED_SCORERS:
        logger.warning(
            "refinement_skipped_scorers_failed",
            failed=failed,
            total=scores.scorer_health.total,
            asset_type=AssetType(asset_type).value,
            voice=voice.name,
        )
        return GenerationOutcome(
            content=content,
            scores=scores,
            passes_gates=check_quality_gates(scores, thresholds),
            needs_manual_review=True,
        )

    best_content, best_scores = content, scores
    was_deslopped = False
    iterations = 0
    for i in range(max_iterations):
        if check_quality_gates(best_scores, thresholds):
            break

        source = best_content
        if best_scores.slop_score > thresholds.slop_max:
            cleaned = await deslop(best_content, best_scores.slop_analysis, context=context)
            if cleaned != best_content:
                source = cleaned
                was_deslopped = True

        prompt = build_refinement_prompt(source, best_scores, thresholds, voice, asset_type, was_deslopped)
        try:
            refined = await generate_content(
                prompt,
                system_prompt=system_prompt,
                temperature=REFINEMENT_TEMPERATURE,
                model=model,
                context=context,
            )
        except Exception as e:
            logger.warning("refinement_generation_failed", iteration=i, error=str(e))
            break

        iterations += 1
        new_scores = await score_content(refined.text, [scoring_context], persona_context, panel=panel, context=context)
        if total_quality_score(new_scores) <= total_quality_score(best_scores):
            logger.info(
                "refinement_plateau",
                iteration=i,
                asset_type=AssetType(asset_type).value,
                voice=voice.name,
                best_total=round(total_quality_score(best_scores), 1),
                new_total=round(total_quality_score(new_scores), 1),
            )
            break
        best_content, best_scores = refined.text, new_scores

    return GenerationOutcome(
        content=best_content,
        scores=best_scores,
        passes_gates=check_quality_gates(best_scores, thresholds),
        iterations=iterations,
    )


# ────────────────────────────────────────────────────────────
#  Storage and finalization
# ────────────────────────────────────────────────────────────


def variant_title(asset_type: AssetType, prompt: Optional[str]) -> str:
    return f"{AssetType(asset_type).label}: {(prompt or 'Product docs generation')[:100]}"


async def store_variant(
    runtime: PipelineRuntime,
    job_id: str,
    asset_type: AssetType,
    voice: VoiceProfile,
    outcome: GenerationOutcome,
    *,
    prompt: Optional[str] = None,
    evidence: Optional[EvidenceBundle] = None,
    system_prompt: Optional[str] = None,
    user_prompt: Optional[str] = None,
    context: Optional[CallContext] = None,
) -> VariantRecord:
    """Grounding-check, then persist one immutable variant."""
    final_content = outcome.content
    metadata: Dict[str, object] = {
        "generationId": job_id,
        "voiceId": voice.id,
        "voiceName": voice.name,
        "voiceSlug": voice.slug,
    }
    if evidence is not None:
        grounding = await validate_grounding(outcome.content, evidence.evidence_level, context=context)
        if grounding.fabrication_stripped and grounding.stripped_content:
            final_content = grounding.stripped_content
            metadata["fabricationStripped"] = True
            logger.info(
                "fabrication_stripped",
                job_id=job_id,
                asset_type=AssetType(asset_type).value,
                voice=voice.name,
                patterns_found=grounding.fabrication_count,
            )
        metadata["sourceCounts"] = dict(evidence.source_counts)
    if outcome.needs_manual_review:
        metadata["needsManualReview"] = True

    generation_prompt = None
    if system_prompt is not None and user_prompt is not None:
        generation_prompt = GenerationPrompt(
            system=system_prompt[: config.TRACE_SYSTEM_PROMPT_CHARS],
            user=user_prompt[: config.TRACE_USER_PROMPT_CHARS],
        )

    scores = outcome.scores
    variant = VariantRecord(
        job_id=job_id,
        asset_type=asset_type,
        voice_profile_id=voice.id,
        title=variant_title(asset_type, prompt),
        content=final_content,
        slop_score=scores.slop_score,
        vendor_speak_score=scores.vendor_speak_score,
        authenticity_score=scores.authenticity_score,
        specificity_score=scores.specificity_score,
        persona_avg_score=scores.persona_avg_score,
        narrative_arc_score=scores.narrative_arc_score,
        passes_gates=outcome.passes_gates,
        needs_manual_review=outcome.needs_manual_review,
        status="review" if outcome.passes_gates else "draft",
        evidence_level=evidence.evidence_level if evidence is not None else EvidenceLevel.PRODUCT_ONLY,
        metadata=metadata,
        traceability=Traceability(
            practitioner_quotes=list(evidence.practitioner_quotes) if evidence is not None else [],
            generation_prompt=generation_prompt,
        ),
    )
    await runtime.variants.save_variant(variant)
    logger.info(
        "variant_stored",
        job_id=job_id,
        variant_id=variant.id,
        asset_type=variant.asset_type.value,
        voice=voice.name,
        passes_gates=variant.passes_gates,
    )
    return variant


async def finalize_job(
    runtime: PipelineRuntime,
    job_id: str,
    research_available: bool,
    research_length: int,
) -> None:
    await runtime.jobs.update_progress(job_id, status=JobStatus.STORE, current_step="Saving results...")
    await runtime.jobs.finalize(job_id, research_available=research_available, research_length=research_length)


# ────────────────────────────────────────────────────────────
#  Step helpers
# ────────────────────────────────────────────────────────────


def research_progress_callback(
    runtime: PipelineRuntime,
    job_id: str,
    label: str,
) -> Callable[[str], Awaitable[None]]:
    """Deep-research status changes surface as the job's current step."""

    async def _on_progress(status: str) -> None:
        await runtime.jobs.update_progress(job_id, current_step=f"{label} ({status})")

    return _on_progress


async def emit_completed_outcome(
    runtime: PipelineRuntime,
    job_id: str,
    step: str,
    outcome: GenerationOutcome,
    *,
    model: Optional[str] = None,
) -> None:
    await runtime.jobs.emit_step(
        job_id,
        step,
        StepStatus.COMPLETE,
        model=model,
        draft=outcome.content,
        scores=outcome.scores.snapshot(),
        scorer_health=outcome.scores.scorer_health,
    )


async def gather_banned_phrases(
    runtime: PipelineRuntime,
    voices: List[VoiceProfile],
    insights: ExtractedInsights,
    *,
    context: Optional[CallContext] = None,
) -> Dict[str, List[str]]:
    phrases = await asyncio.gather(
        *(runtime.banned_phrases.get(voice, insights, context=context) for voice in voices)
    )
    return {voice.id: banned for voice, banned in zip(voices, phrases)}
