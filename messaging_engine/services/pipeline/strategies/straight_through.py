"""Straight-through: score caller-supplied content as-is. No generation."""

from __future__ import annotations

import structlog

from messaging_engine.contracts import AssetType, JobStatus, PipelineName
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.insights import format_insights_for_scoring
from messaging_engine.services.pipeline.orchestrator import (
    JobInputs,
    emit_completed_outcome,
    finalize_job,
    score_against_gates,
    store_variant,
)
from messaging_engine.services.pipeline.strategies.base import PipelineStrategy

logger = structlog.get_logger(__name__)

NO_CONTENT_MESSAGE = (
    "No existing messaging provided. Straight Through mode scores existing content: "
    "paste your messaging to evaluate it."
)


class StraightThroughStrategy(PipelineStrategy):
    name = PipelineName.STRAIGHT_THROUGH

    async def run(self, inputs: JobInputs) -> None:
        content = inputs.submission.existing_messaging
        if not content or not content.strip():
            logger.error("straight_through_missing_content", job_id=inputs.job_id)
            await self.runtime.jobs.fail(
                inputs.job_id,
                NO_CONTENT_MESSAGE,
                current_step=NO_CONTENT_MESSAGE,
                increment_retry=False,
            )
            return

        insights = await self.extract_insights(inputs, progress=5)
        scoring_context = format_insights_for_scoring(insights)
        await self.progress(inputs, "Scoring existing content...", progress=15, status=JobStatus.SCORE)

        async def _score(asset_type: AssetType, voice: VoiceProfile) -> None:
            step = f"score-{asset_type.value}-{voice.slug}"
            await self.start_step(inputs, step)
            await self.progress(inputs, f"Scoring {asset_type.label}: {voice.name}")
            outcome = await score_against_gates(
                content,
                scoring_context,
                voice.scoring_thresholds,
                persona_context=self.persona_context(voice, insights),
                panel=self.runtime.personas,
                context=inputs.context,
            )
            await store_variant(
                self.runtime,
                inputs.job_id,
                asset_type,
                voice,
                outcome,
                prompt=inputs.submission.prompt,
                context=inputs.context,
            )
            await emit_completed_outcome(self.runtime, inputs.job_id, step, outcome)

        await self.for_each_combination(inputs, _score, base=15, span=80)
        await finalize_job(self.runtime, inputs.job_id, False, 0)
