"""
Strategy interface and the helpers every strategy shares.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import structlog

from messaging_engine.contracts import AssetType, JobStatus, ModelTask, PipelineName, StepStatus
from messaging_engine.core.config import get_model_for_task
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.insights import extract_insights_or_fallback
from messaging_engine.services.pipeline.orchestrator import JobInputs, PipelineRuntime
from messaging_engine.services.quality.persona_critic import PersonaContext

logger = structlog.get_logger(__name__)

CombinationHandler = Callable[[AssetType, VoiceProfile], Awaitable[None]]


def combine_research(competitive: str, community: str) -> str:
    if competitive and community:
        return f"{competitive}\n\n{community}"
    return competitive or community


class PipelineStrategy(ABC):
    """One way of turning a job's inputs into stored variants."""

    name: PipelineName

    def __init__(self, runtime: PipelineRuntime):
        self.runtime = runtime

    @abstractmethod
    async def run(self, inputs: JobInputs) -> None:
        """Run the job to completion, recording progress on the job store."""

    # ── job-store shorthands ────────────────────────────────

    async def start_step(self, inputs: JobInputs, step: str, *, model: Optional[str] = None) -> None:
        await self.runtime.jobs.emit_step(inputs.job_id, step, StepStatus.RUNNING, model=model)

    async def complete_step(self, inputs: JobInputs, step: str, **data) -> None:
        await self.runtime.jobs.emit_step(inputs.job_id, step, StepStatus.COMPLETE, **data)

    async def progress(
        self,
        inputs: JobInputs,
        current_step: str,
        *,
        progress: Optional[int] = None,
        status: Optional[JobStatus] = None,
    ) -> None:
        await self.runtime.jobs.update_progress(
            inputs.job_id, status=status, current_step=current_step, progress=progress
        )

    # ── shared stages ───────────────────────────────────────

    async def extract_insights(self, inputs: JobInputs, *, progress: int) -> ExtractedInsights:
        flash = get_model_for_task(ModelTask.FLASH)
        await self.start_step(inputs, "extract-insights", model=flash)
        await self.progress(
            inputs,
            f"Extracting product insights... [{flash}]",
            progress=progress,
            status=JobStatus.RESEARCH,
        )
        insights = await extract_insights_or_fallback(
            inputs.submission.product_docs, context=inputs.context
        )
        await self.complete_step(inputs, "extract-insights")
        return insights

    def persona_context(self, voice: VoiceProfile, insights: ExtractedInsights) -> PersonaContext:
        return PersonaContext(voice=voice, insights=insights)

    async def for_each_combination(
        self,
        inputs: JobInputs,
        handler: CombinationHandler,
        *,
        base: int,
        span: int,
    ) -> None:
        """Run ``handler`` for every asset type x voice pair.

        A failing pair is logged and skipped; progress advances either way.
        At most ``runtime.max_parallel_variants`` pairs run at once.
        """
        total = inputs.total_items
        semaphore = asyncio.Semaphore(max(1, self.runtime.max_parallel_variants))

        async def _one(asset_type: AssetType, voice: VoiceProfile) -> None:
            async with semaphore:
                try:
                    await handler(asset_type, voice)
                except Exception as e:
                    logger.error(
                        "variant_generation_failed",
                        job_id=inputs.job_id,
                        asset_type=AssetType(asset_type).value,
                        voice=voice.name,
                        error=str(e),
                        exc_info=True,
                    )
                await self.runtime.jobs.record_item_completed(inputs.job_id, total, base=base, span=span)

        await asyncio.gather(
            *(_one(asset_type, voice) for asset_type in inputs.asset_types for voice in inputs.voices)
        )
