"""
Standard: deep point of view from the docs, validated against community
reality and competitive research, then PoV-first generation and refinement.
"""

from __future__ import annotations

import structlog

from messaging_engine.contracts import AssetType, JobStatus, ModelTask, PipelineName
from messaging_engine.core.config import get_model_for_task
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.evidence_bundler import run_community_research, run_competitive_research
from messaging_engine.services.insights import (
    extract_deep_pov,
    extract_insights_or_fallback,
    format_insights_for_scoring,
)
from messaging_engine.services.pipeline.orchestrator import (
    JobInputs,
    emit_completed_outcome,
    finalize_job,
    gather_banned_phrases,
    generate_and_score,
    refinement_loop,
    research_progress_callback,
    store_variant,
)
from messaging_engine.services.pipeline.strategies.base import PipelineStrategy, combine_research
from messaging_engine.services.prompts import (
    PromptDirective,
    build_pov_first_prompt,
    build_system_prompt,
    build_user_prompt,
    load_template,
)

logger = structlog.get_logger(__name__)

COMMUNITY_EXCERPT_CHARS = 2000


class StandardStrategy(PipelineStrategy):
    name = PipelineName.STANDARD

    async def run(self, inputs: JobInputs) -> None:
        job_id = inputs.job_id
        submission = inputs.submission
        pro = get_model_for_task(ModelTask.PRO)
        flash = get_model_for_task(ModelTask.FLASH)

        await self.start_step(inputs, "deep-pov-extraction", model=pro)
        await self.progress(
            inputs, f"Extracting deep product PoV... [{pro}]", progress=2, status=JobStatus.RESEARCH
        )
        deep_pov = await extract_deep_pov(submission.product_docs, context=inputs.context)
        insights = deep_pov or await extract_insights_or_fallback(submission.product_docs, context=inputs.context)
        scoring_context = format_insights_for_scoring(insights)
        await self.complete_step(inputs, "deep-pov-extraction")

        banned = await gather_banned_phrases(self.runtime, inputs.voices, insights, context=inputs.context)

        await self.start_step(inputs, "community-validation", model=flash)
        await self.progress(inputs, f"Validating PoV against community reality... [{flash}]", progress=5)
        evidence = await run_community_research(
            insights,
            submission.prompt,
            on_progress=research_progress_callback(self.runtime, job_id, "Community validation"),
            context=inputs.context,
        )
        await self.complete_step(inputs, "community-validation")

        await self.start_step(inputs, "competitive-research", model=flash)
        await self.progress(inputs, f"Running competitive research... [{flash}]", progress=10)
        competitive_focus = submission.prompt or ""
        if evidence.context_text:
            competitive_focus += (
                "\n\nCommunity findings to inform competitive analysis:\n"
                + evidence.context_text[:COMMUNITY_EXCERPT_CHARS]
            )
        competitive = await run_competitive_research(
            insights,
            competitive_focus,
            on_progress=research_progress_callback(self.runtime, job_id, "Competitive research"),
            context=inputs.context,
        )
        await self.complete_step(inputs, "competitive-research")

        research_context = combine_research(competitive, evidence.context_text)
        directive = PromptDirective.POINT_OF_VIEW if deep_pov else PromptDirective.PAIN_FIRST

        await self.start_step(inputs, "generate", model=pro)
        await self.progress(
            inputs, f"Generating from product narrative... [{pro}]", progress=18, status=JobStatus.GENERATE
        )

        async def _generate(asset_type: AssetType, voice: VoiceProfile) -> None:
            suffix = f"{asset_type.value}-{voice.slug}"
            template = load_template(asset_type, self.runtime.template_dir)
            thresholds = voice.scoring_thresholds
            system_prompt = build_system_prompt(
                voice, asset_type, evidence.evidence_level, directive, banned.get(voice.id)
            )
            if deep_pov:
                user_prompt = build_pov_first_prompt(
                    deep_pov,
                    evidence.context_text,
                    competitive,
                    template,
                    asset_type,
                    submission.existing_messaging,
                    submission.prompt,
                )
            else:
                user_prompt = build_user_prompt(
                    submission.existing_messaging,
                    submission.prompt,
                    research_context,
                    template,
                    asset_type,
                    insights,
                )
            persona_context = self.persona_context(voice, insights)

            await self.start_step(inputs, f"generate-{suffix}", model=submission.model or pro)
            await self.progress(inputs, f"Generating {asset_type.label}: {voice.name} [{submission.model or pro}]")
            initial = await generate_and_score(
                user_prompt,
                system_prompt,
                asset_type=asset_type,
                scoring_context=scoring_context,
                thresholds=thresholds,
                model=submission.model,
                persona_context=persona_context,
                panel=self.runtime.personas,
                context=inputs.context,
            )
            await emit_completed_outcome(self.runtime, job_id, f"generate-{suffix}", initial)

            await self.start_step(inputs, f"refine-{suffix}")
            await self.progress(
                inputs, f"Scoring and refining {asset_type.label}: {voice.name}", status=JobStatus.SCORE
            )
            result = await refinement_loop(
                initial.content,
                scoring_context=scoring_context,
                thresholds=thresholds,
                voice=voice,
                asset_type=asset_type,
                system_prompt=system_prompt,
                model=submission.model,
                max_iterations=self.runtime.refinement_max_iterations,
                initial_scores=initial.scores,
                persona_context=persona_context,
                panel=self.runtime.personas,
                context=inputs.context,
            )
            await emit_completed_outcome(self.runtime, job_id, f"refine-{suffix}", result)

            await store_variant(
                self.runtime,
                job_id,
                asset_type,
                voice,
                result,
                prompt=submission.prompt,
                evidence=evidence,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                context=inputs.context,
            )

        await self.for_each_combination(inputs, _generate, base=18, span=77)
        await self.complete_step(inputs, "generate")
        await finalize_job(self.runtime, job_id, bool(research_context), len(competitive) + len(evidence.context_text))
