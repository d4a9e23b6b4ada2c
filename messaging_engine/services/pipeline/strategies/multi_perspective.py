"""
Multi-perspective: three concurrent rewrites from different angles,
synthesized into one piece, then refined.
"""

from __future__ import annotations

import asyncio
from typing import List, Tuple

import structlog

from messaging_engine.contracts import AssetType, JobStatus, ModelTask, PipelineName
from messaging_engine.core.config import get_model_for_task
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.evidence_bundler import run_community_research, run_competitive_research
from messaging_engine.services.insights import format_insights_for_scoring
from messaging_engine.services.pipeline.orchestrator import (
    JobInputs,
    emit_completed_outcome,
    finalize_job,
    gather_banned_phrases,
    generate_content,
    refinement_loop,
    research_progress_callback,
    store_variant,
)
from messaging_engine.services.pipeline.strategies.base import PipelineStrategy, combine_research
from messaging_engine.services.prompts import (
    asset_temperature,
    build_system_prompt,
    build_user_prompt,
    load_template,
)

logger = structlog.get_logger(__name__)

SYNTHESIS_TEMPERATURE = 0.5

# (version label, perspective heading, instruction)
PERSPECTIVES: List[Tuple[str, str, str]] = [
    (
        "Practitioner Empathy",
        "## PERSPECTIVE: Practitioner Empathy",
        "Lead ENTIRELY with pain. The reader should feel seen before they see any product mention. Use their "
        "language, their frustrations, their daily frustrations and hard-won lessons. Product comes last, almost "
        "as an afterthought. Make them nod before you pitch.",
    ),
    (
        "Competitive Positioning",
        "## PERSPECTIVE: Competitive Positioning",
        "Lead with what current alternatives FAIL at. The reader should recognize the specific frustrations they "
        "have with their current tool. Then show what's different — not \"better\" (that's vendor-speak), but "
        "specifically what changes and why it matters for their workflow.",
    ),
    (
        "Thought Leadership",
        "## PERSPECTIVE: Thought Leadership",
        "Lead with the industry's broken promise — the thing everyone was told would work but doesn't. Frame the "
        "problem as systemic, not just a tooling gap. Then present a different way of thinking about it. This "
        "should read like an opinionated blog post by someone who's seen the patterns across hundreds of teams.",
    ),
]


def build_perspective_prompt(base_prompt: str, heading: str, instruction: str) -> str:
    return f"{base_prompt}\n\n{heading}\n{instruction}"


def build_synthesis_prompt(versions: List[str], template: str, asset_type: AssetType) -> str:
    labelled = "\n\n".join(
        f"## Version {letter}: {label}\n{text}"
        for letter, (label, _, _), text in zip("ABC", PERSPECTIVES, versions)
    )
    return f"""You have 3 versions of the same {AssetType(asset_type).spaced}, each written from a different angle. Take the strongest elements from each and synthesize them into one superior version.

{labelled}

## Synthesis Instructions
1. Take the most authentic pain language from Version A
2. Take the sharpest competitive positioning from Version B
3. Take the strongest narrative arc from Version C
4. Weave them into a single cohesive piece that has: authentic pain + competitive edge + compelling narrative
5. Don't just concatenate — synthesize. The result should feel like one voice, not three stitched together.
6. Keep the same format as the template below.

## Template / Format Guide
{template}

Output ONLY the synthesized content. No meta-commentary."""


class MultiPerspectiveStrategy(PipelineStrategy):
    name = PipelineName.MULTI_PERSPECTIVE

    async def run(self, inputs: JobInputs) -> None:
        job_id = inputs.job_id
        submission = inputs.submission
        deep = get_model_for_task(ModelTask.DEEP_RESEARCH)

        insights = await self.extract_insights(inputs, progress=2)
        scoring_context = format_insights_for_scoring(insights)
        banned = await gather_banned_phrases(self.runtime, inputs.voices, insights, context=inputs.context)

        await self.start_step(inputs, "research", model=deep)
        await self.progress(inputs, f"Running community & competitive research... [{deep}]", progress=5)
        evidence, competitive = await asyncio.gather(
            run_community_research(
                insights,
                submission.prompt,
                on_progress=research_progress_callback(self.runtime, job_id, "Community research"),
                context=inputs.context,
            ),
            run_competitive_research(insights, submission.prompt, context=inputs.context),
        )
        research_context = combine_research(competitive, evidence.context_text)
        await self.complete_step(inputs, "research")

        await self.progress(
            inputs, "Generating from multiple perspectives...", progress=18, status=JobStatus.GENERATE
        )

        async def _generate(asset_type: AssetType, voice: VoiceProfile) -> None:
            suffix = f"{asset_type.value}-{voice.slug}"
            template = load_template(asset_type, self.runtime.template_dir)
            system_prompt = build_system_prompt(
                voice,
                asset_type,
                evidence.evidence_level,
                banned_phrases=banned.get(voice.id),
                product_name=insights.product_name or None,
            )
            base_prompt = build_user_prompt(
                submission.existing_messaging,
                submission.prompt,
                research_context,
                template,
                asset_type,
                insights,
            )

            await self.start_step(inputs, f"perspectives-{suffix}")
            await self.progress(inputs, f"Generating 3 perspectives: {voice.name}")
            temperature = asset_temperature(asset_type)
            versions = await asyncio.gather(
                *(
                    generate_content(
                        build_perspective_prompt(base_prompt, heading, instruction),
                        system_prompt=system_prompt,
                        temperature=temperature,
                        model=submission.model,
                        context=inputs.context,
                    )
                    for _, heading, instruction in PERSPECTIVES
                )
            )
            await self.complete_step(inputs, f"perspectives-{suffix}")

            await self.start_step(inputs, f"synthesize-{suffix}")
            await self.progress(inputs, f"Synthesizing best elements: {voice.name}")
            synthesized = await generate_content(
                build_synthesis_prompt([v.text for v in versions], template, asset_type),
                system_prompt=system_prompt,
                temperature=SYNTHESIS_TEMPERATURE,
                model=submission.model,
                context=inputs.context,
            )
            await self.complete_step(
                inputs, f"synthesize-{suffix}", draft=synthesized.text, model=synthesized.model
            )

            await self.start_step(inputs, f"refine-{suffix}")
            await self.progress(inputs, f"Refining: {voice.name}", status=JobStatus.SCORE)
            result = await refinement_loop(
                synthesized.text,
                scoring_context=scoring_context,
                thresholds=voice.scoring_thresholds,
                voice=voice,
                asset_type=asset_type,
                system_prompt=system_prompt,
                model=submission.model,
                max_iterations=self.runtime.refinement_max_iterations,
                persona_context=self.persona_context(voice, insights),
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
                user_prompt=base_prompt,
                context=inputs.context,
            )

        await self.for_each_combination(inputs, _generate, base=18, span=77)
        await finalize_job(self.runtime, job_id, bool(research_context), len(research_context))
