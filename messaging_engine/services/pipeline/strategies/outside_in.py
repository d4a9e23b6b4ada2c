"""
Outside-in: start from practitioner pain, layer competitive positioning on
top, refine. Product-doc layering is left out on purpose so the draft
keeps an unmediated practitioner voice.

When community research finds nothing, pain is synthesized from model
knowledge and the evidence level is downgraded to ``partial``.
"""

from __future__ import annotations

from typing import Optional

import structlog

from messaging_engine.contracts import AssetType, EvidenceLevel, JobStatus, ModelTask, PipelineName
from messaging_engine.core.config import get_model_for_task
from messaging_engine.models.evidence import EvidenceBundle
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.evidence_bundler import run_community_research, run_competitive_research
from messaging_engine.services.insights import format_insights_for_discovery, format_insights_for_scoring
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
from messaging_engine.services.pipeline.strategies.base import PipelineStrategy
from messaging_engine.services.prompts import (
    asset_temperature,
    build_pain_first_prompt,
    build_system_prompt,
    load_template,
)

logger = structlog.get_logger(__name__)

SYNTHESIS_TEMPERATURE = 0.8
ENRICH_TEMPERATURE = 0.5
COMPETITIVE_EXCERPT_CHARS = 5000
SYNTHESIZED_HEADER = "## Synthesized Practitioner Pain (from model knowledge)\n\n"


def build_synthesize_pain_prompt(insights: ExtractedInsights, focus: Optional[str] = None) -> str:
    focus_block = f"## Focus Area\n{focus}\n" if focus else ""
    return f"""You are a practitioner who works with tools in this space daily. Based on your deep knowledge of the community (Reddit r/devops, r/sre, r/kubernetes, Hacker News, Stack Overflow, GitHub Issues), describe the REAL pain points practitioners face.

## Product Area
{format_insights_for_discovery(insights)}

{focus_block}
## Instructions
Write as if you're summarizing dozens of real community threads you've read. Include:
1. **Common Frustrations**: What practitioners actually complain about (use their language, not vendor language)
2. **Failed Workarounds**: What people try that doesn't work
3. **Wished-For Solutions**: What the community says they want
4. **Real Scenarios**: Specific situations where current tools fail (on-call at 3am, pipeline breaks during deploy, etc.)

Be raw, honest, and specific. Use practitioner language — "this sucks", "why can't we just...", "spent 3 hours debugging...". No marketing polish."""


def build_enrich_prompt(draft: str, competitive_context: str) -> str:
    return f"""Here's the practitioner-grounded draft. Here's competitive research. Update the draft to weave in competitive positioning WITHOUT losing the practitioner voice.

## Practitioner-Grounded Draft
{draft}

## Competitive Research
{competitive_context[:COMPETITIVE_EXCERPT_CHARS]}

## Rules
1. Keep the practitioner voice and pain-first structure
2. Add competitive differentiation where it strengthens the narrative
3. Don't add vendor-speak or marketing jargon
4. If the competitive research reveals gaps competitors miss, highlight those
5. Output ONLY the updated content"""


class OutsideInStrategy(PipelineStrategy):
    name = PipelineName.OUTSIDE_IN

    async def synthesize_pain(self, inputs: JobInputs, insights: ExtractedInsights, evidence: EvidenceBundle) -> EvidenceBundle:
        logger.warning("community_evidence_missing_synthesizing", job_id=inputs.job_id)
        await self.start_step(inputs, "synthesize-pain")
        await self.progress(inputs, "Synthesizing practitioner pain from model knowledge...")
        synthesized = await generate_content(
            build_synthesize_pain_prompt(insights, inputs.submission.prompt),
            temperature=SYNTHESIS_TEMPERATURE,
            model=inputs.model,
            context=inputs.context,
        )
        await self.complete_step(inputs, "synthesize-pain", model=synthesized.model, draft=synthesized.text)
        return evidence.model_copy(
            update={
                "context_text": f"{SYNTHESIZED_HEADER}{synthesized.text}",
                "evidence_level": EvidenceLevel.PARTIAL,
            }
        )

    async def run(self, inputs: JobInputs) -> None:
        job_id = inputs.job_id
        submission = inputs.submission

        insights = await self.extract_insights(inputs, progress=2)
        scoring_context = format_insights_for_scoring(insights)
        banned = await gather_banned_phrases(self.runtime, inputs.voices, insights, context=inputs.context)

        await self.start_step(inputs, "community-research", model=get_model_for_task(ModelTask.DEEP_RESEARCH))
        await self.progress(inputs, "Running community Deep Research...", progress=5)
        evidence = await run_community_research(
            insights,
            submission.prompt,
            on_progress=research_progress_callback(self.runtime, job_id, "Community research"),
            context=inputs.context,
        )
        await self.complete_step(inputs, "community-research")

        if evidence.evidence_level == EvidenceLevel.PRODUCT_ONLY:
            evidence = await self.synthesize_pain(inputs, insights, evidence)
        practitioner_context = evidence.context_text

        await self.progress(
            inputs, "Generating pain-grounded drafts...", progress=15, status=JobStatus.GENERATE
        )

        async def _generate(asset_type: AssetType, voice: VoiceProfile) -> None:
            suffix = f"{asset_type.value}-{voice.slug}"
            template = load_template(asset_type, self.runtime.template_dir)
            system_prompt = build_system_prompt(
                voice, asset_type, evidence.evidence_level, banned_phrases=banned.get(voice.id)
            )
            pain_prompt = build_pain_first_prompt(practitioner_context, template, asset_type, insights)

            await self.start_step(inputs, f"pain-draft-{suffix}")
            await self.progress(inputs, f"Generating pain-grounded draft: {voice.name}")
            draft = await generate_content(
                pain_prompt,
                system_prompt=system_prompt,
                temperature=asset_temperature(asset_type),
                model=submission.model,
                context=inputs.context,
            )
            await self.complete_step(inputs, f"pain-draft-{suffix}", draft=draft.text, model=draft.model)

            await self.start_step(inputs, f"competitive-research-{suffix}")
            await self.progress(inputs, f"Running competitive research: {voice.name}")
            competitive = await run_competitive_research(insights, submission.prompt, context=inputs.context)
            await self.complete_step(inputs, f"competitive-research-{suffix}")

            await self.start_step(inputs, f"enrich-competitive-{suffix}")
            await self.progress(inputs, f"Enriching with competitive intel: {voice.name}")
            enriched = await generate_content(
                build_enrich_prompt(draft.text, competitive),
                system_prompt=system_prompt,
                temperature=ENRICH_TEMPERATURE,
                model=submission.model,
                context=inputs.context,
            )
            await self.complete_step(inputs, f"enrich-competitive-{suffix}", draft=enriched.text, model=enriched.model)

            await self.start_step(inputs, f"refine-{suffix}")
            await self.progress(inputs, f"Refining: {voice.name}", status=JobStatus.SCORE)
            result = await refinement_loop(
                enriched.text,
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
                user_prompt=pain_prompt,
                context=inputs.context,
            )

        await self.for_each_combination(inputs, _generate, base=15, span=80)
        await finalize_job(self.runtime, job_id, bool(practitioner_context), len(practitioner_context))
