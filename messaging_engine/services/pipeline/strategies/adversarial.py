"""
Adversarial: draft, then two rounds of hostile-practitioner critique and
defend-and-rewrite, then refinement.
"""

from __future__ import annotations

import structlog

from messaging_engine.contracts import AssetType, JobStatus, ModelTask, PipelineName
from messaging_engine.core.config import get_model_for_task
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.services.evidence_bundler import run_community_research, run_competitive_research
from messaging_engine.services.insights import format_insights_for_prompt, format_insights_for_scoring
from messaging_engine.services.llm_client import llm_client
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

ADVERSARIAL_ROUNDS = 2
ATTACK_TEMPERATURE = 0.6
DEFEND_TEMPERATURE = 0.5
COMMUNITY_EXCERPT_CHARS = 2000


def build_attack_prompt(content: str, asset_type: AssetType) -> str:
    return f"""You are a hostile, skeptical senior practitioner reviewing vendor messaging. You've been burned by every vendor promise in the last decade. You hate buzzwords, vague claims, and anything that sounds like it was written by someone who has never done the actual work.

Tear apart this {AssetType(asset_type).spaced} messaging. Be ruthless but specific:

## Messaging to Attack
{content}

## Your Critique Should Cover
1. **Unsubstantiated Claims**: What claims have zero evidence? What would you need to see to believe them?
2. **Vendor-Speak Detection**: Every phrase that sounds like marketing rather than a peer talking. Quote the exact phrases.
3. **Vague Promises**: Where does it hand-wave instead of being specific? What details are missing?
4. **Reality Check**: What would actually happen if a practitioner tried what this messaging implies? Where does it oversimplify?
5. **Missing Objections**: What obvious objections would a buyer raise that this messaging doesn't address?
6. **Credibility Gaps**: Where does this lose trust? What would make you stop reading?

Be brutal. Every weakness you find makes the final output stronger. Format as a numbered list of specific attacks."""


def build_defend_prompt(content: str, attacks: str, product_insights: str, template: str, asset_type: AssetType) -> str:
    return f"""Your {AssetType(asset_type).spaced} messaging was attacked by a skeptical practitioner. Rewrite it to survive every objection.

## Current Messaging
{content}

## Practitioner Attacks
{attacks}

## Product Intelligence (for evidence)
{product_insights}

## Rules for the Rewrite
1. For every unsubstantiated claim: either add specific evidence from the product intelligence, or remove the claim entirely
2. For every vendor-speak phrase: replace with practitioner language
3. For every vague promise: make it concrete with specifics, or cut it
4. Address the strongest objections directly — don't dodge them
5. Keep the same structure and format as the original
6. The result should feel battle-hardened — every remaining claim can withstand scrutiny

## Template / Format Guide
{template}

Output ONLY the rewritten content. No meta-commentary."""


class AdversarialStrategy(PipelineStrategy):
    name = PipelineName.ADVERSARIAL

    async def run(self, inputs: JobInputs) -> None:
        job_id = inputs.job_id
        submission = inputs.submission
        flash = get_model_for_task(ModelTask.FLASH)
        pro = get_model_for_task(ModelTask.PRO)

        insights = await self.extract_insights(inputs, progress=2)
        scoring_context = format_insights_for_scoring(insights)
        product_insights = format_insights_for_prompt(insights)
        banned = await gather_banned_phrases(self.runtime, inputs.voices, insights, context=inputs.context)

        await self.start_step(inputs, "community-research", model=flash)
        await self.progress(inputs, "Running community deep research...", progress=5)
        evidence = await run_community_research(
            insights,
            submission.prompt,
            on_progress=research_progress_callback(self.runtime, job_id, "Community research"),
            context=inputs.context,
        )
        await self.complete_step(inputs, "community-research")

        await self.start_step(inputs, "competitive-research", model=flash)
        await self.progress(inputs, f"Running competitive research... [{flash}]", progress=10)
        competitive_focus = submission.prompt or ""
        if evidence.context_text:
            competitive_focus += (
                "\n\nCommunity findings to inform competitive analysis:\n"
                + evidence.context_text[:COMMUNITY_EXCERPT_CHARS]
            )
        competitive = await run_competitive_research(insights, competitive_focus, context=inputs.context)
        await self.complete_step(inputs, "competitive-research")

        research_context = combine_research(competitive, evidence.context_text)
        await self.progress(inputs, "Generating initial drafts...", progress=18, status=JobStatus.GENERATE)

        async def _generate(asset_type: AssetType, voice: VoiceProfile) -> None:
            suffix = f"{asset_type.value}-{voice.slug}"
            template = load_template(asset_type, self.runtime.template_dir)
            system_prompt = build_system_prompt(
                voice, asset_type, evidence.evidence_level, banned_phrases=banned.get(voice.id)
            )
            user_prompt = build_user_prompt(
                submission.existing_messaging,
                submission.prompt,
                research_context,
                template,
                asset_type,
                insights,
            )

            await self.start_step(inputs, f"draft-{suffix}")
            await self.progress(inputs, f"Generating initial draft: {voice.name}")
            draft = await generate_content(
                user_prompt,
                system_prompt=system_prompt,
                temperature=asset_temperature(asset_type),
                model=submission.model,
                context=inputs.context,
            )
            current = draft.text
            await self.complete_step(inputs, f"draft-{suffix}", draft=current, model=draft.model)

            for round_no in range(1, ADVERSARIAL_ROUNDS + 1):
                attack_step = f"attack-r{round_no}-{suffix}"
                await self.start_step(inputs, attack_step, model=pro)
                await self.progress(inputs, f"Adversarial attack round {round_no}: {voice.name}")
                # The critic always runs on the reasoning model, whatever the caller selected
                attack = await llm_client.generate(
                    build_attack_prompt(current, asset_type),
                    task=ModelTask.PRO,
                    temperature=ATTACK_TEMPERATURE,
                    context=inputs.context,
                )
                await self.complete_step(inputs, attack_step, model=attack.model)

                defend_step = f"defend-r{round_no}-{suffix}"
                await self.start_step(inputs, defend_step)
                await self.progress(inputs, f"Defending round {round_no}: {voice.name}")
                defended = await generate_content(
                    build_defend_prompt(current, attack.text, product_insights, template, asset_type),
                    system_prompt=system_prompt,
                    temperature=DEFEND_TEMPERATURE,
                    model=submission.model,
                    context=inputs.context,
                )
                current = defended.text
                await self.complete_step(inputs, defend_step, draft=current, model=defended.model)

            await self.start_step(inputs, f"refine-{suffix}")
            await self.progress(inputs, f"Refining: {voice.name} [{pro}]", status=JobStatus.SCORE)
            result = await refinement_loop(
                current,
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
                user_prompt=user_prompt,
                context=inputs.context,
            )

        await self.for_each_combination(inputs, _generate, base=18, span=77)
        await finalize_job(self.runtime, job_id, bool(research_context), len(research_context))
