"""
Prompt and voice-constraint builders.

Everything here is a pure string builder except ``BannedPhraseProvider``,
which makes one cached model call per (voice, domain) to produce the list
of phrases the voice must never use.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from pathlib import Path
from typing import Dict, List, MutableMapping, Optional

import structlog

from messaging_engine.contracts import AssetType, EvidenceLevel, ModelTask
from messaging_engine.core import config
from messaging_engine.models.insights import DeepPoVInsights, ExtractedInsights
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import ScoreResult, ScoringThresholds
from messaging_engine.services.insights import format_insights_for_prompt, format_insights_for_research
from messaging_engine.services.llm_client import llm_client
from messaging_engine.utils.cache import make_process_cache
from messaging_engine.utils.json_utils import strip_code_fences
from messaging_engine.utils.retry import RetryConfig

logger = structlog.get_logger(__name__)


class PromptDirective(str, Enum):
    """Opening stance of a generated piece."""

    PAIN_FIRST = "pain"
    POINT_OF_VIEW = "pov"


ASSET_TYPE_TEMPERATURE: Dict[AssetType, float] = {
    AssetType.SOCIAL_HOOK: 0.85,
    AssetType.NARRATIVE: 0.8,
    AssetType.EMAIL_COPY: 0.75,
    AssetType.LAUNCH_MESSAGING: 0.7,
    AssetType.ONE_PAGER: 0.6,
    AssetType.TALK_TRACK: 0.65,
    AssetType.BATTLECARD: 0.55,
    AssetType.MESSAGING_TEMPLATE: 0.5,
}

DEFAULT_TEMPERATURE = 0.7

PERSONA_ANGLES: Dict[str, str] = {
    "practitioner-community": """You are writing for practitioners — the people who actually do the work.
Lead with the daily frustration. The reader should think "that's exactly my Tuesday."
Every claim must pass the test: "Would a practitioner in this field share this with peers?"
Use the language of someone who does this work daily and is skeptical of vendor promises.
No exec-speak, no vision statements — just what's broken and how this fixes it.""",
    "sales-enablement": """You are arming a sales team to have credible technical conversations.
Lead with what the prospect is experiencing — the pain they'll nod along to.
Write like you're coaching someone for a whiteboard session, not handing them a script.
Include "trap questions" the prospect might ask and how to answer honestly.
Every talking point should survive a skeptical technical buyer pushing back.""",
    "product-launch": """You are writing launch messaging that cuts through noise.
Lead with a bold headline built on the "broken promise" — what the industry promised but never delivered.
Create vivid before/after contrast: the painful status quo vs. the new reality.
This should feel like a manifesto, not a feature list.
Make the reader feel the cost of the old way before showing the new way.""",
    "field-marketing": """You are writing for field marketers who need to capture attention in 30 seconds.
Lead with a relatable scenario — something the reader has personally experienced.
Build progressive understanding: hook → recognition → "tell me more."
Make it scannable — someone scrolling on their phone should get the core message.
Every section should pass the 30-second attention test: would they keep reading?""",
}

DEFAULT_BANNED_PHRASES: List[str] = [
    "industry-leading",
    "best-in-class",
    "next-generation",
    "enterprise-grade",
    "mission-critical",
    "turnkey",
    "end-to-end",
    "single pane of glass",
    "seamless",
    "robust",
    "leverage",
    "cutting-edge",
    "game-changer",
]

_TYPE_INSTRUCTIONS: Dict[AssetType, str] = {
    AssetType.MESSAGING_TEMPLATE: """## Messaging Template Instructions
You are generating a comprehensive messaging positioning document (3000-5000 words).
This is a single, complete document — not a summary. Fill every section fully.
Include: Background/Market Trends, Key Message (8-12 word headline), Sub-Head alternatives,
Customer Promises (3-4 blocks with name/tagline/description), Proof Points grounded in product docs,
Priority Use Cases, Problem Statement, Short/Medium/Long descriptions, and Customer Proof Points.
All claims MUST be traceable to the provided source material.""",
    AssetType.NARRATIVE: """## Narrative Instructions
You are generating a storytelling narrative document with 3 length variants in a single output.
VARIANT 1 (~250 words): Executive summary — thesis + problem + vision.
VARIANT 2 (~1000 words): Conference talk — hook, problem, why current approaches fail, the vision, taglines.
VARIANT 3 (~2500 words): Full narrative — thesis, broken promise, life in the trenches, root cause analysis,
new approach, what changes, future state, taglines.
Each variant must be standalone and readable on its own. Use thought-leadership tone.
Weave practitioner quotes naturally throughout. Mark each variant clearly with headers.""",
}

_DIRECTIVES: Dict[PromptDirective, str] = {
    PromptDirective.POINT_OF_VIEW: """## Primary Directive
Lead with your point of view. The reader should encounter a clear, opinionated stance in the first two sentences.
This isn't neutral reporting — it's a well-supported argument. Back every claim with evidence from the product docs.
Open with the thesis or contrarian take. Make the reader think "that's a bold but defensible position."
Then build the argument with evidence and narrative arc.""",
    PromptDirective.PAIN_FIRST: """## Primary Directive
Lead with the pain. The reader should recognize their frustration in the first two sentences.
Do not open with what the product does. Open with what's broken, what hurts, what the reader is struggling with today.
Then — and only then — show how things change.""",
}

_PRODUCT_ONLY_GROUNDING = (
    "CRITICAL: You have NO community evidence for this generation. Do NOT fabricate practitioner quotes "
    'or use phrases like "practitioners say...", "as one engineer noted...", "community sentiment suggests...", '
    '"teams report...", or "according to engineers on Reddit...". Write from product documentation only. '
    'Where practitioner validation would strengthen a point, write: "[Needs community validation]".'
)

_EVIDENCE_GROUNDING = (
    'You have real community evidence in the prompt. ONLY reference practitioners and quotes from the '
    '"Verified Community Evidence" section. Do NOT fabricate additional quotes or community references '
    "beyond what is provided. Every practitioner reference must come from that section."
)


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def asset_temperature(asset_type: AssetType) -> float:
    return ASSET_TYPE_TEMPERATURE.get(AssetType(asset_type), DEFAULT_TEMPERATURE)


def load_template(asset_type: AssetType, template_dir: Optional[str] = None) -> str:
    """Read ``<template_dir>/<asset-type>.md``; a one-line guide when missing."""
    asset = AssetType(asset_type)
    path = Path(template_dir or config.MESSAGING_TEMPLATE_DIR) / f"{asset.value.replace('_', '-')}.md"
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return f"Generate {asset.label} content."


# ────────────────────────────────────────────────────────────
#  Banned phrases
# ────────────────────────────────────────────────────────────


class BannedPhraseProvider:
    """Generates and caches per-(voice, domain) banned-phrase lists.

    The cache is injected so tests can start empty and deployments can pick
    an eviction policy; by default entries live for the process lifetime.
    """

    def __init__(self, cache: Optional[MutableMapping[str, List[str]]] = None):
        self.cache: MutableMapping[str, List[str]] = cache if cache is not None else make_process_cache()
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def cache_key(voice: VoiceProfile, insights: ExtractedInsights) -> str:
        return f"{voice.id}:{insights.domain or 'unknown'}"

    async def get(
        self,
        voice: VoiceProfile,
        insights: ExtractedInsights,
        *,
        context: Optional[CallContext] = None,
    ) -> List[str]:
        key = self.cache_key(voice, insights)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            phrases = await self.generate(voice, insights, context=context)
            self.cache[key] = phrases
            return phrases

    async def generate(
        self,
        voice: VoiceProfile,
        insights: ExtractedInsights,
        *,
        context: Optional[CallContext] = None,
    ) -> List[str]:
        guide = f"Voice Guide: {voice.voice_guide[:500]}" if voice.voice_guide else ""
        prompt = f"""Given this voice profile and product domain, list 15-20 specific words and phrases that would sound inauthentic, vendor-heavy, or like AI-generated marketing copy to the target audience. Return ONLY a JSON array of strings.

Voice: {voice.name} — {voice.description}
{guide}
Domain: {insights.domain} / {insights.category}
Target personas: {', '.join(insights.target_personas)}

Return ONLY a JSON array like: ["phrase1", "phrase2", ...]"""

        max_attempts = RetryConfig.BANNED_PHRASES_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            try:
                response = await llm_client.generate(
                    prompt,
                    task=ModelTask.FLASH,
                    temperature=0.2,
                    max_tokens=1000,
                    context=context,
                )
                parsed = json.loads(strip_code_fences(response.text))
                if isinstance(parsed, list) and parsed:
                    phrases = [str(p).strip() for p in parsed if str(p).strip()]
                    logger.info("banned_phrases_generated", voice=voice.name, count=len(phrases), attempt=attempt)
                    return phrases
                logger.warning(
                    "banned_phrases_not_a_list",
                    voice=voice.name,
                    attempt=attempt,
                    raw=response.text[:200],
                )
            except Exception as e:
                logger.warning(
                    "banned_phrases_generation_failed",
                    voice=voice.name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )
            if attempt < max_attempts:
                await asyncio.sleep(RetryConfig.BANNED_PHRASES_RETRY_DELAY_SEC * attempt)

        logger.error("banned_phrases_retries_exhausted", voice=voice.name)
        return list(DEFAULT_BANNED_PHRASES)

    def clear(self) -> None:
        self.cache.clear()


# ────────────────────────────────────────────────────────────
#  System prompt
# ────────────────────────────────────────────────────────────


def build_system_prompt(
    voice: VoiceProfile,
    asset_type: AssetType,
    evidence_level: EvidenceLevel = EvidenceLevel.PRODUCT_ONLY,
    directive: PromptDirective = PromptDirective.PAIN_FIRST,
    banned_phrases: Optional[List[str]] = None,
    product_name: Optional[str] = None,
) -> str:
    """Directive, persona angle, voice, type instructions, grounding, bans."""
    asset = AssetType(asset_type)
    subject = f" for {product_name}" if product_name else ""
    sections: List[str] = [
        f"You are a messaging strategist generating {asset.spaced} content{subject}.",
        _DIRECTIVES[PromptDirective(directive)],
    ]

    persona_angle = PERSONA_ANGLES.get(voice.slug)
    if persona_angle:
        sections.append(f"## Persona Angle\n{persona_angle}")

    sections.append(f"## Voice Profile: {voice.name}\n{voice.voice_guide}".rstrip())
    if voice.example_phrases:
        sections.append(f"## Phrases That Sound Like This Voice\n{_bullets(voice.example_phrases)}")

    if asset in _TYPE_INSTRUCTIONS:
        sections.append(_TYPE_INSTRUCTIONS[asset])

    banned = banned_phrases if banned_phrases else DEFAULT_BANNED_PHRASES
    sections.append(
        "## Critical Rules\n"
        "1. Ground ALL claims in the product documentation and competitive research — no invented claims\n"
        "2. Use practitioner language, not vendor language\n"
        "3. Reference specific capabilities, not generic value props\n"
        "4. If practitioner quotes are available, weave them in naturally\n"
        "5. Every claim must be traceable to the product docs or research\n"
        "6. Sound like someone who understands the practitioner's world, not someone selling to them\n"
        "7. Be specific — names, numbers, scenarios. Vague messaging is bad messaging.\n"
        f"8. DO NOT use: {', '.join(json.dumps(w) for w in banned)}"
    )

    grounding = _PRODUCT_ONLY_GROUNDING if evidence_level == EvidenceLevel.PRODUCT_ONLY else _EVIDENCE_GROUNDING
    sections.append(f"## Evidence Grounding Rules\n{grounding}")

    return "\n\n".join(sections)


# ────────────────────────────────────────────────────────────
#  User prompts
# ────────────────────────────────────────────────────────────


def _template_tail(template: str, instructions: str) -> str:
    return f"## Template / Format Guide\n{template}\n\n{instructions}"


def build_user_prompt(
    existing_messaging: Optional[str],
    prompt: Optional[str],
    research_context: str,
    template: str,
    asset_type: AssetType,
    insights: ExtractedInsights,
) -> str:
    """Template-led prompt: pain, distilled product intelligence, research."""
    parts: List[str] = []
    if insights.pain_points_addressed:
        parts.append(
            "## The Pain (lead with this)\n"
            "These are the real practitioner pain points this product addresses. "
            "Your opening should make the reader feel one of these:\n"
            f"{_bullets(insights.pain_points_addressed)}"
        )
    parts.append(f"## Product Intelligence (distilled)\n{format_insights_for_prompt(insights)}")
    if existing_messaging:
        parts.append(f"## Existing Messaging (for reference/improvement)\n{existing_messaging[:4000]}")
    if research_context:
        parts.append(f"## Competitive Research\n{research_context[:6000]}")
    if prompt:
        parts.append(f"## Focus / Instructions\n{prompt}")
    parts.append(
        _template_tail(
            template,
            "Generate the messaging now. Start with the pain. Output ONLY the messaging content, no meta-commentary.",
        )
    )
    return "\n\n".join(parts)


def build_pov_first_prompt(
    pov: DeepPoVInsights,
    community_context: str,
    competitive_context: str,
    template: str,
    asset_type: AssetType,
    existing_messaging: Optional[str] = None,
    prompt: Optional[str] = None,
) -> str:
    arc = pov.narrative_arc
    claims = "\n".join(f"- **{c.claim}**: {c.evidence}" for c in pov.strongest_claims)
    parts: List[str] = [
        f"## Our Point of View\n{pov.point_of_view}",
        f"## Thesis\n{pov.thesis}",
        f"## The Contrarian Take\n{pov.contrarian_take}",
        "## Narrative Arc\n"
        f"**Problem**: {arc.problem}\n"
        f"**Insight**: {arc.insight}\n"
        f"**Approach**: {arc.approach}\n"
        f"**Outcome**: {arc.outcome}",
        f"## Strongest Claims (with evidence)\n{claims}",
        f"## Full Product Intelligence\n{format_insights_for_prompt(pov)}",
        "## Community Validation\n"
        "The following community evidence supports (or challenges) our narrative. "
        "Use it to strengthen claims, NOT to change the narrative:\n"
        f"{community_context[:4000]}",
    ]
    if competitive_context:
        parts.append(f"## Competitive Context\n{competitive_context[:4000]}")
    if existing_messaging:
        parts.append(f"## Existing Messaging (for reference/improvement)\n{existing_messaging[:4000]}")
    if prompt:
        parts.append(f"## Focus / Instructions\n{prompt}")
    parts.append(
        _template_tail(
            template,
            "## Instructions\n"
            f"Generate this {AssetType(asset_type).spaced} from OUR point of view. This is opinionated content — "
            "we have a specific narrative and thesis. The community evidence validates our claims; the competitive "
            "context sharpens our positioning. But the STORY is ours.\n\n"
            'Lead with the thesis or contrarian take. Make the reader think "that\'s a bold but defensible '
            'position." Output ONLY the content.',
        )
    )
    return "\n\n".join(parts)


def build_pain_first_prompt(
    practitioner_context: str,
    template: str,
    asset_type: AssetType,
    insights: ExtractedInsights,
) -> str:
    """Practitioner-voice prompt with product docs kept deliberately thin."""
    parts: List[str] = []
    if practitioner_context:
        parts.append(f"## Real Practitioner Pain (this is your primary source material)\n{practitioner_context}")
    parts.append(f"## What the product does (brief — DO NOT lead with this)\n{insights.summary}")
    parts.append(f"## Pain points it addresses\n{_bullets(insights.pain_points_addressed)}")
    parts.append(
        _template_tail(
            template,
            "## Instructions\n"
            f"Write this {AssetType(asset_type).spaced} grounded ENTIRELY in practitioner pain. Use the real quotes "
            "and language from the practitioner research above. The reader should feel like someone who understands "
            "their world wrote this — not a vendor.\n\n"
            "Minimal product mentions. Maximum practitioner empathy. Output ONLY the content.",
        )
    )
    return "\n\n".join(parts)


def build_refinement_prompt(
    content: str,
    scores: ScoreResult,
    thresholds: ScoringThresholds,
    voice: VoiceProfile,
    asset_type: AssetType,
    was_deslopped: bool = False,
) -> str:
    """One targeted instruction per failing dimension."""
    issues: List[str] = []
    if scores.slop_score > thresholds.slop_max:
        issues.append(
            f"- **Slop**: {scores.slop_score:.1f}/10 (max {thresholds.slop_max:g}). Remove filler phrases, "
            "hedging language, and cliched transitions. Every word must earn its place."
        )
    if scores.vendor_speak_score > thresholds.vendor_speak_max:
        issues.append(
            f"- **Vendor-Speak**: {scores.vendor_speak_score:.1f}/10 (max {thresholds.vendor_speak_max:g}). "
            "Replace self-congratulatory vendor language with practitioner-focused language. "
            "Sound like a peer, not a marketer."
        )
    if scores.authenticity_score < thresholds.authenticity_min:
        issues.append(
            f"- **Authenticity**: {scores.authenticity_score:.1f}/10 (min {thresholds.authenticity_min:g}). "
            "Make it sound like a real human wrote this. Add specific scenarios, real-world context, "
            "and genuine insight."
        )
    if scores.specificity_score < thresholds.specificity_min:
        issues.append(
            f"- **Specificity**: {scores.specificity_score:.1f}/10 (min {thresholds.specificity_min:g}). "
            "Replace vague claims with concrete details — names, numbers, specific capabilities, real scenarios."
        )
    if scores.persona_avg_score < thresholds.persona_min:
        issues.append(
            f"- **Persona Fit**: {scores.persona_avg_score:.1f}/10 (min {thresholds.persona_min:g}). "
            f"Better match the {voice.name} voice. The content should resonate with the target audience."
        )
    if scores.narrative_arc_score < thresholds.narrative_arc_min:
        issues.append(
            f"- **Narrative Arc**: {scores.narrative_arc_score:.1f}/10 (min {thresholds.narrative_arc_min:g}). "
            "Give it a clear progression from problem to tension to resolution. Each section should set up the next."
        )

    rules = [
        "Fix ONLY the flagged issues — don't change what's already working",
        "Keep the same structure and format",
        "Keep all factual claims and specific details",
        "Don't introduce new slop while fixing other issues",
        "Output ONLY the rewritten content, nothing else",
    ]
    if was_deslopped:
        rules.insert(4, "Filler phrases were already stripped in a previous pass; do not bring them back")
    rule_lines = "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))

    return f"""Rewrite this {AssetType(asset_type).spaced} to fix the following quality issues:

{chr(10).join(issues)}

## Content to Rewrite
{content}

## Rules
{rule_lines}"""


def build_research_prompt_from_insights(insights: ExtractedInsights, prompt: Optional[str] = None) -> str:
    focus_block = f"## Focus Area\n{prompt}\n" if prompt else ""
    return f"""Conduct competitive research based on the following product context.

## Product Context
{format_insights_for_research(insights)}

{focus_block}
## Research Questions

1. **Competitor Landscape**: Based on the product described, identify the main competitors. How do they approach the same problems? What are their key differentiators?

2. **Market Positioning**: Where does this product have the strongest competitive advantage? What specific capabilities differentiate it?

3. **Practitioner Pain Points**: What do real practitioners say about this problem space? Check Reddit, Stack Overflow, Hacker News for authentic opinions. Include verbatim quotes.

4. **Competitive Gaps**: Where do competitors fall short? What pain points remain unaddressed by existing solutions?

5. **Market Trends**: What industry trends make this product more relevant? Is the problem growing or shrinking?

## Output Requirements
- Be specific and factual, cite sources
- Include actual practitioner quotes from forums/communities
- Don't use marketing language — write like an analyst
- Focus on what actually works vs what vendors claim"""
