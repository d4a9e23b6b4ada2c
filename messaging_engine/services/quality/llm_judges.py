"""
Pure model-judged dimensions: authenticity, specificity, narrative arc.

All three are 0-10, higher is better, and are computed independently of
each other and of the pattern-based scorers.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from pydantic import Field

from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import JudgeScore
from messaging_engine.services.quality.judge import JUDGE_CONTENT_CHARS, Verdict, run_judge

PRODUCT_CONTEXT_CHARS = 2000


class AuthenticityVerdict(Verdict):
    naturalLanguageMarkers: List[str] = Field(default_factory=list)
    roboticPatterns: List[str] = Field(default_factory=list)


class SpecificityVerdict(Verdict):
    concreteClaims: List[str] = Field(default_factory=list)
    vagueClaims: List[str] = Field(default_factory=list)


class NarrativeArcVerdict(Verdict):
    progressionMarkers: List[str] = Field(default_factory=list)
    tensionElements: List[str] = Field(default_factory=list)
    coherenceIssues: List[str] = Field(default_factory=list)


def _to_score(verdict: Verdict) -> JudgeScore:
    details = {
        name: value
        for name, value in verdict.model_dump().items()
        if isinstance(value, list)
    }
    return JudgeScore(score=round(verdict.score, 1), assessment=verdict.assessment, details=details)


async def analyze_authenticity(content: str, *, context: Optional[CallContext] = None) -> JudgeScore:
    prompt = f"""Analyze this messaging content for authenticity — does it sound like a real human practitioner wrote it, or does it feel AI-generated/templated?

CONTENT:
{content[:JUDGE_CONTENT_CHARS]}

Evaluate:
1. Natural language flow — does it read like someone talking, or like a template filled in?
2. Conversational rhythm — varied sentence lengths, natural pauses, genuine emphasis?
3. Robotic patterns — repetitive structure, predictable transitions, formulaic phrasing?
4. Practitioner voice — does it sound like someone who does this work daily, or an outsider describing it?
5. Genuine perspective — are there real opinions, specific experiences, or just generic statements?

Respond with JSON:
{{
  "score": <0-10, where 10 is genuinely human-sounding and 0 is obviously AI-generated>,
  "naturalLanguageMarkers": ["<examples of natural, human-sounding phrases found>"],
  "roboticPatterns": ["<examples of robotic, templated, or AI-like patterns found>"],
  "assessment": "<1-2 sentence summary>"
}}"""
    return _to_score(await run_judge("authenticity", prompt, AuthenticityVerdict, context=context))


async def analyze_specificity(
    content: str,
    product_context: Sequence[str] = (),
    *,
    context: Optional[CallContext] = None,
) -> JudgeScore:
    docs = "\n".join(product_context)[:PRODUCT_CONTEXT_CHARS]
    docs_block = f"\nPRODUCT CONTEXT (for verifying claims):\n{docs}" if docs else ""
    prompt = f"""Analyze this messaging content for specificity — how concrete and specific are the claims?

CONTENT:
{content[:JUDGE_CONTENT_CHARS]}
{docs_block}

Evaluate:
1. Does it reference specific product capabilities by name?
2. Does it include numbers, metrics, or quantifiable outcomes?
3. Does it describe specific practitioner scenarios?
4. Are claims backed by evidence or just asserted?
5. Could you swap in any product name and it would still work? (bad sign)

Respond with JSON:
{{
  "score": <0-10, where 10 is highly specific and 0 is completely vague>,
  "concreteClaims": ["<specific, verifiable claims found in content>"],
  "vagueClaims": ["<vague, generic claims that could apply to anything>"],
  "assessment": "<1-2 sentence summary>"
}}"""
    return _to_score(await run_judge("specificity", prompt, SpecificityVerdict, context=context))


async def analyze_narrative_arc(content: str, *, context: Optional[CallContext] = None) -> JudgeScore:
    # Even a battlecard tells a mini-story: pain, approach, why we win
    prompt = f"""Analyze this messaging content for narrative arc — does it tell a coherent story with progression, tension, and resolution?

CONTENT:
{content[:JUDGE_CONTENT_CHARS]}

Evaluate:
1. Progression — Does it build from problem to solution? Is there a clear beginning/middle/end?
2. Tension — Is there conflict, stakes, or urgency that pulls the reader forward?
3. Resolution — Does the tension get addressed? Does the reader feel satisfied?
4. Emotional Journey — Does the reader go through distinct emotional states (frustration → hope → excitement)?
5. Coherence — Do the parts connect logically? Does each section build on the previous?

Respond with JSON:
{{
  "score": <0-10, where 10 is a masterfully structured narrative arc and 0 is disjointed content with no story>,
  "progressionMarkers": ["<examples of clear progression found>"],
  "tensionElements": ["<examples of tension, stakes, or urgency found>"],
  "coherenceIssues": ["<any places where the narrative breaks down or sections feel disconnected>"],
  "assessment": "<1-2 sentence summary>"
}}"""
    return _to_score(await run_judge("narrative_arc", prompt, NarrativeArcVerdict, context=context))
