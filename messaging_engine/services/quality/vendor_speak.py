"""
Vendor-speak detection: marketing jargon, empty superlatives,
feature-dumping and press-release tone.  0-10, lower is better.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from messaging_engine.core import config
from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import VendorSpeakAnalysis
from messaging_engine.services.quality.judge import JUDGE_CONTENT_CHARS, SuggestionVerdict, run_judge

VENDOR_SPEAK_PATTERNS: Dict[str, List[str]] = {
    "buzzwords": [
        "industry-leading",
        "best-in-class",
        "next-generation",
        "enterprise-grade",
        "mission-critical",
        "turnkey",
        "end-to-end",
        "single pane of glass",
        "cutting-edge",
        "game-changer",
        "paradigm shift",
        "synergy",
        "holistic",
        "scalable solution",
        "digital transformation",
        "best of breed",
        "world-class",
        "state-of-the-art",
    ],
    "empty_claims": [
        "unparalleled",
        "unmatched",
        "unrivaled",
        "unprecedented",
        "the only solution",
        "the most powerful",
        "the most comprehensive",
        "the fastest",
        "the easiest",
        "the most intuitive",
    ],
    "feature_dumping": [
        "powered by ai",
        "machine learning-driven",
        "cloud-native",
        "ai-powered",
        "ml-based",
        "blockchain-enabled",
    ],
    "press_release": [
        "we are excited to announce",
        "we are pleased to",
        "we are proud to",
        "we are thrilled to",
        "delighted to share",
        "leading provider of",
        "trusted by thousands",
        "empowering teams",
        "enabling organizations",
    ],
}

CATEGORY_WEIGHTS: Dict[str, float] = {
    "buzzwords": 1.0,
    "empty_claims": 1.5,
    "feature_dumping": 0.8,
    "press_release": 1.2,
}

# Weighted count that maps to a base score of 10 is 15
BASE_SCORE_DIVISOR = 1.5
MAX_EXAMPLES = 5


def detect_patterns(content: str) -> VendorSpeakAnalysis:
    """Per-category matched phrases (first five) and occurrence counts."""
    lowered = content.lower()
    examples: Dict[str, List[str]] = {}
    counts: Dict[str, int] = {}
    for category, phrases in VENDOR_SPEAK_PATTERNS.items():
        found: List[str] = []
        count = 0
        for phrase in phrases:
            hits = len(re.findall(re.escape(phrase), lowered))
            if hits:
                found.append(phrase)
                count += hits
        if found:
            examples[category] = found[:MAX_EXAMPLES]
            counts[category] = count
    return VendorSpeakAnalysis(score=0.0, examples=examples, counts=counts)


def calculate_base_score(counts: Dict[str, int], weights: Optional[Dict[str, float]] = None) -> float:
    weights = weights or CATEGORY_WEIGHTS
    weighted = sum(count * weights.get(category, 1.0) for category, count in counts.items())
    return min(10.0, weighted / BASE_SCORE_DIVISOR)


def _judge_prompt(content: str) -> str:
    return f"""Analyze this messaging content for vendor-speak and marketing jargon.

CONTENT:
{content[:JUDGE_CONTENT_CHARS]}

Look for:
1. Buzzwords and jargon that practitioners would roll their eyes at
2. Empty superlatives with no evidence ("the best", "unmatched")
3. Feature-dumping without connecting to practitioner pain
4. Press release tone vs practitioner conversation tone
5. Claims that sound like a vendor, not like someone who does the job
6. Vague value props ("saves time", "increases efficiency") without specifics

Respond with JSON:
{{
  "score": <0-10, where 0 is pure practitioner voice and 10 is pure vendor marketing>,
  "assessment": "<1-2 sentence summary>",
  "suggestions": ["<specific improvements>"]
}}"""


async def analyze_vendor_speak(
    content: str,
    *,
    pattern_weight: Optional[float] = None,
    ai_weight: Optional[float] = None,
    context: Optional[CallContext] = None,
) -> VendorSpeakAnalysis:
    """Hybrid vendor-speak score. Raises ScorerFailure when the judge fails."""
    detected = detect_patterns(content)
    base = calculate_base_score(detected.counts)
    verdict = await run_judge("vendor_speak", _judge_prompt(content), SuggestionVerdict, context=context)

    pw = config.VENDOR_PATTERN_WEIGHT if pattern_weight is None else pattern_weight
    aw = config.VENDOR_AI_WEIGHT if ai_weight is None else ai_weight
    return detected.model_copy(
        update={
            "score": round(min(10.0, base * pw + verdict.score * aw), 1),
            "assessment": verdict.assessment,
            "suggestions": verdict.suggestions,
        }
    )
