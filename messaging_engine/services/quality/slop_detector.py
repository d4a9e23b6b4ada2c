"""
Slop detection: filler, hedging, cliched transitions, fake enthusiasm.

The score (0-10, lower is better) blends a deterministic pattern density
with a model judgment.  ``deslop`` rewrites content to strip the matches.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import structlog

from messaging_engine.contracts import ModelTask
from messaging_engine.core import config
from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import SlopAnalysis, SlopMatch
from messaging_engine.services.llm_client import llm_client
from messaging_engine.services.quality.judge import JUDGE_CONTENT_CHARS, SuggestionVerdict, run_judge

logger = structlog.get_logger(__name__)

SLOP_PATTERNS: Dict[str, List[str]] = {
    "hedging": [
        "it's worth noting",
        "it's important to note",
        "it should be noted",
        "it bears mentioning",
        "interestingly enough",
        "it's no secret that",
        "needless to say",
        "as you might expect",
        "one might argue",
        "it goes without saying",
        "it's safe to say",
        "arguably",
        "perhaps unsurprisingly",
        "as it turns out",
        "to be fair",
        "in many ways",
        "in some ways",
        "in a sense",
        "so to speak",
        "if you will",
    ],
    "transitions": [
        "let's dive in",
        "let's dive into",
        "let's explore",
        "let's take a look",
        "let's take a closer look",
        "let's unpack",
        "let's break down",
        "let's examine",
        "without further ado",
        "with that said",
        "with that in mind",
        "that being said",
        "having said that",
        "all things considered",
        "at the end of the day",
        "when all is said and done",
        "the bottom line is",
        "moving forward",
        "going forward",
        "looking ahead",
    ],
    "fillers": [
        "in today's world",
        "in today's landscape",
        "in today's fast-paced",
        "in the ever-evolving",
        "in an increasingly",
        "in the realm of",
        "in the world of",
        "when it comes to",
        "at its core",
        "at the heart of",
        "plays a crucial role",
        "plays a vital role",
        "plays a key role",
        "plays an important role",
        "it's crucial to",
        "it's vital to",
        "it's essential to",
        "it's important to understand",
        "the reality is",
        "the truth is",
        "the fact of the matter is",
        "the thing is",
        "here's the thing",
        "here's the deal",
        "whether you're a",
        "regardless of whether",
        "no matter your",
    ],
    "overused": [
        "game-changer",
        "game changer",
        "paradigm shift",
        "landscape",
        "ecosystem",
        "synergy",
        "leverage",
        "deep dive",
        "holistic",
        "robust",
        "streamline",
        "empower",
        "unlock",
        "unlock the power",
        "harness",
        "harness the power",
        "elevate",
        "supercharge",
        "revolutionize",
        "transformative",
        "groundbreaking",
        "cutting-edge",
        "bleeding-edge",
        "state-of-the-art",
        "next-level",
        "next-generation",
        "double-edged sword",
        "silver bullet",
        "low-hanging fruit",
        "move the needle",
        "boils down to",
        "tip of the iceberg",
    ],
    "enthusiasm": [
        "exciting",
        "incredibly",
        "amazing",
        "remarkable",
        "fantastic",
        "wonderful",
        "extraordinary",
        "breathtaking",
        "thrilling",
        "mind-blowing",
        "jaw-dropping",
        "absolutely",
        "truly",
        "simply put",
        "quite simply",
        "make no mistake",
        "rest assured",
        "the good news is",
        "the great news is",
        "the exciting part is",
        "the best part is",
        "what's even better",
        "even more impressive",
        "on top of that",
    ],
    "cliches": [
        "imagine a world",
        "picture this",
        "think about it",
        "consider this",
        "here's the kicker",
        "here's where it gets interesting",
        "but wait, there's more",
        "buckle up",
        "brace yourself",
        "spoiler alert",
        "fun fact",
        "pro tip",
        "hot take",
        "the million dollar question",
        "the elephant in the room",
        "not all heroes wear capes",
        "the secret sauce",
        "a breath of fresh air",
        "a testament to",
        "a far cry from",
        "only time will tell",
        "the jury is still out",
        "food for thought",
        "stay tuned",
    ],
}

CATEGORY_WEIGHTS: Dict[str, float] = {
    "hedging": 0.8,
    "transitions": 0.6,
    "fillers": 1.0,
    "overused": 1.2,
    "enthusiasm": 0.9,
    "cliches": 1.1,
}

CONTEXT_CHARS = 50
CLEAN_SCORE = 2.0
# A rewrite shorter than this fraction of the input is treated as a bad rewrite
MIN_DESLOP_RATIO = 0.3


def detect_patterns(content: str) -> List[SlopMatch]:
    """Every case-insensitive occurrence of every pattern, in text order."""
    matches: List[SlopMatch] = []
    lowered = content.lower()
    for category, patterns in SLOP_PATTERNS.items():
        for pattern in patterns:
            start = 0
            while True:
                idx = lowered.find(pattern, start)
                if idx == -1:
                    break
                window = content[max(0, idx - CONTEXT_CHARS) : idx + len(pattern) + CONTEXT_CHARS]
                matches.append(SlopMatch(pattern=pattern, category=category, index=idx, context=window.strip()))
                start = idx + len(pattern)
    matches.sort(key=lambda m: m.index)
    return matches


def calculate_base_score(
    matches: List[SlopMatch],
    content_length: int,
    weights: Optional[Dict[str, float]] = None,
) -> float:
    """Weighted matches per 1000 chars, doubled and capped at 10."""
    if not matches:
        return 0.0
    weights = weights or CATEGORY_WEIGHTS
    weighted = sum(weights.get(m.category, 1.0) for m in matches)
    per_thousand = weighted / max(content_length, 100) * 1000
    return round(min(10.0, per_thousand * 2), 1)


def _judge_prompt(content: str) -> str:
    return f"""Analyze this content for "slop" — filler phrases, hedging language, cliched transitions, fake enthusiasm, and generic padding that adds no information.

CONTENT:
{content[:JUDGE_CONTENT_CHARS]}

Score the slop level 0-10 where:
- 0 = Clean, every word earns its place
- 3 = Minor filler but mostly substantive
- 5 = Noticeable padding and generic phrases
- 7 = Heavy filler, reads like AI-generated content
- 10 = Almost entirely slop

Respond with JSON only:
{{
  "score": <0-10>,
  "assessment": "<1-2 sentence summary of slop issues>",
  "suggestions": ["<specific phrase to cut or rewrite>"]
}}"""


async def analyze_slop(
    content: str,
    *,
    pattern_weight: Optional[float] = None,
    ai_weight: Optional[float] = None,
    context: Optional[CallContext] = None,
) -> SlopAnalysis:
    """Hybrid slop score. Raises ScorerFailure when the model judgment fails."""
    matches = detect_patterns(content)
    base = calculate_base_score(matches, len(content))
    verdict = await run_judge("slop", _judge_prompt(content), SuggestionVerdict, context=context)

    pw = config.SLOP_PATTERN_WEIGHT if pattern_weight is None else pattern_weight
    aw = config.SLOP_AI_WEIGHT if ai_weight is None else ai_weight
    combined = min(10.0, base * pw + verdict.score * aw)
    return SlopAnalysis(
        score=round(combined, 1),
        matches=matches,
        assessment=verdict.assessment,
        suggestions=verdict.suggestions,
    )


async def deslop(
    content: str,
    analysis: Optional[SlopAnalysis] = None,
    *,
    context: Optional[CallContext] = None,
) -> str:
    """Rewrite content without its slop; the input comes back on any failure."""
    if analysis is None:
        analysis = SlopAnalysis(score=10.0, matches=detect_patterns(content))
    if analysis.score <= CLEAN_SCORE:
        logger.debug("deslop_skipped_clean", score=analysis.score)
        return content

    examples = "\n".join(f'- "{m.pattern}" ({m.category})' for m in analysis.matches[:15])
    prompt = f"""Rewrite this content to remove slop — filler phrases, hedging, cliched transitions, and generic padding. Keep the meaning and structure intact. Make every word earn its place.

ORIGINAL CONTENT:
{content}

SPECIFIC SLOP FOUND:
{examples or "- (no fixed patterns matched; rely on the rules below)"}

Rules:
1. Remove or rewrite every flagged phrase
2. Don't add new slop while removing old slop
3. Keep the same structure and meaning
4. Keep technical accuracy
5. Be direct — if a sentence is pure filler, cut it entirely
6. Preserve any specific facts, numbers, or quotes
7. Output ONLY the rewritten content, nothing else"""

    try:
        response = await llm_client.generate(
            prompt,
            task=ModelTask.DESLOP,
            temperature=0.3,
            context=context,
        )
    except Exception as e:
        logger.warning("deslop_rewrite_failed", error=str(e))
        return content

    cleaned = response.text.strip()
    if len(cleaned) < len(content) * MIN_DESLOP_RATIO:
        logger.warning(
            "deslop_output_too_short",
            original_length=len(content),
            cleaned_length=len(cleaned),
        )
        return content

    logger.info(
        "content_deslopped",
        original_length=len(content),
        cleaned_length=len(cleaned),
        reduction_pct=round((1 - len(cleaned) / max(len(content), 1)) * 100),
    )
    return cleaned
