"""
Fabricated community-reference check for content generated without evidence.

Evidence-backed content (strong or partial) is returned untouched with no
model call.  Product-only content gets one call that both lists invented
practitioner quotes or forum references and returns a cleaned rewrite.
The check fails open.
"""

from __future__ import annotations

from typing import List, Optional

import structlog
from pydantic import BaseModel, Field

from messaging_engine.contracts import EvidenceLevel, ModelTask
from messaging_engine.models.llm import CallContext
from messaging_engine.services.llm_client import llm_client

logger = structlog.get_logger(__name__)

NEEDS_VALIDATION_MARKER = "[Needs community validation]"


class GroundingResult(BaseModel):
    has_fabrication_patterns: bool = False
    fabrication_count: int = 0
    matched_patterns: List[str] = Field(default_factory=list)
    stripped_content: Optional[str] = None
    fabrication_stripped: bool = False


class _FabricationReport(BaseModel):
    fabricatedReferences: List[str] = Field(default_factory=list)
    cleanedContent: str = ""


def _prompt(content: str) -> str:
    return f"""Analyze the following content that was generated WITHOUT any real community evidence. Identify any fabricated community references — quotes attributed to practitioners, references to forum discussions, claims about community sentiment, or citations of specific posts on Reddit, Hacker News, Stack Overflow, GitHub, or other community sites.

## Content to Analyze
{content}

## Instructions
1. Find all fabricated community references (fake quotes, invented forum threads, fabricated practitioner testimonials, made-up community sentiment claims)
2. List each fabricated reference as a short description
3. Produce a cleaned version of the content with fabrications removed or replaced with product-doc-grounded claims or "{NEEDS_VALIDATION_MARKER}" markers
4. Keep all factual product claims and genuine insights
5. Maintain the same structure and format

Return JSON:
{{
  "fabricatedReferences": ["<short description of each fabricated reference found>"],
  "cleanedContent": "<the content with fabrications removed/replaced>"
}}"""


async def validate_grounding(
    content: str,
    evidence_level: EvidenceLevel,
    *,
    context: Optional[CallContext] = None,
) -> GroundingResult:
    if EvidenceLevel(evidence_level) in (EvidenceLevel.STRONG, EvidenceLevel.PARTIAL):
        return GroundingResult()

    try:
        result = await llm_client.generate_json(
            _prompt(content),
            response_model=_FabricationReport,
            task=ModelTask.PRO,
            temperature=0.3,
            max_parse_retries=1,
            context=(context or CallContext()).with_purpose("grounding_validation"),
        )
    except Exception as e:
        logger.error("fabrication_detection_failed_open", error=str(e))
        return GroundingResult()

    report = result.data
    found = [ref for ref in report.fabricatedReferences if ref.strip()]
    if not found:
        return GroundingResult()

    cleaned = report.cleanedContent.strip()
    logger.warning(
        "fabrication_patterns_stripped",
        fabrication_count=len(found),
        patterns=found[:5],
    )
    if not cleaned:
        # Nothing usable to swap in; keep the original and report the finding
        return GroundingResult(has_fabrication_patterns=True, fabrication_count=len(found), matched_patterns=found)
    return GroundingResult(
        has_fabrication_patterns=True,
        fabrication_count=len(found),
        matched_patterns=found,
        stripped_content=cleaned,
        fabrication_stripped=True,
    )
