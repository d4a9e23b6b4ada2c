"""
Product insight extraction.

Every pipeline distils the raw product docs once, then feeds each stage the
slice of that distillation it needs through the ``format_insights_for_*``
helpers: discovery and research prompts get little product framing,
generation prompts get the full picture.
"""

from __future__ import annotations

import re
from typing import List, Optional

import structlog

from messaging_engine.contracts import ModelTask
from messaging_engine.core.exceptions import JSONParseError
from messaging_engine.models.insights import UNKNOWN, DeepPoVInsights, ExtractedInsights
from messaging_engine.models.llm import CallContext
from messaging_engine.services.llm_client import llm_client

logger = structlog.get_logger(__name__)

MAX_DOC_CHARS = 200_000

_LIST_CAPS = {
    "product_capabilities": 12,
    "key_differentiators": 8,
    "target_personas": 6,
    "pain_points_addressed": 10,
    "claims_and_metrics": 10,
    "technical_details": 8,
}

_INSIGHT_FIELDS = """- "productName": the product's name as the docs use it
- "productCapabilities": array of specific product capabilities/features (max 12)
- "keyDifferentiators": array of what makes this product different from alternatives (max 8)
- "targetPersonas": array of who this product is for, with their roles and concerns (max 6)
- "painPointsAddressed": array of specific practitioner pain points this product solves (max 10)
- "claimsAndMetrics": array of concrete claims, numbers, benchmarks, or performance metrics (max 10)
- "technicalDetails": array of important technical details, integrations, or architecture notes (max 8)
- "summary": a 2-3 sentence summary of what this product does and why it matters
- "domain": the broad industry domain (e.g. "observability", "security", "databases", "CI/CD")
- "category": the product category within that domain (e.g. "log management", "SIEM", "APM")
- "productType": the type of product (e.g. "SaaS platform", "open-source tool", "managed service", "on-prem appliance")"""

_DEEP_POV_FIELDS = """- "pointOfView": the product's worldview in one or two sentences: what does it believe the industry gets wrong?
- "thesis": the single argument the messaging should prove
- "contrarianTake": the conventional wisdom this product pushes back on, and why
- "narrativeArc": an object with "problem", "insight", "approach" and "outcome" strings
- "strongestClaims": array of objects {"claim", "evidence"} for the 3-5 claims the docs actually back up"""


def _cap_lists(insights: ExtractedInsights) -> ExtractedInsights:
    return insights.model_copy(
        update={name: getattr(insights, name)[:cap] for name, cap in _LIST_CAPS.items()}
    )


async def extract_insights(
    product_docs: str,
    *,
    context: Optional[CallContext] = None,
) -> ExtractedInsights:
    """Distil product docs into structured insights on the fast model.

    Provider and parse failures propagate; see ``extract_insights_or_fallback``.
    """
    prompt = f"""Analyze the following product documentation and extract structured insights.

## Documentation
{product_docs[:MAX_DOC_CHARS]}

Return a JSON object with these fields:
{_INSIGHT_FIELDS}

Be specific. Extract actual details, not generic descriptions. If the docs mention specific numbers, include them."""

    result = await llm_client.generate_json(
        prompt,
        response_model=ExtractedInsights,
        task=ModelTask.FLASH,
        temperature=0.2,
        max_tokens=4000,
        context=context,
    )
    return _cap_lists(result.data)


async def extract_deep_pov(
    product_docs: str,
    *,
    context: Optional[CallContext] = None,
) -> Optional[DeepPoVInsights]:
    """Insights plus the argued point of view, on the high-reasoning model.

    Returns None on any failure so callers can fall back to plain extraction.
    """
    prompt = f"""Read the following product documentation the way a strategist preparing a keynote would. Extract the facts, then work out the argument the product is making.

## Documentation
{product_docs[:MAX_DOC_CHARS]}

Return a JSON object with these fields:
{_INSIGHT_FIELDS}
{_DEEP_POV_FIELDS}

Ground every field in the docs. Do not invent metrics, customers or quotes."""

    try:
        result = await llm_client.generate_json(
            prompt,
            response_model=DeepPoVInsights,
            task=ModelTask.PRO,
            temperature=0.3,
            max_tokens=6000,
            context=context,
        )
    except Exception as e:
        logger.warning("deep_pov_extraction_failed", error=str(e))
        return None
    pov = _cap_lists(result.data)
    if not pov.point_of_view and not pov.thesis:
        logger.warning("deep_pov_extraction_empty")
        return None
    return pov


def build_fallback_insights(product_docs: str) -> ExtractedInsights:
    """Minimal insights from the raw docs, no model call."""
    excerpt = product_docs[:2000].strip()
    first_sentences = ". ".join(re.split(r"[.!?]\s+", excerpt)[:3]) + "."
    return ExtractedInsights(summary=first_sentences)


async def extract_insights_or_fallback(
    product_docs: str,
    *,
    context: Optional[CallContext] = None,
) -> ExtractedInsights:
    """Unparseable model output degrades to fallback insights.

    Provider errors are not absorbed: without a reachable model the job
    cannot generate anything either.
    """
    try:
        return await extract_insights(product_docs, context=context)
    except JSONParseError as e:
        logger.warning("insight_extraction_unparseable", error=str(e))
        return build_fallback_insights(product_docs)


# ---------------------------------------------------------------------------
# Tiered formatters
# ---------------------------------------------------------------------------


def _bullets(items: List[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def format_insights_for_discovery(insights: ExtractedInsights) -> str:
    """Domain / category / type only, with no product framing."""
    parts = [p for p in (insights.domain, insights.category, insights.product_type) if p and p != UNKNOWN]
    return " / ".join(parts)


def format_insights_for_research(insights: ExtractedInsights) -> str:
    sections: List[str] = []
    if insights.summary:
        sections.append(f"Product: {insights.summary}")
    if insights.product_capabilities:
        sections.append(f"Capabilities:\n{_bullets(insights.product_capabilities)}")
    if insights.key_differentiators:
        sections.append(f"Key Differentiators:\n{_bullets(insights.key_differentiators)}")
    if insights.target_personas:
        sections.append(f"Target Personas:\n{_bullets(insights.target_personas)}")
    return "\n\n".join(sections)


def format_insights_for_prompt(insights: ExtractedInsights) -> str:
    sections: List[str] = [f"### Product Summary\n{insights.summary}"]
    for title, items in (
        ("Pain Points Addressed", insights.pain_points_addressed),
        ("Capabilities", insights.product_capabilities),
        ("Key Differentiators", insights.key_differentiators),
        ("Claims & Metrics", insights.claims_and_metrics),
        ("Target Personas", insights.target_personas),
        ("Technical Details", insights.technical_details),
    ):
        if items:
            sections.append(f"### {title}\n{_bullets(items)}")
    return "\n\n".join(sections)


def format_insights_for_scoring(insights: ExtractedInsights) -> str:
    sections: List[str] = []
    for title, items in (
        ("Capabilities", insights.product_capabilities),
        ("Claims & Metrics", insights.claims_and_metrics),
        ("Differentiators", insights.key_differentiators),
    ):
        if items:
            sections.append(f"{title}:\n{_bullets(items)}")
    return "\n\n".join(sections)
