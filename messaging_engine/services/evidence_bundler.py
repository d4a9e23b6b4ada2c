"""
Community and competitive research for generation jobs.

Community research asks a deep-research agent (or, in
``grounded_search`` mode, a single grounded search call) for practitioner
discussion of the product's problem space, then turns the cited sources
into an ``EvidenceBundle`` whose level gates what generation may claim.
Competitive research uses the same primitive and only returns text.

Neither entry point raises: failures come back as an empty bundle (with
``error`` set) or an empty string.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Set
from urllib.parse import urlparse

import structlog

from messaging_engine.contracts import EvidenceLevel
from messaging_engine.core import config
from messaging_engine.models.evidence import EvidenceBundle, PractitionerQuote
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.llm import CallContext, ResearchSource
from messaging_engine.services import deep_research
from messaging_engine.services.deep_research import ProgressCallback
from messaging_engine.services.insights import format_insights_for_discovery
from messaging_engine.services.llm_client import llm_client
from messaging_engine.services.prompts import build_research_prompt_from_insights

logger = structlog.get_logger(__name__)

# Research text shorter than this is not treated as grounded evidence
MIN_GROUNDED_TEXT_CHARS = 100

EVIDENCE_HEADER = "## Verified Community Evidence (USE ONLY THESE)\n\n"


def classify_evidence_level(
    post_count: int,
    source_hosts: Iterable[str],
    has_search_text: bool,
) -> EvidenceLevel:
    """strong: >=3 posts over >=2 hosts; partial: any post or grounded text."""
    hosts: Set[str] = set(source_hosts)
    if post_count >= 3 and len(hosts) >= 2:
        return EvidenceLevel.STRONG
    if post_count >= 1 or has_search_text:
        return EvidenceLevel.PARTIAL
    return EvidenceLevel.PRODUCT_ONLY


def source_host(url: str) -> str:
    """Hostname without a leading ``www.``; ``web`` when unparseable."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        host = ""
    if not host:
        return "web"
    return host[4:] if host.startswith("www.") else host


def build_community_prompt(insights: ExtractedInsights, focus: Optional[str] = None) -> str:
    focus_block = f"## Focus Area\n{focus}\n" if focus else ""
    return f"""Search Reddit, Hacker News, Stack Overflow, GitHub Issues, developer blogs, and other practitioner communities for real discussions, complaints, and pain points related to this product area.

## Product Area
{format_insights_for_discovery(insights)}

{focus_block}
## What to Find
1. Real practitioner quotes expressing frustration with current tools in this space
2. Common complaints and pain points from community discussions
3. What practitioners wish existed or worked better
4. Specific scenarios where current solutions fail them
5. The language practitioners actually use to describe these problems

## Output Format
Organize findings as:
- **Practitioner Quotes**: Verbatim quotes from real community posts (include source URL and community name like "Reddit r/devops" or "HN comment")
- **Common Pain Points**: Recurring themes across communities
- **Wished-For Solutions**: What practitioners say they want
- **Language Patterns**: The specific words and phrases practitioners use (not vendor language)

Be specific. Include actual quotes with source URLs."""


def build_evidence_bundle(text: str, sources: List[ResearchSource]) -> EvidenceBundle:
    """Turn research text plus cited sources into a classified bundle."""
    unique: dict = {}
    for source in sources:
        unique.setdefault(source.url, source)
    deduped = list(unique.values())

    quotes = [
        PractitionerQuote(text=s.snippet or s.title, source=source_host(s.url), source_url=s.url)
        for s in deduped
    ]
    hosts = {source_host(s.url) for s in deduped}

    source_counts = {"deep_research": 1}
    for s in deduped:
        host = source_host(s.url)
        source_counts[host] = source_counts.get(host, 0) + 1

    level = classify_evidence_level(len(deduped), hosts, len(text or "") > MIN_GROUNDED_TEXT_CHARS)

    context_text = EVIDENCE_HEADER + (text or "") + "\n\n"
    if deduped:
        context_text += "Sources:\n" + "".join(f"- [{s.title}]({s.url})\n" for s in deduped)

    return EvidenceBundle(
        post_count=len(deduped),
        practitioner_quotes=quotes,
        context_text=context_text,
        evidence_level=level,
        source_counts=source_counts,
    )


async def run_community_research(
    insights: ExtractedInsights,
    focus: Optional[str] = None,
    *,
    on_progress: Optional[ProgressCallback] = None,
    context: Optional[CallContext] = None,
    mode: Optional[str] = None,
) -> EvidenceBundle:
    research_prompt = build_community_prompt(insights, focus)
    research_mode = (mode or config.COMMUNITY_RESEARCH_MODE).lower()
    try:
        if research_mode == "grounded_search":
            found = await llm_client.grounded_search(research_prompt, context=context)
            text, sources = found.text, found.sources
        else:
            result = await deep_research.deep_research_client.run(
                research_prompt, on_progress, context=context
            )
            text, sources = result.text, result.sources
    except Exception as e:
        logger.error("community_research_failed", mode=research_mode, error=str(e))
        return EvidenceBundle.empty(error=str(e))

    bundle = build_evidence_bundle(text, sources)
    logger.info(
        "community_research_complete",
        mode=research_mode,
        source_urls=bundle.post_count,
        unique_hosts=len(bundle.source_counts) - 1,
        evidence_level=bundle.evidence_level.value,
        text_length=len(text or ""),
    )
    return bundle


async def run_competitive_research(
    insights: ExtractedInsights,
    focus: Optional[str] = None,
    *,
    on_progress: Optional[ProgressCallback] = None,
    context: Optional[CallContext] = None,
) -> str:
    """Advisory competitive context; empty string when research fails."""
    try:
        result = await deep_research.deep_research_client.run(
            build_research_prompt_from_insights(insights, focus),
            on_progress,
            context=context,
        )
    except Exception as e:
        logger.warning("competitive_research_failed", error=str(e))
        return ""
    return result.text
