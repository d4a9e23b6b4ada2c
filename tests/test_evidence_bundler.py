import pytest

from messaging_engine.contracts import EvidenceLevel
from messaging_engine.core.exceptions import ResearchTimeout
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.llm import GroundedSearchResult, ResearchResult, ResearchSource
from messaging_engine.services import deep_research, evidence_bundler
from messaging_engine.services.evidence_bundler import (
    build_evidence_bundle,
    classify_evidence_level,
    run_community_research,
    run_competitive_research,
    source_host,
)
from messaging_engine.services.llm_client import llm_client

from conftest import SAMPLE_INSIGHTS

LONG_TEXT = "Practitioners on r/devops keep asking why their log bill doubled. " * 3


@pytest.fixture
def insights():
    return ExtractedInsights.model_validate(SAMPLE_INSIGHTS)


class TestClassification:
    @pytest.mark.parametrize(
        "posts,hosts,has_text,expected",
        [
            (3, {"reddit.com", "news.ycombinator.com"}, False, EvidenceLevel.STRONG),
            (5, {"reddit.com"}, True, EvidenceLevel.PARTIAL),
            (2, {"reddit.com", "github.com"}, False, EvidenceLevel.PARTIAL),
            (0, set(), True, EvidenceLevel.PARTIAL),
            (0, set(), False, EvidenceLevel.PRODUCT_ONLY),
        ],
    )
    def test_levels(self, posts, hosts, has_text, expected):
        assert classify_evidence_level(posts, hosts, has_text) == expected

    def test_host_normalisation(self):
        assert source_host("https://www.reddit.com/r/sre/1") == "reddit.com"
        assert source_host("https://news.ycombinator.com/item?id=1") == "news.ycombinator.com"
        assert source_host("not a url") == "web"


class TestBundle:
    def test_duplicate_urls_are_counted_once(self):
        sources = [
            ResearchSource(title="A", url="https://www.reddit.com/r/devops/1", snippet="Bill doubled"),
            ResearchSource(title="A again", url="https://www.reddit.com/r/devops/1"),
            ResearchSource(title="B", url="https://news.ycombinator.com/item?id=9"),
            ResearchSource(title="C", url="https://github.com/org/repo/issues/4"),
        ]

        bundle = build_evidence_bundle(LONG_TEXT, sources)

        assert bundle.post_count == 3
        assert bundle.evidence_level == EvidenceLevel.STRONG
        assert bundle.source_counts == {
            "deep_research": 1,
            "reddit.com": 1,
            "news.ycombinator.com": 1,
            "github.com": 1,
        }
        assert bundle.practitioner_quotes[0].text == "Bill doubled"
        assert bundle.practitioner_quotes[1].text == "B"
        assert bundle.context_text.startswith(evidence_bundler.EVIDENCE_HEADER)
        assert "- [C](https://github.com/org/repo/issues/4)" in bundle.context_text

    def test_text_without_sources_is_partial(self):
        bundle = build_evidence_bundle(LONG_TEXT, [])
        assert bundle.evidence_level == EvidenceLevel.PARTIAL
        assert bundle.post_count == 0

    def test_short_text_without_sources_is_product_only(self):
        assert build_evidence_bundle("nothing found", []).evidence_level == EvidenceLevel.PRODUCT_ONLY


class TestCommunityResearch:
    @pytest.mark.asyncio
    async def test_deep_research_result_becomes_bundle(self, insights, monkeypatch):
        seen = {}

        async def fake_run(prompt, on_progress=None, *, context=None):
            seen["prompt"] = prompt
            return ResearchResult(
                interaction_id="r1",
                text=LONG_TEXT,
                sources=[ResearchSource(url="https://reddit.com/r/sre/1")],
            )

        monkeypatch.setattr(deep_research.deep_research_client, "run", fake_run)

        bundle = await run_community_research(insights, "platform teams", mode="deep_research")

        assert bundle.evidence_level == EvidenceLevel.PARTIAL
        assert bundle.error is None
        # Discovery prompts carry the problem space, not the product pitch
        assert "observability / log management / open-source tool" in seen["prompt"]
        assert "Tracelane" not in seen["prompt"]
        assert "## Focus Area\nplatform teams" in seen["prompt"]

    @pytest.mark.asyncio
    async def test_grounded_search_mode(self, insights, monkeypatch):
        async def fake_search(query, **kwargs):
            return GroundedSearchResult(
                text=LONG_TEXT,
                sources=[
                    ResearchSource(url="https://reddit.com/r/sre/1"),
                    ResearchSource(url="https://news.ycombinator.com/item?id=2"),
                    ResearchSource(url="https://stackoverflow.com/q/3"),
                ],
            )

        monkeypatch.setattr(llm_client, "grounded_search", fake_search)

        bundle = await run_community_research(insights, mode="grounded_search")

        assert bundle.evidence_level == EvidenceLevel.STRONG

    @pytest.mark.asyncio
    async def test_failure_yields_empty_bundle(self, insights, monkeypatch):
        async def fake_run(prompt, on_progress=None, *, context=None):
            raise ResearchTimeout("r1", 3600)

        monkeypatch.setattr(deep_research.deep_research_client, "run", fake_run)

        bundle = await run_community_research(insights, mode="deep_research")

        assert bundle.evidence_level == EvidenceLevel.PRODUCT_ONLY
        assert bundle.post_count == 0
        assert "timed out" in bundle.error


class TestCompetitiveResearch:
    @pytest.mark.asyncio
    async def test_returns_report_text(self, insights, monkeypatch):
        async def fake_run(prompt, on_progress=None, *, context=None):
            assert "Conduct competitive research" in prompt
            return ResearchResult(interaction_id="r2", text="Vendor X charges per GB.")

        monkeypatch.setattr(deep_research.deep_research_client, "run", fake_run)

        assert await run_competitive_research(insights, "pricing") == "Vendor X charges per GB."

    @pytest.mark.asyncio
    async def test_failure_yields_empty_string(self, insights, monkeypatch):
        async def fake_run(prompt, on_progress=None, *, context=None):
            raise RuntimeError("quota")

        monkeypatch.setattr(deep_research.deep_research_client, "run", fake_run)

        assert await run_competitive_research(insights) == ""
