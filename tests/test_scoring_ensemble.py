"""
Tests for the six-dimension scoring ensemble: every dimension comes from
its own scorer, and a failing scorer degrades to the neutral default with
the dimension named in scorer health.
"""

import pytest

from messaging_engine.core.exceptions import ScorerFailure
from messaging_engine.models.scoring import JudgeScore, PersonaScore, SlopAnalysis, VendorSpeakAnalysis
from messaging_engine.services.quality import scoring
from messaging_engine.services.quality.persona_critic import (
    DEFAULT_PERSONAS,
    PersonaContext,
    PersonaCriticPanel,
    average_persona_score,
)

from conftest import SAMPLE_INSIGHTS, make_voice


class StubPanel:
    def __init__(self, scores=None, error=None):
        self._scores = scores or [PersonaScore(persona="A", score=6.0), PersonaScore(persona="B", score=8.0)]
        self._error = error

    async def score(self, content, persona_context=None, *, context=None):
        if self._error is not None:
            raise self._error
        return self._scores


@pytest.fixture
def distinct_scorers(monkeypatch):
    """Every analyzer returns a different value so a crossed wire shows up."""

    async def slop(content, **kwargs):
        return SlopAnalysis(score=1.5)

    async def vendor(content, **kwargs):
        return VendorSpeakAnalysis(score=3.0)

    async def authenticity(content, **kwargs):
        return JudgeScore(score=2.0)

    async def specificity(content, product_context=(), **kwargs):
        return JudgeScore(score=8.5)

    async def narrative(content, **kwargs):
        return JudgeScore(score=6.5)

    monkeypatch.setattr(scoring, "analyze_slop", slop)
    monkeypatch.setattr(scoring, "analyze_vendor_speak", vendor)
    monkeypatch.setattr(scoring, "analyze_authenticity", authenticity)
    monkeypatch.setattr(scoring, "analyze_specificity", specificity)
    monkeypatch.setattr(scoring, "analyze_narrative_arc", narrative)


@pytest.mark.asyncio
async def test_each_dimension_comes_from_its_own_scorer(distinct_scorers):
    result = await scoring.score_content("content", panel=StubPanel())

    assert result.slop_score == 1.5
    assert result.vendor_speak_score == 3.0
    assert result.authenticity_score == 2.0
    assert result.specificity_score == 8.5
    assert result.persona_avg_score == 7.0
    assert result.narrative_arc_score == 6.5
    assert result.scorer_health.succeeded == 6
    assert result.scorer_health.failed == []
    assert result.scorer_health.total == 6


@pytest.mark.asyncio
async def test_failed_scorer_defaults_to_neutral_and_is_reported(distinct_scorers, monkeypatch):
    async def broken(content, **kwargs):
        raise ScorerFailure("authenticity", "model unavailable")

    monkeypatch.setattr(scoring, "analyze_authenticity", broken)

    result = await scoring.score_content("content", panel=StubPanel())

    assert result.authenticity_score == scoring.NEUTRAL_SCORE
    assert result.vendor_speak_score == 3.0
    assert result.scorer_health.failed == ["authenticity"]
    assert result.scorer_health.succeeded == 5


@pytest.mark.asyncio
async def test_persona_panel_failure_is_reported(distinct_scorers):
    result = await scoring.score_content(
        "content", panel=StubPanel(error=ScorerFailure("persona", "all persona critics failed"))
    )

    assert result.persona_avg_score == scoring.NEUTRAL_SCORE
    assert result.persona_scores == []
    assert result.scorer_health.failed == ["persona"]


@pytest.mark.asyncio
async def test_specificity_receives_product_context(distinct_scorers, monkeypatch):
    seen = {}

    async def specificity(content, product_context=(), **kwargs):
        seen["docs"] = product_context
        return JudgeScore(score=7.0)

    monkeypatch.setattr(scoring, "analyze_specificity", specificity)
    await scoring.score_content("content", ["Capabilities: edge filtering"], panel=StubPanel())

    assert seen["docs"] == ["Capabilities: edge filtering"]


class TestPersonaCriticPanel:
    """Critic panel behaviour against the fake dispatcher."""

    @pytest.mark.asyncio
    async def test_single_failed_critic_scores_five(self, fake_llm):
        sre_prompt = DEFAULT_PERSONAS[0].prompt
        fake_llm.json_payloads["CriticVerdict"] = lambda prompt: (
            ValueError("bad json") if prompt.startswith(sre_prompt) else {"score": 9, "feedback": "Good"}
        )

        scores = await PersonaCriticPanel(cache={}).score("content")

        assert [s.score for s in scores] == [5.0, 9.0, 9.0]
        assert scores[0].feedback == "Critic analysis failed"
        assert average_persona_score(scores) == 7.7

    @pytest.mark.asyncio
    async def test_all_critics_failing_raises(self, fake_llm):
        fake_llm.json_payloads["CriticVerdict"] = ValueError("down")

        with pytest.raises(ScorerFailure):
            await PersonaCriticPanel(cache={}).score("content")

    @pytest.mark.asyncio
    async def test_generated_panel_is_cached_per_voice_and_domain(self, fake_llm):
        from messaging_engine.models.insights import ExtractedInsights

        panel = PersonaCriticPanel(cache={})
        persona_context = PersonaContext(voice=make_voice(), insights=ExtractedInsights.model_validate(SAMPLE_INSIGHTS))

        first = await panel.get_personas(persona_context)
        second = await panel.get_personas(persona_context)

        assert [p.name for p in first] == ["On-call SRE", "FinOps Lead"]
        assert first == second
        generated = [kw for kind, _, kw in fake_llm.calls if kw.get("response_model").__name__ == "_GeneratedPanel"]
        assert len(generated) == 1
        assert "v1:observability" in panel.cache

    @pytest.mark.asyncio
    async def test_undersized_generated_panel_falls_back_to_defaults(self, fake_llm):
        from messaging_engine.models.insights import ExtractedInsights

        fake_llm.json_payloads["_GeneratedPanel"] = {"personas": [{"name": "Only one", "prompt": "Score it."}]}
        panel = PersonaCriticPanel(cache={})
        persona_context = PersonaContext(voice=make_voice(), insights=ExtractedInsights.model_validate(SAMPLE_INSIGHTS))

        personas = await panel.get_personas(persona_context)

        assert [p.name for p in personas] == [p.name for p in DEFAULT_PERSONAS]
        assert panel.cache == {}

    @pytest.mark.asyncio
    async def test_failed_generation_is_retried_on_next_request(self, fake_llm):
        from messaging_engine.models.insights import ExtractedInsights

        generated = fake_llm.json_payloads["_GeneratedPanel"]
        fake_llm.json_payloads["_GeneratedPanel"] = RuntimeError("503 UNAVAILABLE")
        panel = PersonaCriticPanel(cache={})
        persona_context = PersonaContext(voice=make_voice(), insights=ExtractedInsights.model_validate(SAMPLE_INSIGHTS))

        first = await panel.get_personas(persona_context)
        fake_llm.json_payloads["_GeneratedPanel"] = generated
        second = await panel.get_personas(persona_context)

        assert [p.name for p in first] == [p.name for p in DEFAULT_PERSONAS]
        assert [p.name for p in second] == ["On-call SRE", "FinOps Lead"]
        assert [p.name for p in panel.cache["v1:observability"]] == ["On-call SRE", "FinOps Lead"]

    def test_average_of_no_scores_is_neutral(self):
        assert average_persona_score([]) == 5.0
