import pytest

from messaging_engine.contracts import AssetType, EvidenceLevel
from messaging_engine.models.evidence import EvidenceBundle, PractitionerQuote
from messaging_engine.models.jobs import GenerationOutcome, JobSubmission
from messaging_engine.models.scoring import ScoringThresholds
from messaging_engine.services.pipeline import orchestrator

from conftest import make_scores, make_voice

FAILING = make_scores(authenticity=4.0)
BETTER_BUT_FAILING = make_scores(authenticity=5.0)
PASSING = make_scores()


def scripted_scores(monkeypatch, *results):
    """Patch ``score_content`` to hand out ``results`` in order."""
    queue = list(results)
    scored = []

    async def fake_score(content, product_context=(), persona_context=None, *, panel=None, context=None):
        scored.append(content)
        return queue.pop(0)

    monkeypatch.setattr(orchestrator, "score_content", fake_score)
    return scored


def refine_kwargs(**overrides):
    kwargs = dict(
        scoring_context="Capabilities: edge filtering",
        thresholds=ScoringThresholds(),
        voice=make_voice(),
        asset_type=AssetType.BATTLECARD,
        system_prompt="system",
        max_iterations=3,
    )
    kwargs.update(overrides)
    return kwargs


@pytest.mark.asyncio
async def test_passing_content_is_not_refined(fake_llm, monkeypatch):
    scripted_scores(monkeypatch)

    result = await orchestrator.refinement_loop("draft", initial_scores=PASSING, **refine_kwargs())

    assert result.content == "draft"
    assert result.passes_gates is True
    assert result.iterations == 0
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_refines_until_gates_pass(fake_llm, monkeypatch):
    scripted_scores(monkeypatch, BETTER_BUT_FAILING, PASSING)
    drafts = iter(["second", "third"])
    fake_llm.responder = lambda prompt, kw: next(drafts)

    result = await orchestrator.refinement_loop("first", initial_scores=FAILING, **refine_kwargs())

    assert result.content == "third"
    assert result.passes_gates is True
    assert result.iterations == 2


@pytest.mark.asyncio
async def test_plateau_keeps_best_content(fake_llm, monkeypatch):
    worse = make_scores(authenticity=3.0)
    scripted_scores(monkeypatch, worse)
    fake_llm.responder = lambda prompt, kw: "worse rewrite"

    result = await orchestrator.refinement_loop("original", initial_scores=FAILING, **refine_kwargs())

    assert result.content == "original"
    assert result.scores == FAILING
    assert result.passes_gates is False
    assert result.iterations == 1


@pytest.mark.asyncio
async def test_equal_score_counts_as_plateau(fake_llm, monkeypatch):
    scripted_scores(monkeypatch, FAILING)
    fake_llm.responder = lambda prompt, kw: "same quality"

    result = await orchestrator.refinement_loop("original", initial_scores=FAILING, **refine_kwargs())

    assert result.content == "original"


@pytest.mark.asyncio
async def test_iteration_cap_is_respected(fake_llm, monkeypatch):
    improving = [make_scores(authenticity=4.0 + 0.1 * i) for i in range(1, 6)]
    scripted_scores(monkeypatch, *improving)

    result = await orchestrator.refinement_loop("v0", initial_scores=FAILING, **refine_kwargs(max_iterations=2))

    assert result.iterations == 2
    assert len(fake_llm.prompts()) == 2


@pytest.mark.asyncio
async def test_degraded_scoring_flags_manual_review(fake_llm, monkeypatch):
    scripted_scores(monkeypatch)
    degraded = make_scores(authenticity=4.0, failed=["authenticity", "persona"])

    result = await orchestrator.refinement_loop("draft", initial_scores=degraded, **refine_kwargs())

    assert result.needs_manual_review is True
    assert result.content == "draft"
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_generation_error_ends_loop_with_best_so_far(fake_llm, monkeypatch):
    scripted_scores(monkeypatch)
    fake_llm.responder = lambda prompt, kw: RuntimeError("provider down")

    result = await orchestrator.refinement_loop("draft", initial_scores=FAILING, **refine_kwargs())

    assert result.content == "draft"
    assert result.iterations == 0


@pytest.mark.asyncio
async def test_sloppy_content_is_deslopped_before_refinement(fake_llm, monkeypatch):
    sloppy = make_scores(slop=7.0)
    scripted_scores(monkeypatch, PASSING)

    def responder(prompt, kw):
        if prompt.startswith("Rewrite this content to remove slop"):
            return "Deslopped draft that keeps the facts intact and the numbers too."
        return "refined"

    fake_llm.responder = responder

    result = await orchestrator.refinement_loop(
        "Needless to say, this draft keeps the facts intact and the numbers too.",
        initial_scores=sloppy,
        **refine_kwargs(),
    )

    assert result.content == "refined"
    refinement_prompt = fake_llm.prompts()[1]
    assert "Deslopped draft" in refinement_prompt


@pytest.mark.asyncio
async def test_initial_scores_are_computed_when_missing(fake_llm, monkeypatch):
    scored = scripted_scores(monkeypatch, PASSING)

    result = await orchestrator.refinement_loop("draft", **refine_kwargs())

    assert scored == ["draft"]
    assert result.passes_gates is True


@pytest.mark.asyncio
async def test_generate_and_score_uses_asset_temperature(fake_llm, monkeypatch):
    scripted_scores(monkeypatch, PASSING)

    outcome = await orchestrator.generate_and_score(
        "user prompt",
        "system prompt",
        asset_type=AssetType.SOCIAL_HOOK,
        scoring_context="ctx",
        thresholds=ScoringThresholds(),
    )

    _, _, kwargs = fake_llm.calls[0]
    assert kwargs["temperature"] == orchestrator.asset_temperature(AssetType.SOCIAL_HOOK)
    assert kwargs["system_prompt"] == "system prompt"
    assert outcome.passes_gates is True


class TestStoreVariant:
    @pytest.mark.asyncio
    async def test_product_only_fabrications_are_stripped(self, runtime, fake_llm):
        fake_llm.json_payloads["_FabricationReport"] = {
            "fabricatedReferences": ["as one engineer on r/devops noted"],
            "cleanedContent": "Edge filtering cuts ingest volume.",
        }
        job = await runtime.jobs.create(JobSubmission(product_docs="docs"))
        outcome = GenerationOutcome(
            content="As one engineer on r/devops noted, edge filtering cuts ingest volume.",
            scores=PASSING,
            passes_gates=True,
        )

        variant = await orchestrator.store_variant(
            runtime,
            job.id,
            AssetType.BATTLECARD,
            make_voice(),
            outcome,
            evidence=EvidenceBundle(),
            system_prompt="s" * 20000,
            user_prompt="u",
        )

        assert variant.content == "Edge filtering cuts ingest volume."
        assert variant.metadata["fabricationStripped"] is True
        assert variant.status == "review"
        assert variant.evidence_level == EvidenceLevel.PRODUCT_ONLY
        assert len(variant.traceability.generation_prompt.system) == 10000
        assert runtime.variants.for_job(job.id) == [variant]

    @pytest.mark.asyncio
    async def test_scored_as_is_content_is_stored_unchanged(self, runtime, fake_llm):
        job = await runtime.jobs.create(JobSubmission(product_docs="docs"))
        outcome = GenerationOutcome(content="  exact bytes\n", scores=FAILING, passes_gates=False)

        variant = await orchestrator.store_variant(runtime, job.id, AssetType.ONE_PAGER, make_voice(), outcome)

        assert variant.content == "  exact bytes\n"
        assert variant.status == "draft"
        assert fake_llm.calls == []

    @pytest.mark.asyncio
    async def test_evidence_is_carried_into_traceability(self, runtime, fake_llm):
        evidence = EvidenceBundle(
            post_count=3,
            practitioner_quotes=[PractitionerQuote(text="Bills doubled", source="reddit.com")],
            evidence_level=EvidenceLevel.STRONG,
            source_counts={"deep_research": 1, "reddit.com": 3},
        )
        job = await runtime.jobs.create(JobSubmission(product_docs="docs"))
        outcome = GenerationOutcome(content="content", scores=PASSING, passes_gates=True, needs_manual_review=True)

        variant = await orchestrator.store_variant(
            runtime, job.id, AssetType.BATTLECARD, make_voice(), outcome, evidence=evidence, prompt="Q3 launch"
        )

        assert variant.evidence_level == EvidenceLevel.STRONG
        assert variant.traceability.practitioner_quotes[0].text == "Bills doubled"
        assert variant.metadata["sourceCounts"] == {"deep_research": 1, "reddit.com": 3}
        assert variant.metadata["needsManualReview"] is True
        assert variant.title == "Battlecard: Q3 launch"
        assert fake_llm.calls == []
