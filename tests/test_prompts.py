import pytest

from messaging_engine.contracts import AssetType, EvidenceLevel
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.services import prompts

from conftest import SAMPLE_INSIGHTS, make_scores, make_voice


@pytest.fixture
def insights():
    return ExtractedInsights.model_validate(SAMPLE_INSIGHTS)


class TestSystemPrompt:
    def test_product_only_forbids_invented_community_references(self):
        text = prompts.build_system_prompt(make_voice(), AssetType.BATTLECARD, EvidenceLevel.PRODUCT_ONLY)
        assert "You have NO community evidence" in text
        assert "[Needs community validation]" in text

    def test_evidence_restricts_quotes_to_verified_section(self):
        text = prompts.build_system_prompt(make_voice(), AssetType.BATTLECARD, EvidenceLevel.STRONG)
        assert "Verified Community Evidence" in text
        assert "You have NO community evidence" not in text

    def test_directive_and_banned_phrases(self):
        text = prompts.build_system_prompt(
            make_voice(),
            AssetType.TALK_TRACK,
            directive=prompts.PromptDirective.POINT_OF_VIEW,
            banned_phrases=["synergy", "unlock value"],
        )
        assert "Lead with your point of view" in text
        assert 'DO NOT use: "synergy", "unlock value"' in text

    def test_default_bans_apply_without_generated_list(self):
        text = prompts.build_system_prompt(make_voice(), AssetType.TALK_TRACK)
        assert '"single pane of glass"' in text

    def test_persona_angle_follows_voice_slug(self):
        voice = make_voice(slug="sales-enablement")
        assert "arming a sales team" in prompts.build_system_prompt(voice, AssetType.TALK_TRACK)

    def test_long_form_types_get_extra_instructions(self):
        text = prompts.build_system_prompt(make_voice(), AssetType.NARRATIVE)
        assert "## Narrative Instructions" in text


class TestUserPrompts:
    def test_user_prompt_sections(self, insights):
        text = prompts.build_user_prompt(
            "Old tagline", "Focus on cost", "Research body", "TEMPLATE", AssetType.ONE_PAGER, insights
        )
        assert text.startswith("## The Pain (lead with this)")
        assert "## Existing Messaging (for reference/improvement)\nOld tagline" in text
        assert "## Competitive Research\nResearch body" in text
        assert "## Focus / Instructions\nFocus on cost" in text
        assert "## Template / Format Guide\nTEMPLATE" in text

    def test_pain_first_prompt_keeps_product_thin(self, insights):
        text = prompts.build_pain_first_prompt("Bills doubled", "TEMPLATE", AssetType.EMAIL_COPY, insights)
        assert text.startswith("## Real Practitioner Pain")
        assert "DO NOT lead with this" in text
        assert "Capabilities" not in text


def test_refinement_prompt_lists_only_failing_dimensions():
    scores = make_scores(vendor=7.5, narrative=3.0)

    text = prompts.build_refinement_prompt(
        "draft", scores, make_voice().scoring_thresholds, make_voice(), AssetType.BATTLECARD, was_deslopped=True
    )

    assert "**Vendor-Speak**: 7.5/10 (max 5)" in text
    assert "**Narrative Arc**: 3.0/10 (min 5)" in text
    assert "**Slop**" not in text
    assert "**Authenticity**" not in text
    assert "already stripped" in text


def test_asset_temperatures():
    assert prompts.asset_temperature(AssetType.SOCIAL_HOOK) == 0.85
    assert prompts.asset_temperature(AssetType.MESSAGING_TEMPLATE) == 0.5


def test_template_loading(tmp_path):
    (tmp_path / "talk-track.md").write_text("# Talk track\n- opener", encoding="utf-8")

    assert prompts.load_template(AssetType.TALK_TRACK, str(tmp_path)) == "# Talk track\n- opener"
    assert prompts.load_template(AssetType.BATTLECARD, str(tmp_path)) == "Generate Battlecard content."


class TestBannedPhrases:
    @pytest.mark.asyncio
    async def test_generated_list_is_cached_per_voice_and_domain(self, fake_llm, insights):
        provider = prompts.BannedPhraseProvider(cache={})

        first = await provider.get(make_voice(), insights)
        second = await provider.get(make_voice(), insights)

        assert first == ["leverage", "synergy", "best-in-class"]
        assert second == first
        assert len(fake_llm.calls) == 1
        assert "v1:observability" in provider.cache

    @pytest.mark.asyncio
    async def test_defaults_after_exhausted_retries(self, fake_llm, insights):
        fake_llm.responder = lambda prompt, kw: "Here are some phrases: synergy"

        phrases = await prompts.BannedPhraseProvider(cache={}).generate(make_voice(), insights)

        assert phrases == prompts.DEFAULT_BANNED_PHRASES
        assert len(fake_llm.calls) == 3
