import pytest

from messaging_engine.contracts import EvidenceLevel, ModelTask
from messaging_engine.services.quality.grounding_validator import validate_grounding

FABRICATED = (
    "As one engineer on r/devops noted, our log bill doubled overnight. "
    "Tracelane drops debug lines at the edge."
)


@pytest.mark.asyncio
async def test_product_only_content_has_fabrications_stripped(fake_llm):
    fake_llm.json_payloads["_FabricationReport"] = {
        "fabricatedReferences": ['"as one engineer on r/devops noted" (no such quote in the evidence)'],
        "cleanedContent": "Log bills can double overnight. Tracelane drops debug lines at the edge.",
    }

    result = await validate_grounding(FABRICATED, EvidenceLevel.PRODUCT_ONLY)

    assert result.fabrication_stripped is True
    assert result.has_fabrication_patterns is True
    assert result.fabrication_count == 1
    assert "r/devops" not in result.stripped_content
    _, _, kwargs = fake_llm.calls[0]
    assert kwargs["task"] == ModelTask.PRO


@pytest.mark.asyncio
@pytest.mark.parametrize("level", [EvidenceLevel.STRONG, EvidenceLevel.PARTIAL])
async def test_real_evidence_is_not_checked(fake_llm, level):
    result = await validate_grounding(FABRICATED, level)

    assert result.fabrication_stripped is False
    assert result.stripped_content is None
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_clean_content_is_left_alone(fake_llm):
    result = await validate_grounding("Tracelane drops debug lines at the edge.", EvidenceLevel.PRODUCT_ONLY)

    assert result.fabrication_stripped is False
    assert result.fabrication_count == 0


@pytest.mark.asyncio
async def test_detector_failure_fails_open(fake_llm):
    fake_llm.json_payloads["_FabricationReport"] = RuntimeError("model unavailable")

    result = await validate_grounding(FABRICATED, EvidenceLevel.PRODUCT_ONLY)

    assert result.fabrication_stripped is False
    assert result.stripped_content is None


@pytest.mark.asyncio
async def test_empty_rewrite_keeps_original_but_reports(fake_llm):
    fake_llm.json_payloads["_FabricationReport"] = {
        "fabricatedReferences": ["invented Reddit quote"],
        "cleanedContent": "   ",
    }

    result = await validate_grounding(FABRICATED, EvidenceLevel.PRODUCT_ONLY)

    assert result.has_fabrication_patterns is True
    assert result.fabrication_stripped is False
    assert result.stripped_content is None
