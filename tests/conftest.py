"""
Shared fixtures for the messaging engine test suite.

Model calls never leave the process: ``fake_llm`` swaps the dispatcher
singleton's ``generate``/``generate_json`` for recorders that answer from
canned payloads keyed by the requested response model.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from messaging_engine.contracts import AssetType, PipelineName
from messaging_engine.models.jobs import JobSubmission, VoiceProfile
from messaging_engine.models.llm import JSONResult, LLMResponse
from messaging_engine.models.scoring import ScoreResult, ScorerHealth
from messaging_engine.services.llm_client import llm_client
from messaging_engine.services.pipeline.job_store import JobStore
from messaging_engine.services.pipeline.orchestrator import PipelineRuntime
from messaging_engine.services.pipeline.storage import InMemoryVariantStore, InMemoryVoiceProfiles
from messaging_engine.services.prompts import BannedPhraseProvider
from messaging_engine.services.quality.persona_critic import PersonaCriticPanel
from messaging_engine.services.rate_limiter import rate_limiters
from messaging_engine.services.telemetry_pipeline import telemetry_pipeline
from messaging_engine.services.usage_tracker import usage_tracker
from messaging_engine.utils.retry import RetryConfig


SAMPLE_DOCS = (
    "Tracelane is a log pipeline that drops noisy debug lines at the edge. "
    "Teams cut ingest volume by 40% in the first week. It runs as a sidecar."
)

SAMPLE_INSIGHTS: Dict[str, Any] = {
    "productName": "Tracelane",
    "productCapabilities": ["Edge filtering of debug logs", "Sidecar deployment"],
    "keyDifferentiators": ["Filters before ingest, not after"],
    "targetPersonas": ["SRE", "Platform engineer"],
    "painPointsAddressed": ["Ingest bills grow faster than traffic"],
    "claimsAndMetrics": ["40% lower ingest volume in week one"],
    "technicalDetails": ["Runs as a Kubernetes sidecar"],
    "summary": "Tracelane drops noisy logs before they are billed.",
    "domain": "observability",
    "category": "log management",
    "productType": "open-source tool",
}

# Payloads returned by the fake dispatcher, keyed by response model class name
DEFAULT_JSON_PAYLOADS: Dict[str, Any] = {
    "ExtractedInsights": SAMPLE_INSIGHTS,
    "DeepPoVInsights": {
        **SAMPLE_INSIGHTS,
        "pointOfView": "Log cost is a filtering problem, not a storage problem.",
        "thesis": "Filter at the edge and the bill follows.",
        "narrativeArc": {"problem": "Bills", "insight": "Noise", "approach": "Edge", "outcome": "Savings"},
    },
    "_GeneratedPanel": {
        "personas": [
            {"name": "On-call SRE", "prompt": "You carry the pager. Score 0-10."},
            {"name": "FinOps Lead", "prompt": "You own the bill. Score 0-10."},
        ]
    },
    "_FabricationReport": {"fabricatedReferences": [], "cleanedContent": ""},
}
DEFAULT_VERDICT = {"score": 7.0, "assessment": "Solid."}


def default_text_responder(prompt: str, kwargs: Dict[str, Any]) -> str:
    if "JSON array" in prompt:
        return '["leverage", "synergy", "best-in-class"]'
    return "Your on-call rotation should not pay for debug logs nobody reads."


class FakeLLM:
    """Records every dispatcher call and answers from canned payloads."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.responder: Callable[[str, Dict[str, Any]], Any] = default_text_responder
        self.json_payloads: Dict[str, Any] = dict(DEFAULT_JSON_PAYLOADS)

    async def generate(self, prompt: str, **kwargs: Any) -> LLMResponse:
        self.calls.append(("generate", prompt, kwargs))
        text = self.responder(prompt, kwargs)
        if isinstance(text, Exception):
            raise text
        return LLMResponse(text=text, model=kwargs.get("model") or "fake-model", backend="gemini")

    async def generate_json(self, prompt: str, *, response_model=None, **kwargs: Any) -> JSONResult:
        kwargs["response_model"] = response_model
        self.calls.append(("generate_json", prompt, kwargs))
        name = response_model.__name__ if response_model is not None else None
        payload = self.json_payloads.get(name, DEFAULT_VERDICT)
        if callable(payload):
            payload = payload(prompt)
        if isinstance(payload, Exception):
            raise payload
        data = response_model.model_validate(payload) if response_model is not None else payload
        return JSONResult(data=data, model="fake-model")

    def prompts(self, kind: str = "generate") -> List[str]:
        return [prompt for k, prompt, _ in self.calls if k == kind]


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch):
    """No telemetry drain tasks, no real backoff sleeps, fresh counters."""
    monkeypatch.setattr(telemetry_pipeline, "_enabled", False)
    monkeypatch.setattr(RetryConfig, "PROVIDER_BACKOFF_BASE_SEC", 0.0)
    monkeypatch.setattr(RetryConfig, "GROUNDED_EMPTY_DELAY_SEC", 0.0)
    monkeypatch.setattr(RetryConfig, "BANNED_PHRASES_RETRY_DELAY_SEC", 0.0)
    usage_tracker.reset()
    rate_limiters.reset()
    yield
    usage_tracker.reset()
    rate_limiters.reset()


@pytest.fixture
def fake_llm(monkeypatch) -> FakeLLM:
    fake = FakeLLM()
    monkeypatch.setattr(llm_client, "generate", fake.generate)
    monkeypatch.setattr(llm_client, "generate_json", fake.generate_json)
    return fake


def make_voice(voice_id: str = "v1", name: str = "Practitioner", **overrides: Any) -> VoiceProfile:
    fields: Dict[str, Any] = {
        "id": voice_id,
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "description": "Peer-to-peer, no marketing gloss",
        "voice_guide": "Talk like an engineer who has been paged.",
    }
    fields.update(overrides)
    return VoiceProfile(**fields)


def make_scores(
    slop: float = 2.0,
    vendor: float = 2.0,
    authenticity: float = 8.0,
    specificity: float = 8.0,
    persona: float = 8.0,
    narrative: float = 7.0,
    failed: Optional[List[str]] = None,
) -> ScoreResult:
    failed = list(failed or [])
    return ScoreResult(
        slop_score=slop,
        vendor_speak_score=vendor,
        authenticity_score=authenticity,
        specificity_score=specificity,
        persona_avg_score=persona,
        narrative_arc_score=narrative,
        scorer_health=ScorerHealth(succeeded=6 - len(failed), failed=failed, total=6),
    )


def make_submission(
    pipeline: Any = PipelineName.STANDARD,
    asset_types: Optional[List[AssetType]] = None,
    voice_ids: Optional[List[str]] = None,
    **overrides: Any,
) -> JobSubmission:
    fields: Dict[str, Any] = {
        "product_docs": SAMPLE_DOCS,
        "prompt": "Launch for platform teams",
        "voice_profile_ids": voice_ids or ["v1"],
        "asset_types": asset_types or [AssetType.BATTLECARD],
        "pipeline": pipeline,
    }
    fields.update(overrides)
    return JobSubmission(**fields)


@pytest.fixture
def voice() -> VoiceProfile:
    return make_voice()


@pytest.fixture
def runtime(voice, tmp_path) -> PipelineRuntime:
    return PipelineRuntime(
        jobs=JobStore(),
        variants=InMemoryVariantStore(),
        voices=InMemoryVoiceProfiles([voice]),
        banned_phrases=BannedPhraseProvider(cache={}),
        personas=PersonaCriticPanel(cache={}),
        max_parallel_variants=2,
        refinement_max_iterations=3,
        template_dir=str(tmp_path),
    )
