"""
Dispatcher tests: backend routing, retry and auth behaviour, JSON
self-correction and grounded-search empty-reply retries.

SDK clients are replaced by SimpleNamespace trees with AsyncMock leaves so
no network or API key is needed (except where a missing key is the point).
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel, ValidationError

from messaging_engine.contracts import Backend
from messaging_engine.core.exceptions import AuthError, JSONParseError, ProviderError
from messaging_engine.models.llm import CallContext, LLMResponse
from messaging_engine.services.llm_client import LLMClient, resolve_backend
from messaging_engine.services.quality.judge import Verdict as JudgeVerdict
from messaging_engine.services.rate_limiter import RateLimiterRegistry
from messaging_engine.services.telemetry_pipeline import TelemetryPipeline
from messaging_engine.services.usage_tracker import UsageTracker
from messaging_engine.utils.retry import RetryConfig


class RecordingSink:
    def __init__(self):
        self.records = []

    async def write(self, record):
        self.records.append(record)


@pytest.fixture
def client():
    return LLMClient(
        limiters=RateLimiterRegistry(),
        telemetry=TelemetryPipeline(enabled=False),
        usage=UsageTracker(),
    )


def gemini_raw(text="ok", sources=()):
    chunks = [SimpleNamespace(web=SimpleNamespace(uri=url, title=title)) for title, url in sources]
    return SimpleNamespace(
        text=text,
        usage_metadata=SimpleNamespace(
            prompt_token_count=3, candidates_token_count=4, total_token_count=7, cached_content_token_count=0
        ),
        candidates=[
            SimpleNamespace(
                finish_reason=SimpleNamespace(name="STOP"),
                grounding_metadata=SimpleNamespace(grounding_chunks=chunks),
            )
        ],
    )


def install_gemini(client, generate_content):
    client._gemini = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))


class TestRouting:
    @pytest.mark.parametrize(
        "model,backend",
        [
            ("claude-sonnet-4-5", Backend.ANTHROPIC),
            ("gpt-4.1", Backend.OPENAI),
            ("o3-mini", Backend.OPENAI),
            ("o4-mini-deep-research", Backend.OPENAI),
            ("gemini-2.5-pro", Backend.GEMINI),
        ],
    )
    def test_model_name_selects_backend(self, model, backend):
        assert resolve_backend(model) == backend

    @pytest.mark.asyncio
    async def test_anthropic_reply_is_normalised(self, client):
        create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(type="text", text="Hello"), SimpleNamespace(type="tool_use")],
                usage=SimpleNamespace(input_tokens=10, output_tokens=5, cache_read_input_tokens=2),
                model="claude-sonnet-4-5",
                stop_reason="end_turn",
            )
        )
        client._anthropic = SimpleNamespace(messages=SimpleNamespace(create=create))

        response = await client.generate("hi", system_prompt="be terse", model="claude-sonnet-4-5", temperature=0.2)

        assert response.text == "Hello"
        assert response.backend == "anthropic"
        assert response.usage.total_tokens == 15
        assert response.usage.cached_tokens == 2
        kwargs = create.await_args.kwargs
        assert kwargs["system"] == "be terse"
        assert kwargs["temperature"] == 0.2
        assert client.limiters.get("claude").in_window == 1
        assert client.usage.get_stats().by_model["claude-sonnet-4-5"].request_count == 1

    @pytest.mark.asyncio
    async def test_o_series_omits_temperature(self, client):
        create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="done"), finish_reason="stop")],
                usage=SimpleNamespace(prompt_tokens=1, completion_tokens=2, total_tokens=3, prompt_tokens_details=None),
                model="o3-mini",
            )
        )
        client._openai = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

        response = await client.generate("hi", model="o3-mini", temperature=0.9)

        assert response.text == "done"
        assert "temperature" not in create.await_args.kwargs


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, client):
        generate_content = AsyncMock(side_effect=[Exception("503 UNAVAILABLE"), gemini_raw("recovered")])
        install_gemini(client, generate_content)

        response = await client.generate("hi", model="gemini-2.5-flash")

        assert response.text == "recovered"
        assert response.finish_reason == "STOP"
        assert generate_content.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, client):
        generate_content = AsyncMock(side_effect=ValueError("invalid argument: bad schema"))
        install_gemini(client, generate_content)

        with pytest.raises(ProviderError) as exc_info:
            await client.generate("hi", model="gemini-2.5-flash")

        assert exc_info.value.retryable is False
        assert exc_info.value.backend == "gemini"
        assert generate_content.await_count == 1
        assert client.usage.get_stats().error_count == 1

    @pytest.mark.asyncio
    async def test_retry_budget_is_bounded(self, client, monkeypatch):
        monkeypatch.setattr(RetryConfig, "PROVIDER_MAX_RETRIES", 2)
        generate_content = AsyncMock(side_effect=Exception("429 Too Many Requests"))
        install_gemini(client, generate_content)

        with pytest.raises(ProviderError) as exc_info:
            await client.generate("hi", model="gemini-2.5-flash")

        assert exc_info.value.retryable is True
        assert generate_content.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_key_raises_auth_error(self, client, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

        with pytest.raises(AuthError):
            await client.generate("hi", model="claude-sonnet-4-5")
        assert client.usage.get_stats().error_count == 1


class TestJsonMode:
    class Verdict(BaseModel):
        score: float

    def _reply(self, text):
        return LLMResponse(text=text, model="gemini-2.5-flash", backend="gemini")

    @pytest.mark.asyncio
    async def test_bad_json_is_corrected_on_retry(self, client):
        replies = [self._reply("Sure! Here is the JSON"), self._reply('```json\n{"score": 4}\n```')]
        with patch.object(client, "generate", AsyncMock(side_effect=replies)) as generate:
            result = await client.generate_json("Score it", response_model=self.Verdict)

        assert result.data.score == 4
        assert result.attempts == 2
        retry_prompt = generate.await_args_list[1].args[0]
        assert retry_prompt.startswith("Score it")
        assert "Your previous response was invalid JSON" in retry_prompt
        assert "Sure! Here is the JSON" in retry_prompt

    @pytest.mark.asyncio
    async def test_schema_mismatch_counts_as_parse_failure(self, client):
        replies = [self._reply('{"verdict": "good"}'), self._reply('{"score": 8}')]
        with patch.object(client, "generate", AsyncMock(side_effect=replies)):
            result = await client.generate_json("Score it", response_model=self.Verdict)

        assert result.data.score == 8

    @pytest.mark.asyncio
    async def test_null_judge_score_is_corrected_on_retry(self, client):
        replies = [
            self._reply('{"score": null, "assessment": "x"}'),
            self._reply('{"score": 6.5, "assessment": "Concrete."}'),
        ]
        with patch.object(client, "generate", AsyncMock(side_effect=replies)) as generate:
            result = await client.generate_json("Judge it", response_model=JudgeVerdict, max_parse_retries=2)

        assert result.data.score == 6.5
        assert result.attempts == 2
        assert "score must be a number" in generate.await_args_list[1].args[0]

    def test_judge_verdict_rejects_non_numeric_scores(self):
        with pytest.raises(ValidationError):
            JudgeVerdict.model_validate({"score": {"value": 7}})
        with pytest.raises(ValidationError):
            JudgeVerdict.model_validate({"score": "high"})

    @pytest.mark.asyncio
    async def test_json_wrapped_in_prose_is_recovered(self, client):
        reply = self._reply('Here you go: {"score": 6} Let me know if you need more.')
        with patch.object(client, "generate", AsyncMock(return_value=reply)):
            result = await client.generate_json("Score it", response_model=self.Verdict)

        assert result.data.score == 6
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, client):
        with patch.object(client, "generate", AsyncMock(return_value=self._reply("nope"))) as generate:
            with pytest.raises(JSONParseError) as exc_info:
                await client.generate_json("Score it", max_parse_retries=1)

        assert generate.await_count == 2
        assert exc_info.value.raw_response == "nope"


class TestGroundedSearch:
    @pytest.mark.asyncio
    async def test_empty_reply_is_retried(self, client):
        request = AsyncMock(
            side_effect=[
                gemini_raw(""),
                gemini_raw("Practitioners hate ingest bills", [("Thread", "https://reddit.com/r/devops/1")]),
            ]
        )
        with patch.object(client, "_gemini_request", request):
            result = await client.grounded_search("log pain")

        assert result.text == "Practitioners hate ingest bills"
        assert [s.url for s in result.sources] == ["https://reddit.com/r/devops/1"]
        assert request.await_count == 2
        assert request.await_args.kwargs["tools"]

    @pytest.mark.asyncio
    async def test_persistently_empty_reply_is_returned(self, client, monkeypatch):
        monkeypatch.setattr(RetryConfig, "GROUNDED_EMPTY_MAX_RETRIES", 2)
        request = AsyncMock(return_value=gemini_raw(""))
        with patch.object(client, "_gemini_request", request):
            result = await client.grounded_search("log pain")

        assert result.text == ""
        assert result.sources == []
        assert request.await_count == 3


@pytest.mark.asyncio
async def test_every_call_is_reported_to_telemetry():
    sink = RecordingSink()
    telemetry = TelemetryPipeline(sink=sink, enabled=True)
    client = LLMClient(limiters=RateLimiterRegistry(), telemetry=telemetry, usage=UsageTracker())
    install_gemini(client, AsyncMock(side_effect=[gemini_raw("first"), ValueError("invalid argument")]))
    ctx = CallContext(purpose="scoring", job_id="job-1", session_id="s-1")

    await client.generate("hi", model="gemini-2.5-flash", context=ctx)
    with pytest.raises(ProviderError):
        await client.generate("again", model="gemini-2.5-flash", context=ctx)
    await telemetry.aclose()

    assert [r.success for r in sink.records] == [True, False]
    assert sink.records[0].purpose == "scoring"
    assert sink.records[0].job_id == "job-1"
    assert sink.records[0].total_tokens == 7
    assert sink.records[1].error_message
