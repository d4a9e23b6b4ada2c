"""Deep research submit/poll lifecycle against a stubbed Responses API."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from messaging_engine.core.exceptions import ProviderError, ResearchTimeout
from messaging_engine.services.deep_research import DeepResearchClient, extract_report_sources
from messaging_engine.services.llm_client import LLMClient
from messaging_engine.services.rate_limiter import RateLimiterRegistry
from messaging_engine.services.telemetry_pipeline import TelemetryPipeline
from messaging_engine.services.usage_tracker import UsageTracker

COMPLETED = {
    "id": "resp_1",
    "status": "completed",
    "output": [
        {"type": "web_search_call"},
        {
            "type": "message",
            "content": [
                {
                    "type": "output_text",
                    "text": "Teams complain about ingest bills. See [HN thread](https://news.ycombinator.com/item?id=7).",
                    "annotations": [
                        {"type": "url_citation", "url": "https://reddit.com/r/devops/1", "title": "Reddit"},
                        {"type": "url_citation", "url": "https://news.ycombinator.com/item?id=7", "title": "HN"},
                    ],
                }
            ],
        },
    ],
    "usage": {"input_tokens": 100, "output_tokens": 50},
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


def make_client(retrieve_payloads, *, timeout=3600.0):
    dispatcher = LLMClient(
        limiters=RateLimiterRegistry(),
        telemetry=TelemetryPipeline(enabled=False),
        usage=UsageTracker(),
    )
    responses = SimpleNamespace(
        create=AsyncMock(return_value=SimpleNamespace(id="resp_1")),
        retrieve=AsyncMock(side_effect=retrieve_payloads),
    )
    dispatcher._openai = SimpleNamespace(responses=responses)
    clock = FakeClock()
    client = DeepResearchClient(
        dispatcher,
        model="o4-mini-deep-research",
        poll_interval=10.0,
        max_poll_duration=timeout,
        clock=clock,
        sleep=clock.sleep,
    )
    return client, responses, clock


@pytest.mark.asyncio
async def test_run_polls_until_completed():
    client, responses, clock = make_client(
        [{"status": "queued"}, {"status": "in_progress"}, {"status": "in_progress"}, COMPLETED]
    )
    seen = []

    result = await client.run("Research log pain", seen.append)

    assert result.interaction_id == "resp_1"
    assert result.text.startswith("Teams complain about ingest bills")
    assert [s.url for s in result.sources] == [
        "https://reddit.com/r/devops/1",
        "https://news.ycombinator.com/item?id=7",
    ]
    assert result.usage.total_tokens == 150
    # Progress fires on status changes only
    assert seen == ["queued", "in_progress", "completed"]
    assert clock.now == 30.0
    kwargs = responses.create.await_args.kwargs
    assert kwargs["background"] is True
    assert kwargs["input"] == "Research log pain"
    assert client.dispatcher.usage.get_stats().by_model["o4-mini-deep-research"].request_count == 1


@pytest.mark.asyncio
async def test_async_progress_callback_is_awaited():
    client, _, _ = make_client([COMPLETED])
    seen = []

    async def on_progress(status):
        seen.append(status)

    await client.run("Research", on_progress)

    assert seen == ["completed"]


@pytest.mark.asyncio
async def test_timeout_raises():
    client, responses, _ = make_client([{"status": "in_progress"}] * 10, timeout=25.0)

    with pytest.raises(ResearchTimeout) as exc_info:
        await client.run("Research")

    assert exc_info.value.interaction_id == "resp_1"
    assert responses.retrieve.await_count == 3
    assert client.dispatcher.usage.get_stats().error_count == 1


@pytest.mark.asyncio
async def test_failed_interaction_raises_provider_error():
    client, _, _ = make_client([{"status": "failed", "error": {"message": "quota exceeded"}}])

    with pytest.raises(ProviderError, match="quota exceeded"):
        await client.run("Research")


@pytest.mark.asyncio
async def test_transient_poll_error_keeps_polling():
    client, responses, _ = make_client([Exception("503 Service Unavailable"), COMPLETED])

    result = await client.run("Research")

    assert result.status == "completed"
    assert responses.retrieve.await_count == 2


@pytest.mark.asyncio
async def test_lifecycle_is_logged_as_structured_events():
    client, _, _ = make_client([Exception("503 Service Unavailable"), COMPLETED])

    with capture_logs() as logs:
        result = await client.run("Research")

    events = {entry["event"]: entry for entry in logs}
    assert events["deep_research_submitted"]["interaction_id"] == "resp_1"
    assert "503" in events["deep_research_poll_transient_error"]["error"]
    completed = events["deep_research_completed"]
    assert completed["log_level"] == "info"
    assert completed["chars"] == len(result.text)
    assert completed["sources"] == len(result.sources)


def test_markdown_links_supplement_annotations():
    sources = extract_report_sources({}, "See [Post](https://lobste.rs/s/1) and [local](/relative).")
    assert [(s.title, s.url) for s in sources] == [("Post", "https://lobste.rs/s/1")]
