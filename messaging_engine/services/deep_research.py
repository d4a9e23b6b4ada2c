"""
Deep research client built on the OpenAI Responses API background mode.

A research prompt is submitted with ``background=True`` and polled until it
reaches a terminal status or the configured timeout elapses.  The final
report text and its cited sources (url_citation annotations plus inline
markdown links) are normalised into ``ResearchResult``.
"""

import asyncio

import re
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from messaging_engine.contracts import Backend, ModelTask
from messaging_engine.core import config
from messaging_engine.core.exceptions import ProviderError, ResearchTimeout
from messaging_engine.models.llm import CallContext, LLMResponse, ResearchResult, ResearchSource, TokenUsage
from messaging_engine.services.llm_client import LLMClient, llm_client
from messaging_engine.utils.retry import is_transient_error

logger = structlog.get_logger(__name__)

_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")

ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]


class ResearchStatus(str, Enum):
    """Responses API background statuses"""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


_TERMINAL_FAILURES = {ResearchStatus.FAILED, ResearchStatus.CANCELLED, ResearchStatus.INCOMPLETE}


def _as_dict(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    if hasattr(payload, "model_dump"):
        return payload.model_dump()
    return {}


def extract_report_text(payload: Dict[str, Any]) -> str:
    """Join every output_text block of every message item."""
    if payload.get("output_text"):
        return str(payload["output_text"])
    parts: List[str] = []
    for item in payload.get("output") or []:
        if isinstance(item, dict) and item.get("type") == "message":
            for content in item.get("content") or []:
                if isinstance(content, dict) and content.get("type") == "output_text" and content.get("text"):
                    parts.append(content["text"])
    return "\n\n".join(parts)


def extract_report_sources(payload: Dict[str, Any], text: str) -> List[ResearchSource]:
    """Cited sources, url_citation annotations first, deduplicated by URL."""
    seen: Dict[str, ResearchSource] = {}
    for item in payload.get("output") or []:
        if not (isinstance(item, dict) and item.get("type") == "message"):
            continue
        for content in item.get("content") or []:
            if not isinstance(content, dict):
                continue
            for ann in content.get("annotations") or []:
                if isinstance(ann, dict) and ann.get("type") == "url_citation" and ann.get("url"):
                    seen.setdefault(ann["url"], ResearchSource(title=ann.get("title") or "", url=ann["url"]))
    for title, url in _MARKDOWN_LINK.findall(text or ""):
        if url.startswith("http"):
            seen.setdefault(url, ResearchSource(title=title, url=url))
    return list(seen.values())


def _usage(payload: Dict[str, Any]) -> TokenUsage:
    usage = payload.get("usage") or {}
    input_tokens = int(usage.get("input_tokens") or 0)
    output_tokens = int(usage.get("output_tokens") or 0)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=int(usage.get("total_tokens") or input_tokens + output_tokens),
    )


class DeepResearchClient:
    """Submits and polls long-running research interactions"""

    def __init__(
        self,
        dispatcher: Optional[LLMClient] = None,
        *,
        model: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_poll_duration: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.dispatcher = dispatcher or llm_client
        self._model = model
        self.poll_interval = config.DEEP_RESEARCH_POLL_INTERVAL_SEC if poll_interval is None else poll_interval
        self.max_poll_duration = config.DEEP_RESEARCH_TIMEOUT_SEC if max_poll_duration is None else max_poll_duration
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._prompts: Dict[str, str] = {}

    @property
    def model(self) -> str:
        return self._model or config.get_model_for_task(ModelTask.DEEP_RESEARCH)

    async def submit(self, prompt: str, *, context: Optional[CallContext] = None) -> str:
        """Start a background research interaction and return its id"""
        model = self.model
        limiter = self.dispatcher.limiters.for_model(Backend.OPENAI, model)

        async def _create() -> Any:
            await limiter.acquire()
            return await self.dispatcher.openai_client().responses.create(
                model=model,
                input=prompt,
                background=True,
                store=True,
                tools=[{"type": "web_search_preview"}],
            )

        try:
            response = await self.dispatcher.call_with_retry(_create, Backend.OPENAI, model)
        except ProviderError as e:
            self.dispatcher.report_call(
                backend=Backend.OPENAI, model=model, context=context, prompt=prompt, error=str(e)
            )
            raise
        interaction_id = _as_dict(response).get("id") or getattr(response, "id", None)
        if not interaction_id:
            raise ProviderError("Deep research submit returned no id", backend=Backend.OPENAI.value, model=model)
        self._prompts[interaction_id] = prompt
        logger.info("deep_research_submitted", interaction_id=interaction_id, model=model)
        return interaction_id

    async def poll(
        self,
        interaction_id: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        context: Optional[CallContext] = None,
    ) -> ResearchResult:
        """Poll until completed; raises ResearchTimeout or ProviderError"""
        model = self.model
        started = self._clock()
        prompt = self._prompts.pop(interaction_id, "")
        last_status: Optional[str] = None

        while True:
            elapsed = self._clock() - started
            if elapsed > self.max_poll_duration:
                self._report(model, context, prompt, started, error=f"timeout after {self.max_poll_duration:.0f}s")
                raise ResearchTimeout(interaction_id, self.max_poll_duration)

            try:
                payload = _as_dict(await self.dispatcher.openai_client().responses.retrieve(interaction_id))
            except Exception as e:
                if not is_transient_error(e):
                    self._report(model, context, prompt, started, error=str(e))
                    raise ProviderError(
                        f"Deep research poll failed: {e}", backend=Backend.OPENAI.value, model=model
                    ) from e
                logger.warning("deep_research_poll_transient_error", interaction_id=interaction_id, error=str(e))
                await self._sleep(self.poll_interval)
                continue

            status = str(payload.get("status") or ResearchStatus.IN_PROGRESS.value)
            if status != last_status:
                last_status = status
                if on_progress is not None:
                    maybe = on_progress(status)
                    if asyncio.iscoroutine(maybe):
                        await maybe

            if status == ResearchStatus.COMPLETED.value:
                text = extract_report_text(payload)
                result = ResearchResult(
                    interaction_id=interaction_id,
                    text=text,
                    sources=extract_report_sources(payload, text),
                    status=status,
                    usage=_usage(payload),
                )
                self._report(model, context, prompt, started, result=result)
                logger.info(
                    "deep_research_completed",
                    interaction_id=interaction_id,
                    chars=len(text),
                    sources=len(result.sources),
                )
                return result

            if status in {s.value for s in _TERMINAL_FAILURES}:
                error = payload.get("error") or {}
                message = error.get("message") if isinstance(error, dict) else str(error)
                self._report(model, context, prompt, started, error=message or status)
                raise ProviderError(
                    f"Deep research {status}: {message or 'no details'}",
                    backend=Backend.OPENAI.value,
                    model=model,
                )

            await self._sleep(self.poll_interval)

    async def run(
        self,
        prompt: str,
        on_progress: Optional[ProgressCallback] = None,
        *,
        context: Optional[CallContext] = None,
    ) -> ResearchResult:
        interaction_id = await self.submit(prompt, context=context)
        return await self.poll(interaction_id, on_progress, context=context)

    def _report(
        self,
        model: str,
        context: Optional[CallContext],
        prompt: str,
        started: float,
        *,
        result: Optional[ResearchResult] = None,
        error: Optional[str] = None,
    ) -> None:
        latency_ms = int((self._clock() - started) * 1000)
        response = None
        if result is not None:
            response = LLMResponse(text=result.text, usage=result.usage, model=model, backend=Backend.OPENAI.value)
            self.dispatcher.usage.track(model, result.usage, latency_ms)
        else:
            self.dispatcher.usage.track_error(model)
        self.dispatcher.report_call(
            backend=Backend.OPENAI,
            model=model,
            context=context,
            prompt=prompt,
            response=response,
            latency_ms=latency_ms,
            error=error,
        )


deep_research_client = DeepResearchClient()
