"""
Generation call dispatcher.

Routes every model call to one of three backends (Anthropic, Gemini,
OpenAI), acquires a per-backend rate-limit slot before each attempt,
retries transient failures with exponential backoff, normalises the reply
into ``LLMResponse`` and reports one telemetry record per call.

On top of plain generation it offers a structured-JSON mode with
parse-failure self-correction and a Gemini grounded-search mode.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import structlog
from anthropic import AsyncAnthropic
from google import genai
from google.genai import types
from openai import AsyncOpenAI
from pydantic import BaseModel

from messaging_engine.contracts import Backend, ModelTask
from messaging_engine.core import config
from messaging_engine.core.exceptions import AuthError, JSONParseError, ProviderError
from messaging_engine.models.llm import (
    CallContext,
    GroundedSearchResult,
    JSONResult,
    LLMCallRecord,
    LLMResponse,
    ResearchSource,
    TokenUsage,
)
from messaging_engine.services.rate_limiter import RateLimiterRegistry, rate_limiters
from messaging_engine.services.telemetry_pipeline import TelemetryPipeline, telemetry_pipeline
from messaging_engine.services.usage_tracker import UsageTracker, usage_tracker
from messaging_engine.utils.json_utils import extract_json_block, strip_code_fences
from messaging_engine.utils.otel import otel_span
from messaging_engine.utils.retry import RetryConfig, get_provider_retrying, is_transient_error

logger = structlog.get_logger(__name__)

DEFAULT_TEMPERATURE = 0.7
JSON_TEMPERATURE = 0.3
GROUNDED_SEARCH_TEMPERATURE = 0.3

_JSON_ONLY = "IMPORTANT: Return ONLY valid JSON, no markdown code fences or explanation."


def _is_o_series(model: str) -> bool:
    """Check if model is o-series (o1/o3/o4) or gpt-5."""
    return str(model).startswith(("o1", "o3", "o4", "gpt-5"))


def resolve_backend(model: str) -> Backend:
    name = (model or "").lower()
    if "claude" in name:
        return Backend.ANTHROPIC
    if name.startswith(("gpt", "o1", "o3", "o4")) or "deep-research" in name:
        return Backend.OPENAI
    return Backend.GEMINI


def json_instructions(schema: Optional[Dict[str, Any]]) -> str:
    if schema:
        return (
            "\n\nRespond with valid JSON matching this schema:\n"
            f"{json.dumps(schema, indent=2)}\n\n{_JSON_ONLY}"
        )
    return f"\n\n{_JSON_ONLY}"


def json_correction(error: str, broken: str) -> str:
    return (
        "\n\nYour previous response was invalid JSON. Here was the error:\n"
        f"{error}\n\nThe broken response started with:\n{broken[:500]}\n\n"
        "Please fix the JSON and return ONLY valid JSON."
    )


def grounding_sources(raw: Any) -> List[ResearchSource]:
    """Web citations from a Gemini grounded reply (first candidate)."""
    candidates = getattr(raw, "candidates", None) or []
    if not candidates:
        return []
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: List[ResearchSource] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        uri = getattr(web, "uri", None)
        if uri:
            sources.append(ResearchSource(title=getattr(web, "title", None) or "", url=uri))
    return sources


def _finish_reason(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value)


# ────────────────────────────────────────────────────────────
#  Main LLM Client
# ────────────────────────────────────────────────────────────
class LLMClient:
    """Multi-backend dispatcher shared by every pipeline component."""

    def __init__(
        self,
        *,
        limiters: Optional[RateLimiterRegistry] = None,
        telemetry: Optional[TelemetryPipeline] = None,
        usage: Optional[UsageTracker] = None,
    ):
        self.limiters = limiters or rate_limiters
        self.telemetry = telemetry or telemetry_pipeline
        self.usage = usage or usage_tracker
        self._anthropic: Optional[AsyncAnthropic] = None
        self._gemini: Optional[genai.Client] = None
        self._openai: Optional[AsyncOpenAI] = None

    # ────────────────────────────────────────────────────────────
    #  Backend clients (created lazily; missing key -> AuthError)
    # ────────────────────────────────────────────────────────────

    @staticmethod
    def _require_key(backend: Backend) -> str:
        key = config.get_api_key(backend)
        if not key:
            raise AuthError(f"No API key configured for {backend.value}", backend=backend.value)
        return key

    def anthropic_client(self) -> AsyncAnthropic:
        if self._anthropic is None:
            self._anthropic = AsyncAnthropic(api_key=self._require_key(Backend.ANTHROPIC))
            logger.info("✓ Anthropic client initialized")
        return self._anthropic

    def gemini_client(self) -> genai.Client:
        if self._gemini is None:
            self._gemini = genai.Client(api_key=self._require_key(Backend.GEMINI))
            logger.info("✓ Gemini client initialized")
        return self._gemini

    def openai_client(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(api_key=self._require_key(Backend.OPENAI), timeout=120)
            logger.info("✓ OpenAI client initialized")
        return self._openai

    # ────────────────────────────────────────────────────────────
    #  Public interfaces
    # ────────────────────────────────────────────────────────────

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        task: ModelTask = ModelTask.GENERATION,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        context: Optional[CallContext] = None,
    ) -> LLMResponse:
        """Generate text.

        An explicit ``model`` routes to the backend that serves it; otherwise
        the active model profile picks the model for ``task``.
        """
        model_id = model or config.get_model_for_task(task)
        backend = resolve_backend(model_id)
        temp = DEFAULT_TEMPERATURE if temperature is None else temperature
        limiter = self.limiters.for_model(backend, model_id)

        handlers: Dict[Backend, Callable[..., Awaitable[LLMResponse]]] = {
            Backend.ANTHROPIC: self._call_anthropic,
            Backend.GEMINI: self._call_gemini,
            Backend.OPENAI: self._call_openai,
        }
        handler = handlers[backend]

        async def _attempt() -> LLMResponse:
            await limiter.acquire()
            return await handler(
                prompt=prompt,
                system_prompt=system_prompt,
                model=model_id,
                temperature=temp,
                max_tokens=max_tokens,
                stop=stop,
            )

        return await self._execute(
            lambda: self.call_with_retry(_attempt, backend, model_id),
            backend=backend,
            model=model_id,
            prompt=prompt,
            system_prompt=system_prompt,
            context=context,
            span_name="llm.generate",
        )

    async def generate_json(
        self,
        prompt: str,
        *,
        schema: Optional[Dict[str, Any]] = None,
        response_model: Optional[Type[BaseModel]] = None,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        task: ModelTask = ModelTask.PRO,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_parse_retries: Optional[int] = None,
        context: Optional[CallContext] = None,
    ) -> JSONResult:
        """Generate JSON, re-prompting with the parser error on bad output.

        When ``response_model`` is given the parsed payload is validated into
        it and validation errors count as parse failures.
        """
        retries = RetryConfig.JSON_MAX_PARSE_RETRIES if max_parse_retries is None else max_parse_retries
        base_prompt = prompt + json_instructions(schema)
        current_prompt = base_prompt
        last_error = ""
        last_text = ""

        for attempt in range(1, retries + 2):
            response = await self.generate(
                current_prompt,
                system_prompt=system_prompt,
                model=model,
                task=task,
                temperature=JSON_TEMPERATURE if temperature is None else temperature,
                max_tokens=max_tokens,
                context=context,
            )
            try:
                cleaned = strip_code_fences(response.text)
                data: Any = json.loads(extract_json_block(cleaned) or cleaned)
                if response_model is not None:
                    data = response_model.model_validate(data)
                return JSONResult(data=data, usage=response.usage, model=response.model, attempts=attempt)
            except (ValueError, TypeError) as exc:  # JSONDecodeError, ValidationError, non-numeric fields
                last_error = str(exc)
                last_text = response.text
                logger.warning(
                    "json_parse_failed",
                    attempt=attempt,
                    max_attempts=retries + 1,
                    model=response.model,
                    error=last_error[:300],
                )
                current_prompt = base_prompt + json_correction(last_error, last_text)

        raise JSONParseError(f"Failed to parse AI response as JSON: {last_error}", raw_response=last_text[:2000])

    async def grounded_search(
        self,
        query: str,
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        context: Optional[CallContext] = None,
    ) -> GroundedSearchResult:
        """Gemini generation with Google Search grounding.

        Empty replies (no text and no citations) are retried with a growing
        delay; they are returned as-is once the retries run out.
        """
        model_id = model or config.get_model_for_task(ModelTask.FLASH)
        limiter = self.limiters.for_model(Backend.GEMINI, model_id)
        tools = [types.Tool(google_search=types.GoogleSearch())]
        max_retries = RetryConfig.GROUNDED_EMPTY_MAX_RETRIES
        found: Dict[str, List[ResearchSource]] = {"sources": []}

        async def _attempt() -> Any:
            await limiter.acquire()
            return await self._gemini_request(
                prompt=query,
                system_prompt=system_prompt,
                model=model_id,
                temperature=GROUNDED_SEARCH_TEMPERATURE,
                tools=tools,
            )

        async def _search() -> LLMResponse:
            response: Optional[LLMResponse] = None
            for attempt in range(max_retries + 1):
                raw = await self.call_with_retry(_attempt, Backend.GEMINI, model_id)
                response = self._gemini_to_response(raw, model_id)
                found["sources"] = grounding_sources(raw)
                if response.text.strip() or found["sources"]:
                    break
                if attempt < max_retries:
                    delay = RetryConfig.GROUNDED_EMPTY_DELAY_SEC * (attempt + 1)
                    logger.warning(
                        "grounded_search_empty",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_sec=delay,
                    )
                    await asyncio.sleep(delay)
            return response  # type: ignore[return-value]

        response = await self._execute(
            _search,
            backend=Backend.GEMINI,
            model=model_id,
            prompt=query,
            system_prompt=system_prompt,
            context=context,
            span_name="llm.grounded_search",
        )
        return GroundedSearchResult(
            text=response.text,
            sources=found["sources"],
            usage=response.usage,
            model=response.model,
            latency_ms=response.latency_ms,
        )

    def report_call(
        self,
        *,
        backend: Backend,
        model: str,
        context: Optional[CallContext],
        prompt: str = "",
        system_prompt: Optional[str] = None,
        response: Optional[LLMResponse] = None,
        latency_ms: int = 0,
        error: Optional[str] = None,
    ) -> None:
        """Push one telemetry record; never raises into the caller."""
        ctx = context or CallContext()
        usage = response.usage if response else TokenUsage()
        record = LLMCallRecord(
            backend=backend.value,
            model=model,
            purpose=ctx.purpose,
            job_id=ctx.job_id,
            session_id=ctx.session_id,
            system_prompt_chars=len(system_prompt or ""),
            prompt_chars=len(prompt or ""),
            response_chars=len(response.text) if response else 0,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            cached_tokens=usage.cached_tokens,
            latency_ms=latency_ms,
            success=error is None,
            error_message=error,
            finish_reason=response.finish_reason if response else None,
        )
        try:
            self.telemetry.record_call(record)
        except Exception:
            logger.warning("telemetry_record_failed", exc_info=True)

    # ────────────────────────────────────────────────────────────
    #  Plumbing
    # ────────────────────────────────────────────────────────────

    async def _execute(
        self,
        operation: Callable[[], Awaitable[LLMResponse]],
        *,
        backend: Backend,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        context: Optional[CallContext],
        span_name: str,
    ) -> LLMResponse:
        ctx = context or CallContext()
        attrs = {"backend": backend.value, "model": model, "purpose": ctx.purpose, "job_id": ctx.job_id}
        started = time.perf_counter()
        with otel_span(span_name, attrs) as span:
            try:
                response = await operation()
            except ProviderError as exc:
                latency_ms = int((time.perf_counter() - started) * 1000)
                span.set_attribute("success", False)
                self.usage.track_error(model)
                self.report_call(
                    backend=backend,
                    model=model,
                    context=ctx,
                    prompt=prompt,
                    system_prompt=system_prompt,
                    latency_ms=latency_ms,
                    error=str(exc),
                )
                logger.error(
                    "llm_call_failed",
                    backend=backend.value,
                    model=model,
                    purpose=ctx.purpose,
                    error=str(exc),
                )
                raise
            latency_ms = int((time.perf_counter() - started) * 1000)
            span.set_attribute("latency_ms", latency_ms)
            span.set_attribute("success", True)

        response = response.model_copy(update={"latency_ms": latency_ms})
        self.usage.track(model, response.usage, latency_ms)
        self.report_call(
            backend=backend,
            model=model,
            context=ctx,
            prompt=prompt,
            system_prompt=system_prompt,
            response=response,
            latency_ms=latency_ms,
        )
        logger.debug(
            "llm_call_completed",
            backend=backend.value,
            model=model,
            purpose=ctx.purpose,
            latency_ms=latency_ms,
            output_tokens=response.usage.output_tokens,
        )
        return response

    async def call_with_retry(self, fn: Callable[[], Awaitable[Any]], backend: Backend, model: str) -> Any:
        """Run ``fn`` under the provider retry policy, wrapping failures."""
        try:
            async for attempt in get_provider_retrying():
                with attempt:
                    return await fn()
        except AuthError:
            raise
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"{backend.value} call to {model} failed: {exc}",
                backend=backend.value,
                model=model,
                retryable=is_transient_error(exc),
            ) from exc
        raise ProviderError(f"{backend.value} call to {model} made no attempt", backend=backend.value, model=model)

    async def _call_anthropic(
        self,
        *,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        stop: Optional[List[str]],
    ) -> LLMResponse:
        client = self.anthropic_client()
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or config.CLAUDE_MAX_TOKENS,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if stop:
            kwargs["stop_sequences"] = stop
        resp = await client.messages.create(**kwargs)

        text = "".join(
            getattr(block, "text", "") for block in (resp.content or []) if getattr(block, "type", None) == "text"
        )
        usage = getattr(resp, "usage", None)
        input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "output_tokens", 0) or 0)
        return LLMResponse(
            text=text,
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
                cached_tokens=int(getattr(usage, "cache_read_input_tokens", 0) or 0),
            ),
            model=getattr(resp, "model", None) or model,
            backend=Backend.ANTHROPIC.value,
            finish_reason=getattr(resp, "stop_reason", None),
        )

    async def _gemini_request(
        self,
        *,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: Optional[int] = None,
        stop: Optional[List[str]] = None,
        tools: Optional[List[Any]] = None,
    ) -> Any:
        client = self.gemini_client()
        cfg = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens or config.DEFAULT_MAX_OUTPUT_TOKENS,
            system_instruction=system_prompt or None,
            stop_sequences=stop or None,
            tools=tools or None,
        )
        return await client.aio.models.generate_content(model=model, contents=prompt, config=cfg)

    @staticmethod
    def _gemini_to_response(raw: Any, model: str) -> LLMResponse:
        meta = getattr(raw, "usage_metadata", None)
        input_tokens = int(getattr(meta, "prompt_token_count", 0) or 0)
        output_tokens = int(getattr(meta, "candidates_token_count", 0) or 0)
        candidates = getattr(raw, "candidates", None) or []
        finish = _finish_reason(getattr(candidates[0], "finish_reason", None)) if candidates else None
        return LLMResponse(
            text=getattr(raw, "text", None) or "",
            usage=TokenUsage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=int(getattr(meta, "total_token_count", 0) or (input_tokens + output_tokens)),
                cached_tokens=int(getattr(meta, "cached_content_token_count", 0) or 0),
            ),
            model=model,
            backend=Backend.GEMINI.value,
            finish_reason=finish,
        )

    async def _call_gemini(
        self,
        *,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        stop: Optional[List[str]],
    ) -> LLMResponse:
        raw = await self._gemini_request(
            prompt=prompt,
            system_prompt=system_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            stop=stop,
        )
        return self._gemini_to_response(raw, model)

    async def _call_openai(
        self,
        *,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: Optional[int],
        stop: Optional[List[str]],
    ) -> LLMResponse:
        client = self.openai_client()
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_completion_tokens": max_tokens or config.DEFAULT_MAX_OUTPUT_TOKENS,
        }
        # o-series reasoning models reject sampling parameters
        if not _is_o_series(model):
            kwargs["temperature"] = temperature
        if stop:
            kwargs["stop"] = stop
        resp = await client.chat.completions.create(**kwargs)

        choice = resp.choices[0] if getattr(resp, "choices", None) else None
        usage = getattr(resp, "usage", None)
        details = getattr(usage, "prompt_tokens_details", None)
        return LLMResponse(
            text=(choice.message.content if choice else "") or "",
            usage=TokenUsage(
                input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
                total_tokens=int(getattr(usage, "total_tokens", 0) or 0),
                cached_tokens=int(getattr(details, "cached_tokens", 0) or 0),
            ),
            model=getattr(resp, "model", None) or model,
            backend=Backend.OPENAI.value,
            finish_reason=getattr(choice, "finish_reason", None) if choice else None,
        )


llm_client = LLMClient()
