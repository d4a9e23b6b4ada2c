"""Aggregated token and latency usage across all dispatcher calls."""

from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, Field

from messaging_engine.models.llm import TokenUsage


class ModelUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    request_count: int = 0
    error_count: int = 0
    total_latency_ms: int = 0


class UsageStats(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    request_count: int = 0
    error_count: int = 0
    total_latency_ms: int = 0
    avg_latency_ms: int = 0
    by_model: Dict[str, ModelUsage] = Field(default_factory=dict)


class UsageTracker:
    """In-process counters; ``get_stats`` returns a detached snapshot."""

    def __init__(self) -> None:
        self._stats = UsageStats()

    def _model(self, model: str) -> ModelUsage:
        return self._stats.by_model.setdefault(model, ModelUsage())

    def track(self, model: str, usage: TokenUsage, latency_ms: int) -> None:
        for bucket in (self._stats, self._model(model)):
            bucket.input_tokens += usage.input_tokens
            bucket.output_tokens += usage.output_tokens
            bucket.total_tokens += usage.total_tokens
            bucket.cached_tokens += usage.cached_tokens
            bucket.request_count += 1
            bucket.total_latency_ms += latency_ms

    def track_error(self, model: str) -> None:
        self._stats.error_count += 1
        self._model(model).error_count += 1

    def get_stats(self) -> UsageStats:
        stats = self._stats.model_copy(deep=True)
        if stats.request_count:
            stats.avg_latency_ms = round(stats.total_latency_ms / stats.request_count)
        return stats

    def reset(self) -> None:
        self._stats = UsageStats()


usage_tracker = UsageTracker()
