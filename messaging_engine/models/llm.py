"""
Transfer objects for the generation call dispatcher.

Every backend (Anthropic, Gemini, OpenAI) is normalised into these shapes so
callers never touch SDK response types.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallContext(BaseModel):
    """Correlation values passed explicitly with every generation call."""

    model_config = ConfigDict(frozen=True)

    purpose: str = "unknown"
    job_id: Optional[str] = None
    session_id: Optional[str] = None

    def with_purpose(self, purpose: str) -> "CallContext":
        return self.model_copy(update={"purpose": purpose})


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0


class LLMResponse(BaseModel):
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str
    backend: str
    finish_reason: Optional[str] = None
    latency_ms: int = 0


class JSONResult(BaseModel):
    """Parsed structured output plus the response it came from."""

    data: Any
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str
    attempts: int = 1


class ResearchSource(BaseModel):
    title: str = ""
    url: str
    snippet: str = ""


class GroundedSearchResult(BaseModel):
    text: str = ""
    sources: List[ResearchSource] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    latency_ms: int = 0


class ResearchResult(BaseModel):
    """Completed deep-research interaction."""

    interaction_id: str
    text: str = ""
    sources: List[ResearchSource] = Field(default_factory=list)
    status: str = "completed"
    usage: TokenUsage = Field(default_factory=TokenUsage)


class LLMCallRecord(BaseModel):
    """One telemetry entry per dispatcher call, success or failure."""

    timestamp: datetime = Field(default_factory=utcnow)
    backend: str
    model: str
    purpose: str = "unknown"
    job_id: Optional[str] = None
    session_id: Optional[str] = None
    system_prompt_chars: int = 0
    prompt_chars: int = 0
    response_chars: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    latency_ms: int = 0
    success: bool = True
    error_message: Optional[str] = None
    finish_reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
