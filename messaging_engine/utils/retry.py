"""
Centralized retry and backoff configuration for provider calls.
Consolidates transient-error detection, backoff and jitter.
"""

import logging
import os
import re
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from messaging_engine.core.exceptions import AuthError

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Centralized retry configuration loaded from environment."""

    # Provider (model call) retries: attempts = 1 + PROVIDER_MAX_RETRIES
    PROVIDER_MAX_RETRIES = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
    PROVIDER_BACKOFF_BASE_SEC = float(os.getenv("PROVIDER_BACKOFF_BASE_SEC", "2"))
    PROVIDER_BACKOFF_MULTIPLIER = float(os.getenv("PROVIDER_BACKOFF_MULTIPLIER", "2"))
    PROVIDER_BACKOFF_MAX_SEC = float(os.getenv("PROVIDER_BACKOFF_MAX_SEC", "30"))
    PROVIDER_JITTER_RATIO = float(os.getenv("PROVIDER_JITTER_RATIO", "0.1"))

    # Grounded search returns empty-but-successful replies now and then
    GROUNDED_EMPTY_MAX_RETRIES = int(os.getenv("GROUNDED_EMPTY_MAX_RETRIES", "5"))
    GROUNDED_EMPTY_DELAY_SEC = float(os.getenv("GROUNDED_EMPTY_DELAY_SEC", "3"))

    # Structured JSON self-correction
    JSON_MAX_PARSE_RETRIES = int(os.getenv("JSON_MAX_PARSE_RETRIES", "2"))

    # Banned-phrase generation
    BANNED_PHRASES_MAX_ATTEMPTS = int(os.getenv("BANNED_PHRASES_MAX_ATTEMPTS", "3"))
    BANNED_PHRASES_RETRY_DELAY_SEC = float(os.getenv("BANNED_PHRASES_RETRY_DELAY_SEC", "2"))


_TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504, 529}

_TRANSIENT_MESSAGE = re.compile(
    r"rate[\s_-]?limit|too many requests|overloaded|quota|resource[\s_-]?exhausted"
    r"|unavailable|\b(?:429|500|502|503|504|529)\b",
    re.IGNORECASE,
)


def _status_code(exc: BaseException) -> Optional[int]:
    # openai/anthropic expose status_code, google-genai exposes code
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_transient_error(exc: BaseException) -> bool:
    """True for rate-limit, overload and 5xx failures worth retrying."""
    if isinstance(exc, AuthError):
        return False
    code = _status_code(exc)
    if code is not None and code in _TRANSIENT_STATUS_CODES:
        return True
    return bool(_TRANSIENT_MESSAGE.search(str(exc)))


def get_provider_retrying(max_retries: Optional[int] = None) -> AsyncRetrying:
    """
    Standardized async retry controller for provider calls.

    Backoff is base * multiplier**(attempt-1) capped at the max, plus up to
    ``PROVIDER_JITTER_RATIO`` of the base as random jitter.
    """
    retries = RetryConfig.PROVIDER_MAX_RETRIES if max_retries is None else max_retries
    base = RetryConfig.PROVIDER_BACKOFF_BASE_SEC
    return AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(
            multiplier=base,
            exp_base=RetryConfig.PROVIDER_BACKOFF_MULTIPLIER,
            max=RetryConfig.PROVIDER_BACKOFF_MAX_SEC,
        )
        + wait_random(0, base * RetryConfig.PROVIDER_JITTER_RATIO),
        retry=retry_if_exception(is_transient_error),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
