"""Error taxonomy for the messaging engine."""

from typing import Optional


class MessagingEngineError(Exception):
    """Base class for engine errors."""


class ProviderError(MessagingEngineError):
    """A remote model call failed after exhausting its retry budget."""

    def __init__(
        self,
        message: str,
        *,
        backend: Optional[str] = None,
        model: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.backend = backend
        self.model = model
        self.retryable = retryable


class AuthError(ProviderError):
    """No credential is configured for the requested backend."""


class JSONParseError(MessagingEngineError):
    """Structured output stayed unparseable after self-correction retries."""

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response


class ResearchTimeout(MessagingEngineError):
    """A deep-research interaction did not finish within its timeout."""

    def __init__(self, interaction_id: str, timeout_sec: float):
        super().__init__(
            f"Deep research {interaction_id} timed out after {timeout_sec:.0f}s"
        )
        self.interaction_id = interaction_id
        self.timeout_sec = timeout_sec


class ScorerFailure(MessagingEngineError):
    """A single quality scorer could not produce a judgment."""

    def __init__(self, dimension: str, message: str):
        super().__init__(f"{dimension} scorer failed: {message}")
        self.dimension = dimension


class InvalidJobTransition(MessagingEngineError, ValueError):
    pass


class JobNotFoundError(MessagingEngineError, KeyError):
    pass
