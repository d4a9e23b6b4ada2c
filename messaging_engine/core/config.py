"""
Core configuration for the messaging engine.

Centralizes model routing, provider rate limits, research polling, cache
sizing and scoring weights so the tunable knobs live in one place.  Every
value can be overridden through the environment (a local ``.env`` is
loaded on import).
"""

import os
from typing import Dict, List, Optional

import structlog
from dotenv import load_dotenv

from messaging_engine.contracts import Backend, ModelTask

load_dotenv()

logger = structlog.get_logger(__name__)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "1" if default else "0").lower() in {"1", "true", "yes"}


# ────────────────────────────────────────────────────────────
#  Credentials (read lazily so tests can set them per case)
# ────────────────────────────────────────────────────────────

_CREDENTIAL_ENV: Dict[Backend, List[str]] = {
    Backend.ANTHROPIC: ["ANTHROPIC_API_KEY"],
    Backend.GEMINI: ["GOOGLE_AI_API_KEY", "GEMINI_API_KEY"],
    Backend.OPENAI: ["OPENAI_API_KEY"],
}


def get_api_key(backend: Backend) -> Optional[str]:
    for name in _CREDENTIAL_ENV[backend]:
        value = os.getenv(name)
        if value:
            return value
    return None


# ────────────────────────────────────────────────────────────
#  Model profiles
# ────────────────────────────────────────────────────────────

CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5")
CLAUDE_MAX_TOKENS: int = _env_int("CLAUDE_MAX_TOKENS", 16000)
DEFAULT_MAX_OUTPUT_TOKENS: int = _env_int("DEFAULT_MAX_OUTPUT_TOKENS", 16384)

_GEMINI_FLASH = os.getenv("GEMINI_FLASH_MODEL", "gemini-2.5-flash")
_GEMINI_PRO = os.getenv("GEMINI_PRO_MODEL", "gemini-2.5-pro")
_DEEP_RESEARCH = os.getenv("DEEP_RESEARCH_MODEL", "o3-deep-research")

MODEL_PROFILES: Dict[str, Dict[ModelTask, str]] = {
    "production": {
        ModelTask.FLASH: _GEMINI_FLASH,
        ModelTask.PRO: _GEMINI_PRO,
        ModelTask.DEEP_RESEARCH: _DEEP_RESEARCH,
        ModelTask.GENERATION: _GEMINI_PRO,
        ModelTask.SCORING: _GEMINI_FLASH,
        ModelTask.DESLOP: _GEMINI_PRO,
    },
    # Cheap profile for local runs: every task on the fast model
    "test": {
        ModelTask.FLASH: _GEMINI_FLASH,
        ModelTask.PRO: _GEMINI_FLASH,
        ModelTask.DEEP_RESEARCH: os.getenv("TEST_DEEP_RESEARCH_MODEL", "o4-mini-deep-research"),
        ModelTask.GENERATION: _GEMINI_FLASH,
        ModelTask.SCORING: _GEMINI_FLASH,
        ModelTask.DESLOP: _GEMINI_FLASH,
    },
}


def get_model_profile() -> str:
    profile = os.getenv("MODEL_PROFILE", "production").lower()
    return profile if profile in MODEL_PROFILES else "production"


def get_model_for_task(task: ModelTask) -> str:
    return MODEL_PROFILES[get_model_profile()][ModelTask(task)]


# ────────────────────────────────────────────────────────────
#  Provider rate limits (requests per window)
# ────────────────────────────────────────────────────────────

RATE_LIMIT_WINDOW_SEC: float = _env_float("RATE_LIMIT_WINDOW_SEC", 60.0)
CLAUDE_RPM: int = _env_int("CLAUDE_RPM", 10)
GEMINI_FLASH_RPM: int = _env_int("GEMINI_FLASH_RPM", 60)
GEMINI_PRO_RPM: int = _env_int("GEMINI_PRO_RPM", 15)
OPENAI_RPM: int = _env_int("OPENAI_RPM", 30)
DEEP_RESEARCH_RPM: int = _env_int("DEEP_RESEARCH_RPM", 10)


# ────────────────────────────────────────────────────────────
#  Deep research
# ────────────────────────────────────────────────────────────

DEEP_RESEARCH_POLL_INTERVAL_SEC: float = _env_float("DEEP_RESEARCH_POLL_INTERVAL_SEC", 30.0)
DEEP_RESEARCH_TIMEOUT_SEC: float = _env_float("DEEP_RESEARCH_TIMEOUT_SEC", 3600.0)
# "deep_research" (async submit/poll) or "grounded_search" (single search call)
COMMUNITY_RESEARCH_MODE: str = os.getenv("COMMUNITY_RESEARCH_MODE", "deep_research").lower()


# ────────────────────────────────────────────────────────────
#  Telemetry & caches
# ────────────────────────────────────────────────────────────

TELEMETRY_QUEUE_MAXSIZE: int = _env_int("TELEMETRY_QUEUE_MAXSIZE", 1000)
TELEMETRY_ENABLED: bool = _env_bool("TELEMETRY_ENABLED", True)

PROMPT_CACHE_MAXSIZE: int = _env_int("PROMPT_CACHE_MAXSIZE", 256)
# 0 keeps entries for the lifetime of the process
PROMPT_CACHE_TTL_SEC: int = _env_int("PROMPT_CACHE_TTL_SEC", 0)


# ────────────────────────────────────────────────────────────
#  Pipeline
# ────────────────────────────────────────────────────────────

REFINEMENT_MAX_ITERATIONS: int = _env_int("REFINEMENT_MAX_ITERATIONS", 3)
MAX_PARALLEL_VARIANTS: int = max(1, _env_int("MAX_PARALLEL_VARIANTS", 1))
MAX_CONCURRENT_JOBS: int = max(1, _env_int("MAX_CONCURRENT_JOBS", 3))
MESSAGING_TEMPLATE_DIR: str = os.getenv("MESSAGING_TEMPLATE_DIR", "templates")

# Storage bounds for traceability payloads
DRAFT_SNAPSHOT_CHARS: int = _env_int("DRAFT_SNAPSHOT_CHARS", 2000)
TRACE_SYSTEM_PROMPT_CHARS: int = _env_int("TRACE_SYSTEM_PROMPT_CHARS", 10000)
TRACE_USER_PROMPT_CHARS: int = _env_int("TRACE_USER_PROMPT_CHARS", 20000)


# ────────────────────────────────────────────────────────────
#  Scoring weights (hybrid pattern/model scorers)
# ────────────────────────────────────────────────────────────

SLOP_PATTERN_WEIGHT: float = _env_float("SLOP_PATTERN_WEIGHT", 0.4)
SLOP_AI_WEIGHT: float = _env_float("SLOP_AI_WEIGHT", 0.6)
VENDOR_PATTERN_WEIGHT: float = _env_float("VENDOR_PATTERN_WEIGHT", 0.5)
VENDOR_AI_WEIGHT: float = _env_float("VENDOR_AI_WEIGHT", 0.5)


def validate_config() -> List[str]:
    """Return the env vars for backends without credentials, warning for each."""
    missing: List[str] = []
    for backend, names in _CREDENTIAL_ENV.items():
        if get_api_key(backend) is None:
            missing.append(names[0])
            logger.warning("provider_credential_missing", backend=backend.value, env=names[0])
    return missing
