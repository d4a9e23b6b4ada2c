"""
Collaborators owned outside the engine: variant persistence, voice
profiles and the source-item reset hook.  In-memory implementations back
tests and single-process use.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Protocol, Sequence

import structlog

from messaging_engine.models.jobs import VariantRecord, VoiceProfile

logger = structlog.get_logger(__name__)


class VariantStore(Protocol):
    async def save_variant(self, variant: VariantRecord) -> None:
        """Persist one immutable variant."""


class VoiceProfileSource(Protocol):
    async def get_profiles(self, ids: Sequence[str]) -> List[VoiceProfile]:
        """Return the active profiles among ``ids``, in request order."""


class SourceItemResetter(Protocol):
    async def reset_source_item(self, job_id: str) -> None:
        """Put whatever external item spawned ``job_id`` back into a retryable state."""


class InMemoryVariantStore:
    def __init__(self):
        self.variants: List[VariantRecord] = []

    async def save_variant(self, variant: VariantRecord) -> None:
        self.variants.append(variant)

    def for_job(self, job_id: str) -> List[VariantRecord]:
        return [v for v in self.variants if v.job_id == job_id]


class InMemoryVoiceProfiles:
    def __init__(self, profiles: Iterable[VoiceProfile] = ()):
        self._profiles: Dict[str, VoiceProfile] = {p.id: p for p in profiles}

    def add(self, profile: VoiceProfile) -> None:
        self._profiles[profile.id] = profile

    async def get_profiles(self, ids: Sequence[str]) -> List[VoiceProfile]:
        found = [self._profiles[i] for i in ids if i in self._profiles]
        missing = [i for i in ids if i not in self._profiles]
        if missing:
            logger.warning("voice_profiles_missing", ids=missing)
        return found


class NoOpSourceItemResetter:
    async def reset_source_item(self, job_id: str) -> None:
        return None
