"""
In-process job state machine.

Every mutation of a job happens under that job's ``asyncio.Lock`` so that
concurrent asset-type x voice combinations can update progress and the
step log without losing writes.  ``get`` hands out deep copies; callers
never hold a live reference to stored state.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

import structlog

from messaging_engine.contracts import JobStatus, StepStatus
from messaging_engine.core import config
from messaging_engine.core.exceptions import InvalidJobTransition, JobNotFoundError
from messaging_engine.models.jobs import JobRecord, JobSubmission, StepEvent
from messaging_engine.models.llm import utcnow
from messaging_engine.models.scoring import ScorerHealth

logger = structlog.get_logger(__name__)

# Forward order of the non-failure statuses
STATUS_ORDER: Dict[JobStatus, int] = {
    JobStatus.PENDING: 0,
    JobStatus.RESEARCH: 1,
    JobStatus.GENERATE: 2,
    JobStatus.SCORE: 3,
    JobStatus.STORE: 4,
    JobStatus.COMPLETED: 5,
}


def check_transition(current: JobStatus, new: JobStatus) -> None:
    """Raise ``InvalidJobTransition`` unless ``current -> new`` is allowed.

    Staying put and forward skips are allowed; ``failed`` is reachable from
    every non-terminal status; terminal statuses never move.
    """
    if current == new and not current.is_terminal:
        return
    if current.is_terminal:
        raise InvalidJobTransition(f"job is already {current.value}; cannot move to {new.value}")
    if new == JobStatus.FAILED:
        return
    if STATUS_ORDER[new] < STATUS_ORDER[current]:
        raise InvalidJobTransition(f"cannot move job backwards from {current.value} to {new.value}")


class JobStore:
    def __init__(self, draft_snapshot_chars: Optional[int] = None):
        self._jobs: Dict[str, JobRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.draft_snapshot_chars = draft_snapshot_chars or config.DRAFT_SNAPSHOT_CHARS

    def _lock(self, job_id: str) -> asyncio.Lock:
        # Dropped once the job is terminal; recreated on the next mutation
        return self._locks.setdefault(job_id, asyncio.Lock())

    def _require(self, job_id: str) -> JobRecord:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(job_id) from None

    def _touch(self, job: JobRecord) -> None:
        job.updated_at = utcnow()

    async def create(self, submission: JobSubmission, job_id: Optional[str] = None) -> JobRecord:
        job = JobRecord(submission=submission) if job_id is None else JobRecord(id=job_id, submission=submission)
        async with self._lock(job.id):
            if job.id in self._jobs:
                raise InvalidJobTransition(f"job {job.id} already exists")
            self._jobs[job.id] = job
        logger.info("job_created", job_id=job.id, pipeline=submission.pipeline.value)
        return job.model_copy(deep=True)

    async def get(self, job_id: str) -> JobRecord:
        return self._require(job_id).model_copy(deep=True)

    async def exists(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def update_progress(
        self,
        job_id: str,
        *,
        status: Optional[JobStatus] = None,
        current_step: Optional[str] = None,
        progress: Optional[int] = None,
    ) -> JobRecord:
        """Apply a status move, step label and/or progress value.

        Progress never decreases; a lower value than the stored one is ignored.
        """
        async with self._lock(job_id):
            job = self._require(job_id)
            if status is not None:
                status = JobStatus(status)
                check_transition(job.status, status)
                if job.status == JobStatus.PENDING and status != JobStatus.PENDING and job.started_at is None:
                    job.started_at = utcnow()
                job.status = status
            if current_step is not None:
                job.current_step = current_step
            if progress is not None:
                job.progress = max(job.progress, min(100, int(progress)))
            self._touch(job)
            return job.model_copy(deep=True)

    async def emit_step(
        self,
        job_id: str,
        step: str,
        status: StepStatus,
        *,
        model: Optional[str] = None,
        draft: Optional[str] = None,
        scores: Optional[Dict[str, float]] = None,
        scorer_health: Optional[ScorerHealth] = None,
    ) -> Optional[StepEvent]:
        """Append a running step, or complete the most recent running one of that name."""
        async with self._lock(job_id):
            job = self._require(job_id)
            if StepStatus(status) == StepStatus.RUNNING:
                event = StepEvent(step=step, model=model)
                job.steps.append(event)
                self._touch(job)
                return event.model_copy()

            for event in reversed(job.steps):
                if event.step == step and event.status == StepStatus.RUNNING:
                    break
            else:
                logger.warning("step_complete_without_running", job_id=job_id, step=step)
                return None

            event.status = StepStatus.COMPLETE
            event.completed_at = utcnow()
            if model:
                event.model = model
            if draft:
                event.draft = draft[: self.draft_snapshot_chars]
            if scores is not None:
                event.scores = dict(scores)
            if scorer_health is not None:
                event.scorer_health = scorer_health
            self._touch(job)
            return event.model_copy()

    async def record_item_completed(
        self,
        job_id: str,
        total_items: int,
        *,
        base: int,
        span: int,
        cap: int = 95,
    ) -> int:
        """Count one finished combination and return the recomputed progress."""
        async with self._lock(job_id):
            job = self._require(job_id)
            job.completed_items += 1
            computed = round(base + (job.completed_items / max(total_items, 1)) * span)
            job.progress = max(job.progress, min(computed, cap))
            self._touch(job)
            return job.progress

    async def fail(
        self,
        job_id: str,
        message: str,
        *,
        stack: Optional[str] = None,
        current_step: Optional[str] = None,
        increment_retry: bool = True,
    ) -> JobRecord:
        async with self._lock(job_id):
            job = self._require(job_id)
            check_transition(job.status, JobStatus.FAILED)
            job.status = JobStatus.FAILED
            job.error_message = message
            job.error_stack = stack
            if current_step is not None:
                job.current_step = current_step
            if increment_retry:
                job.retry_count += 1
            job.completed_at = utcnow()
            self._touch(job)
            logger.error("job_failed", job_id=job_id, error=message, retry_count=job.retry_count)
            self._locks.pop(job_id, None)
            return job.model_copy(deep=True)

    async def reset_for_retry(self, job_id: str) -> JobRecord:
        """Move a failed job back to pending for a caller-initiated rerun."""
        async with self._lock(job_id):
            job = self._require(job_id)
            if job.status != JobStatus.FAILED:
                raise InvalidJobTransition(f"only failed jobs can be retried; job is {job.status.value}")
            job.status = JobStatus.PENDING
            job.current_step = None
            job.progress = 0
            job.completed_items = 0
            job.steps = []
            job.error_message = None
            job.error_stack = None
            job.started_at = None
            job.completed_at = None
            self._touch(job)
            logger.info("job_reset_for_retry", job_id=job_id, retry_count=job.retry_count)
            return job.model_copy(deep=True)

    async def finalize(self, job_id: str, *, research_available: bool, research_length: int) -> JobRecord:
        async with self._lock(job_id):
            job = self._require(job_id)
            check_transition(job.status, JobStatus.COMPLETED)
            job.metadata["_research_available"] = research_available
            job.metadata["_research_length"] = research_length
            job.status = JobStatus.COMPLETED
            job.current_step = "Complete"
            job.progress = 100
            job.completed_at = utcnow()
            self._touch(job)
            logger.info("job_completed", job_id=job_id, pipeline=job.submission.pipeline.value)
            self._locks.pop(job_id, None)
            return job.model_copy(deep=True)
