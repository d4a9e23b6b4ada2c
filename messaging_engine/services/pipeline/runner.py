"""
Job entry points: submit a job, run it, run several with bounded concurrency.

A run never lets an exception escape: a crash marks the job failed with
its message and stack, bumps the retry count and asks the source-item
collaborator to put the originating item back into a retryable state.
"""

from __future__ import annotations

import asyncio
import traceback
from typing import Iterable, List, Optional

import structlog

from messaging_engine.core import config
from messaging_engine.logging_config import bind_job_context, clear_job_context
from messaging_engine.models.jobs import JobRecord, JobSubmission
from messaging_engine.models.llm import CallContext
from messaging_engine.services.pipeline.orchestrator import JobInputs, PipelineRuntime
from messaging_engine.services.pipeline.strategies import select_strategy
from messaging_engine.utils.otel import otel_span

logger = structlog.get_logger(__name__)


async def submit_job(submission: JobSubmission, runtime: PipelineRuntime) -> JobRecord:
    return await runtime.jobs.create(submission)


async def run_generation_job(
    job_id: str,
    runtime: PipelineRuntime,
    *,
    session_id: Optional[str] = None,
) -> JobRecord:
    job = await runtime.jobs.get(job_id)
    submission = job.submission
    pipeline = submission.pipeline
    session_id = session_id or submission.session_id
    context = CallContext(purpose=f"pipeline:{pipeline.value}", job_id=job_id, session_id=session_id)

    bind_job_context(job_id, pipeline.value, session_id)
    try:
        voices = await runtime.voices.get_profiles(submission.voice_profile_ids)
        if not voices:
            logger.warning("no_voice_profiles_selected", job_id=job_id, requested=submission.voice_profile_ids)
        strategy = select_strategy(pipeline, runtime)
        logger.info("pipeline_started", job_id=job_id, pipeline=pipeline.value, session_id=session_id)
        with otel_span("pipeline.run", {"job_id": job_id, "pipeline": pipeline.value}):
            await strategy.run(JobInputs(job_id=job_id, submission=submission, voices=voices, context=context))
    except Exception as e:
        logger.error("generation_job_crashed", job_id=job_id, error=str(e), exc_info=True)
        stack = traceback.format_exc()
        current = await runtime.jobs.get(job_id)
        if not current.status.is_terminal:
            await runtime.jobs.fail(job_id, str(e) or type(e).__name__, stack=stack)
        try:
            await runtime.source_items.reset_source_item(job_id)
        except Exception as reset_err:
            logger.error("source_item_reset_failed", job_id=job_id, error=str(reset_err))
    finally:
        clear_job_context()

    return await runtime.jobs.get(job_id)


async def retry_job(job_id: str, runtime: PipelineRuntime) -> JobRecord:
    """Caller-initiated rerun of a failed job."""
    await runtime.jobs.reset_for_retry(job_id)
    return await run_generation_job(job_id, runtime)


async def run_jobs(
    job_ids: Iterable[str],
    runtime: PipelineRuntime,
    max_concurrent: Optional[int] = None,
) -> List[JobRecord]:
    semaphore = asyncio.Semaphore(max(1, max_concurrent or config.MAX_CONCURRENT_JOBS))

    async def _run(job_id: str) -> JobRecord:
        async with semaphore:
            return await run_generation_job(job_id, runtime)

    return await asyncio.gather(*(_run(job_id) for job_id in job_ids))
