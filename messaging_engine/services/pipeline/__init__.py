"""Job state machine, generation strategies and their entry points."""

from messaging_engine.services.pipeline.job_store import JobStore
from messaging_engine.services.pipeline.orchestrator import (
    JobInputs,
    PipelineRuntime,
    generate_and_score,
    refinement_loop,
    store_variant,
)
from messaging_engine.services.pipeline.runner import retry_job, run_generation_job, run_jobs, submit_job
from messaging_engine.services.pipeline.storage import (
    InMemoryVariantStore,
    InMemoryVoiceProfiles,
    NoOpSourceItemResetter,
)
from messaging_engine.services.pipeline.strategies import select_strategy

__all__ = [
    "InMemoryVariantStore",
    "InMemoryVoiceProfiles",
    "JobInputs",
    "JobStore",
    "NoOpSourceItemResetter",
    "PipelineRuntime",
    "generate_and_score",
    "refinement_loop",
    "retry_job",
    "run_generation_job",
    "run_jobs",
    "store_variant",
    "submit_job",
    "select_strategy",
]
