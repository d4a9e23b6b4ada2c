"""Generation strategies and their dispatch."""

from __future__ import annotations

from typing import Optional, Union

import structlog

from messaging_engine.contracts import PipelineName
from messaging_engine.services.pipeline.orchestrator import PipelineRuntime
from messaging_engine.services.pipeline.strategies.adversarial import AdversarialStrategy
from messaging_engine.services.pipeline.strategies.base import PipelineStrategy
from messaging_engine.services.pipeline.strategies.multi_perspective import MultiPerspectiveStrategy
from messaging_engine.services.pipeline.strategies.outside_in import OutsideInStrategy
from messaging_engine.services.pipeline.strategies.standard import StandardStrategy
from messaging_engine.services.pipeline.strategies.straight_through import StraightThroughStrategy

logger = structlog.get_logger(__name__)


def select_strategy(name: Optional[Union[str, PipelineName]], runtime: PipelineRuntime) -> PipelineStrategy:
    """Pick the strategy for a pipeline key; anything unrecognised runs ``standard``."""
    pipeline = PipelineName.resolve(name)
    if pipeline == PipelineName.STRAIGHT_THROUGH:
        return StraightThroughStrategy(runtime)
    if pipeline == PipelineName.OUTSIDE_IN:
        return OutsideInStrategy(runtime)
    if pipeline == PipelineName.ADVERSARIAL:
        return AdversarialStrategy(runtime)
    if pipeline == PipelineName.MULTI_PERSPECTIVE:
        return MultiPerspectiveStrategy(runtime)
    if name and not isinstance(name, PipelineName) and str(name).strip().lower() != PipelineName.STANDARD.value:
        logger.warning("unknown_pipeline_defaulting", pipeline=str(name))
    return StandardStrategy(runtime)


__all__ = [
    "AdversarialStrategy",
    "MultiPerspectiveStrategy",
    "OutsideInStrategy",
    "PipelineStrategy",
    "StandardStrategy",
    "StraightThroughStrategy",
    "select_strategy",
]
