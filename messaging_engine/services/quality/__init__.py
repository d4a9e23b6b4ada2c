"""Quality scoring: six dimensions, gates, and the grounding check."""

from messaging_engine.services.quality.grounding_validator import GroundingResult, validate_grounding
from messaging_engine.services.quality.persona_critic import (
    DEFAULT_PERSONAS,
    CriticPersona,
    PersonaContext,
    PersonaCriticPanel,
    persona_panel,
)
from messaging_engine.services.quality.scoring import check_quality_gates, score_content, total_quality_score
from messaging_engine.services.quality.slop_detector import deslop

__all__ = [
    "CriticPersona",
    "DEFAULT_PERSONAS",
    "GroundingResult",
    "PersonaContext",
    "PersonaCriticPanel",
    "check_quality_gates",
    "deslop",
    "persona_panel",
    "score_content",
    "total_quality_score",
    "validate_grounding",
]
