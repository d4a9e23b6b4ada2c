"""
Persona stress testing.

Content is read by a small panel of critic personas representing the
target audience; each scores 0-10 and gives blunt feedback.  When a voice
and product insights are available, a domain-specific panel is generated
once per (voice, domain) and cached.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, MutableMapping, Optional

import structlog
from pydantic import BaseModel, Field

from messaging_engine.contracts import ModelTask
from messaging_engine.core.exceptions import ScorerFailure
from messaging_engine.models.insights import ExtractedInsights
from messaging_engine.models.jobs import VoiceProfile
from messaging_engine.models.llm import CallContext
from messaging_engine.models.scoring import PersonaScore
from messaging_engine.services.llm_client import llm_client
from messaging_engine.services.quality.judge import Verdict
from messaging_engine.utils.cache import make_process_cache

logger = structlog.get_logger(__name__)

CRITIC_TEMPERATURE = 0.4
CRITIC_CONTENT_CHARS = 3000
FAILED_CRITIC_SCORE = 5.0
PANEL_SIZE = 3


class CriticPersona(BaseModel):
    name: str
    prompt: str


class _GeneratedPanel(BaseModel):
    personas: List[CriticPersona] = Field(default_factory=list)


class CriticVerdict(Verdict):
    feedback: str = ""
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)


DEFAULT_PERSONAS: List[CriticPersona] = [
    CriticPersona(
        name="Skeptical Senior SRE",
        prompt=(
            "You are a senior SRE with 12 years of experience. You've been on-call more nights than you can "
            "count. You're deeply skeptical of vendor claims because you've been burned before. You value: "
            "specificity, honesty about limitations, understanding of real operational pain, and respect for "
            "your time. You hate: buzzwords, hand-wavy claims, anything that sounds like it was written by "
            "someone who's never been paged at 3am. Score this messaging 0-10 and be brutally honest."
        ),
    ),
    CriticPersona(
        name="Cost-Conscious Platform Engineer",
        prompt=(
            "You are a platform engineering lead at a mid-size company. Your budget is tight and getting "
            "tighter. You evaluate everything through the lens of: does this actually save money or time? Is "
            "this a real need or a nice-to-have? You're tired of tools that promise the world and deliver "
            "marginal improvements. Score this messaging 0-10 based on whether it would make you want to learn "
            "more, and be specific about what works and what doesn't."
        ),
    ),
    CriticPersona(
        name="App Developer Who Hates O11y Tooling",
        prompt=(
            "You are a full-stack developer who views observability as a necessary evil. You just want to ship "
            "features and not spend hours configuring dashboards. You're suspicious of any tool that requires "
            '"just a few minutes of setup" (it never is). You value: simplicity, developer experience, not '
            "having to learn yet another query language. Score this messaging 0-10 on whether it speaks to your "
            "reality, not some idealized DevOps world you don't live in."
        ),
    ),
]


@dataclass(frozen=True)
class PersonaContext:
    voice: VoiceProfile
    insights: ExtractedInsights


class PersonaCriticPanel:
    """Critic panel with an injectable per-(voice, domain) persona cache."""

    def __init__(self, cache: Optional[MutableMapping[str, List[CriticPersona]]] = None):
        self.cache: MutableMapping[str, List[CriticPersona]] = cache if cache is not None else make_process_cache()
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def cache_key(persona_context: PersonaContext) -> str:
        return f"{persona_context.voice.id}:{persona_context.insights.domain or 'unknown'}"

    async def get_personas(
        self,
        persona_context: Optional[PersonaContext] = None,
        *,
        context: Optional[CallContext] = None,
    ) -> List[CriticPersona]:
        if persona_context is None:
            return list(DEFAULT_PERSONAS)

        key = self.cache_key(persona_context)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
            personas = await self.generate_personas(persona_context, context=context)
            if personas is None:
                # Only generated panels are cached
                return list(DEFAULT_PERSONAS)
            self.cache[key] = personas
            return personas

    async def generate_personas(
        self,
        persona_context: PersonaContext,
        *,
        context: Optional[CallContext] = None,
    ) -> Optional[List[CriticPersona]]:
        """A domain-specific panel, or None when generation fails or comes back short."""
        voice, insights = persona_context.voice, persona_context.insights
        prompt = f"""Create {PANEL_SIZE} critic personas who would read marketing content about this product and judge it harshly but fairly.

Product domain: {insights.domain} / {insights.category}
Product type: {insights.product_type}
Target personas: {', '.join(insights.target_personas) or 'practitioners in this domain'}
Voice the content is written in: {voice.name} — {voice.description}

Each persona must be a specific practitioner in this domain with a distinct lens (for example skepticism of vendor claims, budget pressure, or day-to-day usability). Write each prompt in the second person ("You are..."), list what they value and what they hate, and end with an instruction to score the messaging 0-10.

Respond with JSON:
{{
  "personas": [
    {{"name": "<short persona title>", "prompt": "<full persona prompt>"}}
  ]
}}"""
        try:
            result = await llm_client.generate_json(
                prompt,
                response_model=_GeneratedPanel,
                task=ModelTask.FLASH,
                temperature=0.5,
                context=context,
            )
        except Exception as e:
            logger.warning("persona_generation_failed", voice=voice.name, domain=insights.domain, error=str(e))
            return None

        personas = [p for p in result.data.personas if p.name.strip() and p.prompt.strip()][:PANEL_SIZE]
        if len(personas) < 2:
            logger.warning("persona_generation_too_few", voice=voice.name, count=len(personas))
            return None
        logger.info("personas_generated", voice=voice.name, domain=insights.domain, count=len(personas))
        return personas

    async def run_critic(
        self,
        content: str,
        persona: CriticPersona,
        *,
        context: Optional[CallContext] = None,
    ) -> PersonaScore:
        prompt = f"""{persona.prompt}

## Messaging to Evaluate:
{content[:CRITIC_CONTENT_CHARS]}

Respond with JSON:
{{
  "score": <0-10>,
  "feedback": "<your honest, blunt reaction to this messaging — 2-3 sentences>",
  "strengths": ["<what works>"],
  "weaknesses": ["<what doesn't work>"]
}}"""
        result = await llm_client.generate_json(
            prompt,
            response_model=CriticVerdict,
            task=ModelTask.SCORING,
            temperature=CRITIC_TEMPERATURE,
            max_parse_retries=2,
            context=context,
        )
        verdict = result.data
        return PersonaScore(
            persona=persona.name,
            score=verdict.score,
            feedback=verdict.feedback,
            strengths=verdict.strengths,
            weaknesses=verdict.weaknesses,
        )

    async def score(
        self,
        content: str,
        persona_context: Optional[PersonaContext] = None,
        *,
        context: Optional[CallContext] = None,
    ) -> List[PersonaScore]:
        """Score with every panel member concurrently.

        A failed critic scores 5; if every critic fails the panel raises
        ``ScorerFailure`` so the ensemble reports the dimension as degraded.
        """
        personas = await self.get_personas(persona_context, context=context)
        outcomes = await asyncio.gather(
            *(self.run_critic(content, p, context=context) for p in personas),
            return_exceptions=True,
        )

        scores: List[PersonaScore] = []
        failures = 0
        for persona, outcome in zip(personas, outcomes):
            if isinstance(outcome, BaseException):
                failures += 1
                logger.warning("persona_critic_failed", persona=persona.name, error=str(outcome))
                scores.append(
                    PersonaScore(persona=persona.name, score=FAILED_CRITIC_SCORE, feedback="Critic analysis failed")
                )
            else:
                scores.append(outcome)

        if personas and failures == len(personas):
            raise ScorerFailure("persona", "all persona critics failed")
        return scores

    def clear(self) -> None:
        self.cache.clear()


def average_persona_score(scores: List[PersonaScore]) -> float:
    if not scores:
        return FAILED_CRITIC_SCORE
    return round(sum(s.score for s in scores) / len(scores), 1)


persona_panel = PersonaCriticPanel()
