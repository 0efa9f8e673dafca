"""Symptom analysis built on a hosted language model.

The model is asked for a single JSON object. Its output is untrusted text:
anything that cannot be read as a valid ``AnalysisResult`` is replaced by a
fixed, conservative fallback so callers always get a well-formed answer.
Provider failures (network, auth, quota, timeout) are different: they are
raised as ``AnalysisProviderError`` so no medical content is made up.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from ..domain.errors import AnalysisProviderError
from ..domain.models import (
    AnalysisResult,
    Condition,
    Likelihood,
    Suggestion,
    UrgencyLevel,
)
from ..metrics import ANALYSES
from .providers import ChatTurn, SymptomAnalysisProvider

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are MediAI, a health assistant that helps people understand their symptoms.
You do NOT diagnose. Every answer must carry appropriate caution.

{profile_section}

Read the user's latest message about their symptoms, taking the whole conversation into account.
{profile_instruction}
Provide:
1. An urgency assessment: mild, moderate or severe.
2. Possible conditions that could explain the symptoms, each with a likelihood of High, Moderate or Low and a short explanation.
3. Care suggestions, each with the reasoning behind it. Flag suggestions that call for prompt medical attention as warnings.
4. One follow-up question that would help narrow things down.
5. Optionally, the medical specialty best suited to follow up (for example general, pediatric, heart, ortho).

Respond with ONE JSON object and nothing else: no prose, no markdown, no code fences.
The object must have exactly this shape:
{{
  "urgency": "mild" | "moderate" | "severe",
  "conditions": [{{"name": string, "likelihood": "High" | "Moderate" | "Low", "explanation": string}}],
  "suggestions": [{{"text": string, "isWarning": boolean, "reasoning": string}}],
  "message": string,
  "followUpQuestion": string,
  "specialty": string
}}

Guidelines:
- "message" is a thorough, empathetic summary of the findings and advice, written to the user.
- Only suggest possibilities in "conditions"; never state a diagnosis.
- For severe symptoms set "urgency" to "severe" and include a warning to seek immediate care.
- Ground the assessment in established medical knowledge and avoid risky assumptions.
- Encourage professional consultation for persistent or worsening symptoms.
"""

PROFILE_SECTION = """--- User Health Profile ---
{context}
--- End User Health Profile ---"""

PROFILE_INSTRUCTION = (
    "Weigh the symptoms against the health profile above: age, sex, body measurements, "
    "existing conditions, allergies and medications all change what is likely and what is safe to suggest.\n"
)

NO_PROFILE_SECTION = "No health profile was provided for this user."

SYMPTOM_TURN = 'Here are my current symptoms: "{symptoms}". Please analyze them.'

_FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_FENCED = re.compile(r"```[ \t]*\n(.*?)\n?```", re.DOTALL)


def fallback_result() -> AnalysisResult:
    """Safe answer used whenever the model output cannot be interpreted."""
    return AnalysisResult(
        urgency=UrgencyLevel.MILD,
        conditions=[
            Condition(
                name="Unable to analyze symptoms",
                likelihood=Likelihood.LOW,
                explanation="The assessment could not be completed.",
            )
        ],
        suggestions=[
            Suggestion(
                text="Please consult with a healthcare provider for proper evaluation",
                is_warning=True,
                reasoning="A healthcare professional can examine you and give an accurate assessment.",
            )
        ],
        message=(
            "I apologize, but I couldn't properly analyze your symptoms. "
            "For accurate health advice, please consult with a healthcare professional."
        ),
        follow_up_question="Could you provide more specific details about your symptoms?",
    )


class OutcomeKind(str, Enum):
    OK = "ok"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class AnalysisOutcome:
    """Interpretation of one raw model response."""

    kind: OutcomeKind
    result: AnalysisResult


def build_system_prompt(profile_context: Optional[str] = None) -> str:
    if profile_context:
        return SYSTEM_PROMPT.format(
            profile_section=PROFILE_SECTION.format(context=profile_context),
            profile_instruction=PROFILE_INSTRUCTION,
        )
    return SYSTEM_PROMPT.format(profile_section=NO_PROFILE_SECTION, profile_instruction="")


def build_turns(symptom_text: str, history: Sequence[ChatTurn]) -> List[ChatTurn]:
    """Prior turns followed by the symptom request.

    The caller's history may already end with the message being analyzed;
    it is sent once, as the symptom request.
    """
    turns = [{"role": turn["role"], "content": turn["content"]} for turn in history]
    if turns and turns[-1]["role"] == "user" and turns[-1]["content"] == symptom_text:
        turns.pop()
    turns.append({"role": "user", "content": SYMPTOM_TURN.format(symptoms=symptom_text)})
    return turns


def _json_candidates(raw: str) -> Iterator[str]:
    match = _FENCED_JSON.search(raw)
    if match:
        yield match.group(1)
    match = _FENCED.search(raw)
    if match:
        yield match.group(1)
    # Bare objects: each '{' may open the payload.
    decoder = json.JSONDecoder()
    for start in (m.start() for m in re.finditer(r"\{", raw)):
        try:
            _, end = decoder.raw_decode(raw, start)
        except (json.JSONDecodeError, RecursionError):
            continue
        yield raw[start:end]
    yield raw.strip()


def interpret(raw: str) -> AnalysisOutcome:
    """Turn raw model text into an AnalysisOutcome, never raising."""
    for candidate in _json_candidates(raw):
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, RecursionError):
            continue
        try:
            return AnalysisOutcome(OutcomeKind.OK, AnalysisResult.model_validate(data))
        except ValidationError:
            continue
    return AnalysisOutcome(OutcomeKind.FALLBACK, fallback_result())


class SymptomAnalysisEngine:
    """Prompts a provider and parses its answer into an AnalysisResult."""

    def __init__(
        self,
        provider: SymptomAnalysisProvider,
        temperature: float = 0.2,
        timeout: float = 45.0,
    ) -> None:
        self.provider = provider
        self.temperature = temperature
        self.timeout = timeout

    async def analyze(
        self,
        symptom_text: str,
        history: Sequence[ChatTurn],
        profile_context: Optional[str] = None,
    ) -> AnalysisResult:
        """Assess symptom_text in the light of history and the optional profile.

        Raises AnalysisProviderError when the provider call fails or times out.
        """
        system_prompt = build_system_prompt(profile_context)
        turns = build_turns(symptom_text, history)

        try:
            raw = await self._complete(system_prompt, turns)
        except AnalysisProviderError as e:
            self._record_failure(str(e))
            raise
        except Exception as e:
            self._record_failure(str(e))
            raise AnalysisProviderError(f"{self.provider.name}: {str(e) or type(e).__name__}") from e

        if not raw or not raw.strip():
            self._record_failure("empty response")
            raise AnalysisProviderError(f"{self.provider.name} returned an empty response")

        outcome = interpret(raw)
        ANALYSES.labels(outcome=outcome.kind.value).inc()
        if outcome.kind is OutcomeKind.FALLBACK:
            logger.warning(
                "analysis_output_unparseable",
                provider=self.provider.name,
                raw_length=len(raw),
            )
        else:
            logger.info(
                "analysis_completed",
                provider=self.provider.name,
                urgency=outcome.result.urgency.value,
                conditions=len(outcome.result.conditions),
            )
        return outcome.result

    async def _complete(self, system_prompt: str, turns: List[ChatTurn]) -> str:
        """One provider call bounded by self.timeout.

        Only the local deadline is reported as "did not respond"; a timeout
        raised by the provider itself propagates like any other failure.
        """
        call = asyncio.ensure_future(
            self.provider.complete(system_prompt, turns, self.temperature)
        )
        try:
            done, _ = await asyncio.wait({call}, timeout=self.timeout)
        except asyncio.CancelledError:
            call.cancel()
            raise
        if not done:
            call.cancel()
            raise AnalysisProviderError(
                f"{self.provider.name} did not respond within {self.timeout:g} seconds"
            )
        return call.result()

    def _record_failure(self, error: str) -> None:
        ANALYSES.labels(outcome="error").inc()
        logger.error("analysis_provider_error", provider=self.provider.name, error=error)
