"""Conversation decision engine.

A bounded state machine over ``ConversationState``. Each stage is a function
``stage(state, llm) -> Step``; a Step with an outcome terminates the run.

    reply gate -> answer -> refine -> triviality gate -> confidence (+ fallback)

Terminal outcomes are NoReply, TrivialAnswer (never scored) and ScoredAnswer.
External failures inside a stage degrade to a conservative default instead
of aborting the run.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from twincast.agents.prompts import (
    ANSWER_PROMPT,
    CONFIDENCE_PROMPT,
    LOW_CONFIDENCE_PROMPT,
    REFINE_PROMPT,
    REPLY_GATE_PROMPT,
    TRIVIALITY_PROMPT,
)
from twincast.agents.structured import generate_structured
from twincast.errors import ExternalServiceError
from twincast.schemas.agents import (
    AnswerText,
    ConfidenceAssessment,
    ConversationOutcome,
    ConversationState,
    NoReply,
    ReplyDecision,
    ScoredAnswer,
    TrivialAnswer,
    TrivialityDecision,
)
from twincast.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

APOLOGY_ANSWER = "I'm sorry, I couldn't process your request right now."
DEFAULT_CONFIDENCE_REASONING = "Confidence could not be assessed; defaulting to medium."


@dataclass
class Step:
    """Result of one stage: the next state, and an outcome if the run ends."""

    state: ConversationState
    outcome: Optional[ConversationOutcome] = None


Stage = Callable[[ConversationState, LLMClient], Step]


def _history(state: ConversationState) -> str:
    if not state.conversation_history:
        return "(no earlier messages)"
    return "\n".join(f"{turn}. {text}" for turn, text in enumerate(state.conversation_history, start=1))


def _context(state: ConversationState) -> str:
    return "\n---\n".join(state.retrieved_context) or "No specific context available."


def _user(content: str):
    return [{"role": "user", "content": content}]


def not_confident_message(state: ConversationState) -> str:
    """Deterministic "not confident" reply rendered in the profile's capitalisation."""
    text = "Not sure about this one, I'd rather not guess."
    if "lowercase" in state.style_profile.syntax.capitalization.lower():
        text = text.lower()
    return text


def reply_gate(state: ConversationState, llm: LLMClient) -> Step:
    """Decide whether the mention deserves a reply. Defaults to replying."""
    try:
        decision = generate_structured(
            llm,
            _user(REPLY_GATE_PROMPT.format(history=_history(state), question=state.question)),
            ReplyDecision,
            lambda raw: ReplyDecision(to_reply=True),
            label="reply-gate",
        )
        to_reply = decision.to_reply
    except ExternalServiceError as e:
        logger.warning(f"[reply-gate] failed, defaulting to reply: {e}")
        to_reply = True

    state = state.model_copy(update={"to_reply": to_reply})
    if not to_reply:
        return Step(state, NoReply())
    return Step(state)


def generate_answer(state: ConversationState, llm: LLMClient) -> Step:
    """Draft a styled answer from the profile, retrieved context and question."""
    prompt = ANSWER_PROMPT.format(
        profile=state.style_profile.to_prompt(),
        keywords=", ".join(state.keywords) or "none",
        context=_context(state),
        history=_history(state),
        question=state.question,
    )
    try:
        answer = generate_structured(
            llm,
            _user(prompt),
            AnswerText,
            lambda raw: AnswerText(text=raw.strip() or APOLOGY_ANSWER),
            label="answer",
        )
        draft = answer.text
    except ExternalServiceError as e:
        logger.error(f"[answer] generation failed: {e}")
        draft = APOLOGY_ANSWER
    return Step(state.model_copy(update={"draft_response": draft}))


def refine_style(state: ConversationState, llm: LLMClient) -> Step:
    """Strip generation artifacts from the draft. Keeps the draft on failure."""
    draft = state.draft_response
    prompt = REFINE_PROMPT.format(
        syntax=state.style_profile.syntax.model_dump_json(),
        tone=state.style_profile.tone or "unspecified",
        draft=draft,
    )
    try:
        refined = generate_structured(
            llm,
            _user(prompt),
            AnswerText,
            lambda raw: AnswerText(text=draft),
            label="refine",
        ).text
    except ExternalServiceError as e:
        logger.warning(f"[refine] failed, keeping draft: {e}")
        refined = draft
    return Step(state.model_copy(update={"draft_response": refined}))


def triviality_gate(state: ConversationState, llm: LLMClient) -> Step:
    """Trivial social comments are answered without confidence scoring."""
    try:
        is_trivial = generate_structured(
            llm,
            _user(TRIVIALITY_PROMPT.format(question=state.question)),
            TrivialityDecision,
            lambda raw: TrivialityDecision(is_trivial=False),
            label="triviality",
        ).is_trivial
    except ExternalServiceError as e:
        logger.warning(f"[triviality] failed, defaulting to not trivial: {e}")
        is_trivial = False

    state = state.model_copy(update={"is_trivial": is_trivial})
    if is_trivial:
        return Step(state, TrivialAnswer(answer=state.draft_response))
    return Step(state)


def score_confidence(state: ConversationState, llm: LLMClient) -> Step:
    """Score grounding; a low score swaps the draft for a styled "not confident" reply."""
    prompt = CONFIDENCE_PROMPT.format(
        keywords=", ".join(state.keywords) or "none",
        context=_context(state),
        question=state.question,
        answer=state.draft_response,
    )

    def default(raw: str = "") -> ConfidenceAssessment:
        return ConfidenceAssessment(confidence="medium", reasoning=DEFAULT_CONFIDENCE_REASONING)

    try:
        assessment = generate_structured(llm, _user(prompt), ConfidenceAssessment, default, label="confidence")
    except ExternalServiceError as e:
        logger.warning(f"[confidence] failed, defaulting to medium: {e}")
        assessment = default()

    answer = state.draft_response
    used_fallback = False
    if assessment.confidence == "low":
        answer = low_confidence_answer(state, llm)
        used_fallback = True

    state = state.model_copy(
        update={
            "draft_response": answer,
            "confidence_score": assessment.confidence,
            "confidence_reasoning": assessment.reasoning,
        }
    )
    return Step(
        state,
        ScoredAnswer(
            answer=answer,
            confidence=assessment.confidence,
            reasoning=assessment.reasoning,
            used_fallback=used_fallback,
        ),
    )


def low_confidence_answer(state: ConversationState, llm: LLMClient) -> str:
    """A "not confident" message in the user's voice, never empty."""
    fallback_text = not_confident_message(state)
    prompt = LOW_CONFIDENCE_PROMPT.format(
        tone=state.style_profile.tone or "unspecified",
        syntax=state.style_profile.syntax.model_dump_json(),
        question=state.question,
    )
    try:
        text = generate_structured(
            llm,
            _user(prompt),
            AnswerText,
            lambda raw: AnswerText(text=raw.strip() or fallback_text),
            label="low-confidence",
        ).text
    except ExternalServiceError as e:
        logger.warning(f"[low-confidence] failed, using generic message: {e}")
        text = fallback_text
    return text.strip() or fallback_text


STAGES: List[Stage] = [reply_gate, generate_answer, refine_style, triviality_gate, score_confidence]


class ConversationEngine:
    """Runs the stages in order until one produces an outcome."""

    def __init__(self, llm: LLMClient, stages: Sequence[Stage] = STAGES):
        self.llm = llm
        self.stages = list(stages)

    def run(self, state: ConversationState) -> Step:
        """
        Drive the state machine to a terminal outcome.

        Returns:
            The final Step; ``outcome`` is always set
        """
        logger.info(f"[conversation] starting for question: {state.question[:80]!r}")
        for stage in self.stages:
            step = stage(state, self.llm)
            state = step.state
            if step.outcome is not None:
                logger.info(f"[conversation] terminated at {stage.__name__}: {step.outcome.kind}")
                return step
        raise RuntimeError("conversation stages ended without an outcome")
