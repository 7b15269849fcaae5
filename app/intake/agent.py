# app/intake/agent.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from app.errors import StageSelectionError
from app.intake.prompts import (
    EMERGENCY_BANNER,
    EXTRACTION_DONE_MESSAGE,
    OPERATOR_ERROR_MESSAGE,
    PREPARE_CASE_MESSAGE,
)
from app.intake.schema import CaseSuggestion
from app.intake.stages import Dimension, StageType, TriageDecision
from app.intake.state import ConversationState, MedicalData, PatientTurn, TriageResult, Turn
from app.intake.summarizer import extract_medical_data
from app.intake.tasks import (
    assess_medical_situation,
    conduct_opqrst_interview,
    parse_interview_reply,
    prepare_case_creation,
)
from app.llm import LLMClient

logger = logging.getLogger(__name__)


class StageResult(BaseModel):
    """
    What one turn produced. Which optional field is filled depends on `type`:

      opqrst_interview     -> current_focus
      assess_medical       -> result
      extract_medical_data -> data
      prepare_case         -> suggestion
      error                -> nothing
    """

    type: StageType
    message: str
    current_focus: Optional[Dimension] = None
    result: Optional[TriageResult] = None
    data: Optional[MedicalData] = None
    suggestion: Optional[CaseSuggestion] = None

    @property
    def requires_handoff(self) -> bool:
        # Every triage outcome goes to staff; the decision only sets how fast
        return self.type == StageType.ASSESS_MEDICAL and self.result is not None


@dataclass
class TurnOutcome:
    result: StageResult
    next_state: ConversationState


MessageLike = Union[Turn, dict]


class ConversationStageController:
    """
    Drives one conversation through the OPQRST interview, triage,
    extraction and case preparation.

    `invoke` is a function of (previous_state, new_messages): it never
    mutates its inputs and never writes anywhere. Persisting `next_state`
    is the caller's job. At most one stage advances per call, and at most
    one stage task (so at most one LLM call chain) runs per call.

    Errors from the LLM propagate out of `invoke` untouched; no state is
    returned in that case, so nothing partial can be saved.
    """

    def __init__(self, llm_client: LLMClient, conversational_temperature: float = 0.7):
        self.llm_client = llm_client
        self.conversational_temperature = conversational_temperature

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def invoke(
        self,
        thread_id: str,
        previous_state: Optional[ConversationState],
        new_messages: Sequence[MessageLike],
    ) -> TurnOutcome:
        base = previous_state if previous_state is not None else ConversationState.new(thread_id)

        try:
            if base.thread_id != thread_id:
                raise StageSelectionError(
                    f"state belongs to thread {base.thread_id!r}, not {thread_id!r}"
                )
            state = self._merge(base, new_messages)
            return self._step(state)
        except StageSelectionError as e:
            logger.error("Stage selection failed for thread %s: %s", thread_id, e)
            return TurnOutcome(
                result=StageResult(type=StageType.ERROR, message=OPERATOR_ERROR_MESSAGE),
                next_state=base,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _merge(self, base: ConversationState, new_messages: Sequence[MessageLike]) -> ConversationState:
        """
        Deep copy of `base` with the new turns appended, re-validated so a
        corrupted record never reaches a stage task.

        Inbound turns must come from the patient. Assistant and system turns
        are only ever written by the controller itself.
        """
        try:
            turns = [
                PatientTurn.model_validate(m.model_dump() if isinstance(m, Turn) else m)
                for m in new_messages
            ]
            data = base.model_dump()
            data["messages"].extend(t.model_dump() for t in turns)
            return ConversationState.model_validate(data)
        except ValidationError as e:
            raise StageSelectionError(f"invalid conversation state: {e}") from e

    def _step(self, state: ConversationState) -> TurnOutcome:
        if not state.stage_status.is_complete():
            return self._interview(state)
        if state.triage_result is None:
            return self._assess(state)
        if state.medical_data is None:
            return self._extract(state)
        return self._prepare_case(state)

    def _interview(self, state: ConversationState) -> TurnOutcome:
        focus = state.stage_status.next_unset()
        if focus is None:
            raise StageSelectionError("stage_status incomplete but no unset dimension found")

        raw = conduct_opqrst_interview(
            self.llm_client,
            state.messages,
            focus,
            temperature=self.conversational_temperature,
        )
        complete, message = parse_interview_reply(raw)

        updates: dict[str, Any] = {}
        if complete:
            updates["stage_status"] = state.stage_status.mark(focus)
            logger.info("Thread %s: marked %s as complete", state.thread_id, focus.value)

        next_state = self._commit(state, message, **updates)
        return TurnOutcome(
            result=StageResult(
                type=StageType.OPQRST_INTERVIEW,
                message=message,
                current_focus=focus,
            ),
            next_state=next_state,
        )

    def _assess(self, state: ConversationState) -> TurnOutcome:
        triage_result = assess_medical_situation(self.llm_client, state.messages)

        if triage_result.decision == TriageDecision.EMERGENCY:
            message = EMERGENCY_BANNER
        else:
            message = triage_result.reasoning

        next_state = self._commit(state, message, triage_result=triage_result)
        return TurnOutcome(
            result=StageResult(
                type=StageType.ASSESS_MEDICAL,
                message=message,
                result=triage_result,
            ),
            next_state=next_state,
        )

    def _extract(self, state: ConversationState) -> TurnOutcome:
        medical_data = extract_medical_data(self.llm_client, state.messages)

        next_state = self._commit(state, EXTRACTION_DONE_MESSAGE, medical_data=medical_data)
        logger.info("Thread %s: medical data extracted", state.thread_id)
        return TurnOutcome(
            result=StageResult(
                type=StageType.EXTRACT_MEDICAL_DATA,
                message=EXTRACTION_DONE_MESSAGE,
                data=medical_data,
            ),
            next_state=next_state,
        )

    def _prepare_case(self, state: ConversationState) -> TurnOutcome:
        # Repeatable: rebuilt from the same immutable upstream fields each time
        suggestion = prepare_case_creation(
            self.llm_client,
            state.messages,
            state.triage_result,
            state.medical_data,
        )
        next_state = state.model_copy(update={"version": state.version + 1})
        return TurnOutcome(
            result=StageResult(
                type=StageType.PREPARE_CASE,
                message=PREPARE_CASE_MESSAGE,
                suggestion=suggestion,
            ),
            next_state=next_state,
        )

    def _commit(self, state: ConversationState, reply: str, **updates: Any) -> ConversationState:
        messages: List[Turn] = list(state.messages)
        messages.append(Turn(role="assistant", content=reply))
        updates["messages"] = messages
        updates["version"] = state.version + 1
        return state.model_copy(update=updates)
