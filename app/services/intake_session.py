# app/services/intake_session.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from app.checkpoint import CheckpointStore, ThreadLocks
from app.errors import (
    CaseAlreadyCreatedError,
    CaseNotReadyError,
    CollaboratorError,
    ConsentRequiredError,
    NotificationError,
    StageSelectionError,
)
from app.intake.agent import ConversationStageController, MessageLike, StageResult, TurnOutcome
from app.intake.prompts import OPERATOR_ERROR_MESSAGE
from app.intake.schema import validate_suggestion
from app.intake.stages import StageType, TriageDecision
from app.intake.state import ConversationState, TriageResult
from app.services.cases import CaseCreator
from app.services.handoff import LoggingNotifier, Notifier, initiate_handoff

logger = logging.getLogger(__name__)


class IntakeSessionService:
    """
    Service that coordinates:
      - loading and saving ConversationState per thread
      - driving the ConversationStageController, with retries
      - paging staff when triage calls for a handoff
      - turning an approved suggestion into a case

    Turns on the same thread are serialized; a turn that fails saves nothing.
    """

    def __init__(
        self,
        controller: ConversationStageController,
        store: CheckpointStore,
        locks: Optional[ThreadLocks] = None,
        case_creator: Optional[CaseCreator] = None,
        notifier: Optional[Notifier] = None,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.controller = controller
        self.store = store
        self.locks = locks or ThreadLocks()
        self.case_creator = case_creator
        self.notifier = notifier or LoggingNotifier()
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_turn(self, thread_id: str, new_messages: Sequence[MessageLike]) -> TurnOutcome:
        """
        Run one turn for `thread_id`.

        Raises CollaboratorError when the LLM or the store keeps failing
        after retries; the stored state is then exactly what it was before.
        """
        with self.locks.hold(thread_id):
            try:
                previous = self.store.get(thread_id)
            except StageSelectionError as e:
                logger.error("Cannot load thread %s: %s", thread_id, e)
                return TurnOutcome(
                    result=StageResult(type=StageType.ERROR, message=OPERATOR_ERROR_MESSAGE),
                    next_state=ConversationState.new(thread_id),
                )

            outcome = self._invoke_with_retry(thread_id, previous, new_messages)
            if outcome.result.type == StageType.ERROR:
                return outcome

            next_state = outcome.next_state
            if outcome.result.requires_handoff:
                next_state = next_state.model_copy(update={"handoff_status": "pending"})
            self.store.put(thread_id, next_state)

            if outcome.result.requires_handoff:
                next_state = self._handoff(thread_id, outcome.result.result, next_state)
            return TurnOutcome(result=outcome.result, next_state=next_state)

    def get_state(self, thread_id: str) -> Optional[ConversationState]:
        with self.locks.hold(thread_id):
            return self.store.get(thread_id)

    def delete_conversation(self, thread_id: str) -> None:
        with self.locks.hold(thread_id):
            self.store.delete(thread_id)
        logger.info("Thread %s deleted", thread_id)

    def create_case(
        self,
        thread_id: str,
        patient_id: Optional[str] = None,
        consent: bool = False,
    ) -> str:
        """
        Create the case the conversation proposed.

        The patient must consent unless triage said EMERGENCY. A conversation
        yields at most one case; the id is recorded on its state.
        """
        if self.case_creator is None:
            raise RuntimeError("IntakeSessionService has no case creator configured")

        with self.locks.hold(thread_id):
            state = self.store.get(thread_id)
            if state is None or not state.is_ready_for_case():
                raise CaseNotReadyError(
                    f"Conversation {thread_id} has no triage and extraction results yet"
                )
            if state.case_id is not None:
                raise CaseAlreadyCreatedError(thread_id, state.case_id)
            if not consent and state.triage_result.decision != TriageDecision.EMERGENCY:
                raise ConsentRequiredError("Patient consent required to create case")

            outcome = self._invoke_with_retry(thread_id, state, [])
            if outcome.result.suggestion is None:
                raise StageSelectionError(f"thread {thread_id} did not produce a case suggestion")

            suggestion = validate_suggestion(outcome.result.suggestion.model_dump(mode="json"))
            case_id = self.case_creator.create_case(suggestion, patient_id, thread_id)
            self.store.put(thread_id, outcome.next_state.model_copy(update={"case_id": case_id}))
            return case_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _invoke_with_retry(
        self,
        thread_id: str,
        previous: Optional[ConversationState],
        new_messages: Sequence[MessageLike],
    ) -> TurnOutcome:
        attempt = 0
        while True:
            try:
                return self.controller.invoke(thread_id, previous, new_messages)
            except CollaboratorError as e:
                if attempt >= self.max_retries:
                    logger.error(
                        "Thread %s: giving up after %d attempts: %s",
                        thread_id,
                        attempt + 1,
                        e,
                    )
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(
                    "Thread %s: attempt %d failed (%s), retrying in %.1fs",
                    thread_id,
                    attempt + 1,
                    e,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    def _handoff(
        self,
        thread_id: str,
        triage_result: TriageResult,
        state: ConversationState,
    ) -> ConversationState:
        # The turn is already saved with handoff_status "pending". Raising here
        # would make the caller retry it and skip ahead a stage, so failures
        # are logged and the status stays "pending".
        try:
            initiate_handoff(self.notifier, thread_id, triage_result)
        except NotificationError:
            logger.exception("Thread %s: failed to notify staff of handoff", thread_id)
            return state

        sent = state.model_copy(
            update={"handoff_status": "waiting_provider", "version": state.version + 1}
        )
        try:
            self.store.put(thread_id, sent)
        except CollaboratorError:
            logger.exception("Thread %s: staff paged but handoff status not saved", thread_id)
            return state
        return sent
