# app/api/routes.py
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, Response

from app.checkpoint import ThreadLocks, build_checkpoint_store
from app.config import get_settings
from app.errors import (
    CaseAlreadyCreatedError,
    CaseCreationError,
    CaseNotReadyError,
    CollaboratorError,
    ConsentRequiredError,
    StageSelectionError,
    SuggestionValidationError,
)
from app.intake.agent import ConversationStageController
from app.intake.prompts import OPERATOR_ERROR_MESSAGE, RETRY_MESSAGE
from app.intake.stages import StageType
from app.llm import OpenAILLMClient
from app.services import IntakeSessionService, SqlCaseCreator, SqlNotifier
from .schemas import (
    ConversationResponse,
    CreateCaseRequest,
    CreateCaseResponse,
    TurnRequest,
    TurnResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def get_intake_service() -> IntakeSessionService:
    settings = get_settings()
    controller = ConversationStageController(
        OpenAILLMClient(),
        conversational_temperature=settings.conversational_temperature,
    )
    return IntakeSessionService(
        controller=controller,
        store=build_checkpoint_store(settings),
        locks=ThreadLocks(),
        case_creator=SqlCaseCreator(),
        notifier=SqlNotifier(),
        max_retries=settings.llm_max_retries,
        backoff_seconds=settings.llm_backoff_seconds,
    )


@router.post("/conversations/{thread_id}/messages", response_model=TurnResponse)
def post_messages(
    thread_id: str,
    payload: TurnRequest,
    service: IntakeSessionService = Depends(get_intake_service),
) -> TurnResponse:
    """
    Send the patient's new turns and get the assistant's reply.
    """
    try:
        outcome = service.handle_turn(thread_id, payload.messages)
    except CollaboratorError as e:
        logger.warning("Turn failed for thread %s: %s", thread_id, e)
        raise HTTPException(status_code=503, detail=RETRY_MESSAGE)

    result = outcome.result
    if result.type == StageType.ERROR:
        raise HTTPException(status_code=500, detail=OPERATOR_ERROR_MESSAGE)

    return TurnResponse(
        type=result.type,
        message=result.message,
        current_focus=result.current_focus,
        result=result.result,
        data=result.data,
        suggestion=(
            result.suggestion.model_dump(mode="json") if result.suggestion is not None else None
        ),
        stage_status=outcome.next_state.stage_status,
        handoff=result.requires_handoff,
    )


@router.get("/conversations/{thread_id}", response_model=ConversationResponse)
def get_conversation(
    thread_id: str,
    service: IntakeSessionService = Depends(get_intake_service),
) -> ConversationResponse:
    try:
        state = service.get_state(thread_id)
    except CollaboratorError as e:
        logger.warning("Could not load thread %s: %s", thread_id, e)
        raise HTTPException(status_code=503, detail=RETRY_MESSAGE)
    except StageSelectionError as e:
        logger.error("Corrupted state for thread %s: %s", thread_id, e)
        raise HTTPException(status_code=500, detail=OPERATOR_ERROR_MESSAGE)

    if state is None:
        raise HTTPException(status_code=404, detail="Conversation not found.")

    return ConversationResponse(
        thread_id=state.thread_id,
        message_count=len(state.messages),
        stage_status=state.stage_status,
        triage_result=state.triage_result,
        medical_data=state.medical_data,
        handoff_status=state.handoff_status,
        ready_for_case=state.is_ready_for_case(),
        case_id=state.case_id,
        version=state.version,
    )


@router.delete("/conversations/{thread_id}", status_code=204)
def delete_conversation(
    thread_id: str,
    service: IntakeSessionService = Depends(get_intake_service),
) -> Response:
    try:
        service.delete_conversation(thread_id)
    except CollaboratorError as e:
        logger.warning("Could not delete thread %s: %s", thread_id, e)
        raise HTTPException(status_code=503, detail=RETRY_MESSAGE)
    return Response(status_code=204)


@router.post("/conversations/{thread_id}/case", response_model=CreateCaseResponse)
def create_case(
    thread_id: str,
    payload: CreateCaseRequest,
    service: IntakeSessionService = Depends(get_intake_service),
) -> CreateCaseResponse:
    try:
        case_id = service.create_case(
            thread_id,
            patient_id=payload.patient_id,
            consent=payload.consent,
        )
    except (CaseNotReadyError, CaseAlreadyCreatedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConsentRequiredError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except SuggestionValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors)
    except CollaboratorError as e:
        logger.warning("Case suggestion failed for thread %s: %s", thread_id, e)
        raise HTTPException(status_code=503, detail=RETRY_MESSAGE)
    except (CaseCreationError, StageSelectionError) as e:
        logger.error("Case creation failed for thread %s: %s", thread_id, e)
        raise HTTPException(status_code=500, detail="Failed to create case.")

    return CreateCaseResponse(case_id=case_id)
