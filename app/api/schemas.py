# app/api/schemas.py
from __future__ import annotations

from typing import Any, Dict, Optional, List

from pydantic import BaseModel, Field

from app.intake.stages import Dimension, StageType
from app.intake.state import HandoffStatus, MedicalData, PatientTurn, StageStatus, TriageResult


class TurnRequest(BaseModel):
    messages: List[PatientTurn] = Field(..., min_length=1)


class TurnResponse(BaseModel):
    type: StageType
    message: str
    current_focus: Optional[Dimension] = None
    result: Optional[TriageResult] = None
    data: Optional[MedicalData] = None
    # Plain dict: a suggestion may still fail case validation at this point
    suggestion: Optional[Dict[str, Any]] = None
    stage_status: StageStatus
    handoff: bool = False


class ConversationResponse(BaseModel):
    thread_id: str
    message_count: int
    stage_status: StageStatus
    triage_result: Optional[TriageResult]
    medical_data: Optional[MedicalData]
    handoff_status: Optional[HandoffStatus] = None
    ready_for_case: bool
    case_id: Optional[str] = None
    version: int


class CreateCaseRequest(BaseModel):
    patient_id: Optional[str] = None
    consent: bool = False


class CreateCaseResponse(BaseModel):
    case_id: str
