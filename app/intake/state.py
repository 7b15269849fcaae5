# app/intake/state.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from app.intake.stages import DIMENSION_ORDER, Dimension, TriageDecision

HandoffStatus = Literal["pending", "waiting_provider"]


class Turn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class PatientTurn(Turn):
    """
    A turn as a patient may send it. Only the controller writes the other roles.
    """

    role: Literal["user"]


class StageStatus(BaseModel):
    """
    One flag per OPQRST dimension. Flags only ever go from False to True.
    """

    onset: bool = False
    provocation: bool = False
    quality: bool = False
    radiation: bool = False
    severity: bool = False
    timing: bool = False

    def is_set(self, dimension: Dimension) -> bool:
        return getattr(self, dimension.value)

    def next_unset(self) -> Optional[Dimension]:
        for dimension in DIMENSION_ORDER:
            if not self.is_set(dimension):
                return dimension
        return None

    def is_complete(self) -> bool:
        return all(self.is_set(d) for d in DIMENSION_ORDER)

    def mark(self, dimension: Dimension) -> "StageStatus":
        return self.model_copy(update={dimension.value: True})


class TriageResult(BaseModel):
    decision: TriageDecision
    confidence: float = Field(0.8, ge=0.0, le=1.0)
    reasoning: str = ""


class MedicalData(BaseModel):
    structured_data: Dict[str, Any] = Field(default_factory=dict)
    raw_text: str = ""


class ConversationState(BaseModel):
    """
    Persisted progress of one conversation, keyed by thread_id.

    Pipeline: stage_status (all six) -> triage_result -> medical_data.
    Later fields can only exist once the earlier ones do.
    """

    thread_id: str
    messages: List[Turn] = Field(default_factory=list)
    stage_status: StageStatus = Field(default_factory=StageStatus)
    triage_result: Optional[TriageResult] = None
    medical_data: Optional[MedicalData] = None

    # "pending" once staff paging starts, "waiting_provider" once it went out
    handoff_status: Optional[HandoffStatus] = None
    case_id: Optional[str] = None

    # Bumped every time a turn is committed
    version: int = 0

    @classmethod
    def new(cls, thread_id: str) -> "ConversationState":
        return cls(thread_id=thread_id)

    @model_validator(mode="after")
    def _check_pipeline_order(self) -> "ConversationState":
        if self.triage_result is not None and not self.stage_status.is_complete():
            raise ValueError("triage_result set before all OPQRST dimensions were complete")
        if self.medical_data is not None and self.triage_result is None:
            raise ValueError("medical_data set before triage_result")
        if self.handoff_status is not None and self.triage_result is None:
            raise ValueError("handoff_status set before triage_result")
        if self.case_id is not None and not self.is_ready_for_case():
            raise ValueError("case_id set before the case could be prepared")
        return self

    def is_ready_for_case(self) -> bool:
        return self.triage_result is not None and self.medical_data is not None
