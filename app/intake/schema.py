# app/intake/schema.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from app.errors import SuggestionValidationError
from app.intake.stages import CaseCategory, CasePriority


class Symptom(BaseModel):
    name: str = Field(..., description="Symptom name, e.g. 'chest pain'")
    onset: Optional[str] = Field(
        None,
        description="Free-text onset, e.g. 'suddenly, 2 hours ago'",
    )
    location: Optional[str] = None
    character: Optional[str] = None
    severity: Optional[str] = None
    aggravating_factors: Optional[str] = None
    relieving_factors: Optional[str] = None
    associated_symptoms: List[str] = Field(default_factory=list)


class Medication(BaseModel):
    name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None


class Allergy(BaseModel):
    substance: str
    reaction: Optional[str] = None


class OPQRSTSummary(BaseModel):
    onset: Optional[str] = None
    provocation: Optional[str] = None
    quality: Optional[str] = None
    radiation: Optional[str] = None
    severity: Optional[str] = None
    timing: Optional[str] = None


class StructuredIntakeModel(BaseModel):
    """
    Target schema for the extraction stage.

    This is what the LLM outputs as JSON and what ends up in
    MedicalData.structured_data and the case metadata.
    """

    chief_complaint: Optional[str] = None
    opqrst: OPQRSTSummary = Field(default_factory=OPQRSTSummary)
    symptoms: List[Symptom] = Field(default_factory=list)
    medications: List[Medication] = Field(default_factory=list)
    allergies: List[Allergy] = Field(default_factory=list)

    past_medical_history: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    other_notes: Optional[str] = None

    # Allow extra fields from the LLM without crashing
    model_config = {
        "extra": "ignore",
    }


class CaseSuggestion(BaseModel):
    """
    Case-creation payload proposed to the patient/staff for confirmation.
    """

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20)
    category: CaseCategory
    priority: CasePriority
    metadata: Dict[str, Any] = Field(default_factory=dict)


def validate_suggestion(payload: Dict[str, Any]) -> CaseSuggestion:
    try:
        return CaseSuggestion.model_validate(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise SuggestionValidationError(errors, payload=payload) from e
