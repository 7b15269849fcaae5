# app/intake/tasks.py
from __future__ import annotations

import logging
import re
from typing import Optional, Sequence, Tuple

from app.intake.prompts import (
    CASE_TITLE_PROMPT,
    COMPLETION_MARKER,
    DEFAULT_CASE_TITLE,
    TRIAGE_PROMPT,
    opqrst_interview_prompt,
)
from app.intake.schema import CaseSuggestion, StructuredIntakeModel, validate_suggestion
from app.intake.stages import (
    CaseCategory,
    CasePriority,
    TRIAGE_PRIORITY_ORDER,
    Dimension,
    TriageDecision,
)
from app.intake.state import MedicalData, TriageResult, Turn
from app.llm import LLMClient, clean_json_from_llm
from app.errors import SuggestionValidationError

logger = logging.getLogger(__name__)

# "URGENT" on its own, not as part of NON_URGENT / NON-URGENT
_TRIAGE_PATTERNS = {
    TriageDecision.EMERGENCY: re.compile(r"EMERGENCY"),
    TriageDecision.URGENT: re.compile(r"(?<![A-Z_-])URGENT"),
    TriageDecision.NON_URGENT: re.compile(r"NON[_ -]URGENT"),
}

DEFAULT_TRIAGE_CONFIDENCE = 0.8
TITLE_MIN, TITLE_MAX = 5, 100


# ----------------------------------------------------------------------
# OPQRST interview
# ----------------------------------------------------------------------

def conduct_opqrst_interview(
    llm_client: LLMClient,
    messages: Sequence[Turn],
    focus: Dimension,
    temperature: float = 0.7,
) -> str:
    logger.info("Conducting OPQRST interview for %s", focus.value)
    raw = llm_client.complete(opqrst_interview_prompt(focus), messages, temperature=temperature)
    logger.debug("OPQRST reply for %s: %r", focus.value, raw)
    return raw


def parse_interview_reply(raw: str) -> Tuple[bool, str]:
    """
    A dimension is complete only when the reply starts with the literal
    marker. Returns (complete, message with the marker removed).
    """
    if raw.startswith(COMPLETION_MARKER):
        return True, raw[len(COMPLETION_MARKER):]
    return False, raw


# ----------------------------------------------------------------------
# Triage
# ----------------------------------------------------------------------

def derive_triage_decision(text: str) -> TriageDecision:
    """
    First band found wins, checked most severe first. Text that mentions
    several bands always resolves to the most urgent one.
    """
    for decision in TRIAGE_PRIORITY_ORDER:
        pattern = _TRIAGE_PATTERNS.get(decision)
        if pattern is not None and pattern.search(text):
            return decision
    return TriageDecision.SELF_CARE


def _label_from_reply(data: dict) -> Optional[TriageDecision]:
    label = data.get("decision")
    if not isinstance(label, str):
        return None
    try:
        return TriageDecision(label.strip().upper())
    except ValueError:
        return None


def assess_medical_situation(llm_client: LLMClient, messages: Sequence[Turn]) -> TriageResult:
    raw = llm_client.complete(TRIAGE_PROMPT, messages, temperature=0.0, json_mode=True)

    try:
        data = clean_json_from_llm(raw)
    except ValueError:
        logger.warning("Triage reply was not JSON, falling back to keyword search")
        data = {}

    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        reasoning = raw

    decision = _label_from_reply(data)
    if decision is None or "EMERGENCY" in raw:
        # Free text, a bad label or an EMERGENCY mention anywhere:
        # keyword search over the whole reply, most severe first.
        decision = derive_triage_decision(raw)

    confidence = data.get("confidence", DEFAULT_TRIAGE_CONFIDENCE)
    if not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
        confidence = DEFAULT_TRIAGE_CONFIDENCE

    logger.info("Triage decision: %s (confidence %.2f)", decision.value, confidence)
    return TriageResult(decision=decision, confidence=float(confidence), reasoning=reasoning)


# ----------------------------------------------------------------------
# Case preparation
# ----------------------------------------------------------------------

def category_for(decision: TriageDecision) -> CaseCategory:
    if decision == TriageDecision.EMERGENCY:
        return CaseCategory.EMERGENCY
    return CaseCategory.GENERAL


def priority_for(decision: TriageDecision) -> CasePriority:
    if decision == TriageDecision.EMERGENCY:
        return CasePriority.URGENT
    if decision == TriageDecision.URGENT:
        return CasePriority.HIGH
    return CasePriority.MEDIUM


def _fit_title(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    title = " ".join(text.strip().strip('"').split())
    if len(title) > TITLE_MAX:
        title = title[: TITLE_MAX - 3].rstrip() + "..."
    if len(title) < TITLE_MIN:
        return None
    return title[0].upper() + title[1:]


def derive_case_title(
    llm_client: LLMClient,
    messages: Sequence[Turn],
    medical_data: MedicalData,
) -> str:
    """
    Title from the extracted chief complaint; asks the LLM only when the
    extraction did not find one.
    """
    structured = StructuredIntakeModel.model_validate(medical_data.structured_data)
    title = _fit_title(structured.chief_complaint)
    if title is None and structured.symptoms:
        title = _fit_title(structured.symptoms[0].name)
    if title is None:
        title = _fit_title(llm_client.complete(CASE_TITLE_PROMPT, messages, temperature=0.0))
    return title or DEFAULT_CASE_TITLE


def prepare_case_creation(
    llm_client: LLMClient,
    messages: Sequence[Turn],
    triage_result: TriageResult,
    medical_data: MedicalData,
) -> CaseSuggestion:
    """
    Build the case-creation suggestion from the immutable triage and
    extraction results. Calling it twice gives the same category/priority.
    """
    payload = {
        "title": derive_case_title(llm_client, messages, medical_data),
        "description": medical_data.raw_text,
        "category": category_for(triage_result.decision),
        "priority": priority_for(triage_result.decision),
        "metadata": {
            "source": "ai",
            "triage_assessment": triage_result.model_dump(mode="json"),
            "medical_data": medical_data.structured_data,
            "opqrst_complete": True,
        },
    }
    try:
        return validate_suggestion(payload)
    except SuggestionValidationError as e:
        # Short transcripts fail the description length check. The
        # suggestion still goes out; case creation validates again.
        logger.warning("Case suggestion incomplete: %s", e)
        return CaseSuggestion.model_construct(**payload)
