# app/intake/stages.py
from enum import Enum
from typing import Tuple


class Dimension(str, Enum):
    ONSET = "onset"
    PROVOCATION = "provocation"
    QUALITY = "quality"
    RADIATION = "radiation"
    SEVERITY = "severity"
    TIMING = "timing"


# Interview order. Never reorder: question ordering must be repeatable across restarts.
DIMENSION_ORDER: Tuple[Dimension, ...] = (
    Dimension.ONSET,
    Dimension.PROVOCATION,
    Dimension.QUALITY,
    Dimension.RADIATION,
    Dimension.SEVERITY,
    Dimension.TIMING,
)


class StageType(str, Enum):
    OPQRST_INTERVIEW = "opqrst_interview"
    ASSESS_MEDICAL = "assess_medical"
    EXTRACT_MEDICAL_DATA = "extract_medical_data"
    PREPARE_CASE = "prepare_case"
    ERROR = "error"


class TriageDecision(str, Enum):
    EMERGENCY = "EMERGENCY"
    URGENT = "URGENT"
    NON_URGENT = "NON_URGENT"
    SELF_CARE = "SELF_CARE"


# Most to least severe
TRIAGE_PRIORITY_ORDER: Tuple[TriageDecision, ...] = (
    TriageDecision.EMERGENCY,
    TriageDecision.URGENT,
    TriageDecision.NON_URGENT,
    TriageDecision.SELF_CARE,
)


class CaseCategory(str, Enum):
    GENERAL = "general"
    FOLLOWUP = "followup"
    PRESCRIPTION = "prescription"
    TEST_RESULTS = "test_results"
    EMERGENCY = "emergency"


class CasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
