# app/intake/__init__.py
from .agent import ConversationStageController, StageResult, TurnOutcome
from .schema import CaseSuggestion, StructuredIntakeModel
from .stages import Dimension, StageType, TriageDecision
from .state import ConversationState, MedicalData, PatientTurn, StageStatus, TriageResult, Turn

__all__ = [
    "ConversationStageController",
    "StageResult",
    "TurnOutcome",
    "CaseSuggestion",
    "StructuredIntakeModel",
    "Dimension",
    "StageType",
    "TriageDecision",
    "ConversationState",
    "MedicalData",
    "StageStatus",
    "TriageResult",
    "PatientTurn",
    "Turn",
]
