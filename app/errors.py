# app/errors.py
from __future__ import annotations

from typing import List, Optional


class IntakeError(Exception):
    """
    Base class for everything the intake core raises on purpose.
    """


class CollaboratorError(IntakeError):
    """
    A completion or persistence call failed or timed out.

    The turn that raised it committed nothing; the caller may retry
    the identical turn.
    """

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class StageSelectionError(IntakeError):
    """
    The conversation state is corrupted (e.g. the interview claims to be
    incomplete but no dimension is left to ask about).

    Operator-facing only. Never show the message to a patient.
    """


class SuggestionValidationError(IntakeError):
    def __init__(self, errors: List[str], payload: Optional[dict] = None):
        super().__init__("Invalid case suggestion: " + "; ".join(errors))
        self.errors = errors
        self.payload = payload


class CaseCreationError(IntakeError):
    pass


class NotificationError(IntakeError):
    pass


class CaseNotReadyError(CaseCreationError):
    """
    The conversation has not produced triage and extraction results yet.
    """


class ConsentRequiredError(CaseCreationError):
    pass


class CaseAlreadyCreatedError(CaseCreationError):
    def __init__(self, thread_id: str, case_id: str):
        super().__init__(f"Conversation {thread_id} already has case {case_id}")
        self.case_id = case_id
