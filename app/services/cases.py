# app/services/cases.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.db import db_session
from app.errors import CaseCreationError
from app.intake.schema import CaseSuggestion
from app.models import Case

logger = logging.getLogger(__name__)


class CaseCreator(ABC):
    @abstractmethod
    def create_case(
        self,
        suggestion: CaseSuggestion,
        patient_id: Optional[str],
        thread_id: str,
    ) -> str:
        """
        Persist a case built from a validated suggestion; returns the case id.
        """
        ...


class SqlCaseCreator(CaseCreator):
    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def create_case(
        self,
        suggestion: CaseSuggestion,
        patient_id: Optional[str],
        thread_id: str,
    ) -> str:
        metadata = dict(suggestion.metadata)
        metadata["conversation_id"] = thread_id

        try:
            with db_session(self.session_factory) as session:
                case = Case(
                    patient_id=patient_id,
                    thread_id=thread_id,
                    title=suggestion.title,
                    description=suggestion.description,
                    category=suggestion.category.value,
                    priority=suggestion.priority.value,
                    status="open",
                    metadata_=metadata,
                )
                session.add(case)
                session.flush()  # to get case.id
                case_id = case.id
        except SQLAlchemyError as e:
            raise CaseCreationError(f"Failed to create case: {e}") from e

        logger.info("Case %s created for thread %s", case_id, thread_id)
        return case_id
