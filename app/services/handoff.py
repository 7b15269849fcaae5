# app/services/handoff.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from app.db import db_session
from app.errors import NotificationError
from app.intake.stages import TriageDecision
from app.intake.state import TriageResult
from app.models import Notification

logger = logging.getLogger(__name__)

HANDOFF_NOTIFICATION_TYPE = "handoff_request"

# Which staff should hear about a handed-off conversation
DEFAULT_STAFF_QUERY: Dict[str, Any] = {"role": "staff", "status": "active"}


def handoff_title(decision: TriageDecision) -> str:
    if decision == TriageDecision.EMERGENCY:
        return "Urgent: New patient requires immediate attention"
    if decision == TriageDecision.URGENT:
        return "High Priority: New patient requires prompt attention"
    if decision == TriageDecision.SELF_CARE:
        return "New patient seeking guidance"
    return "New patient requires review"


def handoff_urgency(decision: TriageDecision) -> str:
    if decision in (TriageDecision.EMERGENCY, TriageDecision.URGENT):
        return "high"
    if decision == TriageDecision.SELF_CARE:
        return "low"
    return "medium"


def handoff_priority(decision: TriageDecision) -> str:
    return {
        TriageDecision.EMERGENCY: "urgent",
        TriageDecision.URGENT: "high",
        TriageDecision.NON_URGENT: "medium",
        TriageDecision.SELF_CARE: "low",
    }[decision]


def build_handoff_payload(thread_id: str, triage_result: TriageResult) -> Dict[str, Any]:
    decision = triage_result.decision
    return {
        "type": HANDOFF_NOTIFICATION_TYPE,
        "title": handoff_title(decision),
        "content": "AI has completed initial assessment and recommends provider review.",
        "metadata": {
            "handoff": {
                "from_ai": True,
                "reason": decision.value,
                "urgency": handoff_urgency(decision),
                "confidence": triage_result.confidence,
            },
            "conversation": {"id": thread_id},
        },
    }


class Notifier(ABC):
    """
    Pages human staff. `staff_query` says who should be notified.
    """

    @abstractmethod
    def notify(self, staff_query: Dict[str, Any], payload: Dict[str, Any], priority: str) -> None:
        ...


class LoggingNotifier(Notifier):
    def notify(self, staff_query: Dict[str, Any], payload: Dict[str, Any], priority: str) -> None:
        logger.info(
            "Handoff notification (%s) for %s: %s",
            priority,
            staff_query,
            payload.get("title"),
        )


class SqlNotifier(Notifier):
    """
    Writes notification rows; an outside worker delivers them.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def notify(self, staff_query: Dict[str, Any], payload: Dict[str, Any], priority: str) -> None:
        try:
            with db_session(self.session_factory) as session:
                session.add(
                    Notification(
                        type=payload.get("type", HANDOFF_NOTIFICATION_TYPE),
                        staff_query=staff_query,
                        title=payload["title"],
                        content=payload.get("content", ""),
                        payload=payload.get("metadata", {}),
                        priority=priority,
                    )
                )
        except SQLAlchemyError as e:
            raise NotificationError(f"Failed to notify staff: {e}") from e


def initiate_handoff(
    notifier: Notifier,
    thread_id: str,
    triage_result: TriageResult,
    staff_query: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    payload = build_handoff_payload(thread_id, triage_result)
    priority = handoff_priority(triage_result.decision)
    notifier.notify(staff_query or DEFAULT_STAFF_QUERY, payload, priority)
    logger.info(
        "Thread %s handed off to staff (%s, priority %s)",
        thread_id,
        triage_result.decision.value,
        priority,
    )
    return payload
