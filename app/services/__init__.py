# app/services/__init__.py
from app.db import init_db
from .cases import CaseCreator, SqlCaseCreator
from .handoff import LoggingNotifier, Notifier, SqlNotifier, initiate_handoff
from .intake_session import IntakeSessionService

__all__ = [
    "init_db",
    "CaseCreator",
    "SqlCaseCreator",
    "LoggingNotifier",
    "Notifier",
    "SqlNotifier",
    "initiate_handoff",
    "IntakeSessionService",
]
