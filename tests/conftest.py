"""
Shared fixtures: a scripted LLM and an in-memory sqlite database.
"""

import json
import os
import re

# Must be set before app.db builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import init_db
from app.llm import LLMClient


class FakeLLMClient(LLMClient):
    """
    LLMClient that replays canned replies (or asks a handler) and records calls.

    A reply that is an Exception instance is raised instead of returned.
    """

    def __init__(self, replies=None, handler=None):
        self.replies = list(replies or [])
        self.handler = handler
        self.calls = []

    def chat(self, messages, temperature=0.2, model=None, max_tokens=None, json_mode=False):
        self.calls.append(
            {"messages": messages, "temperature": temperature, "json_mode": json_mode}
        )
        if self.handler is not None:
            reply = self.handler(messages)
        else:
            if not self.replies:
                raise AssertionError("unexpected LLM call")
            reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


FOCUS_KEYWORDS = {
    "onset": "sudden",
    "provocation": "breath",
    "quality": "stabbing",
    "radiation": "shoulder",
    "severity": "8/10",
    "timing": "constant",
}

CHEST_PAIN_EXTRACTION = {
    "chief_complaint": "Sudden stabbing chest pain radiating to left shoulder",
    "opqrst": {
        "onset": "sudden, one hour ago",
        "provocation": "worse with breathing",
        "quality": "stabbing",
        "radiation": "left shoulder",
        "severity": "8/10",
        "timing": "constant",
    },
    "symptoms": [{"name": "chest pain", "location": "chest", "severity": "8/10"}],
    "red_flags": ["chest pain radiating to shoulder"],
}


def chest_pain_handler(messages):
    """
    Plays a sensible model for the chest-pain scenario: a dimension is
    complete once the latest patient turn mentions it.
    """
    system = messages[0]["content"]
    patient_turns = [m["content"] for m in messages if m["role"] == "user"]
    transcript = " ".join(patient_turns).lower()

    if "OPQRST medical interview" in system:
        focus = re.search(r"gathering information about: (\w+)", system).group(1)
        latest = patient_turns[-1].lower() if patient_turns else ""
        if FOCUS_KEYWORDS[focus] in latest:
            return f"COMPLETE: patient described {focus}"
        return f"Could you tell me more about the {focus} of your pain?"

    if system.startswith("Assess the medical situation"):
        if "chest" in transcript and "shoulder" in transcript:
            return json.dumps(
                {
                    "decision": "EMERGENCY",
                    "confidence": 0.95,
                    "reasoning": "Severe chest pain radiating to the left shoulder.",
                }
            )
        return json.dumps({"decision": "SELF_CARE", "confidence": 0.6, "reasoning": "Mild."})

    if "medical scribe" in system:
        return json.dumps(CHEST_PAIN_EXTRACTION)

    return "Chest pain"


@pytest.fixture
def fake_llm_class():
    return FakeLLMClient


@pytest.fixture
def chest_pain_llm():
    return FakeLLMClient(handler=chest_pain_handler)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
