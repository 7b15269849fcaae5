"""
IntakeSessionService: persistence around turns, retries, handoff and case creation.
"""

import json

import pytest

from app.checkpoint import InMemoryCheckpointStore
from app.errors import (
    CaseAlreadyCreatedError,
    CaseNotReadyError,
    CollaboratorError,
    ConsentRequiredError,
    NotificationError,
    SuggestionValidationError,
)
from app.intake.agent import ConversationStageController
from app.intake.stages import DIMENSION_ORDER, StageType, TriageDecision
from app.intake.state import ConversationState, MedicalData, StageStatus, TriageResult, Turn
from app.models import Case, Notification
from app.services import SqlCaseCreator, SqlNotifier
from app.services.handoff import (
    Notifier,
    build_handoff_payload,
    handoff_priority,
    handoff_title,
    handoff_urgency,
)
from app.services.intake_session import IntakeSessionService


class RecordingNotifier(Notifier):
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def notify(self, staff_query, payload, priority):
        if self.fail:
            raise NotificationError("pager down")
        self.sent.append((staff_query, payload, priority))


def user(text):
    return {"role": "user", "content": text}


def ready_state(decision=TriageDecision.URGENT, raw_text="user: I have had a fever for three days now"):
    return ConversationState(
        thread_id="t-1",
        messages=[Turn(role="user", content="fever")],
        stage_status=StageStatus(**{d.value: True for d in DIMENSION_ORDER}),
        triage_result=TriageResult(decision=decision, confidence=0.9, reasoning="r"),
        medical_data=MedicalData(structured_data={"chief_complaint": "Fever for three days"}, raw_text=raw_text),
        version=8,
    )


@pytest.fixture
def store():
    return InMemoryCheckpointStore()


def make_service(llm, store, sleeps=None, **kwargs):
    sleeps = sleeps if sleeps is not None else []
    return IntakeSessionService(
        controller=ConversationStageController(llm),
        store=store,
        sleep=sleeps.append,
        **kwargs,
    )


def test_turn_is_persisted(fake_llm_class, store):
    service = make_service(fake_llm_class(["COMPLETE: sudden onset"]), store)

    outcome = service.handle_turn("t-1", [user("it started suddenly")])

    assert outcome.result.type == StageType.OPQRST_INTERVIEW
    assert store.get("t-1") == outcome.next_state
    assert service.get_state("t-1").stage_status.onset is True


def test_turns_build_on_stored_state(fake_llm_class, store):
    service = make_service(fake_llm_class(["COMPLETE: onset", "What makes it worse?"]), store)

    service.handle_turn("t-1", [user("sudden")])
    outcome = service.handle_turn("t-1", [user("not sure")])

    assert outcome.result.current_focus.value == "provocation"
    assert len(store.get("t-1").messages) == 4


def test_retries_with_backoff_then_succeeds(fake_llm_class, store):
    llm = fake_llm_class(
        [CollaboratorError("llm", "timeout"), CollaboratorError("llm", "timeout"), "When did it start?"]
    )
    sleeps = []
    service = make_service(llm, store, sleeps=sleeps, max_retries=2, backoff_seconds=0.5)

    outcome = service.handle_turn("t-1", [user("pain")])

    assert outcome.result.message == "When did it start?"
    assert sleeps == [0.5, 1.0]
    # every attempt saw the identical turn
    assert llm.calls[0]["messages"] == llm.calls[2]["messages"]


def test_failed_turn_saves_nothing(fake_llm_class, store):
    store.put("t-1", ConversationState(thread_id="t-1", stage_status=StageStatus(onset=True), version=1))
    before = store.get("t-1")
    llm = fake_llm_class([CollaboratorError("llm", "down")] * 3)
    service = make_service(llm, store, max_retries=2)

    with pytest.raises(CollaboratorError):
        service.handle_turn("t-1", [user("hello")])

    assert store.get("t-1") == before
    assert len(llm.calls) == 3


def test_error_result_is_not_persisted(fake_llm_class, store):
    service = make_service(fake_llm_class([]), store)

    outcome = service.handle_turn("t-1", [{"role": "robot", "content": "x"}])

    assert outcome.result.type == StageType.ERROR
    assert store.get("t-1") is None


def test_corrupted_stored_state_is_reported(fake_llm_class, store):
    store._entries["t-1"] = ('{"thread_id": 1}', 0.0)
    store.ttl_seconds = None
    service = make_service(fake_llm_class([]), store)

    outcome = service.handle_turn("t-1", [user("hi")])

    assert outcome.result.type == StageType.ERROR


@pytest.mark.parametrize("decision", [d.value for d in TriageDecision])
def test_every_triage_outcome_hands_off(fake_llm_class, store, decision):
    state = ready_state().model_copy(update={"triage_result": None, "medical_data": None})
    store.put("t-1", state)
    reply = json.dumps({"decision": decision, "confidence": 0.9, "reasoning": "because"})
    notifier = RecordingNotifier()
    service = make_service(fake_llm_class([reply]), store, notifier=notifier)

    outcome = service.handle_turn("t-1", [user("what now?")])

    assert len(notifier.sent) == 1
    staff_query, payload, priority = notifier.sent[0]
    assert staff_query == {"role": "staff", "status": "active"}
    assert payload["metadata"]["conversation"]["id"] == "t-1"
    assert payload["metadata"]["handoff"]["reason"] == decision
    assert priority == handoff_priority(TriageDecision(decision))
    assert outcome.next_state.handoff_status == "waiting_provider"
    assert store.get("t-1") == outcome.next_state


def test_interview_turn_does_not_hand_off(fake_llm_class, store):
    notifier = RecordingNotifier()
    service = make_service(fake_llm_class(["When did it start?"]), store, notifier=notifier)

    outcome = service.handle_turn("t-1", [user("my knee hurts")])

    assert notifier.sent == []
    assert outcome.next_state.handoff_status is None


def test_notification_failure_does_not_undo_turn(fake_llm_class, store):
    state = ready_state().model_copy(update={"triage_result": None, "medical_data": None})
    store.put("t-1", state)
    reply = json.dumps({"decision": "EMERGENCY", "confidence": 0.9, "reasoning": "chest pain"})
    service = make_service(fake_llm_class([reply]), store, notifier=RecordingNotifier(fail=True))

    outcome = service.handle_turn("t-1", [user("help")])

    assert outcome.result.type == StageType.ASSESS_MEDICAL
    assert store.get("t-1").triage_result.decision == TriageDecision.EMERGENCY
    assert store.get("t-1").handoff_status == "pending"
    assert outcome.next_state.handoff_status == "pending"


def test_handoff_mappings():
    assert handoff_title(TriageDecision.EMERGENCY).startswith("Urgent:")
    assert handoff_urgency(TriageDecision.URGENT) == "high"
    assert handoff_urgency(TriageDecision.NON_URGENT) == "medium"
    assert handoff_urgency(TriageDecision.SELF_CARE) == "low"
    assert [handoff_priority(d) for d in TriageDecision] == ["urgent", "high", "medium", "low"]

    payload = build_handoff_payload(
        "t-9", TriageResult(decision=TriageDecision.URGENT, confidence=0.7, reasoning="r")
    )
    assert payload["type"] == "handoff_request"
    assert payload["metadata"]["handoff"] == {
        "from_ai": True,
        "reason": "URGENT",
        "urgency": "high",
        "confidence": 0.7,
    }


def test_sql_notifier_writes_row(session_factory):
    payload = build_handoff_payload(
        "t-1", TriageResult(decision=TriageDecision.EMERGENCY, confidence=0.9, reasoning="r")
    )
    SqlNotifier(session_factory).notify({"role": "staff"}, payload, "urgent")

    with session_factory() as session:
        row = session.query(Notification).one()
        assert row.priority == "urgent"
        assert row.type == "handoff_request"
        assert row.payload["conversation"]["id"] == "t-1"


# ----------------------------------------------------------------------
# Case creation
# ----------------------------------------------------------------------

def test_create_case_requires_finished_pipeline(fake_llm_class, store, session_factory):
    service = make_service(fake_llm_class([]), store, case_creator=SqlCaseCreator(session_factory))

    with pytest.raises(CaseNotReadyError):
        service.create_case("t-1", consent=True)

    store.put("t-1", ConversationState(thread_id="t-1", version=1))
    with pytest.raises(CaseNotReadyError):
        service.create_case("t-1", consent=True)


def test_create_case_requires_consent_unless_emergency(fake_llm_class, store, session_factory):
    service = make_service(fake_llm_class([]), store, case_creator=SqlCaseCreator(session_factory))

    store.put("t-1", ready_state(TriageDecision.URGENT))
    with pytest.raises(ConsentRequiredError):
        service.create_case("t-1", patient_id="p-1")

    store.put("t-1", ready_state(TriageDecision.EMERGENCY).model_copy(update={"version": 9}))
    assert service.create_case("t-1", patient_id="p-1")


def test_create_case_writes_row(fake_llm_class, store, session_factory):
    store.put("t-1", ready_state(TriageDecision.URGENT))
    service = make_service(fake_llm_class([]), store, case_creator=SqlCaseCreator(session_factory))

    case_id = service.create_case("t-1", patient_id="p-1", consent=True)

    with session_factory() as session:
        case = session.get(Case, case_id)
        assert case.title == "Fever for three days"
        assert case.category == "general"
        assert case.priority == "high"
        assert case.status == "open"
        assert case.patient_id == "p-1"
        assert case.metadata_["conversation_id"] == "t-1"
        assert case.metadata_["triage_assessment"]["decision"] == "URGENT"


def test_create_case_rejects_invalid_suggestion(fake_llm_class, store, session_factory):
    store.put("t-1", ready_state(TriageDecision.URGENT, raw_text="user: hi"))
    service = make_service(fake_llm_class([]), store, case_creator=SqlCaseCreator(session_factory))

    with pytest.raises(SuggestionValidationError) as exc:
        service.create_case("t-1", consent=True)

    assert any(err.startswith("description") for err in exc.value.errors)


def test_create_case_only_once_per_conversation(fake_llm_class, store, session_factory):
    store.put("t-1", ready_state(TriageDecision.URGENT))
    service = make_service(fake_llm_class([]), store, case_creator=SqlCaseCreator(session_factory))

    case_id = service.create_case("t-1", consent=True)
    assert store.get("t-1").case_id == case_id

    with pytest.raises(CaseAlreadyCreatedError) as exc:
        service.create_case("t-1", consent=True)
    assert exc.value.case_id == case_id

    with session_factory() as session:
        assert session.query(Case).filter(Case.thread_id == "t-1").count() == 1


def test_delete_conversation(fake_llm_class, store):
    service = make_service(fake_llm_class(["When did it start?"]), store)
    service.handle_turn("t-1", [user("hello")])

    service.delete_conversation("t-1")

    assert service.get_state("t-1") is None
