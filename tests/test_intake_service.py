"""
Tests for IntakeSessionService against an in-memory database.

- Session creation and ownership
- Message admission (dedup), persistence and auto-naming
- Doctor decision-support messages
- Readiness, intake-complete notification and review
- Notification rows roll back with the turn that produced them
"""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from intakeflow.errors import BadRequestError, ForbiddenError, NotFoundError
from intakeflow.intake import IntakeStateMachine, MessageDeduplicator
from intakeflow.models import AuditLog, ChatMessage, IntakeSession, Notification, utcnow
from intakeflow.services import IntakeSessionService, NotificationDispatcher
from intakeflow.triage import VitalsRecord

from tests.conftest import ScriptedLLM, agent_reply

LONG_HPI = "Throbbing pain on the left side for two days, worse with light and noise."

READY_SCRIPT = [
    agent_reply("Tell me more.", chief_complaint="Headache"),
    agent_reply("Any test results?", hpi=LONG_HPI),
    agent_reply("Any medications or allergies?"),
    agent_reply("Thank you, I have what I need."),
]
READY_MESSAGES = [
    "I have a bad headache",
    "It started two days ago and light makes it worse",
    "no",
    "none",
]


def count(database, model, *where):
    with database.session() as db:
        return db.scalar(select(func.count()).select_from(model).where(*where))


def drive_to_ready(service, session_id, user_id):
    outcome = None
    for text in READY_MESSAGES:
        outcome = service.send_message(session_id, user_id, text)
    return outcome


@pytest.fixture
def session_id(intake_service, seed):
    return intake_service.create_session(seed.connection_id, seed.patient_user_id).id


class TestCreateSession:
    def test_creates_session_with_greeting(self, intake_service, database, seed):
        session = intake_service.create_session(seed.connection_id, seed.patient_user_id)

        assert session.status == "not_started"
        assert session.name == "New Intake"
        assert session.current_agent == "Triage"
        assert session.completeness == 0

        _, messages = intake_service.get_session(session.id, seed.patient_user_id)
        assert [m.role for m in messages] == ["model"]
        assert messages[0].content == IntakeStateMachine.GREETING
        assert count(database, AuditLog, AuditLog.action == "intake_session_created") == 1

    def test_other_patient_cannot_create(self, intake_service, seed):
        with pytest.raises(ForbiddenError):
            intake_service.create_session(seed.connection_id, seed.other_patient_user_id)

    def test_unknown_connection(self, intake_service, seed):
        with pytest.raises(NotFoundError):
            intake_service.create_session("missing", seed.patient_user_id)


class TestGetSession:
    def test_connected_doctor_can_view(self, intake_service, seed, session_id):
        session, _ = intake_service.get_session(session_id, seed.doctor_user_id)
        assert session.id == session_id

    def test_unconnected_doctor_cannot_view(self, intake_service, seed, session_id):
        with pytest.raises(ForbiddenError):
            intake_service.get_session(session_id, seed.other_doctor_user_id)

    def test_unknown_session(self, intake_service, seed):
        with pytest.raises(NotFoundError):
            intake_service.get_session("missing", seed.patient_user_id)


class TestSendMessage:
    def test_turn_is_persisted(self, intake_service, llm, seed, session_id):
        llm.replies.append(agent_reply("How long has it hurt?", chief_complaint="Headache"))

        outcome = intake_service.send_message(session_id, seed.patient_user_id, "I have a bad headache")

        assert outcome.is_duplicate is False
        assert outcome.user_message.role == "user"
        assert len(outcome.user_message.content_hash) == 16
        assert outcome.ai_message.content == "How long has it hurt?"
        assert outcome.ai_message.active_agent == "ClinicalInvestigator"
        assert outcome.turn.completeness == 20

        session, messages = intake_service.get_session(session_id, seed.patient_user_id)
        assert session.status == "in_progress"
        assert session.current_agent == "ClinicalInvestigator"
        assert session.medical_data["chief_complaint"] == "Headache"
        assert session.name == "Headache"
        assert [m.role for m in messages] == ["model", "user", "model"]

    def test_duplicate_within_window_is_rejected(self, intake_service, llm, database, seed, session_id):
        at = utcnow()
        first = intake_service.send_message(session_id, seed.patient_user_id, "I have a headache", at=at)
        calls = len(llm.calls)

        repeat = intake_service.send_message(
            session_id, seed.patient_user_id, "I have a headache", at=at + timedelta(seconds=2)
        )

        assert repeat.is_duplicate is True
        assert repeat.matched_message_id == first.user_message.id
        assert repeat.ai_message is None
        assert len(llm.calls) == calls
        assert count(database, ChatMessage, ChatMessage.role == "user") == 1

        session, _ = intake_service.get_session(session_id, seed.patient_user_id)
        assert repeat.current_agent == session.current_agent
        assert repeat.completeness == session.completeness
        assert repeat.is_ready is False

    def test_repeat_after_window_is_accepted(self, intake_service, database, seed, session_id):
        at = utcnow()
        intake_service.send_message(session_id, seed.patient_user_id, "I have a headache", at=at)

        later = intake_service.send_message(
            session_id, seed.patient_user_id, "I have a headache", at=at + timedelta(seconds=6)
        )

        assert later.is_duplicate is False
        assert count(database, ChatMessage, ChatMessage.role == "user") == 2

    def test_empty_message_is_rejected(self, intake_service, seed, session_id):
        with pytest.raises(BadRequestError):
            intake_service.send_message(session_id, seed.patient_user_id, "   ")

    def test_outsider_is_forbidden(self, intake_service, seed, session_id):
        with pytest.raises(ForbiddenError):
            intake_service.send_message(session_id, seed.other_patient_user_id, "hello")

    def test_doctor_message_does_not_advance_intake(self, intake_service, llm, seed, session_id):
        llm.replies.append(agent_reply("Consider tension headache."))

        outcome = intake_service.send_message(session_id, seed.doctor_user_id, "Differential?")

        assert outcome.user_message.role == "doctor"
        assert outcome.ai_message.content == "Consider tension headache."
        assert outcome.ai_message.active_agent is None

        session, _ = intake_service.get_session(session_id, seed.doctor_user_id)
        assert session.status == "not_started"
        assert session.ai_message_count == 0


class TestReadiness:
    def test_ready_session_notifies_doctor(self, intake_service, llm, database, seed, session_id):
        llm.replies.extend(READY_SCRIPT)

        outcome = drive_to_ready(intake_service, session_id, seed.patient_user_id)

        assert outcome.turn.became_ready is True
        session, _ = intake_service.get_session(session_id, seed.patient_user_id)
        assert session.status == "ready"
        assert session.current_agent == "HandoverSpecialist"
        assert session.clinical_handover["situation"] == "Headache for two days"
        assert session.completed_at is not None

        with database.session() as db:
            notes = list(db.scalars(select(Notification)))
        assert len(notes) == 1
        note = notes[0]
        assert note.user_id == seed.doctor_user_id
        assert note.type == "intake_complete"
        assert note.title == "Intake Completed"
        assert note.data == {
            "sessionId": session_id,
            "connectionId": seed.connection_id,
            "patientName": "Jane Doe",
            "chiefComplaint": "Headache",
        }

    def test_notification_rolls_back_with_the_turn(self, database, seed):
        class ExplodingNotifier(NotificationDispatcher):
            def intake_complete(self, db, parties, session_id, chief_complaint=None):
                super().intake_complete(db, parties, session_id, chief_complaint)
                raise RuntimeError("notification store down")

        service = IntakeSessionService(
            database,
            IntakeStateMachine(ScriptedLLM(list(READY_SCRIPT)), timeout=2.0),
            MessageDeduplicator(5.0),
            ExplodingNotifier(),
        )
        session_id = service.create_session(seed.connection_id, seed.patient_user_id).id
        for text in READY_MESSAGES[:-1]:
            service.send_message(session_id, seed.patient_user_id, text)
        messages_before = count(database, ChatMessage)

        with pytest.raises(RuntimeError):
            service.send_message(session_id, seed.patient_user_id, READY_MESSAGES[-1])

        assert count(database, Notification) == 0
        assert count(database, ChatMessage) == messages_before
        assert count(database, IntakeSession, IntakeSession.status == "ready") == 0

    def test_duplicate_on_ready_session_reports_ready(self, intake_service, llm, seed, session_id):
        llm.replies.extend(READY_SCRIPT)
        drive_to_ready(intake_service, session_id, seed.patient_user_id)

        repeat = intake_service.send_message(session_id, seed.patient_user_id, READY_MESSAGES[-1])

        assert repeat.is_duplicate is True
        assert repeat.is_ready is True
        assert repeat.current_agent == "HandoverSpecialist"
        assert repeat.user_message is None

        session, _ = intake_service.get_session(session_id, seed.patient_user_id)
        assert repeat.completeness == session.completeness


class TestReview:
    def test_review_requires_ready(self, intake_service, seed, session_id):
        with pytest.raises(BadRequestError):
            intake_service.mark_reviewed(session_id, seed.doctor_user_id)

    def test_patient_cannot_review(self, intake_service, llm, seed, session_id):
        llm.replies.extend(READY_SCRIPT)
        drive_to_ready(intake_service, session_id, seed.patient_user_id)
        with pytest.raises(ForbiddenError):
            intake_service.mark_reviewed(session_id, seed.patient_user_id)

    def test_doctor_reviews_ready_session(self, intake_service, llm, database, seed, session_id):
        llm.replies.extend(READY_SCRIPT)
        drive_to_ready(intake_service, session_id, seed.patient_user_id)

        session = intake_service.mark_reviewed(session_id, seed.doctor_user_id)

        assert session.status == "reviewed"
        assert session.reviewed_by == seed.doctor_user_id
        assert session.reviewed_at is not None
        assert count(database, AuditLog, AuditLog.action == "intake_reviewed") == 1

        with pytest.raises(BadRequestError):
            intake_service.send_message(session_id, seed.patient_user_id, "one more thing")


class TestVitals:
    def test_vitals_are_routed_and_stored(self, intake_service, seed, session_id):
        vitals = VitalsRecord.model_validate({
            "temperature": {"value": 38.6, "unit": "celsius"},
            "blood_pressure": {"systolic": 120, "diastolic": 80},
        })

        decision = intake_service.submit_vitals(session_id, seed.patient_user_id, vitals)

        assert decision.decision == "agent-assisted"
        session, _ = intake_service.get_session(session_id, seed.patient_user_id)
        assert session.medical_data["triage"]["decision"] == "agent-assisted"
        assert session.medical_data["vitals"]["temperature"]["value"] == 38.6

    def test_vitals_merge_with_earlier_readings(self, intake_service, seed, session_id):
        intake_service.submit_vitals(
            session_id, seed.patient_user_id,
            VitalsRecord.model_validate({"blood_pressure": {"systolic": 185}}),
        )
        decision = intake_service.submit_vitals(
            session_id, seed.patient_user_id,
            VitalsRecord.model_validate({"temperature": {"value": 37.0, "unit": "celsius"}}),
        )
        assert decision.decision == "emergency"


class TestRename:
    def test_rename_and_clear(self, intake_service, database, seed, session_id):
        assert intake_service.rename_session(session_id, seed.patient_user_id, "  Migraine  ").name == "Migraine"
        assert intake_service.rename_session(session_id, seed.patient_user_id, None).name == "New Intake"
        assert count(database, AuditLog, AuditLog.action == "intake_session_name_updated") == 2

    def test_blank_name_is_rejected(self, intake_service, seed, session_id):
        with pytest.raises(BadRequestError) as exc:
            intake_service.rename_session(session_id, seed.patient_user_id, "   ")
        assert exc.value.message == "Session name cannot be empty. Use null to clear the name."

    def test_other_patient_cannot_rename(self, intake_service, seed, session_id):
        with pytest.raises(ForbiddenError):
            intake_service.rename_session(session_id, seed.other_patient_user_id, "Mine")
