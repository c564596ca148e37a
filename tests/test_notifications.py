"""
Tests for NotificationDispatcher and the notification inbox.

- Recipient rules per event kind
- Title / message / payload shape
- Display-name fallbacks and message previews
- Listing and marking notifications read
"""
from datetime import datetime

import pytest

from intakeflow.errors import NotFoundError
from intakeflow.models import Appointment, Connection, DirectMessage, User
from intakeflow.services import ConnectionParties, NotificationDispatcher, NotificationKind
from intakeflow.services.notifications import (
    display_name,
    list_for_user,
    mark_read,
    message_preview,
    resolve_recipient,
)

PARTIES = ConnectionParties(
    connection_id="conn-1",
    patient_user_id="patient-user",
    doctor_user_id="doctor-user",
    patient_name="Jane Doe",
    doctor_name="Gregory House",
)


class TestRecipients:
    @pytest.mark.parametrize(
        "kind",
        [NotificationKind.CONNECTION, NotificationKind.INTAKE_COMPLETE, NotificationKind.INTAKE_RESET],
    )
    def test_doctor_receives_patient_events(self, kind):
        assert resolve_recipient(kind, PARTIES) == "doctor-user"

    @pytest.mark.parametrize("kind", [NotificationKind.APPOINTMENT, NotificationKind.MESSAGE])
    def test_other_party_receives_two_way_events(self, kind):
        assert resolve_recipient(kind, PARTIES, "patient-user") == "doctor-user"
        assert resolve_recipient(kind, PARTIES, "doctor-user") == "patient-user"

    def test_two_way_events_need_an_actor(self):
        with pytest.raises(ValueError):
            resolve_recipient(NotificationKind.MESSAGE, PARTIES)


class TestDisplayName:
    def test_full_name(self):
        assert display_name(User(first_name="Jane", last_name="Doe")) == "Jane Doe"

    def test_partial_name(self):
        assert display_name(User(first_name="Jane", last_name="  ")) == "Jane"

    def test_fallbacks(self):
        assert display_name(None) == "Unknown User"
        assert display_name(User(), "A patient") == "A patient"


class TestPreview:
    def test_short_message_is_unchanged(self):
        assert message_preview("See you soon") == "See you soon"

    def test_long_message_is_truncated(self):
        preview = message_preview("x" * 150)
        assert preview == "x" * 100 + "..."

    def test_exactly_one_hundred_chars_is_kept(self):
        assert message_preview("y" * 100) == "y" * 100


class TestDispatch:
    @pytest.fixture
    def dispatcher(self):
        return NotificationDispatcher()

    def test_connection_changed(self, database, dispatcher):
        with database.session() as db:
            note = dispatcher.connection_changed(db, PARTIES, "new")
            db.rollback()

        assert note.user_id == "doctor-user"
        assert note.type == "connection"
        assert note.title == "New Patient Connection"
        assert note.message == "Jane Doe has connected with you."
        assert note.data == {
            "connectionId": "conn-1",
            "patientUserId": "patient-user",
            "patientName": "Jane Doe",
            "action": "new",
        }

    def test_appointment_cancelled_by_patient(self, database, dispatcher):
        appointment = Appointment(
            id="appt-1",
            connection_id="conn-1",
            scheduled_at=datetime(2026, 3, 5, 14, 30),
            duration=30,
        )
        with database.session() as db:
            note = dispatcher.appointment_action(
                db, PARTIES, appointment, "cancelled", "patient-user", cancel_reason="Feeling better"
            )
            db.rollback()

        assert note.user_id == "doctor-user"
        assert note.title == "Appointment Cancelled"
        assert note.message == (
            "Your appointment with Jane Doe on Thursday, March 05, 2026 has been cancelled. "
            "Reason: Feeling better"
        )
        assert note.data["cancelReason"] == "Feeling better"
        assert note.data["scheduledAt"] == "2026-03-05T14:30:00"
        assert note.data["duration"] == 30

    def test_appointment_booked_by_doctor_names_the_doctor(self, database, dispatcher):
        appointment = Appointment(
            id="appt-2",
            connection_id="conn-1",
            scheduled_at=datetime(2026, 3, 5, 9, 0),
            duration=45,
        )
        with database.session() as db:
            note = dispatcher.appointment_action(db, PARTIES, appointment, "booked", "doctor-user")
            db.rollback()

        assert note.user_id == "patient-user"
        assert "Gregory House" in note.message
        assert "cancelReason" not in note.data

    def test_message_from_doctor(self, database, dispatcher):
        sender = User(id="doctor-user", first_name="Gregory", last_name="House")
        message = DirectMessage(id="dm-1", connection_id="conn-1", sender_id="doctor-user", content="z" * 120)
        with database.session() as db:
            note = dispatcher.message_received(db, PARTIES, message, sender)
            db.rollback()

        assert note.user_id == "patient-user"
        assert note.title == "New message from Dr. Gregory House"
        assert note.message == "z" * 100 + "..."
        assert note.data["senderRole"] == "doctor"
        assert note.data["preview"] == note.message

    def test_intake_complete_without_complaint(self, database, dispatcher):
        with database.session() as db:
            note = dispatcher.intake_complete(db, PARTIES, "session-1")
            db.rollback()

        assert note.user_id == "doctor-user"
        assert note.message == "Jane Doe has completed their intake and is ready for review."
        assert "chiefComplaint" not in note.data


class TestConnectionParties:
    def test_load_resolves_both_users(self, database, seed):
        with database.session() as db:
            parties = ConnectionParties.load(db, db.get(Connection, seed.connection_id))

        assert parties.patient_user_id == seed.patient_user_id
        assert parties.doctor_user_id == seed.doctor_user_id
        assert parties.patient_name == "Jane Doe"
        assert parties.doctor_name == "Gregory House"

    def test_missing_connection(self, database):
        with database.session() as db:
            assert ConnectionParties.load(db, None) is None


class TestInbox:
    def stage(self, database, seed):
        with database.session() as db:
            parties = ConnectionParties.load(db, db.get(Connection, seed.connection_id))
            dispatcher = NotificationDispatcher()
            first = dispatcher.connection_changed(db, parties, "new")
            second = dispatcher.intake_reset(db, parties, "session-1")
            db.flush()
            return first.id, second.id

    def test_list_and_mark_read(self, database, seed):
        first_id, second_id = self.stage(database, seed)

        with database.session() as db:
            assert {n.id for n in list_for_user(db, seed.doctor_user_id)} == {first_id, second_id}
            assert list_for_user(db, seed.patient_user_id) == []

        with database.session() as db:
            note = mark_read(db, first_id, seed.doctor_user_id)
            assert note.is_read is True
            assert note.read_at is not None

        with database.session() as db:
            unread = list_for_user(db, seed.doctor_user_id, unread_only=True)
        assert [n.id for n in unread] == [second_id]

    def test_only_the_recipient_can_mark_read(self, database, seed):
        first_id, _ = self.stage(database, seed)

        with database.session() as db:
            with pytest.raises(NotFoundError):
                mark_read(db, first_id, seed.patient_user_id)

    def test_unknown_notification(self, database, seed):
        with database.session() as db:
            with pytest.raises(NotFoundError):
                mark_read(db, "missing", seed.doctor_user_id)
