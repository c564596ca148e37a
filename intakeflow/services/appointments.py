# intakeflow/services/appointments.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from intakeflow.db import Database
from intakeflow.errors import BadRequestError, ForbiddenError, NotFoundError
from intakeflow.models import Appointment, Connection, IntakeSession
from intakeflow.services import audit
from intakeflow.services.access import doctor_for_user, load_user, patient_for_user
from intakeflow.services.notifications import ConnectionParties, NotificationDispatcher

logger = logging.getLogger(__name__)

# action -> resulting appointment status
ACTION_STATUS = {
    "booked": "pending",
    "confirmed": "confirmed",
    "cancelled": "cancelled",
    "rescheduled": "pending",
}


class AppointmentService:
    """
    Minimal booking surface: enough to link appointments to intake sessions
    and to emit appointment notifications. Slot management lives elsewhere.
    """

    def __init__(self, database: Database, notifier: Optional[NotificationDispatcher] = None):
        self.database = database
        self.notifier = notifier or NotificationDispatcher()

    def _authorize(self, db, user_id: str, connection: Connection):
        user = load_user(db, user_id)
        patient = patient_for_user(db, user)
        doctor = doctor_for_user(db, user)
        if (patient is not None and patient.id == connection.patient_id) or (
            doctor is not None and doctor.id == connection.doctor_id
        ):
            return user
        raise ForbiddenError("You are not a party to this connection.")

    def book(
        self,
        user_id: str,
        connection_id: str,
        scheduled_at: datetime,
        duration: int = 30,
        intake_session_id: Optional[str] = None,
    ) -> Appointment:
        with self.database.session() as db:
            connection = db.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError("Connection not found.")
            user = self._authorize(db, user_id, connection)
            if connection.status != "active":
                raise BadRequestError("Connection is not active.")

            if intake_session_id is not None:
                session = db.get(IntakeSession, intake_session_id)
                if session is None or session.connection_id != connection.id:
                    raise BadRequestError("Intake session does not belong to this connection.")

            appointment = Appointment(
                connection_id=connection.id,
                intake_session_id=intake_session_id,
                scheduled_at=scheduled_at,
                duration=duration,
                status="pending",
            )
            db.add(appointment)
            db.flush()

            self._notify(db, connection, appointment, "booked", user.id)
            audit.record(
                db, user.id, "appointment_booked", "appointment", appointment.id,
                {"connectionId": connection.id, "intakeSessionId": intake_session_id},
            )
            return appointment

    def update(
        self,
        user_id: str,
        appointment_id: str,
        action: str,
        scheduled_at: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
    ) -> Appointment:
        if action not in ACTION_STATUS or action == "booked":
            raise BadRequestError(f"Unsupported appointment action: {action}")

        with self.database.session() as db:
            appointment = db.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundError("Appointment not found.")
            connection = db.get(Connection, appointment.connection_id)
            user = self._authorize(db, user_id, connection)

            if appointment.status in ("cancelled", "completed"):
                raise BadRequestError("Appointment can no longer be changed.")
            if action == "rescheduled":
                if scheduled_at is None:
                    raise BadRequestError("A new time is required to reschedule.")
                appointment.scheduled_at = scheduled_at
            appointment.status = ACTION_STATUS[action]

            self._notify(db, connection, appointment, action, user.id, cancel_reason)
            audit.record(
                db, user.id, f"appointment_{action}", "appointment", appointment.id,
                {"connectionId": connection.id},
            )
            return appointment

    def _notify(self, db, connection, appointment, action, actor_id, cancel_reason=None) -> None:
        parties = ConnectionParties.load(db, connection)
        if parties is None:
            logger.warning(f"Cannot resolve parties for connection {connection.id}")
            return
        self.notifier.appointment_action(
            db, parties, appointment, action, actor_id, cancel_reason
        )
