# intakeflow/services/notifications.py
"""
Notification rows written as a side effect of domain events.

Every dispatch method adds the row to the caller's SQLAlchemy session and
never commits, so the notification lands in the same transaction as the
write that triggered it (and rolls back with it).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from intakeflow.errors import NotFoundError
from intakeflow.models import (
    Appointment,
    Connection,
    DirectMessage,
    Doctor,
    Notification,
    Patient,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100
UNKNOWN_USER = "Unknown User"
UNKNOWN_PATIENT = "A patient"


class NotificationKind(str, Enum):
    CONNECTION = "connection"
    APPOINTMENT = "appointment"
    MESSAGE = "message"
    INTAKE_COMPLETE = "intake_complete"
    INTAKE_RESET = "intake_reset"


CONNECTION_TITLES = {
    "new": "New Patient Connection",
    "reconnected": "Patient Reconnected",
    "disconnected": "Patient Disconnected",
}

CONNECTION_MESSAGES = {
    "new": "{name} has connected with you.",
    "reconnected": "{name} has reconnected with you.",
    "disconnected": "{name} has disconnected from you.",
}

APPOINTMENT_TITLES = {
    "booked": "Appointment Booked",
    "cancelled": "Appointment Cancelled",
    "rescheduled": "Appointment Rescheduled",
    "confirmed": "Appointment Confirmed",
    "reminder": "Appointment Reminder",
}

APPOINTMENT_MESSAGES = {
    "booked": "An appointment with {other} has been booked for {date} at {time}.",
    "cancelled": "Your appointment with {other} on {date} has been cancelled.",
    "rescheduled": "Your appointment with {other} has been rescheduled to {date} at {time}.",
    "confirmed": "Your appointment with {other} on {date} at {time} has been confirmed.",
    "reminder": "Reminder: You have an appointment with {other} on {date} at {time}.",
}


def display_name(user: Optional[User], placeholder: str = UNKNOWN_USER) -> str:
    if user is None:
        return placeholder
    parts = [p.strip() for p in (user.first_name, user.last_name) if p and p.strip()]
    return " ".join(parts) or placeholder


def message_preview(content: str) -> str:
    if len(content) > PREVIEW_CHARS:
        return content[:PREVIEW_CHARS] + "..."
    return content


@dataclass(frozen=True)
class ConnectionParties:
    connection_id: str
    patient_user_id: str
    doctor_user_id: str
    patient_name: str
    doctor_name: str

    @classmethod
    def load(cls, db: Session, connection: Optional[Connection]) -> Optional["ConnectionParties"]:
        """
        Resolve both users behind a connection. None when any link is missing.
        """
        if connection is None:
            return None
        patient = db.get(Patient, connection.patient_id)
        doctor = db.get(Doctor, connection.doctor_id)
        if patient is None or doctor is None:
            return None
        patient_user = db.get(User, patient.user_id)
        doctor_user = db.get(User, doctor.user_id)
        if patient_user is None or doctor_user is None:
            return None
        return cls(
            connection_id=connection.id,
            patient_user_id=patient_user.id,
            doctor_user_id=doctor_user.id,
            patient_name=display_name(patient_user, UNKNOWN_PATIENT),
            doctor_name=display_name(doctor_user),
        )

    def other_party(self, actor_user_id: str) -> str:
        if actor_user_id == self.patient_user_id:
            return self.doctor_user_id
        return self.patient_user_id


def resolve_recipient(
    kind: NotificationKind,
    parties: ConnectionParties,
    actor_user_id: Optional[str] = None,
) -> str:
    """
    Doctor for connection and intake events; the party that did not act
    for appointment and message events.
    """
    if kind in (
        NotificationKind.CONNECTION,
        NotificationKind.INTAKE_COMPLETE,
        NotificationKind.INTAKE_RESET,
    ):
        return parties.doctor_user_id
    if actor_user_id is None:
        raise ValueError(f"{kind.value} notifications need the acting user")
    return parties.other_party(actor_user_id)


class NotificationDispatcher:
    """
    Builds title, message and payload per event kind and stages the row.
    """

    def _add(
        self,
        db: Session,
        kind: NotificationKind,
        recipient_id: str,
        title: str,
        message: str,
        data: dict,
    ) -> Notification:
        notification = Notification(
            user_id=recipient_id,
            type=kind.value,
            title=title,
            message=message,
            data=data,
        )
        db.add(notification)
        logger.info(f"Queued {kind.value} notification for user {recipient_id}")
        return notification

    def connection_changed(
        self, db: Session, parties: ConnectionParties, action: str
    ) -> Notification:
        kind = NotificationKind.CONNECTION
        return self._add(
            db,
            kind,
            resolve_recipient(kind, parties),
            CONNECTION_TITLES[action],
            CONNECTION_MESSAGES[action].format(name=parties.patient_name),
            {
                "connectionId": parties.connection_id,
                "patientUserId": parties.patient_user_id,
                "patientName": parties.patient_name,
                "action": action,
            },
        )

    def appointment_action(
        self,
        db: Session,
        parties: ConnectionParties,
        appointment: Appointment,
        action: str,
        actor_user_id: str,
        cancel_reason: Optional[str] = None,
    ) -> Notification:
        kind = NotificationKind.APPOINTMENT
        recipient = resolve_recipient(kind, parties, actor_user_id)
        other = parties.doctor_name if recipient == parties.patient_user_id else parties.patient_name

        scheduled: datetime = appointment.scheduled_at
        message = APPOINTMENT_MESSAGES[action].format(
            other=other,
            date=scheduled.strftime("%A, %B %d, %Y"),
            time=scheduled.strftime("%H:%M"),
        )
        data = {
            "appointmentId": appointment.id,
            "connectionId": parties.connection_id,
            "scheduledAt": scheduled.isoformat(),
            "duration": appointment.duration,
            "action": action,
        }
        if action == "cancelled" and cancel_reason:
            message = f"{message} Reason: {cancel_reason}"
            data["cancelReason"] = cancel_reason

        return self._add(db, kind, recipient, APPOINTMENT_TITLES[action], message, data)

    def message_received(
        self,
        db: Session,
        parties: ConnectionParties,
        message: DirectMessage,
        sender: User,
    ) -> Notification:
        kind = NotificationKind.MESSAGE
        sender_name = display_name(sender)
        sender_role = "doctor" if sender.id == parties.doctor_user_id else "patient"
        label = f"Dr. {sender_name}" if sender_role == "doctor" else sender_name
        preview = message_preview(message.content)

        return self._add(
            db,
            kind,
            resolve_recipient(kind, parties, sender.id),
            f"New message from {label}",
            preview,
            {
                "connectionId": parties.connection_id,
                "messageId": message.id,
                "senderName": sender_name,
                "senderRole": sender_role,
                "preview": preview,
            },
        )

    def intake_complete(
        self,
        db: Session,
        parties: ConnectionParties,
        session_id: str,
        chief_complaint: Optional[str] = None,
    ) -> Notification:
        kind = NotificationKind.INTAKE_COMPLETE
        data = {
            "sessionId": session_id,
            "connectionId": parties.connection_id,
            "patientName": parties.patient_name,
        }
        if chief_complaint:
            data["chiefComplaint"] = chief_complaint
        return self._add(
            db,
            kind,
            resolve_recipient(kind, parties),
            "Intake Completed",
            f"{parties.patient_name} has completed their intake and is ready for review.",
            data,
        )

    def intake_reset(
        self, db: Session, parties: ConnectionParties, session_id: str
    ) -> Notification:
        kind = NotificationKind.INTAKE_RESET
        return self._add(
            db,
            kind,
            resolve_recipient(kind, parties),
            "Intake Restarted",
            f"{parties.patient_name} has reset their intake and will start again.",
            {
                "sessionId": session_id,
                "connectionId": parties.connection_id,
                "patientName": parties.patient_name,
            },
        )


# ----------------------------------------------------------------------
# Inbox
# ----------------------------------------------------------------------


def list_for_user(
    db: Session, user_id: str, unread_only: bool = False, limit: int = 50
) -> List[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)
    return list(db.scalars(stmt))


def mark_read(db: Session, notification_id: str, user_id: str) -> Notification:
    """
    The only edit a notification ever gets. Recipients only.
    """
    notification = db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification not found.")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    return notification
