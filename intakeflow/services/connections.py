# intakeflow/services/connections.py
from __future__ import annotations

import logging
from typing import Optional, Tuple

from sqlalchemy import select

from intakeflow.db import Database
from intakeflow.errors import BadRequestError, ForbiddenError, NotFoundError
from intakeflow.models import Connection, DirectMessage, Doctor, utcnow
from intakeflow.services import audit
from intakeflow.services.access import doctor_for_user, load_user, patient_for_user
from intakeflow.services.notifications import ConnectionParties, NotificationDispatcher

logger = logging.getLogger(__name__)


class ConnectionService:
    """
    Patient <-> doctor connections and the direct messages sent over them.
    Each write commits together with the notification it triggers.
    """

    def __init__(self, database: Database, notifier: Optional[NotificationDispatcher] = None):
        self.database = database
        self.notifier = notifier or NotificationDispatcher()

    def connect(
        self,
        user_id: str,
        doctor_id: str,
        connection_source: Optional[str] = None,
    ) -> Tuple[Connection, str]:
        """
        Connect the calling patient to a doctor.

        Returns the connection and the action taken: "new" or "reconnected".
        An already active connection is returned as is.
        """
        with self.database.session() as db:
            user = load_user(db, user_id)
            patient = patient_for_user(db, user)
            if patient is None:
                raise NotFoundError("Patient profile not found.")
            if db.get(Doctor, doctor_id) is None:
                raise NotFoundError("Doctor not found.")

            connection = db.scalars(
                select(Connection).where(
                    Connection.patient_id == patient.id,
                    Connection.doctor_id == doctor_id,
                )
            ).first()

            if connection is not None and connection.status == "blocked":
                raise ForbiddenError("This connection has been blocked.")
            if connection is not None and connection.status == "active":
                return connection, "existing"

            if connection is None:
                action = "new"
                connection = Connection(
                    patient_id=patient.id,
                    doctor_id=doctor_id,
                    status="active",
                    connection_source=connection_source,
                )
                db.add(connection)
            else:
                action = "reconnected"
                connection.status = "active"
                connection.connected_at = utcnow()
                connection.disconnected_at = None
            db.flush()

            parties = ConnectionParties.load(db, connection)
            if parties is not None:
                self.notifier.connection_changed(db, parties, action)
            audit.record(
                db,
                user.id,
                "connection_created" if action == "new" else "connection_reactivated",
                "connection",
                connection.id,
                {"doctorId": doctor_id, "source": connection_source},
            )
            logger.info(f"Connection {connection.id} {action} for patient {patient.id}")
            return connection, action

    def disconnect(self, user_id: str, connection_id: str) -> Connection:
        with self.database.session() as db:
            user = load_user(db, user_id)
            connection = db.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError("Connection not found.")
            patient = patient_for_user(db, user)
            if patient is None or connection.patient_id != patient.id:
                raise ForbiddenError("You are not authorized to change this connection.")
            if connection.status != "active":
                raise BadRequestError("Connection is not active.")

            connection.status = "disconnected"
            connection.disconnected_at = utcnow()

            parties = ConnectionParties.load(db, connection)
            if parties is not None:
                self.notifier.connection_changed(db, parties, "disconnected")
            audit.record(db, user.id, "connection_disconnected", "connection", connection.id)
            return connection

    def send_direct_message(self, user_id: str, connection_id: str, content: str) -> DirectMessage:
        if not content or not content.strip():
            raise BadRequestError("Message cannot be empty.")

        with self.database.session() as db:
            user = load_user(db, user_id)
            connection = db.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError("Connection not found.")

            patient = patient_for_user(db, user)
            doctor = doctor_for_user(db, user)
            is_party = (patient is not None and patient.id == connection.patient_id) or (
                doctor is not None and doctor.id == connection.doctor_id
            )
            if not is_party:
                raise ForbiddenError("You are not a party to this connection.")
            if connection.status != "active":
                raise BadRequestError("Connection is not active.")

            message = DirectMessage(
                connection_id=connection.id,
                sender_id=user.id,
                content=content.strip(),
            )
            db.add(message)
            db.flush()

            parties = ConnectionParties.load(db, connection)
            if parties is not None:
                self.notifier.message_received(db, parties, message, user)
            return message
