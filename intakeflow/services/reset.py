# intakeflow/services/reset.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from intakeflow.db import Database
from intakeflow.errors import (
    BadRequestError,
    ForbiddenError,
    IntakeError,
    InternalServerError,
    NotFoundError,
)
from intakeflow.intake.stages import TERMINAL_STATUSES, SessionStatus
from intakeflow.intake.state import IntakeState
from intakeflow.models import Appointment, ChatMessage, IntakeSession, User, utcnow
from intakeflow.services import audit
from intakeflow.services.access import Denied, Owned, connection_of, resolve_patient_access
from intakeflow.services.notifications import ConnectionParties, NotificationDispatcher

logger = logging.getLogger(__name__)

AUDIT_ACTION = "intake_reset"
RESOURCE_TYPE = "intake_session"

NOT_AUTHORIZED = "You are not authorized to reset this intake session."
ALREADY_COMPLETED = "Cannot reset a completed or reviewed intake session."
LINKED_TO_APPOINTMENT = "Cannot reset an intake session that is linked to an appointment."


@dataclass
class ResetResult:
    id: str
    connection_id: str
    status: str


class SessionResetTransaction:
    """
    Wipes an intake session back to its initial state.

    Preconditions are checked in order and the first failure wins:
      1. the session exists                      -> NOT_FOUND
      2. the caller owns it (or holds override)  -> FORBIDDEN
      3. it is not ready/reviewed                -> BAD_REQUEST
      4. no appointment references it            -> BAD_REQUEST

    The message delete, field reset, doctor notification and success
    audit row commit together or not at all. Blocked and failed attempts
    get their own audit row, written after the main transaction is gone.
    """

    def __init__(
        self,
        database: Database,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.database = database
        self.notifier = notifier or NotificationDispatcher()

    def reset(self, session_id: str, user_id: str) -> ResetResult:
        context: dict = {}
        try:
            with self.database.session() as db:
                result = self._reset(db, session_id, user_id, context)
        except IntakeError as e:
            logger.warning(
                f"Intake reset blocked: actor={user_id} session={session_id} "
                f"code={e.code} reason={e.message}"
            )
            audit.record_failure(
                self.database,
                user_id,
                AUDIT_ACTION,
                RESOURCE_TYPE,
                session_id,
                {**context, "error": e.message, "code": e.code},
            )
            raise
        except Exception as e:
            logger.exception(
                f"Intake reset failed: actor={user_id} session={session_id} context={context}"
            )
            audit.record_failure(
                self.database,
                user_id,
                AUDIT_ACTION,
                RESOURCE_TYPE,
                session_id,
                {**context, "error": str(e)},
            )
            raise InternalServerError("Failed to reset intake session.") from e

        logger.info(f"Intake session {session_id} reset by {user_id}")
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset(self, db: Session, session_id: str, user_id: str, context: dict) -> ResetResult:
        session = db.get(IntakeSession, session_id)
        if session is None:
            raise NotFoundError("Intake session not found.")
        context["connectionId"] = session.connection_id

        user = db.get(User, user_id) if user_id else None
        access = (
            resolve_patient_access(db, session, user)
            if user is not None
            else Denied("unknown user")
        )
        if isinstance(access, Denied):
            context["denied"] = access.reason
            raise ForbiddenError(NOT_AUTHORIZED)

        if SessionStatus(session.status) in TERMINAL_STATUSES:
            context["status"] = session.status
            raise BadRequestError(ALREADY_COMPLETED)

        linked = db.scalars(
            select(Appointment.id).where(Appointment.intake_session_id == session.id)
        ).first()
        if linked is not None:
            context["appointmentId"] = linked
            raise BadRequestError(LINKED_TO_APPOINTMENT)

        previous_status = session.status
        previous_completeness = session.completeness

        db.execute(delete(ChatMessage).where(ChatMessage.session_id == session.id))

        IntakeState().apply_to(session)
        session.reviewed_at = None
        session.reviewed_by = None
        session.updated_at = utcnow()

        parties = ConnectionParties.load(db, connection_of(access))
        if parties is not None:
            self.notifier.intake_reset(db, parties, session.id)
        else:
            logger.info(f"No connection parties for session {session.id}, skipping reset notification")

        audit.record(
            db,
            user_id,
            AUDIT_ACTION,
            RESOURCE_TYPE,
            session.id,
            {
                "connectionId": session.connection_id,
                "previousStatus": previous_status,
                "previousCompleteness": previous_completeness,
                "override": not isinstance(access, Owned),
            },
        )
        db.flush()

        return ResetResult(
            id=session.id,
            connection_id=session.connection_id,
            status=session.status,
        )
