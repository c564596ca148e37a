# intakeflow/services/intake_session.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from intakeflow.db import Database
from intakeflow.errors import BadRequestError, ForbiddenError, NotFoundError
from intakeflow.intake.agent import IntakeStateMachine
from intakeflow.intake.dedup import MessageDeduplicator
from intakeflow.intake.schema import MedicalDataUpdate, merge_medical_data
from intakeflow.intake.stages import SessionStatus
from intakeflow.intake.state import IntakeState, IntakeTurn, TurnResult
from intakeflow.models import ChatMessage, Connection, IntakeSession, utcnow
from intakeflow.services import audit
from intakeflow.services.access import (
    Denied,
    connection_of,
    load_user,
    patient_for_user,
    resolve_doctor_access,
    resolve_patient_access,
    resolve_view_access,
)
from intakeflow.services.notifications import ConnectionParties, NotificationDispatcher
from intakeflow.triage import TriageDecision, VitalsRecord, route

logger = logging.getLogger(__name__)

DEFAULT_NAME = "New Intake"
MAX_NAME_CHARS = 255


@dataclass
class MessageOutcome:
    """
    What one posted message produced. A duplicate carries the match and the
    session progress as it stood; no messages or turn.
    """
    is_duplicate: bool
    matched_message_id: Optional[str] = None
    user_message: Optional[ChatMessage] = None
    ai_message: Optional[ChatMessage] = None
    turn: Optional[TurnResult] = None
    current_agent: Optional[str] = None
    completeness: Optional[int] = None
    is_ready: bool = False


class IntakeSessionService:
    """
    Service that coordinates:
      - loading and storing IntakeSession rows
      - admitting patient messages through the deduplicator
      - driving the IntakeStateMachine one turn at a time
      - the intake-complete notification when a session becomes ready

    Every public method is one unit of work.
    """

    def __init__(
        self,
        database: Database,
        machine: IntakeStateMachine,
        deduplicator: Optional[MessageDeduplicator] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.database = database
        self.machine = machine
        self.deduplicator = deduplicator or MessageDeduplicator()
        self.notifier = notifier or NotificationDispatcher()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_session(self, connection_id: str, user_id: str) -> IntakeSession:
        """
        Open a new intake on a connection the patient owns. The greeting is
        stored as the first model message.
        """
        with self.database.session() as db:
            user = load_user(db, user_id)
            connection = db.get(Connection, connection_id)
            if connection is None:
                raise NotFoundError("Connection not found.")

            patient = patient_for_user(db, user)
            if patient is None or connection.patient_id != patient.id:
                raise ForbiddenError("You don't have access to this connection.")
            if connection.status != "active":
                raise BadRequestError("Connection is not active.")

            state, greeting = self.machine.start()
            session = IntakeSession(connection_id=connection.id, name=DEFAULT_NAME)
            state.apply_to(session)
            db.add(session)
            db.flush()

            db.add(
                ChatMessage(
                    session_id=session.id,
                    role="model",
                    content=greeting,
                    active_agent=state.current_agent.value,
                )
            )
            audit.record(
                db, user.id, "intake_session_created", "intake_session", session.id,
                {"connectionId": connection.id},
            )
            logger.info(f"Intake session {session.id} created on connection {connection.id}")
            return session

    def get_session(self, session_id: str, user_id: str) -> Tuple[IntakeSession, List[ChatMessage]]:
        with self.database.session() as db:
            session = self._load(db, session_id)
            user = load_user(db, user_id)
            if isinstance(resolve_view_access(db, session, user), Denied):
                raise ForbiddenError("You don't have access to this session.")
            return session, self._messages(db, session.id)

    def send_message(
        self,
        session_id: str,
        user_id: str,
        content: str,
        images: Optional[List[str]] = None,
        at: Optional[datetime] = None,
    ) -> MessageOutcome:
        """
        Post a message to a session.

        Patients drive the intake; a connected doctor gets decision-support
        answers without moving the intake along. A patient message repeated
        inside the dedup window is not stored and costs no AI call.
        """
        if not content or not content.strip():
            raise BadRequestError("Message cannot be empty.")
        at = at or utcnow()

        with self.database.session() as db:
            session = self._load(db, session_id)
            user = load_user(db, user_id)

            if session.status == SessionStatus.REVIEWED.value:
                raise BadRequestError("This intake session has already been reviewed.")

            access = resolve_patient_access(db, session, user)
            if not isinstance(access, Denied):
                return self._patient_turn(db, session, user, access, content, images, at)

            if not isinstance(resolve_doctor_access(db, session, user), Denied):
                return self._doctor_turn(db, session, content, at)

            raise ForbiddenError("You don't have access to this session.")

    def submit_vitals(self, session_id: str, user_id: str, vitals: VitalsRecord) -> TriageDecision:
        """
        Merge a vitals reading into the session and store the routing decision.
        """
        with self.database.session() as db:
            session = self._load(db, session_id)
            user = load_user(db, user_id)
            if isinstance(resolve_view_access(db, session, user), Denied):
                raise ForbiddenError("You don't have access to this session.")
            if session.status == SessionStatus.REVIEWED.value:
                raise BadRequestError("This intake session has already been reviewed.")

            state = IntakeState.from_row(session)
            data = merge_medical_data(state.medical_data, MedicalDataUpdate(vitals=vitals))
            decision = route(data.vitals)
            state.medical_data = data.model_copy(update={"triage": decision})
            state.apply_to(session)

            logger.info(f"Triage for session {session.id}: {decision.decision}")
            return decision

    def mark_reviewed(self, session_id: str, user_id: str) -> IntakeSession:
        with self.database.session() as db:
            session = self._load(db, session_id)
            user = load_user(db, user_id)
            if isinstance(resolve_doctor_access(db, session, user), Denied):
                raise ForbiddenError("You are not authorized to review this intake session.")
            if session.status != SessionStatus.READY.value:
                raise BadRequestError("Only intake sessions that are ready can be reviewed.")

            session.status = SessionStatus.REVIEWED.value
            session.reviewed_at = utcnow()
            session.reviewed_by = user.id
            audit.record(
                db, user.id, "intake_reviewed", "intake_session", session.id,
                {"connectionId": session.connection_id},
            )
            return session

    def rename_session(self, session_id: str, user_id: str, name: Optional[str]) -> IntakeSession:
        """
        Rename a session. None restores the default name; blank is rejected.
        """
        if name is not None and not name.strip():
            raise BadRequestError("Session name cannot be empty. Use null to clear the name.")

        with self.database.session() as db:
            session = self._load(db, session_id)
            user = load_user(db, user_id)
            if isinstance(resolve_patient_access(db, session, user), Denied):
                raise ForbiddenError("You don't have access to this session.")

            previous = session.name
            session.name = name.strip()[:MAX_NAME_CHARS] if name is not None else DEFAULT_NAME
            audit.record(
                db, user.id, "intake_session_name_updated", "intake_session", session.id,
                {"previousName": previous, "newName": session.name},
            )
            return session

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load(self, db: Session, session_id: str) -> IntakeSession:
        session = db.get(IntakeSession, session_id)
        if session is None:
            raise NotFoundError("Intake session not found.")
        return session

    def _messages(self, db: Session, session_id: str) -> List[ChatMessage]:
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc())
        )
        return list(db.scalars(stmt))

    def _patient_turn(self, db, session, user, access, content, images, at) -> MessageOutcome:
        check = self.deduplicator.check_session(db, session.id, content, at)
        if check.is_duplicate:
            return MessageOutcome(
                is_duplicate=True,
                matched_message_id=check.matched_message_id,
                current_agent=session.current_agent,
                completeness=session.completeness,
                is_ready=session.status in (SessionStatus.READY.value, SessionStatus.REVIEWED.value),
            )

        # patient-facing history: patient messages and the intake agents' replies
        history = [
            IntakeTurn(role=m.role, content=m.content)
            for m in self._messages(db, session.id)
            if m.role == "user" or (m.role == "model" and m.active_agent)
        ]

        user_message = ChatMessage(
            session_id=session.id,
            role="user",
            content=content,
            images=images or None,
            content_hash=check.content_hash,
            created_at=at,
        )
        db.add(user_message)

        state, turn = self.machine.step(IntakeState.from_row(session), content, history, now=at)

        ai_message = ChatMessage(
            session_id=session.id,
            role="model",
            content=turn.reply,
            active_agent=turn.active_agent.value,
            created_at=self._reply_time(at),
        )
        db.add(ai_message)

        state.apply_to(session)
        complaint = state.medical_data.chief_complaint
        if session.name == DEFAULT_NAME and complaint:
            session.name = complaint.strip()[:MAX_NAME_CHARS]

        if turn.became_ready:
            parties = ConnectionParties.load(db, connection_of(access))
            if parties is not None:
                self.notifier.intake_complete(db, parties, session.id, complaint)
            audit.record(
                db, user.id, "intake_completed", "intake_session", session.id,
                {"connectionId": session.connection_id, "completeness": state.completeness},
            )
        db.flush()

        return MessageOutcome(
            is_duplicate=False,
            user_message=user_message,
            ai_message=ai_message,
            turn=turn,
        )

    def _doctor_turn(self, db, session, content, at) -> MessageOutcome:
        history = [IntakeTurn(role=m.role, content=m.content) for m in self._messages(db, session.id)]

        doctor_message = ChatMessage(
            session_id=session.id,
            role="doctor",
            content=content,
            created_at=at,
        )
        db.add(doctor_message)

        _, turn = self.machine.step_doctor(IntakeState.from_row(session), content, history)

        ai_message = ChatMessage(
            session_id=session.id,
            role="model",
            content=turn.reply,
            created_at=self._reply_time(at),
        )
        db.add(ai_message)
        db.flush()

        return MessageOutcome(
            is_duplicate=False,
            user_message=doctor_message,
            ai_message=ai_message,
            turn=turn,
        )

    @staticmethod
    def _reply_time(at: datetime) -> datetime:
        # the reply must sort after the message it answers
        return max(utcnow(), at + timedelta(milliseconds=1))
