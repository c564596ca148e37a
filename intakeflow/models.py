# intakeflow/models.py
from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    String,
    DateTime,
    ForeignKey,
    Integer,
    Text,
    Boolean,
    CheckConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from intakeflow.db import Base, JSONType


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # naive UTC, matches what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    primary_role: Mapped[str] = mapped_column(
        String, nullable=False, default="patient"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "primary_role IN ('super_admin', 'doctor', 'clinic_admin', "
            "'receptionist', 'patient')",
            name="ck_users_primary_role_valid",
        ),
    )


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User] = relationship("User")
    connections: Mapped[list["Connection"]] = relationship(
        "Connection", back_populates="patient"
    )


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    specialty: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user: Mapped[User] = relationship("User")
    connections: Mapped[list["Connection"]] = relationship(
        "Connection", back_populates="doctor"
    )


class Connection(Base):
    """
    The persistent patient <-> doctor relationship. Intake sessions,
    appointments and direct messages all hang off one connection.
    """
    __tablename__ = "connections"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    patient_id: Mapped[str] = mapped_column(
        String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    doctor_id: Mapped[str] = mapped_column(
        String, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    connection_source: Mapped[str | None] = mapped_column(String, nullable=True)
    connected_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    disconnected_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'disconnected', 'blocked')",
            name="ck_connections_status_valid",
        ),
    )

    patient: Mapped[Patient] = relationship("Patient", back_populates="connections")
    doctor: Mapped[Doctor] = relationship("Doctor", back_populates="connections")


class IntakeSession(Base):
    __tablename__ = "intake_sessions"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    connection_id: Mapped[str] = mapped_column(
        String, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(
        String(255), nullable=False, default="New Intake"
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="not_started"
    )

    medical_data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    clinical_handover: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    doctor_thought: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    completeness: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_agent: Mapped[str] = mapped_column(
        String, nullable=False, default="Triage"
    )

    # anti-loop tracking
    follow_up_counts: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    answered_topics: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    consecutive_errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_offered_conclusion: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    termination_reason: Mapped[str | None] = mapped_column(String, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(
        String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('not_started', 'in_progress', 'ready', 'reviewed')",
            name="ck_intake_sessions_status_valid",
        ),
        CheckConstraint(
            "completeness >= 0 AND completeness <= 100",
            name="ck_intake_sessions_completeness_range",
        ),
        CheckConstraint(
            "current_agent IN ('Triage', 'ClinicalInvestigator', 'RecordsClerk', "
            "'HistorySpecialist', 'HandoverSpecialist')",
            name="ck_intake_sessions_current_agent_valid",
        ),
    )

    connection: Mapped[Connection] = relationship("Connection")
    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("intake_sessions.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    images: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    active_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(
        String(16), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('user', 'model', 'doctor')",
            name="ck_chat_messages_role_valid",
        ),
    )

    session: Mapped[IntakeSession] = relationship(
        "IntakeSession", back_populates="messages"
    )


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    connection_id: Mapped[str] = mapped_column(
        String, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    intake_session_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("intake_sessions.id", ondelete="SET NULL"), nullable=True
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="ck_appointments_status_valid",
        ),
    )

    connection: Mapped[Connection] = relationship("Connection")


class DirectMessage(Base):
    __tablename__ = "direct_messages"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    connection_id: Mapped[str] = mapped_column(
        String, ForeignKey("connections.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    connection: Mapped[Connection] = relationship("Connection")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=generate_uuid
    )
    user_id: Mapped[str] = mapped_column(
        String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    resource_type: Mapped[str] = mapped_column(String, nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
