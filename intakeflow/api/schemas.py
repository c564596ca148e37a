# intakeflow/api/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from intakeflow.triage import TriageDecision


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- intake sessions ---


class CreateSessionRequest(BaseModel):
    connection_id: str


class RenameSessionRequest(BaseModel):
    name: Optional[str] = None


class ChatMessageSchema(ORMModel):
    id: str
    role: str
    content: str
    images: Optional[List[str]] = None
    active_agent: Optional[str] = None
    created_at: datetime


class IntakeSessionSchema(ORMModel):
    id: str
    connection_id: str
    name: str
    status: str
    medical_data: Dict[str, Any]
    clinical_handover: Optional[Dict[str, Any]] = None
    doctor_thought: Dict[str, Any]
    completeness: int
    current_agent: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class IntakeSessionDetail(IntakeSessionSchema):
    messages: List[ChatMessageSchema] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    content: str
    images: Optional[List[str]] = None


class SendMessageResponse(BaseModel):
    is_duplicate: bool
    matched_message_id: Optional[str] = None
    user_message: Optional[ChatMessageSchema] = None
    ai_message: Optional[ChatMessageSchema] = None
    active_agent: Optional[str] = None
    completeness: Optional[int] = None
    is_ready: bool = False
    used_fallback: bool = False
    triage: Optional[TriageDecision] = None


class ResetResponse(BaseModel):
    id: str
    connection_id: str
    status: str


# --- connections ---


class ConnectRequest(BaseModel):
    doctor_id: str
    connection_source: Optional[str] = None


class ConnectionSchema(ORMModel):
    id: str
    patient_id: str
    doctor_id: str
    status: str
    connection_source: Optional[str] = None
    connected_at: datetime
    disconnected_at: Optional[datetime] = None


class ConnectResponse(ConnectionSchema):
    action: str


class DirectMessageRequest(BaseModel):
    content: str


class DirectMessageSchema(ORMModel):
    id: str
    connection_id: str
    sender_id: str
    content: str
    is_read: bool
    created_at: datetime


# --- appointments ---


class BookAppointmentRequest(BaseModel):
    connection_id: str
    scheduled_at: datetime
    duration: int = Field(30, gt=0)
    intake_session_id: Optional[str] = None


class UpdateAppointmentRequest(BaseModel):
    action: str
    scheduled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


class AppointmentSchema(ORMModel):
    id: str
    connection_id: str
    intake_session_id: Optional[str] = None
    scheduled_at: datetime
    duration: int
    status: str


# --- notifications ---


class NotificationSchema(ORMModel):
    id: str
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
