# intakeflow/api/routes.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from intakeflow.db import Database
from intakeflow.services import (
    AppointmentService,
    ConnectionService,
    IntakeSessionService,
    SessionResetTransaction,
    notifications,
)
from intakeflow.triage import TriageDecision, VitalsRecord, route
from .deps import (
    get_appointment_service,
    get_connection_service,
    get_current_user_id,
    get_database,
    get_intake_service,
    get_reset_transaction,
)
from .schemas import (
    AppointmentSchema,
    BookAppointmentRequest,
    ChatMessageSchema,
    ConnectRequest,
    ConnectResponse,
    ConnectionSchema,
    CreateSessionRequest,
    DirectMessageRequest,
    DirectMessageSchema,
    IntakeSessionDetail,
    IntakeSessionSchema,
    NotificationSchema,
    RenameSessionRequest,
    ResetResponse,
    SendMessageRequest,
    SendMessageResponse,
    UpdateAppointmentRequest,
)

router = APIRouter()


# ----------------------------------------------------------------------
# Intake sessions
# ----------------------------------------------------------------------


@router.post("/intake/sessions", response_model=IntakeSessionSchema)
def create_session(
    payload: CreateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> IntakeSessionSchema:
    """
    Start a new intake session on one of the patient's connections.
    """
    session = service.create_session(payload.connection_id, user_id)
    return IntakeSessionSchema.model_validate(session)


@router.get("/intake/sessions/{session_id}", response_model=IntakeSessionDetail)
def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> IntakeSessionDetail:
    session, messages = service.get_session(session_id, user_id)
    base = IntakeSessionSchema.model_validate(session)
    return IntakeSessionDetail(
        **base.model_dump(),
        messages=[ChatMessageSchema.model_validate(m) for m in messages],
    )


@router.patch("/intake/sessions/{session_id}", response_model=IntakeSessionSchema)
def rename_session(
    session_id: str,
    payload: RenameSessionRequest,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> IntakeSessionSchema:
    session = service.rename_session(session_id, user_id, payload.name)
    return IntakeSessionSchema.model_validate(session)


@router.post("/intake/sessions/{session_id}/messages", response_model=SendMessageResponse)
def send_message(
    session_id: str,
    payload: SendMessageRequest,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> SendMessageResponse:
    outcome = service.send_message(session_id, user_id, payload.content, payload.images)

    if outcome.is_duplicate:
        return SendMessageResponse(
            is_duplicate=True,
            matched_message_id=outcome.matched_message_id,
            active_agent=outcome.current_agent,
            completeness=outcome.completeness,
            is_ready=outcome.is_ready,
        )

    turn = outcome.turn
    return SendMessageResponse(
        is_duplicate=False,
        user_message=ChatMessageSchema.model_validate(outcome.user_message),
        ai_message=ChatMessageSchema.model_validate(outcome.ai_message),
        active_agent=turn.active_agent.value,
        completeness=turn.completeness,
        is_ready=turn.is_ready,
        used_fallback=turn.used_fallback,
        triage=turn.triage,
    )


@router.post("/intake/sessions/{session_id}/vitals", response_model=TriageDecision)
def submit_vitals(
    session_id: str,
    payload: VitalsRecord,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> TriageDecision:
    return service.submit_vitals(session_id, user_id, payload)


@router.post("/intake/sessions/{session_id}/reset", response_model=ResetResponse)
def reset_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    transaction: SessionResetTransaction = Depends(get_reset_transaction),
) -> ResetResponse:
    result = transaction.reset(session_id, user_id)
    return ResetResponse(id=result.id, connection_id=result.connection_id, status=result.status)


@router.post("/intake/sessions/{session_id}/review", response_model=IntakeSessionSchema)
def review_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: IntakeSessionService = Depends(get_intake_service),
) -> IntakeSessionSchema:
    session = service.mark_reviewed(session_id, user_id)
    return IntakeSessionSchema.model_validate(session)


# ----------------------------------------------------------------------
# Triage
# ----------------------------------------------------------------------


@router.post("/triage/evaluate", response_model=TriageDecision)
def evaluate_triage(payload: VitalsRecord) -> TriageDecision:
    """
    Stateless routing decision for a vitals reading.
    """
    return route(payload)


# ----------------------------------------------------------------------
# Connections and direct messages
# ----------------------------------------------------------------------


@router.post("/connections", response_model=ConnectResponse)
def connect(
    payload: ConnectRequest,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectResponse:
    connection, action = service.connect(user_id, payload.doctor_id, payload.connection_source)
    base = ConnectionSchema.model_validate(connection)
    return ConnectResponse(**base.model_dump(), action=action)


@router.post("/connections/{connection_id}/disconnect", response_model=ConnectionSchema)
def disconnect(
    connection_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionSchema:
    return ConnectionSchema.model_validate(service.disconnect(user_id, connection_id))


@router.post("/connections/{connection_id}/messages", response_model=DirectMessageSchema)
def send_direct_message(
    connection_id: str,
    payload: DirectMessageRequest,
    user_id: str = Depends(get_current_user_id),
    service: ConnectionService = Depends(get_connection_service),
) -> DirectMessageSchema:
    message = service.send_direct_message(user_id, connection_id, payload.content)
    return DirectMessageSchema.model_validate(message)


# ----------------------------------------------------------------------
# Appointments
# ----------------------------------------------------------------------


@router.post("/appointments", response_model=AppointmentSchema)
def book_appointment(
    payload: BookAppointmentRequest,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentSchema:
    appointment = service.book(
        user_id,
        payload.connection_id,
        payload.scheduled_at,
        duration=payload.duration,
        intake_session_id=payload.intake_session_id,
    )
    return AppointmentSchema.model_validate(appointment)


@router.post("/appointments/{appointment_id}", response_model=AppointmentSchema)
def update_appointment(
    appointment_id: str,
    payload: UpdateAppointmentRequest,
    user_id: str = Depends(get_current_user_id),
    service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentSchema:
    appointment = service.update(
        user_id,
        appointment_id,
        payload.action,
        scheduled_at=payload.scheduled_at,
        cancel_reason=payload.cancel_reason,
    )
    return AppointmentSchema.model_validate(appointment)


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------


@router.get("/notifications", response_model=List[NotificationSchema])
def list_notifications(
    unread_only: bool = False,
    user_id: str = Depends(get_current_user_id),
    database: Database = Depends(get_database),
) -> List[NotificationSchema]:
    with database.session() as db:
        rows = notifications.list_for_user(db, user_id, unread_only=unread_only)
        return [NotificationSchema.model_validate(n) for n in rows]


@router.post("/notifications/{notification_id}/read", response_model=NotificationSchema)
def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    database: Database = Depends(get_database),
) -> NotificationSchema:
    with database.session() as db:
        notification = notifications.mark_read(db, notification_id, user_id)
        db.flush()
        return NotificationSchema.model_validate(notification)
