# intakeflow/api/deps.py
"""
FastAPI dependencies.

Authentication happens upstream; the acting user arrives in the
X-User-Id header. Services are built once in create_app() and kept on
app.state.
"""
from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request, status

from intakeflow.db import Database
from intakeflow.services import (
    AppointmentService,
    ConnectionService,
    IntakeSessionService,
    SessionResetTransaction,
)

logger = logging.getLogger(__name__)


def get_current_user_id(x_user_id: str | None = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Provide the X-User-Id header.",
        )
    logger.debug(f"Acting user: {x_user_id}")
    return x_user_id


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_intake_service(request: Request) -> IntakeSessionService:
    return request.app.state.intake_service


def get_reset_transaction(request: Request) -> SessionResetTransaction:
    return request.app.state.reset_transaction


def get_connection_service(request: Request) -> ConnectionService:
    return request.app.state.connection_service


def get_appointment_service(request: Request) -> AppointmentService:
    return request.app.state.appointment_service
