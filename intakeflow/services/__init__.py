# intakeflow/services/__init__.py
from .appointments import AppointmentService
from .connections import ConnectionService
from .intake_session import IntakeSessionService, MessageOutcome
from .notifications import ConnectionParties, NotificationDispatcher, NotificationKind
from .reset import ResetResult, SessionResetTransaction

__all__ = [
    "AppointmentService",
    "ConnectionService",
    "IntakeSessionService",
    "MessageOutcome",
    "ConnectionParties",
    "NotificationDispatcher",
    "NotificationKind",
    "ResetResult",
    "SessionResetTransaction",
]
