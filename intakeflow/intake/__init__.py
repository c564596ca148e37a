# intakeflow/intake/__init__.py
from .schema import MedicalData, MedicalDataUpdate, SBAR, DoctorThought
from .stages import AgentRole, SessionStatus
from .state import IntakeState, IntakeTurn, TurnResult
from .dedup import MessageDeduplicator, DedupResult, content_hash
from .agent import IntakeStateMachine

__all__ = [
    "MedicalData",
    "MedicalDataUpdate",
    "SBAR",
    "DoctorThought",
    "AgentRole",
    "SessionStatus",
    "IntakeState",
    "IntakeTurn",
    "TurnResult",
    "MessageDeduplicator",
    "DedupResult",
    "content_hash",
    "IntakeStateMachine",
]
