# intakeflow/intake/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from intakeflow.intake.stages import AgentRole, SessionStatus, coerce_role
from intakeflow.intake.schema import (
    SBAR,
    DoctorThought,
    MedicalData,
    initial_doctor_thought,
)
from intakeflow.triage import TriageDecision


@dataclass
class IntakeTurn:
    role: str  # "user", "model" or "doctor"
    content: str


@dataclass
class IntakeState:
    """
    Working copy of one intake session's mutable fields.

    Loaded from an IntakeSession row, advanced one turn at a time by
    IntakeStateMachine and written back by the service layer.
    """

    status: SessionStatus = SessionStatus.NOT_STARTED
    medical_data: MedicalData = field(default_factory=MedicalData)
    doctor_thought: DoctorThought = field(default_factory=initial_doctor_thought)
    clinical_handover: Optional[SBAR] = None
    completeness: int = 0
    current_agent: AgentRole = AgentRole.TRIAGE

    # anti-loop tracking
    follow_up_counts: Dict[str, int] = field(default_factory=dict)
    answered_topics: List[str] = field(default_factory=list)
    consecutive_errors: int = 0
    ai_message_count: int = 0
    has_offered_conclusion: bool = False
    termination_reason: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.status in (SessionStatus.READY, SessionStatus.REVIEWED)

    @classmethod
    def from_row(cls, row) -> "IntakeState":
        return cls(
            status=SessionStatus(row.status),
            medical_data=MedicalData.model_validate(row.medical_data or {}),
            doctor_thought=(
                DoctorThought.model_validate(row.doctor_thought)
                if row.doctor_thought
                else initial_doctor_thought()
            ),
            clinical_handover=(
                SBAR.model_validate(row.clinical_handover)
                if row.clinical_handover
                else None
            ),
            completeness=row.completeness or 0,
            current_agent=coerce_role(row.current_agent),
            follow_up_counts=dict(row.follow_up_counts or {}),
            answered_topics=list(row.answered_topics or []),
            consecutive_errors=row.consecutive_errors or 0,
            ai_message_count=row.ai_message_count or 0,
            has_offered_conclusion=bool(row.has_offered_conclusion),
            termination_reason=row.termination_reason,
            started_at=row.started_at,
            completed_at=row.completed_at,
        )

    def apply_to(self, row) -> None:
        # JSON columns get fresh objects so SQLAlchemy sees the change
        row.status = self.status.value
        row.medical_data = self.medical_data.model_dump(mode="json")
        row.doctor_thought = self.doctor_thought.model_dump(mode="json")
        row.clinical_handover = (
            self.clinical_handover.model_dump(mode="json")
            if self.clinical_handover
            else None
        )
        row.completeness = self.completeness
        row.current_agent = self.current_agent.value
        row.follow_up_counts = dict(self.follow_up_counts)
        row.answered_topics = list(self.answered_topics)
        row.consecutive_errors = self.consecutive_errors
        row.ai_message_count = self.ai_message_count
        row.has_offered_conclusion = self.has_offered_conclusion
        row.termination_reason = self.termination_reason
        row.started_at = self.started_at
        row.completed_at = self.completed_at


@dataclass
class TurnResult:
    reply: str
    active_agent: AgentRole
    completeness: int
    is_ready: bool = False
    became_ready: bool = False
    used_fallback: bool = False
    termination_reason: Optional[str] = None
    triage: Optional[TriageDecision] = None
