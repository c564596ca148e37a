# intakeflow/intake/stages.py
from enum import Enum
from typing import Optional


class AgentRole(str, Enum):
    TRIAGE = "Triage"
    CLINICAL_INVESTIGATOR = "ClinicalInvestigator"
    RECORDS_CLERK = "RecordsClerk"
    HISTORY_SPECIALIST = "HistorySpecialist"
    HANDOVER_SPECIALIST = "HandoverSpecialist"


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    REVIEWED = "reviewed"


# Conversation order. A session only ever moves forward through this list.
AGENT_PRIORITY = (
    AgentRole.TRIAGE,
    AgentRole.CLINICAL_INVESTIGATOR,
    AgentRole.RECORDS_CLERK,
    AgentRole.HISTORY_SPECIALIST,
    AgentRole.HANDOVER_SPECIALIST,
)

# Topic bucket used for follow-up counting, one per role.
AGENT_STAGE = {
    AgentRole.TRIAGE: "triage",
    AgentRole.CLINICAL_INVESTIGATOR: "symptoms",
    AgentRole.RECORDS_CLERK: "records",
    AgentRole.HISTORY_SPECIALIST: "history",
    AgentRole.HANDOVER_SPECIALIST: "review",
}

TERMINAL_STATUSES = (SessionStatus.READY, SessionStatus.REVIEWED)


def coerce_role(value) -> AgentRole:
    """Unknown or missing values fall back to the first role."""
    try:
        return AgentRole(value)
    except ValueError:
        return AgentRole.TRIAGE


def rank(role: AgentRole) -> int:
    return AGENT_PRIORITY.index(role)


def next_role(role: AgentRole) -> AgentRole:
    idx = rank(role)
    if idx + 1 >= len(AGENT_PRIORITY):
        return role
    return AGENT_PRIORITY[idx + 1]


def later_of(a: AgentRole, b: Optional[AgentRole]) -> AgentRole:
    if b is None:
        return a
    return a if rank(a) >= rank(b) else b
