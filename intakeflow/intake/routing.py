# intakeflow/intake/routing.py
"""
Deterministic role routing and completeness scoring over a MedicalData record.
"""
from __future__ import annotations

from intakeflow.intake.schema import MedicalData
from intakeflow.intake.stages import AgentRole

MIN_HPI_CHARS = 50

COMPLETENESS_WEIGHTS = {
    "chief_complaint": 20,
    "hpi": 20,
    "records_check": 10,
    "medications": 10,
    "allergies": 10,
    "past_medical_history": 10,
    "family_history": 5,
    "social_history": 5,
    "clinical_handover": 10,
}


def _filled(text) -> bool:
    return bool(text and str(text).strip())


def determine_agent(data: MedicalData) -> AgentRole:
    """
    First role in priority order whose information is still outstanding.
    """
    if not _filled(data.chief_complaint):
        return AgentRole.TRIAGE

    if len((data.hpi or "").strip()) < MIN_HPI_CHARS:
        return AgentRole.CLINICAL_INVESTIGATOR

    if not data.records_check_completed:
        return AgentRole.RECORDS_CLERK

    # a patient answering "none" leaves the lists empty but sets the flag
    if (
        not data.history_check_completed
        and not data.medications
        and not data.allergies
        and not data.past_medical_history
    ):
        return AgentRole.HISTORY_SPECIALIST

    return AgentRole.HANDOVER_SPECIALIST


def calculate_completeness(data: MedicalData | None, has_handover: bool = False) -> int:
    if data is None:
        return 0

    w = COMPLETENESS_WEIGHTS
    history_satisfied = data.records_check_completed or data.history_check_completed
    score = 0

    if _filled(data.chief_complaint):
        score += w["chief_complaint"]
    if _filled(data.hpi):
        score += w["hpi"]
    if data.records_check_completed:
        score += w["records_check"]
    if data.medications or history_satisfied:
        score += w["medications"]
    if data.allergies or history_satisfied:
        score += w["allergies"]
    if data.past_medical_history or history_satisfied:
        score += w["past_medical_history"]
    if _filled(data.family_history):
        score += w["family_history"]
    if _filled(data.social_history):
        score += w["social_history"]
    if has_handover:
        score += w["clinical_handover"]

    return max(0, min(score, 100))


def meets_ready_criteria(data: MedicalData) -> bool:
    return (
        determine_agent(data) == AgentRole.HANDOVER_SPECIALIST
        and _filled(data.chief_complaint)
        and len((data.hpi or "").strip()) >= MIN_HPI_CHARS
        and data.records_check_completed
    )
