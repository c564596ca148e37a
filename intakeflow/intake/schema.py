# intakeflow/intake/schema.py
from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from intakeflow.triage import TriageDecision, VitalsRecord


MEDICAL_DATA_VERSION = 1


def _as_text_list(value: Any) -> Any:
    """
    The model sometimes returns objects where we expect plain strings,
    e.g. {"name": "ibuprofen", "dose": "200mg"}. Flatten those.
    """
    if value is None or not isinstance(value, list):
        return value
    items: List[str] = []
    for item in value:
        if item is None:
            continue
        if isinstance(item, dict):
            text = " ".join(str(v) for v in item.values() if v not in (None, ""))
        else:
            text = str(item)
        text = text.strip()
        if text:
            items.append(text)
    return items


class MedicalData(BaseModel):
    """
    Structured record accumulated over one intake session.

    Stored as JSON on intake_sessions.medical_data. Every field is optional
    or defaults to empty; see merge_medical_data for how turns update it.
    """

    version: int = MEDICAL_DATA_VERSION

    chief_complaint: Optional[str] = None
    hpi: Optional[str] = Field(None, description="History of present illness")

    medical_records: List[str] = Field(default_factory=list)
    records_check_completed: bool = False
    history_check_completed: bool = False

    medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    past_medical_history: List[str] = Field(default_factory=list)
    family_history: Optional[str] = None
    social_history: Optional[str] = None
    review_of_systems: List[str] = Field(default_factory=list)

    current_agent: Optional[str] = None

    vitals: Optional[VitalsRecord] = None
    triage: Optional[TriageDecision] = None

    model_config = {
        "extra": "ignore",
    }

    @field_validator(
        "medical_records",
        "medications",
        "allergies",
        "past_medical_history",
        "review_of_systems",
        mode="before",
    )
    @classmethod
    def flatten_lists(cls, value):
        return _as_text_list(value)


class MedicalDataUpdate(BaseModel):
    """
    Partial record extracted from one AI turn. None means "not mentioned".
    """

    chief_complaint: Optional[str] = None
    hpi: Optional[str] = None
    medical_records: Optional[List[str]] = None
    records_check_completed: Optional[bool] = None
    history_check_completed: Optional[bool] = None
    medications: Optional[List[str]] = None
    allergies: Optional[List[str]] = None
    past_medical_history: Optional[List[str]] = None
    family_history: Optional[str] = None
    social_history: Optional[str] = None
    review_of_systems: Optional[List[str]] = None
    vitals: Optional[VitalsRecord] = None

    model_config = {
        "extra": "ignore",
    }

    @field_validator(
        "medical_records",
        "medications",
        "allergies",
        "past_medical_history",
        "review_of_systems",
        mode="before",
    )
    @classmethod
    def flatten_lists(cls, value):
        return _as_text_list(value)

    @field_validator("family_history", "social_history", mode="before")
    @classmethod
    def join_text(cls, value):
        if isinstance(value, list):
            return "; ".join(str(v) for v in value if v)
        return value


class SBAR(BaseModel):
    """Situation / Background / Assessment / Recommendation handover."""

    situation: str
    background: str
    assessment: str
    recommendation: str


class DoctorThought(BaseModel):
    differential_diagnosis: List[str] = Field(default_factory=list)
    missing_information: List[str] = Field(default_factory=list)
    strategy: str = ""
    next_move: str = ""

    model_config = {
        "extra": "ignore",
    }

    @field_validator("differential_diagnosis", "missing_information", mode="before")
    @classmethod
    def flatten_lists(cls, value):
        return _as_text_list(value)


def initial_medical_data() -> MedicalData:
    return MedicalData()


def initial_doctor_thought() -> DoctorThought:
    return DoctorThought(
        differential_diagnosis=[],
        missing_information=["Chief Complaint"],
        strategy="A2A Handshake: Triage Agent",
        next_move="Identify Chief Complaint",
    )


# ---------------------------------------------------------------------- #
# Merge rule
# ---------------------------------------------------------------------- #

def _merge_text(current: Optional[str], update: Optional[str]) -> Optional[str]:
    if update is None or not str(update).strip():
        return current
    return str(update).strip()


def _merge_list(current: List[str], update: Optional[List[str]]) -> List[str]:
    if not update:
        return current
    return list(update)


def _merge_value(current, update):
    return current if update is None else update


def merge_vitals(
    current: Optional[VitalsRecord], update: Optional[VitalsRecord]
) -> Optional[VitalsRecord]:
    if update is None:
        return current
    if current is None:
        return update

    temperature = current.temperature
    if update.temperature.value is not None:
        temperature = update.temperature

    weight = current.weight
    if update.weight.value is not None:
        weight = update.weight

    bp = current.blood_pressure.model_copy(update={
        "systolic": _merge_value(current.blood_pressure.systolic, update.blood_pressure.systolic),
        "diastolic": _merge_value(current.blood_pressure.diastolic, update.blood_pressure.diastolic),
    })

    return VitalsRecord(
        patient_name=_merge_text(current.patient_name, update.patient_name),
        age=_merge_value(current.age, update.age),
        gender=_merge_text(current.gender, update.gender),
        temperature=temperature,
        weight=weight,
        blood_pressure=bp,
        current_status=_merge_text(current.current_status, update.current_status),
    )


def merge_medical_data(current: MedicalData, update: MedicalDataUpdate) -> MedicalData:
    """
    Fold one turn's extraction into the accumulated record.

      - a non-blank scalar replaces the old value; None/blank never erases
      - a non-empty list replaces the old list; empty/None never erases
      - the two check flags only ever go from False to True
      - vitals merge field by field with the same rules
    """
    return current.model_copy(update={
        "chief_complaint": _merge_text(current.chief_complaint, update.chief_complaint),
        "hpi": _merge_text(current.hpi, update.hpi),
        "medical_records": _merge_list(current.medical_records, update.medical_records),
        "records_check_completed": current.records_check_completed or bool(update.records_check_completed),
        "history_check_completed": current.history_check_completed or bool(update.history_check_completed),
        "medications": _merge_list(current.medications, update.medications),
        "allergies": _merge_list(current.allergies, update.allergies),
        "past_medical_history": _merge_list(current.past_medical_history, update.past_medical_history),
        "family_history": _merge_text(current.family_history, update.family_history),
        "social_history": _merge_text(current.social_history, update.social_history),
        "review_of_systems": _merge_list(current.review_of_systems, update.review_of_systems),
        "vitals": merge_vitals(current.vitals, update.vitals),
    })
