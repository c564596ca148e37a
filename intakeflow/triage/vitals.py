# intakeflow/triage/vitals.py
from __future__ import annotations

from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


# Anything outside these ranges is treated as "not collected" rather than
# being compared against clinical thresholds.
PLAUSIBLE_TEMPERATURE_C = (20.0, 50.0)
PLAUSIBLE_SYSTOLIC = (0, 350)
PLAUSIBLE_DIASTOLIC = (0, 250)
PLAUSIBLE_WEIGHT_KG = (0.0, 700.0)
PLAUSIBLE_AGE = (0, 130)

LBS_PER_KG = 2.20462

_UNIT_ALIASES = {
    "c": "celsius",
    "celsius": "celsius",
    "f": "fahrenheit",
    "fahrenheit": "fahrenheit",
    "kg": "kg",
    "kgs": "kg",
    "lb": "lbs",
    "lbs": "lbs",
}


def _normalise_unit(value):
    if isinstance(value, str):
        return _UNIT_ALIASES.get(value.strip().lower(), value)
    return value


class Temperature(BaseModel):
    value: Optional[float] = None
    unit: Literal["celsius", "fahrenheit"] = "celsius"

    @field_validator("unit", mode="before")
    @classmethod
    def normalise_unit(cls, value):
        return _normalise_unit(value)


class Weight(BaseModel):
    value: Optional[float] = None
    unit: Literal["kg", "lbs"] = "kg"

    @field_validator("unit", mode="before")
    @classmethod
    def normalise_unit(cls, value):
        return _normalise_unit(value)


class BloodPressure(BaseModel):
    systolic: Optional[float] = None
    diastolic: Optional[float] = None


class VitalsRecord(BaseModel):
    """
    Vitals as captured at the start of an intake. Every field is optional;
    the evaluators work with whatever subset was collected.
    """

    patient_name: Optional[str] = None
    age: Optional[int] = Field(None, description="Patient age in years")
    gender: Optional[str] = None
    temperature: Temperature = Field(default_factory=Temperature)
    weight: Weight = Field(default_factory=Weight)
    blood_pressure: BloodPressure = Field(default_factory=BloodPressure)
    current_status: Optional[str] = Field(
        None,
        description="Free-text description of how the patient feels right now",
    )

    model_config = {
        "extra": "ignore",
    }

    @field_validator("temperature", "weight", "blood_pressure", mode="before")
    @classmethod
    def empty_reading(cls, value):
        # an explicit null means "not collected"
        return {} if value is None else value

    # ------------------------------------------------------------------ #
    # Normalised readings (None when absent or non-physiological)
    # ------------------------------------------------------------------ #

    def temperature_celsius(self) -> Optional[float]:
        value = self.temperature.value
        if value is None:
            return None
        if self.temperature.unit == "fahrenheit":
            value = (value - 32) * 5 / 9
        # rounding keeps 103.1 F on the 39.5 C threshold
        value = round(value, 2)
        low, high = PLAUSIBLE_TEMPERATURE_C
        if not (low <= value <= high):
            return None
        return value

    def weight_kg(self) -> Optional[float]:
        value = self.weight.value
        if value is None:
            return None
        if self.weight.unit == "lbs":
            value = value / LBS_PER_KG
        low, high = PLAUSIBLE_WEIGHT_KG
        if not (low < value <= high):
            return None
        return value

    def systolic(self) -> Optional[float]:
        return _plausible(self.blood_pressure.systolic, PLAUSIBLE_SYSTOLIC)

    def diastolic(self) -> Optional[float]:
        return _plausible(self.blood_pressure.diastolic, PLAUSIBLE_DIASTOLIC)

    def blood_pressure_pair(self) -> Optional[Tuple[float, float]]:
        """Both sides, or None when the reading is partial or missing."""
        systolic, diastolic = self.systolic(), self.diastolic()
        if systolic is None or diastolic is None:
            return None
        return systolic, diastolic

    def usable_age(self) -> Optional[int]:
        if self.age is None:
            return None
        low, high = PLAUSIBLE_AGE
        if not (low <= self.age <= high):
            return None
        return self.age

    def status_text(self) -> str:
        return (self.current_status or "").strip()

    def missing_vitals(self) -> List[str]:
        missing: List[str] = []
        if self.temperature_celsius() is None:
            missing.append("temperature")
        if self.weight_kg() is None:
            missing.append("weight")
        if self.blood_pressure_pair() is None:
            missing.append("blood pressure")
        return missing

    def has_any_reading(self) -> bool:
        return bool(
            self.temperature.value is not None
            or self.weight.value is not None
            or self.blood_pressure.systolic is not None
            or self.blood_pressure.diastolic is not None
            or self.status_text()
        )


def _plausible(value: Optional[float], bounds: Tuple[float, float]) -> Optional[float]:
    if value is None:
        return None
    low, high = bounds
    if not (low < value <= high):
        return None
    return value
