# intakeflow/triage/__init__.py
from .vitals import VitalsRecord, Temperature, Weight, BloodPressure
from .complexity import ComplexityResult, evaluate_complexity
from .router import (
    EmergencyIndicator,
    EmergencyResult,
    TriageDecision,
    detect_emergency,
    route,
)
