# intakeflow/triage/router.py
from __future__ import annotations

import logging
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from intakeflow.triage.complexity import evaluate_complexity
from intakeflow.triage.vitals import VitalsRecord

logger = logging.getLogger(__name__)


TriageDecisionKind = Literal["emergency", "agent-assisted", "direct-to-diagnosis"]


class EmergencyIndicator(BaseModel):
    type: Literal["temperature", "blood_pressure", "symptoms"]
    value: str
    threshold: str
    message: str


class EmergencyResult(BaseModel):
    is_emergency: bool = False
    indicators: List[EmergencyIndicator] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    severity: Literal["critical", "normal"] = "normal"


class TriageDecision(BaseModel):
    decision: TriageDecisionKind
    factors: List[str] = Field(default_factory=list)
    reason: str
    confidence: float


EMERGENCY_THRESHOLDS = {
    "temperature": {"high_c": 39.5, "high_f": 103.1, "low_c": 35.0, "low_f": 95.0},
    "systolic": {"high": 180, "low": 90},
    "diastolic": {"high": 120, "low": 60},
}

CRITICAL_SYMPTOMS = [
    "severe chest pain",
    "chest pain",
    "difficulty breathing",
    "can't breathe",
    "cannot breathe",
    "loss of consciousness",
    "unconscious",
    "passed out",
    "severe bleeding",
    "bleeding heavily",
    "stroke symptoms",
    "stroke",
    "face drooping",
    "arm weakness",
    "speech difficulty",
    "severe allergic reaction",
    "anaphylaxis",
    "throat closing",
    "severe headache",
    "worst headache",
    "seizure",
    "convulsion",
]

# Pairs of findings that are only alarming together.
CRITICAL_COMBINATIONS = [
    (
        "chest pain with breathing difficulty",
        ("chest",),
        ("short of breath", "shortness of breath", "breathless", "trouble breathing", "hard to breathe"),
    ),
    (
        "headache with stiff neck",
        ("headache",),
        ("stiff neck", "neck stiffness"),
    ),
    (
        "fever with confusion",
        ("fever",),
        ("confused", "confusion", "disoriented"),
    ),
]

CONFIDENCE = {
    "emergency": 1.0,
    "agent-assisted": 0.8,
    "direct-to-diagnosis": 0.7,
}


# ---------------------------------------------------------------------- #
# Emergency checks
# ---------------------------------------------------------------------- #

def _check_temperature(vitals: VitalsRecord) -> Optional[EmergencyIndicator]:
    temp_c = vitals.temperature_celsius()
    if temp_c is None:
        return None

    t = EMERGENCY_THRESHOLDS["temperature"]
    unit = "C" if vitals.temperature.unit == "celsius" else "F"
    shown = f"{vitals.temperature.value:g}°{unit}"

    if temp_c >= t["high_c"]:
        return EmergencyIndicator(
            type="temperature",
            value=shown,
            threshold=f">={t['high_c']}°C ({t['high_f']}°F)",
            message="Dangerously high temperature detected",
        )
    if temp_c < t["low_c"]:
        return EmergencyIndicator(
            type="temperature",
            value=shown,
            threshold=f"<{t['low_c']}°C ({t['low_f']}°F)",
            message="Dangerously low temperature detected (hypothermia risk)",
        )
    return None


def _check_blood_pressure(vitals: VitalsRecord) -> List[EmergencyIndicator]:
    """
    Each side is checked on its own, so a partial reading can still
    trigger an emergency.
    """
    systolic, diastolic = vitals.systolic(), vitals.diastolic()
    shown = (
        f"{'?' if systolic is None else f'{systolic:g}'}/"
        f"{'?' if diastolic is None else f'{diastolic:g}'} mmHg"
    )
    s = EMERGENCY_THRESHOLDS["systolic"]
    d = EMERGENCY_THRESHOLDS["diastolic"]
    indicators: List[EmergencyIndicator] = []

    if systolic is not None:
        if systolic >= s["high"]:
            indicators.append(EmergencyIndicator(
                type="blood_pressure",
                value=shown,
                threshold=f"Systolic >={s['high']} mmHg",
                message="Dangerously high blood pressure (hypertensive crisis)",
            ))
        elif systolic < s["low"]:
            indicators.append(EmergencyIndicator(
                type="blood_pressure",
                value=shown,
                threshold=f"Systolic <{s['low']} mmHg",
                message="Dangerously low blood pressure (hypotension)",
            ))

    if diastolic is not None:
        if diastolic >= d["high"]:
            indicators.append(EmergencyIndicator(
                type="blood_pressure",
                value=shown,
                threshold=f"Diastolic >={d['high']} mmHg",
                message="Dangerously high diastolic pressure",
            ))
        elif diastolic < d["low"]:
            indicators.append(EmergencyIndicator(
                type="blood_pressure",
                value=shown,
                threshold=f"Diastolic <{d['low']} mmHg",
                message="Dangerously low diastolic pressure",
            ))

    return indicators


def _check_symptoms(text: str) -> Optional[EmergencyIndicator]:
    lowered = text.lower()
    if not lowered:
        return None

    for keyword in CRITICAL_SYMPTOMS:
        if keyword in lowered:
            return EmergencyIndicator(
                type="symptoms",
                value=keyword,
                threshold="Critical symptom keyword",
                message=f"Critical symptom detected: {keyword}",
            )

    for label, firsts, seconds in CRITICAL_COMBINATIONS:
        if any(f in lowered for f in firsts) and any(s in lowered for s in seconds):
            return EmergencyIndicator(
                type="symptoms",
                value=label,
                threshold="Critical symptom combination",
                message=f"Critical symptom combination detected: {label}",
            )
    return None


def _recommendations(indicators: List[EmergencyIndicator]) -> List[str]:
    recs = ["Seek immediate medical attention"]

    for indicator in indicators:
        high = "high" in indicator.message
        if indicator.type == "temperature":
            if high:
                recs += [
                    "Call emergency services or go to the nearest emergency room",
                    "Stay hydrated and in a cool environment",
                ]
            else:
                recs += [
                    "Call emergency services immediately",
                    "Keep warm with blankets while waiting for help",
                ]
        elif indicator.type == "blood_pressure":
            if high:
                recs += [
                    "Call emergency services - this may be a hypertensive crisis",
                    "Sit down and remain calm while waiting for help",
                ]
            else:
                recs += [
                    "Call emergency services - severe hypotension requires immediate care",
                    "Lie down with legs elevated if possible",
                ]
        elif "chest" in indicator.value:
            recs += [
                "Call emergency services immediately - possible heart attack",
                "Chew aspirin if available and not allergic",
            ]
        elif "breath" in indicator.value:
            recs += [
                "Call emergency services immediately",
                "Sit upright and try to remain calm",
            ]
        elif "stroke" in indicator.value:
            recs += [
                "Call emergency services immediately - time is critical for stroke",
                "Note the time symptoms started",
            ]
        else:
            recs.append("Call emergency services or go to emergency room immediately")

    # de-duplicate, keep first-seen order
    return list(dict.fromkeys(recs))


# ---------------------------------------------------------------------- #
# Public API
# ---------------------------------------------------------------------- #

def detect_emergency(vitals: VitalsRecord, symptoms: Optional[str] = None) -> EmergencyResult:
    indicators: List[EmergencyIndicator] = []

    temp = _check_temperature(vitals)
    if temp:
        indicators.append(temp)

    indicators.extend(_check_blood_pressure(vitals))

    symptom = _check_symptoms((symptoms or vitals.current_status or "").strip())
    if symptom:
        indicators.append(symptom)

    if not indicators:
        return EmergencyResult()

    return EmergencyResult(
        is_emergency=True,
        indicators=indicators,
        recommendations=_recommendations(indicators),
        severity="critical",
    )


def route(vitals: VitalsRecord) -> TriageDecision:
    """
    Decide the care pathway for a set of vitals.

    Emergency detection runs first and wins regardless of how much else
    is missing. Otherwise the complexity evaluation picks between
    agent-assisted intake and going straight to diagnosis.
    """
    emergency = detect_emergency(vitals)
    if emergency.is_emergency:
        messages = [i.message for i in emergency.indicators]
        logger.warning(f"Emergency triage decision: {'; '.join(messages)}")
        return TriageDecision(
            decision="emergency",
            factors=messages,
            reason=f"Emergency condition detected: {', '.join(messages)}",
            confidence=CONFIDENCE["emergency"],
        )

    complexity = evaluate_complexity(vitals)
    if complexity.needs_agent_assistance:
        reason = "Case complexity requires agent-assisted intake"
        if complexity.factors:
            reason = f"{reason}. {complexity.factors[0]}"
        return TriageDecision(
            decision="agent-assisted",
            factors=complexity.factors,
            reason=reason,
            confidence=CONFIDENCE["agent-assisted"],
        )

    return TriageDecision(
        decision="direct-to-diagnosis",
        factors=_simple_factors(vitals),
        reason="Straightforward case - proceeding directly to diagnosis based on available data",
        confidence=CONFIDENCE["direct-to-diagnosis"],
    )


def _simple_factors(vitals: VitalsRecord) -> List[str]:
    factors: List[str] = []

    temp_c = vitals.temperature_celsius()
    if temp_c is not None and 36.0 <= temp_c <= 37.5:
        factors.append("Normal temperature")

    bp = vitals.blood_pressure_pair()
    if bp is not None and 100 <= bp[0] <= 140 and 70 <= bp[1] <= 90:
        factors.append("Normal blood pressure")

    text = vitals.status_text()
    if 0 < len(text) <= 100:
        factors.append("Clear, concise symptom description")

    missing = vitals.missing_vitals()
    if missing:
        factors.append(f"Note: {', '.join(missing)} not collected")

    if not factors:
        factors.append("Straightforward presentation based on available data")
    return factors
