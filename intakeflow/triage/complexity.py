# intakeflow/triage/complexity.py
from __future__ import annotations

import re
from typing import List, Optional

from pydantic import BaseModel, Field

from intakeflow.triage.vitals import VitalsRecord


class ComplexityResult(BaseModel):
    is_complex: bool = False
    needs_agent_assistance: bool = False
    factors: List[str] = Field(default_factory=list)


# Score needed before a case is routed to agent-assisted intake.
COMPLEXITY_THRESHOLD = 3
PRIMARY_WEIGHT = 3
SUPPORTING_WEIGHT = 1

LONG_TEXT_CHARS = 200
MODERATE_TEXT_CHARS = 100

FEVER_C = 38.0
EMERGENCY_FEVER_C = 39.5
LOW_TEMPERATURE_C = (35.0, 36.0)

SYSTOLIC_RANGE = (100, 140)
DIASTOLIC_RANGE = (70, 90)

PEDIATRIC_AGE = 5
GERIATRIC_AGE = 65

SYMPTOM_KEYWORDS = [
    "pain", "fever", "cough", "nausea", "vomiting", "diarrhea",
    "headache", "dizziness", "fatigue", "weakness", "swelling",
    "rash", "bleeding", "shortness of breath", "chest", "abdomen",
]

CHRONIC_KEYWORDS = [
    "chronic", "ongoing", "persistent", "recurring", "history of",
    "diagnosed with", "taking medication for", "previously had",
]

_MEDICATION_RE = re.compile(
    r"\b(medications?|medicines?|pills?|prescriptions?|taking)\b", re.IGNORECASE
)

# commas, semicolons and joining words split a description into phrases
_PHRASE_SPLIT_RE = re.compile(
    r"[,;]|\band\b|\balso\b|\bplus\b|\bwith\b|\balong with\b", re.IGNORECASE
)


def count_symptom_keywords(text: str) -> int:
    lowered = text.lower()
    return sum(1 for keyword in SYMPTOM_KEYWORDS if keyword in lowered)


def count_symptom_phrases(text: str) -> int:
    if not text.strip():
        return 0
    parts = [p.strip() for p in _PHRASE_SPLIT_RE.split(text)]
    return len([p for p in parts if p])


def evaluate_complexity(
    vitals: VitalsRecord, symptoms: Optional[str] = None
) -> ComplexityResult:
    """
    Score how much help a case needs during intake.

    Primary findings each weigh enough to make a case complex on their own;
    supporting findings only add context. Emergency thresholds are not
    looked at here, they belong to the router.
    """
    text = (symptoms or vitals.current_status or "").strip()
    lowered = text.lower()

    factors: List[str] = []
    score = 0

    # --- symptom description ---
    keyword_count = count_symptom_keywords(text)
    phrase_count = count_symptom_phrases(text)

    if len(text) > LONG_TEXT_CHARS:
        factors.append("Detailed symptom description suggests complex case")
        score += PRIMARY_WEIGHT
    elif len(text) > MODERATE_TEXT_CHARS:
        factors.append("Moderate symptom description length")
        score += SUPPORTING_WEIGHT

    if keyword_count >= 3:
        factors.append(f"Multiple symptoms reported ({keyword_count} symptom keywords)")
        score += PRIMARY_WEIGHT
    elif keyword_count == 2:
        factors.append(f"Several symptoms mentioned ({keyword_count} symptom keywords)")
        score += SUPPORTING_WEIGHT

    if phrase_count >= 3:
        factors.append(f"Multiple interconnected symptoms ({phrase_count} separate complaints)")
        score += PRIMARY_WEIGHT

    if any(keyword in lowered for keyword in CHRONIC_KEYWORDS):
        factors.append("Chronic or ongoing condition mentioned")
        score += PRIMARY_WEIGHT

    if _MEDICATION_RE.search(text):
        factors.append("Current medication use mentioned")
        score += SUPPORTING_WEIGHT

    # --- vitals ---
    temp_c = vitals.temperature_celsius()
    if temp_c is not None:
        if FEVER_C <= temp_c < EMERGENCY_FEVER_C:
            factors.append(f"Fever detected ({temp_c:.1f}°C)")
            score += PRIMARY_WEIGHT
        elif LOW_TEMPERATURE_C[0] <= temp_c < LOW_TEMPERATURE_C[1]:
            factors.append(f"Low temperature ({temp_c:.1f}°C) approaching concerning levels")
            score += PRIMARY_WEIGHT

    bp = vitals.blood_pressure_pair()
    if bp is not None:
        systolic, diastolic = bp
        reading = f"{systolic:g}/{diastolic:g} mmHg"
        if systolic > SYSTOLIC_RANGE[1] or diastolic > DIASTOLIC_RANGE[1]:
            factors.append(f"Elevated blood pressure ({reading})")
            score += PRIMARY_WEIGHT
        elif systolic < SYSTOLIC_RANGE[0] or diastolic < DIASTOLIC_RANGE[0]:
            factors.append(f"Low blood pressure ({reading})")
            score += PRIMARY_WEIGHT

    age = vitals.usable_age()
    if age is not None:
        if age < PEDIATRIC_AGE:
            factors.append("Young child - requires careful assessment")
            score += SUPPORTING_WEIGHT
        elif age > GERIATRIC_AGE:
            factors.append("Elderly patient - may require additional consideration")
            score += SUPPORTING_WEIGHT

    missing = vitals.missing_vitals()
    if missing:
        factors.append(
            f"Note: {', '.join(missing)} not collected - decision based on available data"
        )

    if not factors or all("not collected" in f for f in factors):
        factors.append("Simple presentation with available vitals within normal ranges")

    is_complex = score >= COMPLEXITY_THRESHOLD
    return ComplexityResult(
        is_complex=is_complex,
        needs_agent_assistance=is_complex,
        factors=factors,
    )
