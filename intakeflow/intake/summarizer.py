# intakeflow/intake/summarizer.py
from __future__ import annotations

import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from intakeflow.intake.responder import extract_json
from intakeflow.intake.schema import SBAR, MedicalData
from intakeflow.intake.state import IntakeTurn
from intakeflow.llm import LLMClient, call_with_deadline

logger = logging.getLogger(__name__)


def _join(items: List[str], empty: str) -> str:
    return ", ".join(items) if items else empty


def _build_transcript_text(turns: List[IntakeTurn]) -> str:
    """
    Plain text transcript for the LLM prompt:

      assistant: ...
      patient: ...
    """
    lines: List[str] = []
    for turn in turns:
        speaker = {"user": "patient", "doctor": "doctor"}.get(turn.role, "assistant")
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


def build_handover_heuristic(data: MedicalData) -> SBAR:
    """
    Baseline SBAR assembled directly from the structured record, no LLM.
    """
    situation = data.chief_complaint or "Chief complaint not recorded"
    if data.vitals and data.vitals.status_text():
        situation = f"{situation}. Patient reports: {data.vitals.status_text()}"

    background_parts = [
        f"Medications: {_join(data.medications, 'none reported')}",
        f"Allergies: {_join(data.allergies, 'none reported')}",
        f"Past medical history: {_join(data.past_medical_history, 'none reported')}",
    ]
    if data.family_history:
        background_parts.append(f"Family history: {data.family_history}")
    if data.social_history:
        background_parts.append(f"Social history: {data.social_history}")
    if data.medical_records:
        background_parts.append(f"Records provided: {_join(data.medical_records, '')}")

    assessment = data.hpi or "History of present illness not recorded"
    if data.triage:
        assessment = f"{assessment}. Triage: {data.triage.decision} ({data.triage.reason})"

    if data.triage and data.triage.decision == "emergency":
        recommendation = "Urgent review required: emergency indicators present at triage."
    else:
        recommendation = "Review intake and schedule consultation."

    return SBAR(
        situation=situation,
        background=". ".join(background_parts),
        assessment=assessment,
        recommendation=recommendation,
    )


def build_handover_with_llm(
    data: MedicalData,
    turns: List[IntakeTurn],
    llm_client: Optional[LLMClient],
    timeout: float,
) -> SBAR:
    """
    Ask the LLM for an SBAR handover built from the record and transcript.

    Falls back to the heuristic version if anything goes wrong.
    """
    messages = [
        {
            "role": "system",
            "content": (
                "You are an AI clinical intake assistant preparing a handover for a doctor. "
                "Write an SBAR summary (situation, background, assessment, recommendation). "
                "Do NOT invent details that are not in the data or transcript."
            ),
        },
        {
            "role": "user",
            "content": (
                "Return ONLY a JSON object with the string keys "
                '"situation", "background", "assessment", "recommendation".\n\n'
                "Structured intake:\n"
                f"{json.dumps(data.model_dump(mode='json'), indent=2)}\n\n"
                "Transcript:\n"
                f"{_build_transcript_text(turns)}"
            ),
        },
    ]

    raw = call_with_deadline(llm_client, messages, timeout=timeout, temperature=0.1)
    if raw is None:
        logger.info("SBAR generation unavailable, using heuristic handover")
        return build_handover_heuristic(data)

    parsed = extract_json(raw)
    if parsed is None:
        logger.warning("SBAR reply was not JSON, using heuristic handover")
        return build_handover_heuristic(data)

    try:
        return SBAR.model_validate(parsed)
    except ValidationError as e:
        logger.warning(f"SBAR reply failed validation: {e}. Using heuristic handover")
        return build_handover_heuristic(data)
