# intakeflow/intake/prompts.py
from __future__ import annotations

import json
from typing import Dict, List

from intakeflow.intake.stages import AgentRole
from intakeflow.intake.state import IntakeState, IntakeTurn
from intakeflow.intake.tracking import MAX_FOLLOWUPS_PER_STAGE, follow_up_count


JSON_SCHEMA_INSTRUCTION = """
Respond with a single JSON object (you may wrap it in ```json fences):

{
  "thought": {
    "differential_diagnosis": [string, ...],
    "strategy": string,
    "missing_information": [string, ...],
    "next_move": string
  },
  "reply": "Your message to the patient. Conversational but efficient.",
  "updated_data": {
    "chief_complaint": string or null,
    "hpi": string or null,
    "medical_records": [string, ...] or null,
    "records_check_completed": boolean or null,
    "history_check_completed": boolean or null,
    "medications": [string, ...] or null,
    "allergies": [string, ...] or null,
    "past_medical_history": [string, ...] or null,
    "family_history": string or null,
    "social_history": string or null,
    "review_of_systems": [string, ...] or null
  }
}

Only include facts the patient actually stated. Use null for anything not mentioned.
"""

AGENT_PROMPTS: Dict[AgentRole, str] = {
    AgentRole.TRIAGE: (
        "You are the Triage agent of a clinical intake assistant.\n"
        "Goal: identify the patient's chief complaint in their own words.\n"
        "Ask one broad, open question."
    ),
    AgentRole.CLINICAL_INVESTIGATOR: (
        "You are the Clinical Investigator agent of a clinical intake assistant.\n"
        "Goal: build the history of present illness (onset, duration, location, "
        "character, severity, aggravating and relieving factors, associated symptoms).\n"
        "Keep a short differential in 'thought' and batch closed questions together."
    ),
    AgentRole.RECORDS_CLERK: (
        "You are the Records Clerk agent of a clinical intake assistant.\n"
        "Goal: ask once for recent test results, discharge letters or photos of pill bottles.\n"
        "If the patient has none or ignores the request, set records_check_completed to true."
    ),
    AgentRole.HISTORY_SPECIALIST: (
        "You are the History Specialist agent of a clinical intake assistant.\n"
        "Goal: ask ONE combined question about medications, allergies and past conditions.\n"
        "Whatever the answer, set history_check_completed to true. Never re-ask afterwards."
    ),
    AgentRole.HANDOVER_SPECIALIST: (
        "You are the Handover Specialist agent of a clinical intake assistant.\n"
        "Goal: do a final sweep ('Is there anything else worrying you?') and confirm "
        "the summary is ready for the doctor."
    ),
}

DOCTOR_PROMPT = (
    "You are a clinical decision support assistant talking to a doctor about "
    "one patient's intake. Answer concisely and reference the intake data."
)

CONCLUSION_NUDGE = (
    "The conversation is getting long. Offer the patient the option to wrap up "
    "now if they have nothing else to add."
)


def _chat_role(turn: IntakeTurn) -> str:
    return "user" if turn.role == "user" else "assistant"


def build_patient_messages(
    state: IntakeState,
    role: AgentRole,
    history: List[IntakeTurn],
    message: str,
) -> List[Dict[str, str]]:
    answered = ", ".join(state.answered_topics) or "none yet"
    system = "\n\n".join([
        AGENT_PROMPTS[role],
        f"ALREADY ANSWERED (DO NOT ASK AGAIN): {answered}",
        f"FOLLOW-UP COUNT FOR CURRENT STAGE: "
        f"{follow_up_count(state.follow_up_counts, role)}/{MAX_FOLLOWUPS_PER_STAGE}",
        CONCLUSION_NUDGE if state.has_offered_conclusion else "",
        JSON_SCHEMA_INSTRUCTION,
        "CURRENT INTAKE DATA:\n"
        + json.dumps(state.medical_data.model_dump(mode="json", exclude={"triage"}), indent=2),
    ]).strip()

    messages = [{"role": "system", "content": system}]
    messages += [{"role": _chat_role(t), "content": t.content} for t in history]
    messages.append({"role": "user", "content": message})
    return messages


def build_doctor_messages(
    state: IntakeState,
    history: List[IntakeTurn],
    message: str,
) -> List[Dict[str, str]]:
    system = (
        f"{DOCTOR_PROMPT}\n\nINTAKE DATA:\n"
        + json.dumps(state.medical_data.model_dump(mode="json"), indent=2)
    )
    messages = [{"role": "system", "content": system}]
    messages += [{"role": _chat_role(t), "content": t.content} for t in history]
    messages.append({"role": "user", "content": message})
    return messages
