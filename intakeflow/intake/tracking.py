# intakeflow/intake/tracking.py
"""
Anti-loop helpers for the intake conversation: answered-topic extraction,
follow-up limits, termination signals and fallback replies.

Everything here is a pure function of its arguments.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from intakeflow.intake.stages import AGENT_STAGE, AgentRole, next_role


TERMINATION_PHRASES = {
    # patient says they have shared everything
    "completion": [
        "that's all", "thats all", "that is all",
        "nothing else", "no more", "i'm done", "im done",
        "that's it", "thats it", "no other", "nothing more",
        "i think that's everything", "that covers it",
        "i'm healthy", "im healthy", "no issues", "no problems",
        "no concerns", "that's everything", "thats everything",
    ],
    "explicit_finish": [
        "can we wrap up", "i want to book", "let's book", "lets book",
        "ready to book", "finish up", "wrap this up",
        "i'm ready", "im ready", "book now", "schedule now",
        "can i book", "want to schedule", "ready for appointment",
    ],
    "skip": ["skip", "next", "move on", "next question", "next section"],
    "done": ["done", "finish", "end", "complete", "stop", "enough"],
}

UNCERTAINTY_PHRASES = [
    "i don't know", "i dont know", "not sure", "unsure",
    "no idea", "can't remember", "cant remember",
    "i forget", "maybe", "possibly", "i think so",
    "not certain", "hard to say", "difficult to say",
]

NEGATIVE_RESPONSES = [
    "no", "none", "nothing", "nope", "n/a", "na",
    "not really", "not that i know of", "negative",
    "no i don't", "no i dont", "i don't think so",
    "i dont think so", "not at all",
    "i don't have any", "i dont have any", "don't have any", "dont have any",
    "i have none", "have none", "i have no", "have no",
    "i don't have", "i dont have", "don't have", "dont have",
    "proceed", "skip", "move on", "next", "continue",
    "no records", "no documents", "no files", "no photos",
    "nothing to upload", "nothing to share",
]

SYMPTOM_TOPICS: Dict[str, List[str]] = {
    "fever": ["fever", "temperature", "hot", "burning up"],
    "chills": ["chills", "shivering", "cold"],
    "cough": ["cough", "coughing"],
    "congestion": ["runny nose", "stuffy", "congestion", "blocked nose"],
    "headache": ["headache", "head pain", "head hurts"],
    "fatigue": ["tired", "fatigue", "exhausted", "weak"],
    "nausea": ["nausea", "nauseous", "sick to stomach"],
    "pain": ["pain", "hurts", "ache", "sore"],
    "rash": ["rash", "skin", "spots", "bumps"],
    "swelling": ["swelling", "swollen", "lumps", "lymph nodes"],
}

HISTORY_TOPICS: Dict[str, List[str]] = {
    "medications": ["medication", "medicine", "pills"],
    "allergies": ["allerg"],
    "smoking": ["smoke", "smoking", "tobacco"],
    "alcohol": ["drink", "alcohol"],
}

_NEGATED_SYMPTOM_RE = re.compile(
    r"\b(?:no|don'?t have)\s+(fever|chills|cough|headache|nausea|rash|swelling)\b"
)

MESSAGE_LIMITS = {
    "offer_conclusion": 15,
    "force_handover": 20,
}

MAX_FOLLOWUPS_PER_STAGE = 2
MAX_CONSECUTIVE_ERRORS = 3
COMPLETION_COMPLETENESS = 60
HANDOVER_COMPLETENESS = 80

CONTEXTUAL_FALLBACKS = {
    "triage": "I understand you're not feeling well. Could you describe your main concern in a few words?",
    "symptoms": "Thanks for sharing that. To help narrow things down, are you experiencing any other symptoms?",
    "records": "Got it. Do you have any recent test results or medical records to share?",
    "history": "Thanks. Do you have any ongoing medical conditions or take any regular medications?",
    "review": "I have the information I need. Let me summarize what you've told me.",
}

REPHRASE_PROMPT = (
    "I'm having some difficulty understanding. "
    "Could you try rephrasing your response in simpler terms?"
)


# ---------------------------------------------------------------------- #
# Phrase detection
# ---------------------------------------------------------------------- #

def _normalise(message: str) -> str:
    return (message or "").lower().strip()


def _is_command(lowered: str, phrases: List[str]) -> bool:
    # the whole message must be the command; "stop eating" is not "stop"
    return lowered.rstrip(".!?, ") in phrases


def is_negative_response(message: str) -> bool:
    lowered = _normalise(message)
    return any(
        lowered == p
        or lowered.startswith(p + " ")
        or lowered.startswith(p + ",")
        or lowered.startswith(p + ".")
        for p in NEGATIVE_RESPONSES
    )


def is_uncertain(message: str) -> bool:
    lowered = _normalise(message)
    return any(p in lowered for p in UNCERTAINTY_PHRASES)


def is_completion_phrase(message: str) -> bool:
    lowered = _normalise(message)
    return any(p in lowered for p in TERMINATION_PHRASES["completion"])


def extract_answered_topics(message: str) -> List[str]:
    lowered = _normalise(message)
    topics: List[str] = []

    for topic, keywords in SYMPTOM_TOPICS.items():
        if any(k in lowered for k in keywords):
            topics.append(topic)

    # "no fever" still answers the fever question
    for symptom in _NEGATED_SYMPTOM_RE.findall(lowered):
        if symptom not in topics:
            topics.append(symptom)

    for topic, keywords in HISTORY_TOPICS.items():
        if any(k in lowered for k in keywords):
            topics.append(topic)

    return topics


def merge_topics(answered: List[str], new: List[str]) -> List[str]:
    merged = list(answered)
    for topic in new:
        if topic not in merged:
            merged.append(topic)
    return merged


def contains_new_information(message: str, answered: List[str]) -> bool:
    return any(t not in answered for t in extract_answered_topics(message))


# ---------------------------------------------------------------------- #
# Follow-up counting
# ---------------------------------------------------------------------- #

def follow_up_count(counts: Dict[str, int], role: AgentRole) -> int:
    return int(counts.get(AGENT_STAGE[role], 0))


def increment_follow_up(counts: Dict[str, int], role: AgentRole) -> Dict[str, int]:
    stage = AGENT_STAGE[role]
    return {**counts, stage: int(counts.get(stage, 0)) + 1}


def follow_up_limit_reached(counts: Dict[str, int], role: AgentRole) -> bool:
    return follow_up_count(counts, role) >= MAX_FOLLOWUPS_PER_STAGE


# ---------------------------------------------------------------------- #
# Termination signals
# ---------------------------------------------------------------------- #

@dataclass
class TerminationSignal:
    reason: str
    target_agent: AgentRole
    acknowledgement: Optional[str] = None

    @property
    def short_circuits(self) -> bool:
        """done/skip commands answer the turn without calling the AI."""
        return self.reason in ("done_command", "skip_command")


def detect_termination_signal(
    message: str,
    current_agent: AgentRole,
    ai_message_count: int,
    completeness: int,
    has_chief_complaint: bool,
    has_hpi: bool,
) -> Optional[TerminationSignal]:
    """
    Checked in priority order: done, skip, explicit finish, completion
    phrase, message limit, completeness threshold.
    """
    lowered = _normalise(message)
    handover = AgentRole.HANDOVER_SPECIALIST

    if _is_command(lowered, TERMINATION_PHRASES["done"]):
        return TerminationSignal(
            "done_command",
            handover,
            "Wrapping up your intake. Let me prepare your summary...",
        )

    if _is_command(lowered, TERMINATION_PHRASES["skip"]):
        target = next_role(current_agent)
        section = "final review" if target == handover else "next section"
        return TerminationSignal("skip_command", target, f"Skipping to {section}...")

    if any(p in lowered for p in TERMINATION_PHRASES["explicit_finish"]):
        return TerminationSignal(
            "explicit_request",
            handover,
            "Great! Let me wrap up your intake and prepare for booking...",
        )

    if is_completion_phrase(lowered) and (
        completeness >= COMPLETION_COMPLETENESS or (has_chief_complaint and has_hpi)
    ):
        return TerminationSignal("completion_phrase", handover)

    if current_agent != handover:
        if ai_message_count >= MESSAGE_LIMITS["force_handover"]:
            return TerminationSignal(
                "message_limit",
                handover,
                "I have enough information to proceed. Let me summarize what we've discussed...",
            )
        if completeness >= HANDOVER_COMPLETENESS:
            return TerminationSignal("completeness_threshold", handover)

    return None


def should_offer_conclusion(ai_message_count: int) -> bool:
    return (
        MESSAGE_LIMITS["offer_conclusion"]
        <= ai_message_count
        < MESSAGE_LIMITS["force_handover"]
    )


# ---------------------------------------------------------------------- #
# Fallback replies
# ---------------------------------------------------------------------- #

def _snippet(message: str) -> Optional[str]:
    cleaned = (message or "").strip()
    if not cleaned:
        return None
    if len(cleaned) <= 50:
        return cleaned
    return cleaned[:47] + "..."


def fallback_reply(role: AgentRole, patient_message: str) -> str:
    base = CONTEXTUAL_FALLBACKS.get(AGENT_STAGE[role], CONTEXTUAL_FALLBACKS["symptoms"])
    snippet = _snippet(patient_message)
    if snippet:
        return f'I heard you mention "{snippet}". {base}'
    return base
