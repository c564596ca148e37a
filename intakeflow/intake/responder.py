# intakeflow/intake/responder.py
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from intakeflow.intake.schema import DoctorThought, MedicalDataUpdate

logger = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass
class AgentReply:
    reply: str
    update: MedicalDataUpdate
    thought: Optional[DoctorThought] = None


def _snake_keys(data: dict) -> dict:
    # tolerate camelCase keys, e.g. "chiefComplaint"
    return {_CAMEL_RE.sub("_", k).lower(): v for k, v in data.items()}


def extract_json(raw: str) -> Optional[dict]:
    """
    Pull a JSON object out of a model reply. Handles ```json fences and
    prose around the object. Returns None when nothing parses.
    """
    text = raw.strip()

    fenced = _FENCED_RE.search(text)
    candidates = [fenced.group(1)] if fenced else []
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first:last + 1])
    candidates.append(text)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def parse_agent_reply(raw: str) -> Optional[AgentReply]:
    """
    Turn raw model text into a reply plus a partial data update.

    Plain text without JSON is accepted as the reply with no data changes.
    Returns None when there is no usable reply text at all.
    """
    data = extract_json(raw)
    if data is None:
        text = raw.strip()
        if not text or text.startswith("{"):
            return None
        return AgentReply(reply=text, update=MedicalDataUpdate())

    data = _snake_keys(data)
    reply = data.get("reply")
    if not isinstance(reply, str) or not reply.strip():
        return None

    updated = data.get("updated_data") or {}
    try:
        update = MedicalDataUpdate.model_validate(
            _snake_keys(updated) if isinstance(updated, dict) else {}
        )
    except ValidationError as e:
        logger.warning(f"Discarding malformed updated_data from model: {e}")
        update = MedicalDataUpdate()

    thought = None
    raw_thought = data.get("thought")
    if isinstance(raw_thought, dict):
        try:
            thought = DoctorThought.model_validate(_snake_keys(raw_thought))
        except ValidationError as e:
            logger.warning(f"Discarding malformed thought from model: {e}")

    return AgentReply(reply=reply.strip(), update=update, thought=thought)
