"""
Shared fixtures.

- an in-memory SQLite Database with all tables created
- a seeded patient <-> doctor connection plus outsiders
- fake LLM clients (scripted, failing, slow)
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest

from intakeflow.db import Database
from intakeflow.intake import IntakeStateMachine, MessageDeduplicator
from intakeflow.llm import LLMClient
from intakeflow.models import Connection, Doctor, Patient, User
from intakeflow.services import (
    IntakeSessionService,
    NotificationDispatcher,
    SessionResetTransaction,
)


# ============================================================================
# Fake LLM clients
# ============================================================================

SBAR_REPLY = json.dumps({
    "situation": "Headache for two days",
    "background": "No medications, no known allergies",
    "assessment": "Likely tension-type or migraine headache",
    "recommendation": "Routine consultation",
})


def agent_reply(reply: str, **updated_data) -> str:
    """JSON reply in the shape the intake agents are asked to produce."""
    return json.dumps({
        "thought": {
            "differential_diagnosis": ["Migraine"],
            "missing_information": [],
            "strategy": "test",
            "next_move": "continue",
        },
        "reply": reply,
        "updated_data": updated_data,
    })


class ScriptedLLM(LLMClient):
    """
    Returns queued replies in order, then a generic reply. SBAR requests
    are answered separately and do not consume the queue.
    """

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.calls: List[List[Dict[str, str]]] = []
        self.sbar_calls = 0

    def chat(self, messages, temperature: float = 0.2, model: Optional[str] = None) -> str:
        if "SBAR" in messages[0]["content"]:
            self.sbar_calls += 1
            return SBAR_REPLY
        self.calls.append(messages)
        if self.replies:
            return self.replies.pop(0)
        return agent_reply("Could you tell me a bit more?")


class FailingLLM(LLMClient):
    def __init__(self):
        self.calls = 0

    def chat(self, messages, temperature: float = 0.2, model: Optional[str] = None) -> str:
        self.calls += 1
        raise RuntimeError("provider unavailable")


class SlowLLM(LLMClient):
    def __init__(self, delay: float):
        self.delay = delay

    def chat(self, messages, temperature: float = 0.2, model: Optional[str] = None) -> str:
        time.sleep(self.delay)
        return agent_reply("too late")


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def database():
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.dispose()


@dataclass
class Seed:
    patient_user_id: str
    doctor_user_id: str
    other_patient_user_id: str
    other_doctor_user_id: str
    admin_user_id: str
    patient_id: str
    doctor_id: str
    other_doctor_id: str
    connection_id: str


@pytest.fixture
def seed(database) -> Seed:
    """
    One active connection (Jane Doe -> Dr. Gregory House) plus an unrelated
    patient, an unconnected doctor and a super admin.
    """
    with database.session() as db:
        patient_user = User(email="jane@example.com", first_name="Jane", last_name="Doe", primary_role="patient")
        doctor_user = User(email="house@example.com", first_name="Gregory", last_name="House", primary_role="doctor")
        other_patient_user = User(email="john@example.com", first_name="John", last_name="Roe", primary_role="patient")
        other_doctor_user = User(email="wilson@example.com", first_name="James", last_name="Wilson", primary_role="doctor")
        admin_user = User(email="admin@example.com", first_name="Ada", last_name="Admin", primary_role="super_admin")
        db.add_all([patient_user, doctor_user, other_patient_user, other_doctor_user, admin_user])
        db.flush()

        patient = Patient(user_id=patient_user.id)
        other_patient = Patient(user_id=other_patient_user.id)
        doctor = Doctor(user_id=doctor_user.id, specialty="Internal Medicine")
        other_doctor = Doctor(user_id=other_doctor_user.id, specialty="Oncology")
        db.add_all([patient, other_patient, doctor, other_doctor])
        db.flush()

        connection = Connection(patient_id=patient.id, doctor_id=doctor.id, status="active")
        db.add(connection)
        db.flush()

        return Seed(
            patient_user_id=patient_user.id,
            doctor_user_id=doctor_user.id,
            other_patient_user_id=other_patient_user.id,
            other_doctor_user_id=other_doctor_user.id,
            admin_user_id=admin_user.id,
            patient_id=patient.id,
            doctor_id=doctor.id,
            other_doctor_id=other_doctor.id,
            connection_id=connection.id,
        )


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def notifier():
    return NotificationDispatcher()


@pytest.fixture
def intake_service(database, llm, notifier):
    machine = IntakeStateMachine(llm, timeout=2.0)
    return IntakeSessionService(database, machine, MessageDeduplicator(5.0), notifier)


@pytest.fixture
def reset_transaction(database, notifier):
    return SessionResetTransaction(database, notifier)
