"""
HTTP tests through FastAPI's TestClient.

The app is built with the test database and a scripted LLM client; the
acting user is passed in the X-User-Id header.
"""
import pytest
from fastapi.testclient import TestClient

from intakeflow.main import create_app

from tests.conftest import ScriptedLLM, agent_reply


@pytest.fixture
def api_llm():
    return ScriptedLLM()


@pytest.fixture
def client(database, seed, api_llm):
    app = create_app(database=database, llm_client=api_llm)
    with TestClient(app) as c:
        yield c


def as_user(user_id):
    return {"X-User-Id": user_id}


def start_session(client, seed):
    resp = client.post(
        "/api/intake/sessions",
        json={"connection_id": seed.connection_id},
        headers=as_user(seed.patient_user_id),
    )
    assert resp.status_code == 200
    return resp.json()


class TestService:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "intakeflow API is running"}

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["dependencies"] == {"database": "connected", "llm": "configured"}

    def test_missing_user_header(self, client, seed):
        resp = client.post("/api/intake/sessions", json={"connection_id": seed.connection_id})
        assert resp.status_code == 401


class TestTriageEndpoint:
    def test_emergency(self, client):
        resp = client.post(
            "/api/triage/evaluate",
            json={"temperature": {"value": 104, "unit": "F"}, "blood_pressure": {"systolic": 120, "diastolic": 80}},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["decision"] == "emergency"
        assert body["confidence"] == 1.0

    def test_simple_case(self, client):
        resp = client.post(
            "/api/triage/evaluate",
            json={
                "temperature": {"value": 36.8, "unit": "celsius"},
                "blood_pressure": {"systolic": 118, "diastolic": 76},
                "weight": {"value": 70, "unit": "kg"},
                "current_status": "mild sore throat",
            },
        )
        assert resp.json()["decision"] == "direct-to-diagnosis"


class TestIntakeEndpoints:
    def test_create_and_fetch(self, client, seed):
        created = start_session(client, seed)
        assert created["status"] == "not_started"
        assert created["name"] == "New Intake"

        resp = client.get(f"/api/intake/sessions/{created['id']}", headers=as_user(seed.doctor_user_id))
        assert resp.status_code == 200
        assert [m["role"] for m in resp.json()["messages"]] == ["model"]

    def test_errors_use_code_and_message(self, client, seed):
        created = start_session(client, seed)

        resp = client.get(f"/api/intake/sessions/{created['id']}", headers=as_user(seed.other_doctor_user_id))
        assert resp.status_code == 403
        assert resp.json() == {"code": "FORBIDDEN", "message": "You don't have access to this session."}

        resp = client.get("/api/intake/sessions/missing", headers=as_user(seed.patient_user_id))
        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"

    def test_send_message_and_duplicate(self, client, seed, api_llm):
        created = start_session(client, seed)
        api_llm.replies.append(agent_reply("How long has it hurt?", chief_complaint="Headache"))
        url = f"/api/intake/sessions/{created['id']}/messages"

        first = client.post(url, json={"content": "I have a bad headache"}, headers=as_user(seed.patient_user_id))
        assert first.status_code == 200
        body = first.json()
        assert body["is_duplicate"] is False
        assert body["ai_message"]["content"] == "How long has it hurt?"
        assert body["active_agent"] == "ClinicalInvestigator"
        assert body["completeness"] == 20

        again = client.post(url, json={"content": "I have a bad headache"}, headers=as_user(seed.patient_user_id))
        assert again.json()["is_duplicate"] is True
        assert again.json()["matched_message_id"] == body["user_message"]["id"]
        assert len(api_llm.calls) == 1

    def test_duplicate_reports_session_progress(self, client, seed, api_llm):
        created = start_session(client, seed)
        api_llm.replies.append(agent_reply("How long has it hurt?", chief_complaint="Headache"))
        url = f"/api/intake/sessions/{created['id']}/messages"
        headers = as_user(seed.patient_user_id)

        client.post(url, json={"content": "I have a bad headache"}, headers=headers)
        again = client.post(url, json={"content": "I have a bad headache"}, headers=headers).json()

        assert again["is_duplicate"] is True
        assert again["active_agent"] == "ClinicalInvestigator"
        assert again["completeness"] == 20
        assert again["is_ready"] is False
        assert again["user_message"] is None
        assert again["ai_message"] is None

    def test_empty_message_is_bad_request(self, client, seed):
        created = start_session(client, seed)
        resp = client.post(
            f"/api/intake/sessions/{created['id']}/messages",
            json={"content": "  "},
            headers=as_user(seed.patient_user_id),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "BAD_REQUEST"

    def test_rename(self, client, seed):
        created = start_session(client, seed)
        url = f"/api/intake/sessions/{created['id']}"

        resp = client.patch(url, json={"name": "Migraine"}, headers=as_user(seed.patient_user_id))
        assert resp.json()["name"] == "Migraine"

        resp = client.patch(url, json={"name": None}, headers=as_user(seed.patient_user_id))
        assert resp.json()["name"] == "New Intake"

    def test_vitals(self, client, seed):
        created = start_session(client, seed)
        resp = client.post(
            f"/api/intake/sessions/{created['id']}/vitals",
            json={"blood_pressure": {"systolic": 190, "diastolic": 95}},
            headers=as_user(seed.patient_user_id),
        )
        assert resp.status_code == 200
        assert resp.json()["decision"] == "emergency"

    def test_reset(self, client, seed):
        created = start_session(client, seed)
        url = f"/api/intake/sessions/{created['id']}/reset"

        resp = client.post(url, headers=as_user(seed.other_patient_user_id))
        assert resp.status_code == 403
        assert resp.json()["message"] == "You are not authorized to reset this intake session."

        resp = client.post(url, headers=as_user(seed.patient_user_id))
        assert resp.status_code == 200
        assert resp.json() == {
            "id": created["id"],
            "connection_id": seed.connection_id,
            "status": "not_started",
        }

    def test_review_requires_ready(self, client, seed):
        created = start_session(client, seed)
        resp = client.post(
            f"/api/intake/sessions/{created['id']}/review",
            headers=as_user(seed.doctor_user_id),
        )
        assert resp.status_code == 400


class TestConnectionEndpoints:
    def test_connect_message_and_inbox(self, client, seed):
        resp = client.post(
            "/api/connections",
            json={"doctor_id": seed.doctor_id},
            headers=as_user(seed.other_patient_user_id),
        )
        assert resp.status_code == 200
        connection = resp.json()
        assert connection["action"] == "new"

        resp = client.post(
            f"/api/connections/{connection['id']}/messages",
            json={"content": "Hello doctor"},
            headers=as_user(seed.other_patient_user_id),
        )
        assert resp.status_code == 200

        inbox = client.get("/api/notifications", headers=as_user(seed.doctor_user_id)).json()
        assert sorted(n["type"] for n in inbox) == ["connection", "message"]

        first = inbox[0]["id"]
        resp = client.post(f"/api/notifications/{first}/read", headers=as_user(seed.doctor_user_id))
        assert resp.json()["is_read"] is True

        unread = client.get(
            "/api/notifications", params={"unread_only": True}, headers=as_user(seed.doctor_user_id)
        ).json()
        assert len(unread) == 1

    def test_read_someone_elses_notification(self, client, seed):
        client.post(
            "/api/connections/" + seed.connection_id + "/messages",
            json={"content": "Hello"},
            headers=as_user(seed.patient_user_id),
        )
        inbox = client.get("/api/notifications", headers=as_user(seed.doctor_user_id)).json()

        resp = client.post(f"/api/notifications/{inbox[0]['id']}/read", headers=as_user(seed.patient_user_id))
        assert resp.status_code == 404


class TestAppointmentEndpoints:
    def test_book_and_cancel(self, client, seed):
        resp = client.post(
            "/api/appointments",
            json={"connection_id": seed.connection_id, "scheduled_at": "2030-01-15T10:00:00", "duration": 20},
            headers=as_user(seed.patient_user_id),
        )
        assert resp.status_code == 200
        appointment = resp.json()
        assert appointment["status"] == "pending"

        resp = client.post(
            f"/api/appointments/{appointment['id']}",
            json={"action": "cancelled", "cancel_reason": "Feeling better"},
            headers=as_user(seed.doctor_user_id),
        )
        assert resp.json()["status"] == "cancelled"

        inbox = client.get("/api/notifications", headers=as_user(seed.patient_user_id)).json()
        assert inbox[0]["data"]["cancelReason"] == "Feeling better"
