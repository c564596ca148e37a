"""
Tests for content-hash message deduplication.

- Same content in the same session inside the window -> duplicate
- Outside the window, another session or a non-user message -> accepted
- The window is half-open: (at - window, at]
"""
from datetime import datetime, timedelta, timezone

import pytest

from intakeflow.intake import MessageDeduplicator, content_hash
from intakeflow.models import ChatMessage, IntakeSession, utcnow

T0 = datetime(2026, 3, 1, 9, 0, 0)


def message(session_id, content, at, role="user", id=None):
    return ChatMessage(
        id=id or f"msg-{at.isoformat()}-{role}",
        session_id=session_id,
        role=role,
        content=content,
        content_hash=content_hash(session_id, content),
        created_at=at,
    )


class TestContentHash:
    def test_is_sixteen_hex_chars(self):
        value = content_hash("s1", "hello")
        assert len(value) == 16
        int(value, 16)

    def test_depends_on_session(self):
        assert content_hash("s1", "hello") != content_hash("s2", "hello")

    def test_is_stable(self):
        assert content_hash("s1", "hello") == content_hash("s1", "hello")


class TestMessageDeduplicator:
    @pytest.fixture
    def dedup(self):
        return MessageDeduplicator(window_seconds=5.0)

    def test_repeat_within_window_is_duplicate(self, dedup):
        earlier = message("s1", "I have a headache", T0, id="m1")
        result = dedup.check("s1", "I have a headache", T0 + timedelta(seconds=2), [earlier])
        assert result.is_duplicate is True
        assert result.matched_message_id == "m1"

    def test_repeat_after_window_is_accepted(self, dedup):
        earlier = message("s1", "I have a headache", T0)
        result = dedup.check("s1", "I have a headache", T0 + timedelta(seconds=6), [earlier])
        assert result.is_duplicate is False
        assert result.matched_message_id is None

    def test_window_start_is_exclusive(self, dedup):
        earlier = message("s1", "I have a headache", T0)
        result = dedup.check("s1", "I have a headache", T0 + timedelta(seconds=5), [earlier])
        assert result.is_duplicate is False

    def test_same_instant_is_duplicate(self, dedup):
        earlier = message("s1", "I have a headache", T0)
        assert dedup.check("s1", "I have a headache", T0, [earlier]).is_duplicate is True

    def test_different_session_is_accepted(self, dedup):
        earlier = message("s2", "I have a headache", T0)
        result = dedup.check("s1", "I have a headache", T0 + timedelta(seconds=1), [earlier])
        assert result.is_duplicate is False

    def test_model_messages_are_ignored(self, dedup):
        earlier = message("s1", "I have a headache", T0, role="model")
        result = dedup.check("s1", "I have a headache", T0 + timedelta(seconds=1), [earlier])
        assert result.is_duplicate is False

    def test_different_content_is_accepted(self, dedup):
        earlier = message("s1", "I have a headache", T0)
        result = dedup.check("s1", "I have a fever", T0 + timedelta(seconds=1), [earlier])
        assert result.is_duplicate is False

    def test_earliest_match_wins(self, dedup):
        first = message("s1", "again", T0, id="first")
        second = message("s1", "again", T0 + timedelta(seconds=1), id="second")
        result = dedup.check("s1", "again", T0 + timedelta(seconds=2), [second, first])
        assert result.matched_message_id == "first"


class TestCheckSession:
    def test_reads_recent_user_messages_from_the_database(self, database, seed):
        dedup = MessageDeduplicator(window_seconds=5.0)
        with database.session() as db:
            session = IntakeSession(connection_id=seed.connection_id)
            db.add(session)
            db.flush()
            db.add(message(session.id, "I have a headache", T0, id="stored"))
            db.flush()

            hit = dedup.check_session(db, session.id, "I have a headache", T0 + timedelta(seconds=2))
            miss = dedup.check_session(db, session.id, "I have a headache", T0 + timedelta(seconds=6))

        assert hit.is_duplicate is True
        assert hit.matched_message_id == "stored"
        assert miss.is_duplicate is False

    def test_stored_timestamps_compare_with_utcnow(self, database, seed):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        now = utcnow()
        assert now.tzinfo is None
        assert before <= now <= datetime.now(timezone.utc).replace(tzinfo=None)

        dedup = MessageDeduplicator(window_seconds=5.0)
        with database.session() as db:
            session = IntakeSession(connection_id=seed.connection_id)
            db.add(session)
            db.flush()
            db.add(message(session.id, "I have a headache", now, id="stored"))
            db.flush()

            hit = dedup.check_session(db, session.id, "I have a headache", utcnow())

        assert hit.is_duplicate is True
        assert hit.matched_message_id == "stored"
