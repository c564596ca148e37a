# intakeflow/intake/dedup.py
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from intakeflow.models import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 5.0


def content_hash(session_id: str, content: str) -> str:
    """
    Stable 16-hex-char fingerprint of a message within one session.
    """
    digest = hashlib.sha256(f"{session_id}:{content}".encode("utf-8")).hexdigest()
    return digest[:16]


@dataclass
class DedupResult:
    is_duplicate: bool
    content_hash: str
    matched_message_id: Optional[str] = None


class MessageDeduplicator:
    """
    Rejects a user message when the same content was already posted to the
    same session within the trailing window (at - window, at].

    Only user-role messages are compared; model and doctor messages never
    count as an earlier copy.
    """

    def __init__(self, window_seconds: float = DEFAULT_WINDOW_SECONDS):
        self.window = timedelta(seconds=window_seconds)

    def check(
        self,
        session_id: str,
        content: str,
        at: datetime,
        recent: Iterable[ChatMessage],
    ) -> DedupResult:
        fingerprint = content_hash(session_id, content)
        start = at - self.window

        matches = []
        for msg in recent:
            if msg.session_id != session_id or msg.role != "user":
                continue
            if not (start < msg.created_at <= at):
                continue
            existing = msg.content_hash or content_hash(msg.session_id, msg.content)
            if existing == fingerprint:
                matches.append(msg)

        if not matches:
            return DedupResult(is_duplicate=False, content_hash=fingerprint)

        first = min(matches, key=lambda m: m.created_at)
        return DedupResult(
            is_duplicate=True,
            content_hash=fingerprint,
            matched_message_id=first.id,
        )

    def check_session(
        self,
        db: Session,
        session_id: str,
        content: str,
        at: datetime,
    ) -> DedupResult:
        """
        Same as check(), loading the candidate messages from the database.
        """
        stmt = (
            select(ChatMessage)
            .where(
                ChatMessage.session_id == session_id,
                ChatMessage.role == "user",
                ChatMessage.created_at > at - self.window,
                ChatMessage.created_at <= at,
            )
            .order_by(ChatMessage.created_at.asc())
        )
        result = self.check(session_id, content, at, db.scalars(stmt))
        if result.is_duplicate:
            logger.info(
                f"Duplicate message rejected for session {session_id} "
                f"(matches {result.matched_message_id})"
            )
        return result
