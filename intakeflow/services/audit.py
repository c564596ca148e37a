# intakeflow/services/audit.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from intakeflow.db import Database
from intakeflow.models import AuditLog

logger = logging.getLogger(__name__)


def record(
    db: Session,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    details: Optional[dict] = None,
) -> AuditLog:
    """
    Stage an audit row in the caller's transaction.
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details or {},
    )
    db.add(entry)
    return entry


def record_failure(
    database: Database,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    details: Optional[dict] = None,
) -> None:
    """
    Write a failed-attempt audit row in its own unit of work, so it survives
    the rollback of the operation that failed.

    A failure here is logged and not raised; the caller is already
    reporting the original error.
    """
    payload = {**(details or {}), "failed": True}
    try:
        with database.session() as db:
            record(db, user_id, action, resource_type, resource_id, payload)
    except Exception:
        logger.exception(
            f"Could not write audit record for failed {action} on {resource_type} {resource_id}"
        )
