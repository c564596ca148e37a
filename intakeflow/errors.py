# intakeflow/errors.py
"""Error taxonomy shared by the services and the HTTP layer."""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for errors that map onto a caller-visible error code."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(IntakeError):
    """Missing session, connection or profile. The caller can re-navigate."""

    code = "NOT_FOUND"
    status_code = 404


class ForbiddenError(IntakeError):
    """Ownership or role violation. Never retried."""

    code = "FORBIDDEN"
    status_code = 403


class BadRequestError(IntakeError):
    """Well-formed request that violates a business invariant."""

    code = "BAD_REQUEST"
    status_code = 400


class InternalServerError(IntakeError):
    """Storage or unexpected failure. Always carries a generic message."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500
