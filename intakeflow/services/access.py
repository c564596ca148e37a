# intakeflow/services/access.py
"""
Who may act on an intake session.

Ownership is always decided through the session's connection. The
super-admin override is a separate variant so callers handle the
"override but no connection" case explicitly instead of null-checking.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from intakeflow.errors import NotFoundError
from intakeflow.models import Connection, Doctor, IntakeSession, Patient, User

OVERRIDE_ROLES = ("super_admin",)


@dataclass(frozen=True)
class Owned:
    connection: Connection


@dataclass(frozen=True)
class Override:
    connection: Connection


@dataclass(frozen=True)
class OverrideNoConnection:
    pass


@dataclass(frozen=True)
class Denied:
    reason: str


SessionAccess = Union[Owned, Override, OverrideNoConnection, Denied]


def load_user(db: Session, user_id: Optional[str]) -> User:
    user = db.get(User, user_id) if user_id else None
    if user is None:
        raise NotFoundError("User not found.")
    return user


def patient_for_user(db: Session, user: User) -> Optional[Patient]:
    return db.scalars(select(Patient).where(Patient.user_id == user.id)).first()


def doctor_for_user(db: Session, user: User) -> Optional[Doctor]:
    return db.scalars(select(Doctor).where(Doctor.user_id == user.id)).first()


def resolve_patient_access(db: Session, session: IntakeSession, user: User) -> SessionAccess:
    """
    Patient-side access: the patient on the session's connection, or an
    override role.
    """
    connection = db.get(Connection, session.connection_id)
    patient = patient_for_user(db, user)

    if connection is not None and patient is not None and connection.patient_id == patient.id:
        return Owned(connection)

    if user.primary_role in OVERRIDE_ROLES:
        if connection is None:
            return OverrideNoConnection()
        return Override(connection)

    if patient is None:
        return Denied("user has no patient profile")
    return Denied("session belongs to another patient")


def resolve_doctor_access(db: Session, session: IntakeSession, user: User) -> SessionAccess:
    """
    Doctor-side access: the doctor on the session's connection, or an
    override role.
    """
    connection = db.get(Connection, session.connection_id)
    doctor = doctor_for_user(db, user)

    if connection is not None and doctor is not None and connection.doctor_id == doctor.id:
        return Owned(connection)

    if user.primary_role in OVERRIDE_ROLES:
        if connection is None:
            return OverrideNoConnection()
        return Override(connection)

    return Denied("session is not on one of the doctor's connections")


def resolve_view_access(db: Session, session: IntakeSession, user: User) -> SessionAccess:
    access = resolve_patient_access(db, session, user)
    if isinstance(access, Denied):
        return resolve_doctor_access(db, session, user)
    return access


def connection_of(access: SessionAccess) -> Optional[Connection]:
    if isinstance(access, (Owned, Override)):
        return access.connection
    return None
