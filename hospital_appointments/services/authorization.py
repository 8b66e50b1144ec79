"""Single access policy for appointment operations.

Every mutating or reading operation asks ``authorize`` with the action, the
caller and the appointment (or the draft of one being created). Rules depend
on the caller role and on ownership of the record; nothing here touches the
database.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple, Optional

from ..core.config import settings
from ..core.security import CallerContext, UserRole
from ..core.timeutils import utcnow


class Action(str, Enum):
    VIEW = "view"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    UPDATE_STATUS = "update_status"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    HARD_DELETE = "hard_delete"
    LIST_DELETED = "list_deleted"
    VIEW_STATS = "view_stats"


class AccessDecision(NamedTuple):
    allowed: bool
    reason: str = ""

    def __bool__(self):
        return self.allowed


ALLOW = AccessDecision(True)


def deny(reason: str) -> AccessDecision:
    return AccessDecision(False, reason)


# Actions that need no specific record
COLLECTION_ACTIONS = {
    Action.LIST: {UserRole.ADMIN, UserRole.STAFF, UserRole.NURSE, UserRole.DOCTOR, UserRole.PATIENT},
    Action.VIEW_STATS: {UserRole.ADMIN, UserRole.STAFF, UserRole.NURSE, UserRole.DOCTOR, UserRole.PATIENT},
    Action.LIST_DELETED: {UserRole.ADMIN, UserRole.STAFF, UserRole.DOCTOR},
}


def is_assigned_doctor(caller: CallerContext, appointment) -> bool:
    return caller.role == UserRole.DOCTOR and appointment.doctor_id == caller.user_id


def is_own_patient_record(caller: CallerContext, appointment) -> bool:
    return caller.role == UserRole.PATIENT and appointment.patient_id == caller.user_id


def outside_cancellation_window(appointment, now: datetime) -> bool:
    window = timedelta(hours=settings.PATIENT_CANCELLATION_WINDOW_HOURS)
    return appointment.appointment_date - now > window


def authorize(
    action: Action,
    caller: CallerContext,
    appointment=None,
    now: Optional[datetime] = None,
) -> AccessDecision:
    """Decide whether ``caller`` may perform ``action`` on ``appointment``.

    ``appointment`` may be any object exposing ``patient_id``, ``doctor_id``,
    ``created_by`` and ``appointment_date``.
    """
    if action in COLLECTION_ACTIONS:
        if caller.role in COLLECTION_ACTIONS[action]:
            return ALLOW
        return deny(f"Role '{caller.role.value}' may not {action.value.replace('_', ' ')} appointments")

    if appointment is None:
        raise ValueError(f"Action '{action.value}' needs an appointment")

    if caller.is_privileged:
        return ALLOW

    now = now or utcnow()

    if action == Action.VIEW:
        if caller.role == UserRole.NURSE:
            return ALLOW
        if is_assigned_doctor(caller, appointment) or is_own_patient_record(caller, appointment):
            return ALLOW
        return deny("You can only view your own appointments")

    if action == Action.CREATE:
        if is_assigned_doctor(caller, appointment):
            return ALLOW
        if is_own_patient_record(caller, appointment):
            return ALLOW
        if caller.role == UserRole.DOCTOR:
            return deny("Doctors can only book appointments for themselves")
        if caller.role == UserRole.PATIENT:
            return deny("Patients can only book appointments for themselves")
        return deny(f"Role '{caller.role.value}' may not create appointments")

    if action in (Action.UPDATE, Action.RESTORE):
        if is_assigned_doctor(caller, appointment):
            return ALLOW
        return deny("Only staff or the assigned doctor can change this appointment")

    if action in (Action.UPDATE_STATUS, Action.SOFT_DELETE):
        if is_assigned_doctor(caller, appointment):
            return ALLOW
        if is_own_patient_record(caller, appointment):
            if outside_cancellation_window(appointment, now):
                return ALLOW
            return deny(
                f"Appointments cannot be changed less than "
                f"{settings.PATIENT_CANCELLATION_WINDOW_HOURS} hours before they start"
            )
        return deny("Only staff, the assigned doctor or the patient can change this appointment")

    if action == Action.HARD_DELETE:
        if caller.role == UserRole.DOCTOR and caller.user_id in (appointment.doctor_id, appointment.created_by):
            return ALLOW
        return deny("Only staff, the assigned doctor or the creator can permanently delete an appointment")

    return deny(f"Unknown action '{action}'")
