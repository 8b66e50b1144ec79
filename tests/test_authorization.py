from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from hospital_appointments.core.security import CallerContext, UserRole
from hospital_appointments.services.authorization import Action, authorize

NOW = datetime(2025, 1, 8, 12, 0)


def appointment(start=datetime(2025, 1, 10, 9, 0), doctor_id="doctor-d", patient_id="patient-p", created_by=None):
    return SimpleNamespace(
        doctor_id=doctor_id,
        patient_id=patient_id,
        created_by=created_by,
        appointment_date=start,
    )


def as_role(role, user_id=None):
    return CallerContext(user_id=user_id or f"{role.value}-x", role=role)


RECORD_ACTIONS = [
    Action.VIEW,
    Action.CREATE,
    Action.UPDATE,
    Action.UPDATE_STATUS,
    Action.SOFT_DELETE,
    Action.RESTORE,
    Action.HARD_DELETE,
]


class TestPrivilegedRoles:

    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.STAFF])
    @pytest.mark.parametrize("action", RECORD_ACTIONS)
    def test_admin_and_staff_may_do_anything(self, role, action):
        assert authorize(action, as_role(role), appointment(), NOW)

    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.STAFF])
    def test_privileged_ignore_cancellation_window(self, role):
        soon = appointment(start=NOW + timedelta(hours=1))
        assert authorize(Action.SOFT_DELETE, as_role(role), soon, NOW)


class TestDoctorRules:

    def test_assigned_doctor(self):
        doctor = as_role(UserRole.DOCTOR, "doctor-d")
        for action in RECORD_ACTIONS:
            assert authorize(action, doctor, appointment(), NOW), action

    def test_other_doctor_denied(self):
        doctor = as_role(UserRole.DOCTOR, "doctor-e")
        for action in RECORD_ACTIONS:
            decision = authorize(action, doctor, appointment(), NOW)
            assert not decision, action
            assert decision.reason

    def test_creator_may_hard_delete(self):
        """A doctor who booked an appointment for a colleague can still remove it."""
        doctor = as_role(UserRole.DOCTOR, "doctor-e")
        assert authorize(Action.HARD_DELETE, doctor, appointment(created_by="doctor-e"), NOW)
        assert not authorize(Action.UPDATE, doctor, appointment(created_by="doctor-e"), NOW)


class TestPatientRules:

    def test_own_appointment_view_and_create(self):
        patient = as_role(UserRole.PATIENT, "patient-p")
        assert authorize(Action.VIEW, patient, appointment(), NOW)
        assert authorize(Action.CREATE, patient, appointment(), NOW)

    def test_foreign_appointment_denied(self):
        patient = as_role(UserRole.PATIENT, "patient-other")
        for action in RECORD_ACTIONS:
            assert not authorize(action, patient, appointment(), NOW), action

    def test_never_edits_restores_or_hard_deletes(self):
        patient = as_role(UserRole.PATIENT, "patient-p")
        for action in (Action.UPDATE, Action.RESTORE, Action.HARD_DELETE):
            assert not authorize(action, patient, appointment(), NOW), action

    def test_cancel_outside_window(self):
        patient = as_role(UserRole.PATIENT, "patient-p")
        later = appointment(start=NOW + timedelta(hours=48))

        assert authorize(Action.SOFT_DELETE, patient, later, NOW)
        assert authorize(Action.UPDATE_STATUS, patient, later, NOW)

    def test_cancel_inside_window_denied(self):
        patient = as_role(UserRole.PATIENT, "patient-p")
        soon = appointment(start=NOW + timedelta(hours=23))

        decision = authorize(Action.SOFT_DELETE, patient, soon, NOW)
        assert not decision
        assert "24 hours" in decision.reason
        assert not authorize(Action.UPDATE_STATUS, patient, soon, NOW)

    def test_exactly_24_hours_is_inside_window(self):
        """The window must be strictly exceeded."""
        patient = as_role(UserRole.PATIENT, "patient-p")
        boundary = appointment(start=NOW + timedelta(hours=24))

        assert not authorize(Action.SOFT_DELETE, patient, boundary, NOW)
        assert authorize(
            Action.SOFT_DELETE, patient, appointment(start=NOW + timedelta(hours=24, seconds=1)), NOW
        )


class TestNurseRules:

    def test_nurse_views_any_appointment(self):
        assert authorize(Action.VIEW, as_role(UserRole.NURSE), appointment(), NOW)

    def test_nurse_cannot_change_anything(self):
        nurse = as_role(UserRole.NURSE)
        for action in RECORD_ACTIONS:
            if action == Action.VIEW:
                continue
            assert not authorize(action, nurse, appointment(), NOW), action


class TestCollectionActions:

    @pytest.mark.parametrize("role", list(UserRole))
    def test_everyone_may_list(self, role):
        assert authorize(Action.LIST, as_role(role))
        assert authorize(Action.VIEW_STATS, as_role(role))

    def test_deleted_listing_roles(self):
        assert authorize(Action.LIST_DELETED, as_role(UserRole.ADMIN))
        assert authorize(Action.LIST_DELETED, as_role(UserRole.STAFF))
        assert authorize(Action.LIST_DELETED, as_role(UserRole.DOCTOR))
        assert not authorize(Action.LIST_DELETED, as_role(UserRole.NURSE))
        assert not authorize(Action.LIST_DELETED, as_role(UserRole.PATIENT))

    def test_record_action_needs_appointment(self):
        with pytest.raises(ValueError):
            authorize(Action.UPDATE, as_role(UserRole.ADMIN))
