from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import CallerContext, UserRole
from ..core.timeutils import as_duration, day_bounds, utcnow
from ..models.appointment import (
    Appointment, AppointmentStatus, AppointmentType,
    can_transition, generate_id, make_slot_key, TERMINAL_STATUSES
)
from ..schemas.appointment import AppointmentCreate, AppointmentFilters, AppointmentUpdate
from .appointment_repository import AppointmentRepository
from .authorization import Action, authorize
from .availability import AvailabilityChecker
from .results import ErrorKind, ServiceResult

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "Doctor is not available at the requested time"

SORT_COLUMNS = {
    "date": Appointment.appointment_date,
    "created": Appointment.created_at,
    "patient": Appointment.patient_id,
    "doctor": Appointment.doctor_id,
}


def _minutes(duration: timedelta) -> int:
    return int(duration.total_seconds() // 60)


class AppointmentService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.repository = AppointmentRepository(db)
        self.availability = AvailabilityChecker(self.repository)

    # ------------------------------------------------------------------ reads

    def get_appointment(self, appointment_id: str, caller: CallerContext) -> ServiceResult[Appointment]:
        """Get a live appointment; soft-deleted ones only for callers who manage deletions."""
        appointment = self.repository.find_one(appointment_id)
        if appointment is None:
            return self._not_found(appointment_id)

        if appointment.is_deleted and not authorize(Action.LIST_DELETED, caller):
            return self._not_found(appointment_id)

        decision = authorize(Action.VIEW, caller, appointment, self.clock())
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)
        return ServiceResult.success(appointment)

    def list_appointments(self, filters: AppointmentFilters, caller: CallerContext) -> ServiceResult[dict]:
        """Paginated, sorted and filtered listing of live appointments."""
        decision = authorize(Action.LIST, caller)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        page = filters.page if filters.page >= 1 else 1
        page_size = filters.page_size or settings.DEFAULT_PAGE_SIZE
        if page_size < 1 or page_size > settings.MAX_PAGE_SIZE:
            page_size = settings.DEFAULT_PAGE_SIZE

        criteria = self._scope_criteria(caller)
        if filters.department_id:
            criteria.append(Appointment.department_id == filters.department_id)
        if filters.doctor_id:
            criteria.append(Appointment.doctor_id == filters.doctor_id)
        if filters.patient_id:
            criteria.append(Appointment.patient_id == filters.patient_id)
        if filters.start_date:
            criteria.append(Appointment.appointment_date >= day_bounds(filters.start_date)[0])
        if filters.end_date:
            criteria.append(Appointment.appointment_date < day_bounds(filters.end_date)[1])
        if filters.status:
            criteria.append(Appointment.status == filters.status)
        if filters.type:
            criteria.append(Appointment.type == filters.type)
        if filters.q:
            pattern = f"%{filters.q}%"
            criteria.append(or_(
                Appointment.notes.ilike(pattern),
                Appointment.reason.ilike(pattern),
            ))

        column = SORT_COLUMNS[filters.sort]
        order = column.desc() if filters.dir == "desc" else column.asc()

        total = self.repository.count(*criteria)
        items = self.repository.find(
            *criteria,
            order_by=(order, Appointment.id.asc()),
            skip=(page - 1) * page_size,
            limit=page_size,
        )
        return ServiceResult.success({
            "items": items,
            "total": total,
            "page": page,
            "page_size": page_size,
        })

    def search(self, term: str, caller: CallerContext) -> ServiceResult[dict]:
        return self.list_appointments(AppointmentFilters(q=term or None), caller)

    def list_by_patient(self, patient_id: str, caller: CallerContext) -> ServiceResult[dict]:
        return self.list_appointments(AppointmentFilters(patient_id=patient_id), caller)

    def list_by_doctor(self, doctor_id: str, caller: CallerContext) -> ServiceResult[dict]:
        return self.list_appointments(AppointmentFilters(doctor_id=doctor_id), caller)

    def list_deleted(self, caller: CallerContext) -> ServiceResult[List[Appointment]]:
        decision = authorize(Action.LIST_DELETED, caller)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        items = self.repository.find(
            *self._scope_criteria(caller),
            order_by=Appointment.deleted_at.desc(),
            limit=settings.DELETED_LIST_LIMIT,
            only_deleted=True,
        )
        return ServiceResult.success(items)

    def upcoming(self, caller: CallerContext, limit: int = 5) -> ServiceResult[List[Appointment]]:
        decision = authorize(Action.LIST, caller)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        items = self.repository.find(
            *self._scope_criteria(caller),
            Appointment.appointment_date >= self.clock(),
            Appointment.status.in_([AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]),
            order_by=Appointment.appointment_date.asc(),
            limit=max(1, min(limit, 50)),
        )
        return ServiceResult.success(items)

    def stats(self, caller: CallerContext) -> ServiceResult[dict]:
        """Dashboard counters, scoped to the caller's own appointments for doctors and patients."""
        decision = authorize(Action.VIEW_STATS, caller)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        scope = self._scope_criteria(caller)
        today_start, today_end = day_bounds(self.clock())

        by_status = {status.value: 0 for status in AppointmentStatus}
        for status, total in self.repository.count_by(Appointment.status, *scope, include_deleted=True).items():
            by_status[AppointmentStatus(status).value] = total

        return ServiceResult.success({
            "total": self.repository.count(*scope),
            "by_status": by_status,
            "today": self.repository.count(
                *scope,
                Appointment.appointment_date >= today_start,
                Appointment.appointment_date < today_end,
            ),
            "pending": self.repository.count(*scope, Appointment.status == AppointmentStatus.SCHEDULED),
            "completed": self.repository.count(*scope, Appointment.status == AppointmentStatus.COMPLETED),
            "deleted": self.repository.count(*scope, only_deleted=True),
            "distinct_patients": self.repository.count_distinct(Appointment.patient_id, *scope),
        })

    # ----------------------------------------------------------- availability

    def check_availability(
        self,
        doctor_id: str,
        requested_start: datetime,
        duration_minutes: Optional[int] = None,
    ) -> ServiceResult[dict]:
        doctor_id = (doctor_id or "").strip()
        if not doctor_id:
            return ServiceResult.failure(ErrorKind.VALIDATION_FAILED, "doctor_id is required")

        duration = as_duration(duration_minutes, settings.DEFAULT_APPOINTMENT_DURATION_MINUTES)
        return ServiceResult.success({
            "doctor_id": doctor_id,
            "start": requested_start,
            "end": requested_start + duration,
            "duration_minutes": _minutes(duration),
            "is_available": self.availability.is_available(doctor_id, requested_start, duration),
        })

    def time_slots(self, doctor_id: str, day: date) -> ServiceResult[List[dict]]:
        doctor_id = (doctor_id or "").strip()
        if not doctor_id:
            return ServiceResult.failure(ErrorKind.VALIDATION_FAILED, "doctor_id is required")
        return ServiceResult.success(self.availability.time_slots(doctor_id, day))

    # -------------------------------------------------------------- lifecycle

    def create_appointment(self, data: AppointmentCreate, caller: CallerContext) -> ServiceResult[Appointment]:
        """Book an appointment if the doctor is free for the whole requested window."""
        now = self.clock()

        doctor_id = data.doctor_id.strip()
        if not doctor_id:
            return ServiceResult.failure(ErrorKind.VALIDATION_FAILED, "doctor_id is required")

        patient_id = (data.patient_id or "").strip()
        if not patient_id:
            if caller.role != UserRole.PATIENT:
                return ServiceResult.failure(ErrorKind.VALIDATION_FAILED, "patient_id is required")
            patient_id = caller.user_id

        status = data.status or AppointmentStatus.SCHEDULED
        if status not in (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED):
            return ServiceResult.failure(
                ErrorKind.VALIDATION_FAILED,
                f"New appointments cannot start in status '{status.value}'"
            )

        # Only staff may record someone else as the creator
        created_by = data.created_by if data.created_by and caller.is_privileged else caller.user_id
        duration = as_duration(data.duration_minutes, settings.DEFAULT_APPOINTMENT_DURATION_MINUTES)

        appointment = Appointment(
            id=generate_id(),
            patient_id=patient_id,
            doctor_id=doctor_id,
            department_id=data.department_id,
            appointment_date=data.appointment_date,
            duration_minutes=_minutes(duration),
            type=data.type or AppointmentType.CONSULTATION,
            status=status,
            reason=data.reason,
            notes=data.notes,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )

        decision = authorize(Action.CREATE, caller, appointment, now)
        if not decision:
            logger.warning(f"Booking refused for caller {caller.user_id} ({caller.role.value}): {decision.reason}")
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        if not self.availability.is_available(doctor_id, appointment.appointment_date, duration):
            logger.info(f"Slot taken for doctor {doctor_id} at {appointment.appointment_date.isoformat()}")
            return ServiceResult.failure(ErrorKind.CONFLICT, SLOT_TAKEN_MESSAGE)

        appointment.refresh_slot_key()
        try:
            self.repository.insert_one(appointment)
        except IntegrityError:
            logger.info(f"Concurrent booking lost the race for slot {appointment.slot_key}")
            return ServiceResult.failure(ErrorKind.CONFLICT, SLOT_TAKEN_MESSAGE)

        logger.info(
            f"Appointment {appointment.id} created by {caller.user_id}: doctor {doctor_id}, "
            f"patient {patient_id}, {appointment.appointment_date.isoformat()} ({appointment.duration_minutes} min)"
        )
        return ServiceResult.success(appointment)

    def update_appointment(
        self,
        appointment_id: str,
        data: AppointmentUpdate,
        caller: CallerContext,
    ) -> ServiceResult[Appointment]:
        """Edit time, duration and descriptive fields of a live appointment."""
        now = self.clock()
        appointment = self.repository.find_one(appointment_id, include_deleted=False)
        if appointment is None:
            return self._not_found(appointment_id)

        decision = authorize(Action.UPDATE, caller, appointment, now)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        if appointment.status in TERMINAL_STATUSES:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Appointments in status '{appointment.status.value}' cannot be edited"
            )

        changes = data.model_dump(exclude_unset=True)
        new_start = changes.get("appointment_date") or appointment.appointment_date
        if "duration_minutes" in changes:
            new_duration = as_duration(changes["duration_minutes"], settings.DEFAULT_APPOINTMENT_DURATION_MINUTES)
        else:
            new_duration = appointment.duration

        if new_start != appointment.appointment_date or new_duration != appointment.duration:
            if not self.availability.is_available(
                appointment.doctor_id, new_start, new_duration, exclude_id=appointment.id
            ):
                return ServiceResult.failure(ErrorKind.CONFLICT, SLOT_TAKEN_MESSAGE)

        appointment.appointment_date = new_start
        appointment.duration_minutes = _minutes(new_duration)
        if changes.get("type") is not None:
            appointment.type = changes["type"]
        for field in ("department_id", "reason", "notes"):
            if field in changes:
                setattr(appointment, field, changes[field])
        appointment.updated_at = now
        appointment.updated_by = caller.user_id
        appointment.refresh_slot_key()

        try:
            self.repository.replace_one(appointment)
        except IntegrityError:
            return ServiceResult.failure(ErrorKind.CONFLICT, SLOT_TAKEN_MESSAGE)

        logger.info(f"Appointment {appointment.id} updated by {caller.user_id}")
        return ServiceResult.success(appointment)

    def update_status(
        self,
        appointment_id: str,
        new_status: AppointmentStatus,
        caller: CallerContext,
    ) -> ServiceResult[Appointment]:
        """Move an appointment to another status; cancelling goes through soft delete."""
        now = self.clock()
        appointment = self.repository.find_one(appointment_id, include_deleted=False)
        if appointment is None:
            return self._not_found(appointment_id)

        decision = authorize(Action.UPDATE_STATUS, caller, appointment, now)
        if not decision:
            logger.warning(f"Status change on {appointment_id} refused for {caller.user_id}: {decision.reason}")
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        if appointment.status == new_status:
            return ServiceResult.success(appointment)

        if appointment.status in TERMINAL_STATUSES:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Appointments in status '{appointment.status.value}' cannot change status"
            )

        if new_status == AppointmentStatus.CANCELLED:
            return self._soft_delete(appointment, caller, now)

        if not can_transition(appointment.status, new_status):
            return ServiceResult.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Cannot change status from '{appointment.status.value}' to '{new_status.value}'"
            )

        previous = appointment.status
        self.repository.update_one(appointment.id, {
            Appointment.status: new_status,
            Appointment.updated_at: now,
            Appointment.updated_by: caller.user_id,
        })
        logger.info(f"Appointment {appointment_id} status {previous.value} -> {new_status.value} by {caller.user_id}")
        return ServiceResult.success(self.repository.find_one(appointment_id))

    def soft_delete(self, appointment_id: str, caller: CallerContext) -> ServiceResult[Appointment]:
        """Cancel an appointment while keeping it restorable."""
        now = self.clock()
        appointment = self.repository.find_one(appointment_id)
        if appointment is None:
            return self._not_found(appointment_id)

        # Repeating a cancellation only needs the right to see the record
        if appointment.is_deleted or appointment.status == AppointmentStatus.CANCELLED:
            decision = authorize(Action.VIEW, caller, appointment, now)
            if not decision:
                return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)
            return ServiceResult.success(appointment)

        decision = authorize(Action.SOFT_DELETE, caller, appointment, now)
        if not decision:
            logger.warning(f"Cancellation of {appointment_id} refused for {caller.user_id}: {decision.reason}")
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        if appointment.status in TERMINAL_STATUSES:
            return ServiceResult.failure(
                ErrorKind.VALIDATION_FAILED,
                f"Appointments in status '{appointment.status.value}' cannot be cancelled"
            )

        return self._soft_delete(appointment, caller, now)

    def restore(self, appointment_id: str, caller: CallerContext) -> ServiceResult[Appointment]:
        """Bring a soft-deleted appointment back as scheduled."""
        now = self.clock()
        appointment = self.repository.find_one(appointment_id, include_deleted=True)
        if appointment is None or not appointment.is_deleted:
            return ServiceResult.failure(
                ErrorKind.NOT_FOUND,
                f"Deleted appointment {appointment_id} not found"
            )

        decision = authorize(Action.RESTORE, caller, appointment, now)
        if not decision:
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        if not self.availability.is_available(
            appointment.doctor_id, appointment.appointment_date, appointment.duration, exclude_id=appointment.id
        ):
            return ServiceResult.failure(ErrorKind.CONFLICT, "The original time slot has been booked again")

        try:
            self.repository.update_one(appointment.id, {
                Appointment.status: AppointmentStatus.SCHEDULED,
                Appointment.deleted_at: None,
                Appointment.deleted_by: None,
                Appointment.slot_key: make_slot_key(appointment.doctor_id, appointment.appointment_date),
                Appointment.updated_at: now,
                Appointment.updated_by: caller.user_id,
            })
        except IntegrityError:
            return ServiceResult.failure(ErrorKind.CONFLICT, "The original time slot has been booked again")

        logger.info(f"Appointment {appointment_id} restored by {caller.user_id}")
        return ServiceResult.success(self.repository.find_one(appointment_id))

    def hard_delete(self, appointment_id: str, caller: CallerContext) -> ServiceResult[None]:
        """Permanently remove an appointment. There is no way back."""
        appointment = self.repository.find_one(appointment_id)
        if appointment is None:
            return self._not_found(appointment_id)

        decision = authorize(Action.HARD_DELETE, caller, appointment, self.clock())
        if not decision:
            logger.warning(f"Permanent delete of {appointment_id} refused for {caller.user_id}: {decision.reason}")
            return ServiceResult.failure(ErrorKind.FORBIDDEN, decision.reason)

        self.repository.delete_one(appointment_id)
        logger.info(f"Appointment {appointment_id} permanently deleted by {caller.user_id}")
        return ServiceResult.success(None)

    # ---------------------------------------------------------------- helpers

    def _soft_delete(self, appointment: Appointment, caller: CallerContext, now: datetime) -> ServiceResult[Appointment]:
        if appointment.is_deleted or appointment.status == AppointmentStatus.CANCELLED:
            return ServiceResult.success(appointment)

        self.repository.update_one(appointment.id, {
            Appointment.status: AppointmentStatus.CANCELLED,
            Appointment.deleted_at: now,
            Appointment.deleted_by: caller.user_id,
            Appointment.slot_key: None,
            Appointment.updated_at: now,
            Appointment.updated_by: caller.user_id,
        })
        logger.info(f"Appointment {appointment.id} cancelled by {caller.user_id}")
        return ServiceResult.success(self.repository.find_one(appointment.id))

    def _scope_criteria(self, caller: CallerContext) -> list:
        """Doctors and patients only ever see their own appointments."""
        if caller.role == UserRole.DOCTOR:
            return [Appointment.doctor_id == caller.user_id]
        if caller.role == UserRole.PATIENT:
            return [Appointment.patient_id == caller.user_id]
        return []

    @staticmethod
    def _not_found(appointment_id: str) -> ServiceResult:
        return ServiceResult.failure(ErrorKind.NOT_FOUND, f"Appointment {appointment_id} not found")
