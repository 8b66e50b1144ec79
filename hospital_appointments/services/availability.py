from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from ..core.config import settings
from ..core.timeutils import as_duration
from ..models.appointment import Appointment, AppointmentStatus
from .appointment_repository import AppointmentRepository


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval intersection: touching endpoints do not overlap."""
    return start_a < end_b and start_b < end_a


class AvailabilityChecker:
    def __init__(self, repository: AppointmentRepository):
        self.repository = repository

    def find_conflicts(
        self,
        doctor_id: str,
        requested_start: datetime,
        requested_duration: Optional[Union[int, timedelta]] = None,
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Appointments of the doctor that intersect the requested window.

        Soft-deleted and cancelled appointments never block a slot.
        """
        duration = as_duration(requested_duration, settings.DEFAULT_APPOINTMENT_DURATION_MINUTES)
        requested_end = requested_start + duration

        criteria = [
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.appointment_date < requested_end,
        ]
        if exclude_id:
            criteria.append(Appointment.id != exclude_id)

        return [
            existing
            for existing in self.repository.find(*criteria)
            if overlaps(existing.appointment_date, existing.end_time, requested_start, requested_end)
        ]

    def is_available(
        self,
        doctor_id: str,
        requested_start: datetime,
        requested_duration: Optional[Union[int, timedelta]] = None,
        exclude_id: Optional[str] = None,
    ) -> bool:
        return not self.find_conflicts(doctor_id, requested_start, requested_duration, exclude_id)

    def time_slots(self, doctor_id: str, day: date) -> List[dict]:
        """Working-day grid for one doctor with each slot marked free or taken."""
        slot_length = timedelta(minutes=settings.SLOT_LENGTH_MINUTES)
        day_start = datetime(day.year, day.month, day.day)
        workday_start = day_start + timedelta(hours=settings.WORKDAY_START_HOUR)
        workday_end = day_start + timedelta(hours=settings.WORKDAY_END_HOUR)

        # One query for the whole day; long appointments from the previous day still count
        booked = self.repository.find(
            Appointment.doctor_id == doctor_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.appointment_date < workday_end,
            Appointment.appointment_date >= day_start - timedelta(days=1),
        )

        slots = []
        slot_start = workday_start
        while slot_start < workday_end:
            slot_end = slot_start + slot_length
            taken = any(
                overlaps(existing.appointment_date, existing.end_time, slot_start, slot_end)
                for existing in booked
            )
            slots.append({
                "time": slot_start.strftime("%H:%M"),
                "start": slot_start,
                "available": not taken,
            })
            slot_start = slot_end
        return slots
