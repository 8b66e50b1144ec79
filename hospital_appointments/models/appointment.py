from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum
import enum
import uuid
from datetime import timedelta

from ..core.config import settings
from ..core.database import Base
from ..core.timeutils import utcnow


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentType(str, enum.Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"
    CHECKUP = "checkup"
    PROCEDURE = "procedure"


# Statuses from which no further status update is accepted
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.IN_PROGRESS: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
}


def can_transition(current: AppointmentStatus, new: AppointmentStatus) -> bool:
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def generate_id() -> str:
    return uuid.uuid4().hex


def make_slot_key(doctor_id: str, start) -> str:
    return f"{doctor_id}@{start.isoformat()}"


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(32), primary_key=True, default=generate_id)

    # Opaque references into the user/patient directory (not enforced)
    patient_id = Column(String(64), nullable=False, index=True)
    doctor_id = Column(String(64), nullable=False, index=True)
    department_id = Column(String(64), nullable=True, index=True)

    # Appointment details
    appointment_date = Column(DateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False, default=settings.DEFAULT_APPOINTMENT_DURATION_MINUTES)
    type = Column(SQLEnum(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED)
    reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    # Set while the appointment occupies the doctor's time, NULL otherwise
    slot_key = Column(String(128), nullable=True, unique=True)

    # Tracking
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)

    # Soft delete
    deleted_at = Column(DateTime, nullable=True, index=True)
    deleted_by = Column(String(64), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def duration(self) -> timedelta:
        minutes = self.duration_minutes or settings.DEFAULT_APPOINTMENT_DURATION_MINUTES
        return timedelta(minutes=minutes)

    @property
    def end_time(self):
        return self.appointment_date + self.duration

    @property
    def is_past_due(self) -> bool:
        return self.appointment_date < utcnow()

    @property
    def occupies_slot(self) -> bool:
        return not self.is_deleted and self.status != AppointmentStatus.CANCELLED

    def refresh_slot_key(self):
        """Keep the uniqueness key in step with status and soft-delete state."""
        self.slot_key = make_slot_key(self.doctor_id, self.appointment_date) if self.occupies_slot else None

    def __repr__(self):
        return f"<Appointment(id={self.id}, patient_id={self.patient_id}, doctor_id={self.doctor_id}, date='{self.appointment_date}', status='{self.status.value if self.status else None}')>"
