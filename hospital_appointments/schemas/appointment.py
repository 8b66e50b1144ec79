from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.timeutils import to_naive_utc
from ..models.appointment import AppointmentStatus, AppointmentType


class AppointmentCreate(BaseModel):
    # Patients booking for themselves may leave patient_id out
    patient_id: Optional[str] = Field(None, min_length=1, max_length=64)
    doctor_id: str = Field(..., min_length=1, max_length=64)
    department_id: Optional[str] = Field(None, max_length=64)
    appointment_date: datetime
    duration_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    type: Optional[AppointmentType] = None
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)
    created_by: Optional[str] = Field(None, max_length=64)

    @field_validator("appointment_date")
    @classmethod
    def normalize_date(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class AppointmentUpdate(BaseModel):
    appointment_date: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)
    type: Optional[AppointmentType] = None
    department_id: Optional[str] = Field(None, max_length=64)
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("appointment_date")
    @classmethod
    def normalize_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else value


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    department_id: Optional[str] = None
    appointment_date: datetime
    end_time: datetime
    duration_minutes: int
    type: AppointmentType
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    is_past_due: bool
    is_deleted: bool
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


class AppointmentListResponse(BaseModel):
    items: List[AppointmentResponse]
    total: int
    page: int
    page_size: int


class AppointmentFilters(BaseModel):
    """Listing query: pagination, sorting and filters."""
    page: int = 1
    page_size: Optional[int] = None
    sort: Literal["date", "created", "patient", "doctor"] = "date"
    dir: Literal["asc", "desc"] = "desc"
    q: Optional[str] = None
    department_id: Optional[str] = None
    doctor_id: Optional[str] = None
    patient_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[AppointmentStatus] = None
    type: Optional[AppointmentType] = None


class AvailabilityResponse(BaseModel):
    doctor_id: str
    start: datetime
    end: datetime
    duration_minutes: int
    is_available: bool


class TimeSlot(BaseModel):
    time: str
    start: datetime
    available: bool


class AppointmentStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    today: int
    pending: int
    completed: int
    deleted: int
    distinct_patients: int
