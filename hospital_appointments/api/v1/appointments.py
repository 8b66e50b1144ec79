from fastapi import APIRouter, Depends, Query, status
from datetime import date, datetime
from typing import List, Literal, Optional

from ...api.deps import (
    booking_rate_limit, get_appointment_service, get_caller, unwrap
)
from ...core.security import CallerContext
from ...core.timeutils import to_naive_utc
from ...models.appointment import AppointmentStatus, AppointmentType
from ...schemas.appointment import (
    AppointmentCreate, AppointmentFilters, AppointmentListResponse,
    AppointmentResponse, AppointmentStats, AppointmentStatusUpdate,
    AppointmentUpdate, AvailabilityResponse, TimeSlot
)
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def _page(result: dict) -> AppointmentListResponse:
    return AppointmentListResponse(
        items=[AppointmentResponse.model_validate(item) for item in result["items"]],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
    )


@router.get("", response_model=AppointmentListResponse)
async def list_appointments(
    page: int = 1,
    page_size: Optional[int] = None,
    sort: Literal["date", "created", "patient", "doctor"] = "date",
    dir: Literal["asc", "desc"] = "desc",
    q: Optional[str] = None,
    department_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[AppointmentStatus] = None,
    type: Optional[AppointmentType] = None,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """List live appointments with pagination, sorting and filters."""
    filters = AppointmentFilters(
        page=page, page_size=page_size, sort=sort, dir=dir, q=q,
        department_id=department_id, doctor_id=doctor_id, patient_id=patient_id,
        start_date=start_date, end_date=end_date, status=status, type=type,
    )
    return _page(unwrap(service.list_appointments(filters, caller)))


@router.get("/deleted", response_model=List[AppointmentResponse])
async def list_deleted_appointments(
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Soft-deleted appointments, most recently deleted first."""
    items = unwrap(service.list_deleted(caller))
    return [AppointmentResponse.model_validate(item) for item in items]


@router.get("/search", response_model=AppointmentListResponse)
async def search_appointments(
    q: str = Query(..., min_length=1),
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    return _page(unwrap(service.search(q, caller)))


@router.get("/stats", response_model=AppointmentStats)
async def appointment_stats(
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Dashboard counters."""
    return unwrap(service.stats(caller))


@router.get("/upcoming", response_model=List[AppointmentResponse])
async def upcoming_appointments(
    limit: int = Query(5, ge=1, le=50),
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    items = unwrap(service.upcoming(caller, limit))
    return [AppointmentResponse.model_validate(item) for item in items]


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    doctor_id: str,
    start: datetime,
    duration_minutes: int = Query(30, ge=0, le=24 * 60),
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Whether the doctor is free for the whole requested window."""
    return unwrap(service.check_availability(doctor_id, to_naive_utc(start), duration_minutes))


@router.get("/time-slots", response_model=List[TimeSlot])
async def time_slots(
    doctor_id: str,
    day: date = Query(..., alias="date"),
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Working-day slots for a doctor, each marked available or taken."""
    return unwrap(service.time_slots(doctor_id, day))


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(unwrap(service.get_appointment(appointment_id, caller)))


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limit)]
)
async def create_appointment(
    appointment_data: AppointmentCreate,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book an appointment; 409 if the doctor is already booked in that window."""
    return AppointmentResponse.model_validate(unwrap(service.create_appointment(appointment_data, caller)))


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: str,
    appointment_data: AppointmentUpdate,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(
        unwrap(service.update_appointment(appointment_id, appointment_data, caller))
    )


@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str,
    status_data: AppointmentStatusUpdate,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Change status; patients may only do so more than 24 hours ahead."""
    return AppointmentResponse.model_validate(
        unwrap(service.update_status(appointment_id, status_data.status, caller))
    )


@router.delete("/{appointment_id}", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Soft delete: the appointment is cancelled but can be restored."""
    return AppointmentResponse.model_validate(unwrap(service.soft_delete(appointment_id, caller)))


@router.post("/{appointment_id}/restore", response_model=AppointmentResponse)
async def restore_appointment(
    appointment_id: str,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(unwrap(service.restore(appointment_id, caller)))


@router.delete("/{appointment_id}/permanent")
async def hard_delete_appointment(
    appointment_id: str,
    caller: CallerContext = Depends(get_caller),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Permanently delete an appointment."""
    unwrap(service.hard_delete(appointment_id, caller))
    return {"message": "Appointment permanently deleted"}
