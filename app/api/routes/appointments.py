"""
Appointment Endpoints

Create, update and look up appointments of one clinic. Overlap and
availability failures come back as 409 with the unavailability reason.
"""

import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_booking_service, get_clinic_id, get_user_id
from app.core.scheduling.booking import BookingService, build_range
from app.core.scheduling.types import AppointmentStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None
    reason: Optional[str] = None


class AppointmentCreateRequest(BaseModel):
    """Book a time range with a doctor."""

    doctor_id: str = Field(..., description="Doctor of the caller's clinic")
    patient_id: str = Field(..., description="Patient of the caller's clinic")
    start: datetime = Field(
        ...,
        description="Timezone-aware start (inclusive)",
        examples=["2025-11-20T10:00:00+05:00"],
    )
    end: datetime = Field(
        ...,
        description="Timezone-aware end (exclusive)",
        examples=["2025-11-20T10:30:00+05:00"],
    )
    mode: Literal["offline", "online"] = "offline"
    source: str = Field(default="manual", max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentUpdateRequest(BaseModel):
    """Partial update; start and end move together."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    mode: Optional[Literal["offline", "online"]] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AppointmentResponse(BaseModel):
    appointment_id: str
    clinic_id: str
    doctor_id: str
    patient_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus
    mode: str
    source: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


@router.post(
    "",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create appointment",
    responses={
        404: {"model": ErrorResponse, "description": "Doctor or patient not found"},
        409: {"model": ErrorResponse, "description": "Slot unavailable or taken"},
        422: {"model": ErrorResponse, "description": "Invalid range"},
    },
)
async def create_appointment(
    request: AppointmentCreateRequest,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Depends(get_user_id),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    record = await service.create_appointment(
        clinic_id,
        request.doctor_id,
        request.patient_id,
        build_range(request.start, request.end),
        {
            "mode": request.mode,
            "source": request.source,
            "notes": request.notes,
            "created_by": user_id,
        },
    )
    return AppointmentResponse(**record.to_dict())


@router.get(
    "",
    response_model=list[AppointmentResponse],
    summary="List appointments",
    description="Appointments of the clinic ordered by start time.",
)
async def list_appointments(
    doctor_id: Optional[str] = Query(default=None),
    appointment_status: Optional[AppointmentStatus] = Query(default=None, alias="status"),
    on_date: Optional[date] = Query(
        default=None,
        alias="date",
        description="Clinic-local date, YYYY-MM-DD",
    ),
    clinic_id: str = Depends(get_clinic_id),
    service: BookingService = Depends(get_booking_service),
) -> list[AppointmentResponse]:
    records = await service.list_appointments(
        clinic_id,
        doctor_id=doctor_id,
        status=appointment_status,
        on_date=on_date,
    )
    return [AppointmentResponse(**r.to_dict()) for r in records]


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Get appointment",
    responses={404: {"model": ErrorResponse, "description": "Appointment not found"}},
)
async def get_appointment(
    appointment_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    record = await service.get_appointment(clinic_id, appointment_id)
    return AppointmentResponse(**record.to_dict())


@router.patch(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    summary="Update appointment",
    description="Reschedule, change status, mode or notes.",
    responses={
        404: {"model": ErrorResponse, "description": "Appointment not found"},
        409: {"model": ErrorResponse, "description": "New range unavailable"},
    },
)
async def update_appointment(
    appointment_id: str,
    request: AppointmentUpdateRequest,
    clinic_id: str = Depends(get_clinic_id),
    user_id: Optional[str] = Depends(get_user_id),
    service: BookingService = Depends(get_booking_service),
) -> AppointmentResponse:
    changes = request.model_dump(exclude_unset=True)
    if "status" in changes and changes["status"] is not None:
        changes["status"] = changes["status"].value
    if user_id:
        changes["updated_by"] = user_id
    record = await service.update_appointment(clinic_id, appointment_id, changes)
    return AppointmentResponse(**record.to_dict())
