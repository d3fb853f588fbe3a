"""
Doctor Schedule Endpoints

Slot availability plus settings, working hours and blocked periods of
the doctors of one clinic.
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import (
    get_availability,
    get_clinic_id,
    get_schedule_service,
    get_store,
)
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.schedule import ScheduleService
from app.core.scheduling.store import ScheduleStore, read_retry
from app.core.scheduling.types import TimeRange

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/doctors", tags=["Schedule"])


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


class DoctorResponse(BaseModel):
    doctor_id: str
    full_name: str
    specialization: Optional[str] = None


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    start_utc: datetime
    end_utc: datetime
    slot_minutes: int


class SlotsResponse(BaseModel):
    doctor_id: str
    date: str
    slots: list[SlotResponse]


class SettingsRequest(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    slot_minutes: Optional[int] = Field(default=None, gt=0, examples=[30])
    lead_time_minutes: Optional[int] = Field(default=None, ge=0, examples=[60])
    buffer_minutes: Optional[int] = Field(default=None, ge=0, examples=[0])


class SettingsResponse(BaseModel):
    doctor_id: str
    slot_minutes: int
    lead_time_minutes: int
    buffer_minutes: int


class WorkingHourRequest(BaseModel):
    day_of_week: int = Field(
        ...,
        ge=0,
        le=6,
        description="0 = Sunday ... 6 = Saturday",
    )
    start_time: time = Field(..., examples=["09:00"])
    end_time: time = Field(..., examples=["12:00"])


class WorkingHourResponse(BaseModel):
    id: str
    doctor_id: str
    day_of_week: int
    start_time: time
    end_time: time


class BlockedSlotRequest(BaseModel):
    start: datetime = Field(..., examples=["2025-11-20T09:00:00+05:00"])
    end: datetime = Field(..., examples=["2025-11-20T13:00:00+05:00"])
    reason: Optional[str] = Field(default=None, max_length=500)


class BlockedSlotResponse(BaseModel):
    id: str
    doctor_id: str
    start: datetime
    end: datetime
    reason: Optional[str] = None
    created_at: datetime


# === Doctors ===


@router.get(
    "",
    response_model=list[DoctorResponse],
    summary="List doctors",
    description="Active doctors of the clinic, in booking order.",
)
async def list_doctors(
    clinic_id: str = Depends(get_clinic_id),
    store: ScheduleStore = Depends(get_store),
) -> list[DoctorResponse]:
    doctors = await read_retry(store.list_doctors)(clinic_id, active_only=True)
    return [DoctorResponse(**d.to_dict()) for d in doctors]


@router.get(
    "/{doctor_id}/slots",
    response_model=SlotsResponse,
    summary="Available slots",
    description="Bookable slots for one date in the clinic's time zone (today if omitted).",
    responses={
        404: {"model": ErrorResponse, "description": "Doctor not found"},
        503: {"model": ErrorResponse, "description": "Store unavailable"},
    },
)
async def get_slots(
    doctor_id: str,
    on_date: Optional[date] = Query(default=None, alias="date", description="YYYY-MM-DD"),
    clinic_id: str = Depends(get_clinic_id),
    generator: AvailabilityGenerator = Depends(get_availability),
) -> SlotsResponse:
    if on_date is None:
        on_date = await generator.today(clinic_id)
    slots = await generator.generate_slots(clinic_id, doctor_id, on_date)
    return SlotsResponse(
        doctor_id=doctor_id,
        date=on_date.isoformat(),
        slots=[SlotResponse(**s.to_dict()) for s in slots],
    )


# === Settings ===


@router.get("/{doctor_id}/settings", response_model=SettingsResponse, summary="Get settings")
async def get_settings(
    doctor_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> SettingsResponse:
    doctor_settings = await service.get_settings(clinic_id, doctor_id)
    return SettingsResponse(**doctor_settings.to_dict())


@router.put(
    "/{doctor_id}/settings",
    response_model=SettingsResponse,
    summary="Update settings",
    description="Create or update slot length, lead time and buffer.",
)
async def update_settings(
    doctor_id: str,
    request: SettingsRequest,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> SettingsResponse:
    doctor_settings = await service.update_settings(
        clinic_id,
        doctor_id,
        slot_minutes=request.slot_minutes,
        lead_time_minutes=request.lead_time_minutes,
        buffer_minutes=request.buffer_minutes,
    )
    return SettingsResponse(**doctor_settings.to_dict())


# === Working hours ===


@router.get(
    "/{doctor_id}/working-hours",
    response_model=list[WorkingHourResponse],
    summary="List working hours",
)
async def list_working_hours(
    doctor_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> list[WorkingHourResponse]:
    rules = await service.list_working_hours(clinic_id, doctor_id)
    return [WorkingHourResponse(**r.to_dict()) for r in rules]


@router.post(
    "/{doctor_id}/working-hours",
    response_model=WorkingHourResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add working hours",
    responses={422: {"model": ErrorResponse, "description": "Invalid or duplicate rule"}},
)
async def add_working_hour(
    doctor_id: str,
    request: WorkingHourRequest,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> WorkingHourResponse:
    rule = await service.add_working_hour(
        clinic_id,
        doctor_id,
        day_of_week=request.day_of_week,
        start_time=request.start_time,
        end_time=request.end_time,
    )
    return WorkingHourResponse(**rule.to_dict())


@router.delete(
    "/{doctor_id}/working-hours/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete working hours",
)
async def delete_working_hour(
    doctor_id: str,
    rule_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> None:
    await service.delete_working_hour(clinic_id, doctor_id, rule_id)


# === Blocked periods ===


@router.get(
    "/{doctor_id}/blocked-slots",
    response_model=list[BlockedSlotResponse],
    summary="List blocked periods",
)
async def list_blocked(
    doctor_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> list[BlockedSlotResponse]:
    blocked = await service.list_blocked(clinic_id, doctor_id)
    return [BlockedSlotResponse(**b.to_dict()) for b in blocked]


@router.post(
    "/{doctor_id}/blocked-slots",
    response_model=BlockedSlotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Block a period",
    description="Leave, holiday or any one-off unavailability.",
)
async def add_blocked(
    doctor_id: str,
    request: BlockedSlotRequest,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> BlockedSlotResponse:
    blocked = await service.add_blocked(
        clinic_id,
        doctor_id,
        TimeRange(request.start, request.end),
        reason=request.reason,
    )
    return BlockedSlotResponse(**blocked.to_dict())


@router.delete(
    "/{doctor_id}/blocked-slots/{blocked_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a blocked period",
)
async def delete_blocked(
    doctor_id: str,
    blocked_id: str,
    clinic_id: str = Depends(get_clinic_id),
    service: ScheduleService = Depends(get_schedule_service),
) -> None:
    await service.delete_blocked(clinic_id, doctor_id, blocked_id)
