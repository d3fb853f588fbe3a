"""
Schedule Service

Clinic-scoped management of a doctor's slot settings, weekly working
hours and blocked periods. Every call first resolves the doctor inside the
caller's clinic.
"""

import logging
from datetime import time
from typing import Optional

from app.core.scheduling import constraints
from app.core.scheduling.errors import NotFoundError
from app.core.scheduling.store import ScheduleStore, read_retry
from app.core.scheduling.types import (
    BlockedInterval,
    DoctorSettings,
    TimeRange,
    WorkingHourRule,
)


logger = logging.getLogger(__name__)


class ScheduleService:
    """Settings, working hours and blocked periods for doctors of a clinic."""

    def __init__(self, store: ScheduleStore):
        self.store = store

    async def _require_doctor(self, clinic_id: str, doctor_id: str) -> None:
        await self.store.get_doctor(clinic_id, doctor_id)

    # Settings

    @read_retry
    async def get_settings(self, clinic_id: str, doctor_id: str) -> DoctorSettings:
        """Stored settings, or the defaults when none were saved."""
        await self._require_doctor(clinic_id, doctor_id)
        return await constraints.effective_settings(self.store, doctor_id)

    async def update_settings(
        self,
        clinic_id: str,
        doctor_id: str,
        slot_minutes: Optional[int] = None,
        lead_time_minutes: Optional[int] = None,
        buffer_minutes: Optional[int] = None,
    ) -> DoctorSettings:
        """Upsert settings; omitted fields keep their current (or default) value."""
        await self._require_doctor(clinic_id, doctor_id)
        current = await constraints.effective_settings(self.store, doctor_id)
        updated = current.merged(
            slot_minutes=slot_minutes,
            lead_time_minutes=lead_time_minutes,
            buffer_minutes=buffer_minutes,
        )
        # merged() goes through dataclass replace, so __post_init__ validates
        stored = await self.store.upsert_settings(updated)
        logger.info(
            f"Settings for doctor {doctor_id}: slot={stored.slot_minutes} "
            f"lead={stored.lead_time_minutes} buffer={stored.buffer_minutes}"
        )
        return stored

    # Working hours

    @read_retry
    async def list_working_hours(
        self, clinic_id: str, doctor_id: str
    ) -> list[WorkingHourRule]:
        await self._require_doctor(clinic_id, doctor_id)
        return await self.store.list_working_hours(doctor_id)

    async def add_working_hour(
        self,
        clinic_id: str,
        doctor_id: str,
        day_of_week: int,
        start_time: time,
        end_time: time,
    ) -> WorkingHourRule:
        await self._require_doctor(clinic_id, doctor_id)
        rule = WorkingHourRule(
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
        )
        return await self.store.add_working_hour(rule)

    async def delete_working_hour(self, clinic_id: str, doctor_id: str, rule_id: str) -> None:
        await self._require_doctor(clinic_id, doctor_id)
        if not await self.store.delete_working_hour(doctor_id, rule_id):
            raise NotFoundError("Working hour", rule_id)

    # Blocked periods

    @read_retry
    async def list_blocked(self, clinic_id: str, doctor_id: str) -> list[BlockedInterval]:
        await self._require_doctor(clinic_id, doctor_id)
        return await self.store.list_blocked(doctor_id)

    async def add_blocked(
        self,
        clinic_id: str,
        doctor_id: str,
        time_range: TimeRange,
        reason: Optional[str] = None,
    ) -> BlockedInterval:
        await self._require_doctor(clinic_id, doctor_id)
        interval = BlockedInterval(
            doctor_id=doctor_id,
            range=time_range.to_utc(),
            reason=reason,
        )
        stored = await self.store.add_blocked(interval)
        logger.info(
            f"Blocked doctor {doctor_id} from {time_range.start.isoformat()} "
            f"to {time_range.end.isoformat()}"
        )
        return stored

    async def delete_blocked(self, clinic_id: str, doctor_id: str, blocked_id: str) -> None:
        await self._require_doctor(clinic_id, doctor_id)
        if not await self.store.delete_blocked(doctor_id, blocked_id):
            raise NotFoundError("Blocked slot", blocked_id)
