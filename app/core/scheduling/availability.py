"""
Availability Generator

Turns a doctor's weekly working hours into concrete bookable slots for one
clinic-local date, removing slots that start inside the lead time, touch
a blocked interval, or come within the buffer of an active appointment.

Slots are stepped in absolute (UTC) time from each rule's start, so a
30-minute slot is 30 real minutes even across a DST change.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from app.core.scheduling import constraints
from app.core.scheduling.store import ScheduleStore, read_retry
from app.core.scheduling.types import Slot, TimeRange


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityGenerator:
    """
    Computes bookable slots.

    Usage:
        generator = AvailabilityGenerator(store)
        slots = await generator.generate_slots(clinic_id, doctor_id, date(2025, 3, 3))
    """

    def __init__(self, store: ScheduleStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    @read_retry
    async def today(self, clinic_id: str) -> date:
        """Current date in the clinic's time zone."""
        tz = constraints.load_zone(await self.store.get_clinic_timezone(clinic_id))
        return constraints.local_date(self.clock(), tz)

    @read_retry
    async def generate_slots(
        self,
        clinic_id: str,
        doctor_id: str,
        on_date: Optional[date] = None,
    ) -> list[Slot]:
        """
        Bookable slots for ``on_date`` (clinic-local, default today).

        Returns:
            Slots ordered by start, expressed in the clinic's time zone.
            Overlapping rules may yield duplicate slots.

        Raises:
            NotFoundError: doctor not in clinic
            TransientDependencyError: store unreachable after retries
        """
        tz = constraints.load_zone(await self.store.get_clinic_timezone(clinic_id))
        await self.store.get_doctor(clinic_id, doctor_id)
        now = self.clock()
        if on_date is None:
            on_date = constraints.local_date(now, tz)

        doctor_settings = await constraints.effective_settings(self.store, doctor_id)
        rules = await self.store.list_working_hours(
            doctor_id, day_of_week=constraints.day_of_week(on_date)
        )
        windows = constraints.rule_windows(rules, on_date, tz)
        if not windows:
            logger.debug(f"No working hours for doctor {doctor_id} on {on_date}")
            return []

        span = TimeRange(
            min(w.start for w in windows),
            max(w.end for w in windows),
        ).expand(doctor_settings.buffer_minutes)
        blocked = await self.store.list_blocked(doctor_id, within=span)
        appointments = await self.store.list_active_appointments(doctor_id, within=span)

        step = timedelta(minutes=doctor_settings.slot_minutes)
        slots: list[Slot] = []
        for window in windows:
            start = window.start
            while start + step <= window.end:
                candidate = TimeRange(start, start + step)
                start += step
                if not constraints.meets_lead_time(
                    candidate, now, doctor_settings.lead_time_minutes
                ):
                    continue
                if constraints.hits_blocked(candidate, blocked):
                    continue
                if constraints.hits_appointment(
                    candidate, appointments, doctor_settings.buffer_minutes
                ):
                    continue
                slots.append(
                    Slot(
                        start=candidate.start.astimezone(tz),
                        end=candidate.end.astimezone(tz),
                        slot_minutes=doctor_settings.slot_minutes,
                    )
                )

        slots.sort(key=lambda s: s.start_utc)
        logger.debug(f"Generated {len(slots)} slots for doctor {doctor_id} on {on_date}")
        return slots
