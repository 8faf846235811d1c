"""Candidate slot generation and manual-block application."""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence

from ..preload.day_data import Practitioner
from .models import BaseSchedule, BreakTime, CandidateSlot, ManualBlock, SlotStatus


def is_break_time(local_time: time, break_times: Iterable[BreakTime]) -> bool:
    """True when ``local_time`` falls inside any [start, end) break."""
    return any(b.start <= local_time < b.end for b in break_times)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and end > other_start


def _schedule_matches(schedule: BaseSchedule, day: date, location_id: Optional[str]) -> bool:
    if schedule.day_of_week != day.isoweekday():
        return False
    if location_id and schedule.location_id and schedule.location_id != location_id:
        return False
    return True


def generate_candidate_slots(
    day: date,
    tz: tzinfo,
    practitioners: Sequence[Practitioner],
    schedules: Iterable[BaseSchedule],
    slot_duration_minutes: int,
    location_id: Optional[str] = None,
    default_location_id: Optional[str] = None,
) -> List[CandidateSlot]:
    """Slots for every practitioner working on ``day``.

    Schedule bounds and breaks are wall-clock times in ``tz``; slots advance
    in absolute time so a DST change shortens or lengthens the day instead
    of duplicating slots.
    """
    by_practitioner = {}
    for schedule in schedules:
        if _schedule_matches(schedule, day, location_id):
            by_practitioner.setdefault(schedule.practitioner_id, []).append(schedule)

    step = timedelta(minutes=slot_duration_minutes)
    slots: List[CandidateSlot] = []

    for practitioner in practitioners:
        for schedule in by_practitioner.get(practitioner.id, ()):
            slot_location = location_id or schedule.location_id or default_location_id
            current = datetime.combine(day, schedule.start_time, tzinfo=tz).astimezone(timezone.utc)
            end = datetime.combine(day, schedule.end_time, tzinfo=tz).astimezone(timezone.utc)

            while current < end:
                local_time = current.astimezone(tz).time()
                if not is_break_time(local_time, schedule.break_times):
                    slots.append(CandidateSlot(
                        start_time=current,
                        duration_minutes=slot_duration_minutes,
                        practitioner_id=practitioner.id,
                        practitioner_name=practitioner.name,
                        location_id=slot_location,
                    ))
                current += step

    return slots


def _block_applies(block: ManualBlock, slot: CandidateSlot) -> bool:
    if block.practitioner_id is not None and block.practitioner_id != slot.practitioner_id:
        return False
    if block.location_id and slot.location_id and block.location_id != slot.location_id:
        return False
    return overlaps(slot.start_time, slot.end_time, block.start, block.end)


def apply_manual_blocks(slots: Iterable[CandidateSlot], blocks: Sequence[ManualBlock]) -> int:
    """Mark slots covered by a manual block as BLOCKED; returns how many."""
    blocked = 0
    for slot in slots:
        for block in blocks:
            if _block_applies(block, slot):
                slot.status = SlotStatus.BLOCKED
                slot.blocked_by_manual_block_id = block.id
                blocked += 1
                break
    return blocked


def available_dates(
    start_date: date,
    end_date: date,
    practitioners: Iterable[Practitioner],
    schedules: Iterable[BaseSchedule],
    location_id: Optional[str] = None,
) -> List[date]:
    """Dates in [start_date, end_date] on which any practitioner has working hours."""
    practitioner_ids = {p.id for p in practitioners}
    weekdays = {
        s.day_of_week for s in schedules
        if s.practitioner_id in practitioner_ids
        and (not location_id or s.location_id == location_id)
    }

    dates = []
    current = start_date
    while current <= end_date:
        if current.isoweekday() in weekdays:
            dates.append(current)
        current += timedelta(days=1)
    return dates
