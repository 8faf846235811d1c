"""
Day data preloading for slot evaluation.

Everything a leaf condition may need about existing bookings is loaded once
per day-query and indexed here, so per-slot evaluation is a dictionary
lookup instead of a query.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from shared.errors import PreloadMismatchError
from shared.logging import get_logger

logger = get_logger("scheduling.preload")

CapacityKey = Tuple[str, str, Optional[str]]


@dataclass(frozen=True)
class Appointment:
    """An existing booking."""
    id: str
    start: datetime
    appointment_type_id: str
    practitioner_id: str
    location_id: Optional[str] = None
    duration_minutes: int = 5


@dataclass(frozen=True)
class Practitioner:
    """Practitioner attributes used by rules."""
    id: str
    name: str
    tags: FrozenSet[str] = frozenset()


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """UTC instants [start, end) of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def _instant(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PreloadedDayData:
    """Immutable snapshot of one tenant's day, built by ``build_day_data``."""
    day: date
    timezone: tzinfo
    appointments: Tuple[Appointment, ...] = ()
    appointments_by_start: Mapping[datetime, Tuple[Appointment, ...]] = field(
        default_factory=lambda: MappingProxyType({}))
    daily_counts: Mapping[CapacityKey, int] = field(default_factory=lambda: MappingProxyType({}))
    daily_counts_any_location: Mapping[Tuple[str, str], int] = field(
        default_factory=lambda: MappingProxyType({}))
    practitioners: Mapping[str, Practitioner] = field(default_factory=lambda: MappingProxyType({}))

    def local_date(self, instant: datetime) -> date:
        return instant.astimezone(self.timezone).date()

    def covers(self, instant: datetime) -> bool:
        return self.local_date(instant) == self.day

    def ensure_covers(self, instant: datetime) -> None:
        """Fail when a context falls outside the preloaded day."""
        if not self.covers(instant):
            raise PreloadMismatchError(
                details={"preloaded_day": self.day.isoformat(), "instant": instant.isoformat()}
            )

    def appointments_at(self, instant: datetime) -> Tuple[Appointment, ...]:
        """Appointments starting at exactly ``instant``."""
        return self.appointments_by_start.get(_instant(instant), ())

    def daily_count(self, appointment_type_id: str, practitioner_id: str,
                    location_id: Optional[str] = None) -> int:
        """Bookings of a type with a practitioner on this day.

        Without a location the count spans every location.
        """
        if location_id is None:
            return self.daily_counts_any_location.get((appointment_type_id, practitioner_id), 0)
        return self.daily_counts.get((appointment_type_id, practitioner_id, location_id), 0)

    def get_practitioner(self, practitioner_id: str) -> Optional[Practitioner]:
        return self.practitioners.get(practitioner_id)


def build_day_data(
    day: date,
    tz: tzinfo,
    appointments: Iterable[Appointment],
    practitioners: Iterable[Practitioner] = (),
) -> PreloadedDayData:
    """Index the appointments starting on ``day`` (local to ``tz``).

    Appointments outside the day are dropped so a wider read can be reused.
    """
    kept: List[Appointment] = []
    by_start: Dict[datetime, List[Appointment]] = defaultdict(list)
    counts: Counter = Counter()
    counts_any_location: Counter = Counter()

    for appointment in appointments:
        if appointment.start.astimezone(tz).date() != day:
            continue
        kept.append(appointment)
        by_start[_instant(appointment.start)].append(appointment)
        counts[(appointment.appointment_type_id, appointment.practitioner_id, appointment.location_id)] += 1
        counts_any_location[(appointment.appointment_type_id, appointment.practitioner_id)] += 1

    data = PreloadedDayData(
        day=day,
        timezone=tz,
        appointments=tuple(kept),
        appointments_by_start=MappingProxyType({k: tuple(v) for k, v in by_start.items()}),
        daily_counts=MappingProxyType(dict(counts)),
        daily_counts_any_location=MappingProxyType(dict(counts_any_location)),
        practitioners=MappingProxyType({p.id: p for p in practitioners}),
    )

    logger.debug(
        "Day data preloaded",
        day=day.isoformat(),
        appointments=len(kept),
        distinct_starts=len(by_start),
        practitioners=len(data.practitioners)
    )
    return data
