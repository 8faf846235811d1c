"""
Scheduling data models for the Scheduling Service.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class SlotStatus(str, Enum):
    """Slot decision."""
    AVAILABLE = "AVAILABLE"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class BreakTime:
    """Half-open wall-clock break [start, end)."""
    start: time
    end: time


@dataclass(frozen=True)
class BaseSchedule:
    """A practitioner's recurring working hours on one ISO weekday."""
    id: str
    practitioner_id: str
    day_of_week: int
    start_time: time
    end_time: time
    location_id: Optional[str] = None
    break_times: Tuple[BreakTime, ...] = ()


@dataclass(frozen=True)
class ManualBlock:
    """An explicit blocked interval; practice-wide when ``practitioner_id`` is None."""
    id: str
    start: datetime
    end: datetime
    practitioner_id: Optional[str] = None
    location_id: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class Location:
    id: str
    name: str


@dataclass
class CandidateSlot:
    """One slot of a practitioner's day, before and after rule evaluation."""
    start_time: datetime
    duration_minutes: int
    practitioner_id: str
    practitioner_name: str
    location_id: Optional[str] = None
    status: SlotStatus = SlotStatus.AVAILABLE
    blocked_by_rule_id: Optional[str] = None
    blocked_by_manual_block_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class DayQuery:
    """The fixed inputs of one day-query."""
    day: date
    appointment_type_id: str
    location_id: Optional[str] = None
    requested_at: Optional[datetime] = None
    client_type: Optional[str] = None


@dataclass
class DaySchedule:
    """Result of one day-query."""
    day: date
    slots: List[CandidateSlot] = field(default_factory=list)
    log: List[str] = field(default_factory=list)
    cancelled: bool = False
    day_invariant_rules: int = 0
    time_variant_rules: int = 0

    @property
    def available_count(self) -> int:
        return sum(1 for slot in self.slots if slot.status == SlotStatus.AVAILABLE)

    @property
    def blocked_count(self) -> int:
        return sum(1 for slot in self.slots if slot.status == SlotStatus.BLOCKED)


class DaySlotsRequest(BaseModel):
    """Request model for a day's slot grid."""
    tenant_id: str = Field(..., description="Tenant (practice) ID")
    day: date = Field(..., description="Target calendar day in the practice timezone")
    appointment_type_id: str = Field(..., description="Appointment type to book")
    rule_set_id: Optional[str] = Field(None, description="Rule set; defaults to the active one")
    location_id: Optional[str] = Field(None, description="Location ID")
    requested_at: Optional[datetime] = Field(None, description="When the booking is requested; defaults to now")
    client_type: Optional[str] = Field(None, description="Client type tag")

    def to_query(self) -> DayQuery:
        return DayQuery(
            day=self.day,
            appointment_type_id=self.appointment_type_id,
            location_id=self.location_id,
            requested_at=self.requested_at,
            client_type=self.client_type
        )


class SchedulingResultSlot(BaseModel):
    """One slot of the day grid."""
    start_time: datetime
    duration_minutes: int
    practitioner_id: str
    practitioner_name: str
    location_id: Optional[str] = None
    status: SlotStatus
    blocked_by_rule_id: Optional[str] = None
    blocked_by_manual_block_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_slot(cls, slot: CandidateSlot) -> "SchedulingResultSlot":
        return cls(
            start_time=slot.start_time,
            duration_minutes=slot.duration_minutes,
            practitioner_id=slot.practitioner_id,
            practitioner_name=slot.practitioner_name,
            location_id=slot.location_id,
            status=slot.status,
            blocked_by_rule_id=slot.blocked_by_rule_id,
            blocked_by_manual_block_id=slot.blocked_by_manual_block_id,
            reason=slot.reason
        )


class DaySlotsResponse(BaseModel):
    """Response model for a day's slot grid."""
    day: date
    rule_set_id: Optional[str] = None
    slots: List[SchedulingResultSlot] = Field(default_factory=list)
    log: List[str] = Field(default_factory=list)


class AvailableDatesRequest(BaseModel):
    """Request model for dates with working hours in a range."""
    tenant_id: str = Field(..., description="Tenant (practice) ID")
    start_date: date = Field(..., description="First date, inclusive")
    end_date: date = Field(..., description="Last date, inclusive")
    location_id: Optional[str] = Field(None, description="Restrict to one location")


class AvailableDatesResponse(BaseModel):
    dates: List[date] = Field(default_factory=list)
