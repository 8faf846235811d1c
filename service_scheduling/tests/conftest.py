"""
Shared fixtures for Scheduling Service tests.
"""

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

from shared.config import BaseConfig
from shared.errors import UpstreamUnavailableError
from shared.test_helpers import RuleRecordBuilder, test_data_factory
from service_scheduling.app.preload.day_data import Appointment, Practitioner, build_day_data
from service_scheduling.app.rules.codec import node_from_record
from service_scheduling.app.rules.tree import RuleTree
from service_scheduling.app.scheduling.models import BaseSchedule, BreakTime, Location, ManualBlock

BERLIN = ZoneInfo("Europe/Berlin")

# 2025-03-03 is a Monday
MONDAY = date(2025, 3, 3)


def practitioner_from(data: Dict[str, Any]) -> Practitioner:
    return Practitioner(id=data["id"], name=data["name"], tags=frozenset(data.get("tags", ())))


def appointment_from(data: Dict[str, Any]) -> Appointment:
    return Appointment(
        id=data["id"],
        start=datetime.fromisoformat(data["start"]),
        appointment_type_id=data["appointment_type_id"],
        practitioner_id=data["practitioner_id"],
        location_id=data.get("location_id"),
        duration_minutes=data.get("duration_minutes", 5),
    )


def schedule_from(data: Dict[str, Any]) -> BaseSchedule:
    return BaseSchedule(
        id=data["id"],
        practitioner_id=data["practitioner_id"],
        day_of_week=data["day_of_week"],
        start_time=time.fromisoformat(data["start_time"]),
        end_time=time.fromisoformat(data["end_time"]),
        location_id=data.get("location_id"),
        break_times=tuple(
            BreakTime(start=time.fromisoformat(b["start"]), end=time.fromisoformat(b["end"]))
            for b in data.get("break_times", [])
        ),
    )


class InMemoryDataSource:
    """Scheduling data source over plain lists; ``fail_on`` names reads that raise."""

    def __init__(self, rule_records=(), practitioners=(), locations=(), appointments=(),
                 schedules=(), manual_blocks=(), active_rule_set_id: Optional[str] = None,
                 fail_on=()):
        self.rule_records = list(rule_records)
        self.practitioners = list(practitioners)
        self.locations = list(locations)
        self.appointments = list(appointments)
        self.schedules = list(schedules)
        self.manual_blocks = list(manual_blocks)
        self.active_rule_set_id = active_rule_set_id
        self.fail_on = set(fail_on)
        self.saved: List[Any] = []
        self.calls: List[str] = []

    def _read(self, source: str):
        self.calls.append(source)
        if source in self.fail_on:
            raise UpstreamUnavailableError(source, "connection refused")

    async def load_rule_nodes(self, tenant_id, rule_set_id):
        self._read("rule_conditions")
        return [
            node_from_record(r) for r in self.rule_records
            if r["tenant_id"] == tenant_id and r["rule_set_id"] == rule_set_id
        ]

    async def load_practitioners(self, tenant_id):
        self._read("practitioners")
        return list(self.practitioners)

    async def load_locations(self, tenant_id):
        self._read("locations")
        return list(self.locations)

    async def load_appointments(self, tenant_id, day_start, day_end):
        self._read("appointments")
        return [a for a in self.appointments if day_start <= a.start < day_end]

    async def load_base_schedules(self, tenant_id):
        self._read("base_schedules")
        return list(self.schedules)

    async def load_manual_blocks(self, tenant_id, day_start, day_end):
        self._read("manual_blocks")
        return [b for b in self.manual_blocks if b.start < day_end and b.end > day_start]

    async def load_active_rule_set_id(self, tenant_id):
        self._read("rule_sets")
        return self.active_rule_set_id

    async def save_rule_nodes(self, nodes):
        self._read("save_rule_nodes")
        self.saved.extend(nodes)


@pytest.fixture
def at():
    """Build an aware Europe/Berlin datetime."""
    def _at(day: date, hour: int, minute: int = 0) -> datetime:
        return datetime.combine(day, time(hour, minute), tzinfo=BERLIN)
    return _at


@pytest.fixture
def rules():
    """Fresh rule record builder."""
    return RuleRecordBuilder()


@pytest.fixture
def make_tree():
    def _make_tree(builder: RuleRecordBuilder) -> RuleTree:
        return RuleTree(node_from_record(record) for record in builder.records)
    return _make_tree


@pytest.fixture
def practitioners():
    return [practitioner_from(p) for p in test_data_factory.create_test_practitioners()]


@pytest.fixture
def locations():
    return [Location(id=loc["id"], name=loc["name"]) for loc in test_data_factory.create_test_locations()]


@pytest.fixture
def schedules():
    return [schedule_from(s) for s in test_data_factory.create_test_base_schedules()]


@pytest.fixture
def monday_appointments():
    return [appointment_from(a) for a in test_data_factory.create_test_appointments(MONDAY.isoformat())]


@pytest.fixture
def make_day_data(practitioners):
    def _make_day_data(day: date, appointments=()):
        return build_day_data(day, BERLIN, appointments, practitioners)
    return _make_day_data


@pytest.fixture
def config():
    return BaseConfig(_env_file=None, upstream_retry_attempts=1)


@pytest.fixture
def data_source(practitioners, locations, schedules, monday_appointments):
    return InMemoryDataSource(
        practitioners=practitioners,
        locations=locations,
        appointments=monday_appointments,
        schedules=schedules,
    )


@pytest.fixture
def manual_block():
    def _manual_block(block_id: str, start: datetime, end: datetime,
                      practitioner_id: Optional[str] = None) -> ManualBlock:
        return ManualBlock(id=block_id, start=start, end=end, practitioner_id=practitioner_id)
    return _manual_block
