"""
Booking rules service: loads a day's data, then evaluates it in memory.

All reads for a query are awaited before evaluation starts. A failed read
propagates as UpstreamUnavailableError; no partial snapshot is ever
evaluated.
"""

import asyncio
import time
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from shared.config import BaseConfig
from shared.errors import NotFoundError, StructuralCorruptionError
from shared.logging import get_logger, set_query_context
from shared.metrics import MetricsCollector
from ..preload.day_data import Appointment, Practitioner, PreloadedDayData, build_day_data, day_bounds
from ..rules.builder import build_rule_nodes
from ..rules.describe import describe_rule
from ..rules.evaluator import RuleEngine
from ..rules.models import (
    AppointmentContext, ConditionTreeInput, RuleCheckResult, RuleConditionNode, RuleDescriptionResponse,
)
from ..rules.tree import RuleTree
from .models import AvailableDatesRequest, BaseSchedule, DayQuery, DaySchedule, Location, ManualBlock
from .scheduler import SlotScheduler
from .slots import available_dates


class SchedulingDataSource(Protocol):
    """Reads (and the one rule write) the service depends on."""

    async def load_rule_nodes(self, tenant_id: str, rule_set_id: str) -> List[RuleConditionNode]: ...

    async def load_practitioners(self, tenant_id: str) -> List[Practitioner]: ...

    async def load_locations(self, tenant_id: str) -> List[Location]: ...

    async def load_appointments(self, tenant_id: str, day_start: datetime,
                                day_end: datetime) -> List[Appointment]: ...

    async def load_base_schedules(self, tenant_id: str) -> List[BaseSchedule]: ...

    async def load_manual_blocks(self, tenant_id: str, day_start: datetime,
                                 day_end: datetime) -> List[ManualBlock]: ...

    async def load_active_rule_set_id(self, tenant_id: str) -> Optional[str]: ...

    async def save_rule_nodes(self, nodes: Sequence[RuleConditionNode]) -> None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingRulesService:
    """Entry points for ad-hoc checks, day grids and rule inspection."""

    def __init__(self, data_source: SchedulingDataSource, config: BaseConfig,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.logger = get_logger("scheduling.service")
        self.data_source = data_source
        self.config = config
        self.metrics = metrics
        self.clock = clock
        self.tz = ZoneInfo(config.timezone)
        self.scheduler = SlotScheduler(
            self.tz,
            slot_duration_minutes=config.slot_duration_minutes,
            blocked_reason_fallback=config.blocked_reason_fallback
        )

    async def resolve_rule_set_id(self, tenant_id: str, rule_set_id: Optional[str] = None) -> Optional[str]:
        """The requested rule set, else the tenant's active one (may be None)."""
        if rule_set_id:
            return rule_set_id
        return await self.data_source.load_active_rule_set_id(tenant_id)

    async def load_rule_tree(self, tenant_id: str, rule_set_id: Optional[str]) -> Optional[RuleTree]:
        if rule_set_id is None:
            return None
        nodes = await self.data_source.load_rule_nodes(tenant_id, rule_set_id)
        foreign = [n.id for n in nodes if n.tenant_id != tenant_id or n.rule_set_id != rule_set_id]
        if foreign:
            raise StructuralCorruptionError(
                "Rule set contains nodes of another tenant or rule set",
                {"rule_set_id": rule_set_id, "node_ids": foreign}
            )
        return RuleTree(nodes)

    async def load_day_data(self, tenant_id: str, day: date) -> PreloadedDayData:
        """Read and index the day's appointments and practitioners."""
        day_start, day_end = day_bounds(day, self.tz)
        appointments, practitioners = await asyncio.gather(
            self.data_source.load_appointments(tenant_id, day_start, day_end),
            self.data_source.load_practitioners(tenant_id),
        )
        return build_day_data(day, self.tz, appointments, practitioners)

    async def check_appointment(self, tenant_id: str, context: AppointmentContext,
                                rule_set_id: Optional[str] = None) -> Tuple[RuleCheckResult, Optional[str]]:
        """Check one booking against every rule; reports all that match."""
        rule_set_id = await self.resolve_rule_set_id(tenant_id, rule_set_id)
        set_query_context(tenant_id, rule_set_id)

        day = context.date_time.astimezone(self.tz).date()
        tree, preloaded = await asyncio.gather(
            self.load_rule_tree(tenant_id, rule_set_id),
            self.load_day_data(tenant_id, day),
        )

        if tree is None:
            result = RuleCheckResult(is_blocked=False)
        else:
            result = RuleEngine(tree).check(context, preloaded)

        if self.metrics:
            self.metrics.record_rule_check(result.is_blocked)

        self.logger.info(
            "Appointment checked",
            is_blocked=result.is_blocked,
            blocked_by_rule_ids=result.blocked_by_rule_ids,
            evaluation_time_ms=round(result.evaluation_time_ms, 3)
        )
        return result, rule_set_id

    async def get_slots_for_day(self, tenant_id: str, query: DayQuery, rule_set_id: Optional[str] = None,
                                should_cancel: Optional[Callable[[], bool]] = None
                                ) -> Tuple[DaySchedule, Optional[str]]:
        """Build the day's slot grid; each blocked slot names its first matching rule."""
        load_started = time.time()
        rule_set_id = await self.resolve_rule_set_id(tenant_id, rule_set_id)
        set_query_context(tenant_id, rule_set_id)

        day_start, day_end = day_bounds(query.day, self.tz)
        tree, preloaded, locations, schedules, manual_blocks = await asyncio.gather(
            self.load_rule_tree(tenant_id, rule_set_id),
            self.load_day_data(tenant_id, query.day),
            self.data_source.load_locations(tenant_id),
            self.data_source.load_base_schedules(tenant_id),
            self.data_source.load_manual_blocks(tenant_id, day_start, day_end),
        )
        load_duration = time.time() - load_started

        evaluate_started = time.time()
        schedule = self.scheduler.schedule_day(
            query,
            preloaded,
            practitioners=list(preloaded.practitioners.values()),
            schedules=schedules,
            manual_blocks=manual_blocks,
            tree=tree,
            now=self.clock(),
            default_location_id=locations[0].id if locations else None,
            should_cancel=should_cancel,
        )
        evaluate_duration = time.time() - evaluate_started

        if self.metrics:
            self.metrics.observe_histogram("day_query_duration_seconds", load_duration, phase="load")
            self.metrics.observe_histogram("day_query_duration_seconds", evaluate_duration, phase="evaluate")
            self.metrics.record_slots(schedule.available_count, schedule.blocked_count)
            self.metrics.record_classification(schedule.day_invariant_rules, schedule.time_variant_rules)

        return schedule, rule_set_id

    async def get_available_dates(self, request: AvailableDatesRequest) -> List[date]:
        """Dates with working hours in the range; rules are not evaluated."""
        practitioners, schedules = await asyncio.gather(
            self.data_source.load_practitioners(request.tenant_id),
            self.data_source.load_base_schedules(request.tenant_id),
        )
        return available_dates(
            request.start_date,
            request.end_date,
            practitioners,
            schedules,
            location_id=request.location_id
        )

    async def describe_rule(self, tenant_id: str, rule_set_id: str, rule_id: str) -> RuleDescriptionResponse:
        tree = await self.load_rule_tree(tenant_id, rule_set_id)
        root = tree.find_node(rule_id)
        if root is None or not root.is_root:
            raise NotFoundError("Rule not found", {"rule_set_id": rule_set_id, "rule_id": rule_id})
        return describe_rule(tree, rule_id)

    async def create_rule(self, tenant_id: str, rule_set_id: str, condition_tree: ConditionTreeInput,
                          enabled: bool = True) -> List[RuleConditionNode]:
        """Validate and store a new rule; the root and subtree are written together."""
        nodes = build_rule_nodes(
            condition_tree,
            tenant_id,
            rule_set_id,
            enabled=enabled,
            max_depth=self.config.max_tree_depth
        )
        await self.data_source.save_rule_nodes(nodes)
        self.logger.info("Rule created", rule_id=nodes[0].id, rule_set_id=rule_set_id, node_count=len(nodes))
        return nodes
