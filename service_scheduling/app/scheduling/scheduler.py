"""
Per-day slot scheduling.

A day-query runs in two phases. Everything it reads (rules, practitioners,
schedules, manual blocks and the day's appointments) is loaded first by the
caller; ``SlotScheduler.schedule_day`` then works purely in memory:

1. generate candidate slots from base schedules, minus breaks
2. mark slots overlapping a manual block
3. pre-evaluate day-invariant rules once
4. evaluate time-variant rules per slot, stopping at the first match
5. attach a reason to each blocked slot, once per distinct rule
"""

from datetime import datetime, tzinfo
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

from shared.errors import PreloadMismatchError
from shared.logging import get_logger
from ..preload.day_data import PreloadedDayData, Practitioner
from ..rules.classifier import classify_rules, pre_evaluate_day_invariant_rules
from ..rules.describe import tree_structure
from ..rules.evaluator import RuleEngine
from ..rules.models import AppointmentContext
from ..rules.tree import RuleTree
from .models import BaseSchedule, CandidateSlot, DayQuery, DaySchedule, ManualBlock, SlotStatus
from .slots import apply_manual_blocks, generate_candidate_slots

DEFAULT_BLOCKED_REASON = "This time slot is blocked by a rule."


class SlotScheduler:
    """Builds one day's slot grid for a tenant."""

    def __init__(self, tz: tzinfo, slot_duration_minutes: int = 5,
                 blocked_reason_fallback: str = DEFAULT_BLOCKED_REASON):
        self.logger = get_logger("scheduling.scheduler")
        self.tz = tz
        self.slot_duration_minutes = slot_duration_minutes
        self.blocked_reason_fallback = blocked_reason_fallback

    def _context(self, query: DayQuery, slot: CandidateSlot, requested_at: datetime) -> AppointmentContext:
        return AppointmentContext(
            appointment_type_id=query.appointment_type_id,
            practitioner_id=slot.practitioner_id,
            location_id=query.location_id or slot.location_id,
            date_time=slot.start_time,
            requested_at=requested_at,
            client_type=query.client_type
        )

    def schedule_day(
        self,
        query: DayQuery,
        preloaded: PreloadedDayData,
        practitioners: Sequence[Practitioner],
        schedules: Iterable[BaseSchedule],
        manual_blocks: Sequence[ManualBlock] = (),
        tree: Optional[RuleTree] = None,
        now: Optional[datetime] = None,
        default_location_id: Optional[str] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> DaySchedule:
        """Build the slot grid for ``query.day``.

        ``tree`` is None when the tenant has no rule set; every slot not
        manually blocked is then available. ``now`` stands in for a missing
        ``query.requested_at``.
        """
        if preloaded.day != query.day:
            raise PreloadMismatchError(
                details={"preloaded_day": preloaded.day.isoformat(), "query_day": query.day.isoformat()}
            )

        result = DaySchedule(day=query.day)
        log = result.log

        if query.location_id:
            log.append(f"Using specified location: {query.location_id}")
        elif default_location_id:
            log.append(f"Using default location: {default_location_id}")

        slots = generate_candidate_slots(
            query.day,
            self.tz,
            practitioners,
            schedules,
            self.slot_duration_minutes,
            location_id=query.location_id,
            default_location_id=default_location_id,
        )
        log.append(f"Generated {len(slots)} candidate slots")

        manually_blocked = apply_manual_blocks(slots, manual_blocks)
        if manual_blocks:
            log.append(f"Manual blocks blocked {manually_blocked} slots")

        if tree is None:
            log.append("No rule set active - all slots remain available")
            result.slots = slots
            return result

        engine = RuleEngine(tree)
        classification = classify_rules(tree)
        result.day_invariant_rules = len(classification.day_invariant)
        result.time_variant_rules = len(classification.time_variant)
        log.append(
            f"Rule classification: {len(classification.day_invariant)} day-invariant, "
            f"{len(classification.time_variant)} time-variant"
        )

        requested_at = query.requested_at or now
        # keyed by slot location: slots without a query location take their
        # schedule's location, which LOCATION leaves read
        day_blocked_by_location: Dict[Optional[str], Tuple[str, ...]] = {}

        rule_blocked = 0
        for index, slot in enumerate(slots):
            if should_cancel is not None and should_cancel():
                self.logger.info("Day query cancelled", day=query.day.isoformat(), evaluated=index)
                log.append(f"Cancelled after {index} slots")
                result.cancelled = True
                slots = slots[:index]
                break

            if slot.status == SlotStatus.BLOCKED:
                continue

            context = self._context(query, slot, requested_at)
            day_blocked = ()
            if classification.day_invariant:
                if context.location_id not in day_blocked_by_location:
                    day_result = pre_evaluate_day_invariant_rules(
                        engine, classification.day_invariant, context, preloaded
                    )
                    day_blocked_by_location[context.location_id] = day_result.blocked_rule_ids
                    log.append(
                        f"Pre-evaluated {day_result.evaluated_count} day-invariant rules: "
                        f"{len(day_result.blocked_rule_ids)} blocking"
                    )
                day_blocked = day_blocked_by_location[context.location_id]

            if day_blocked:
                rule_id = day_blocked[0]
            else:
                rule_id = engine.first_blocking_rule(classification.time_variant, context, preloaded)

            if rule_id is not None:
                slot.status = SlotStatus.BLOCKED
                slot.blocked_by_rule_id = rule_id
                rule_blocked += 1

        log.append(f"Rules blocked {rule_blocked} slots")

        self._attach_reasons(tree, slots)
        result.slots = slots

        log.append(
            f"Final result: {result.available_count} available slots, "
            f"{result.blocked_count} blocked slots"
        )
        self.logger.info(
            "Day scheduled",
            day=query.day.isoformat(),
            available=result.available_count,
            blocked=result.blocked_count,
            cancelled=result.cancelled
        )
        return result

    def _attach_reasons(self, tree: RuleTree, slots: Iterable[CandidateSlot]) -> None:
        reasons: Dict[str, str] = {}
        for slot in slots:
            rule_id = slot.blocked_by_rule_id
            if rule_id is None:
                continue
            if rule_id not in reasons:
                reasons[rule_id] = self._reason_for(tree, rule_id)
            slot.reason = reasons[rule_id]

    def _reason_for(self, tree: RuleTree, rule_id: str) -> str:
        """Rule text for a blocked slot; never changes the decision."""
        try:
            return tree_structure(tree, rule_id).strip() or self.blocked_reason_fallback
        except Exception as e:
            self.logger.warning("Failed to generate reason for blocked slot", rule_id=rule_id, error=str(e))
            return self.blocked_reason_fallback
