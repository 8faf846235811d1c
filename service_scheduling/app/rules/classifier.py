"""
Day-invariance classification and pre-evaluation.

Within one day-query the appointment type, location and client type are
fixed and every slot falls on the same calendar date. A rule whose leaves
only read those inputs has one answer for the whole day, so it is evaluated
once instead of once per slot.
"""

from dataclasses import dataclass
from typing import Iterable, Tuple

from shared.logging import get_logger
from ..preload.day_data import PreloadedDayData
from .evaluator import RuleEngine
from .models import AppointmentContext, ConditionType
from .tree import RuleTree

logger = get_logger("scheduling.rules.classifier")

DAY_INVARIANT_CONDITION_TYPES = frozenset({
    ConditionType.APPOINTMENT_TYPE,
    ConditionType.CLIENT_TYPE,
    ConditionType.DATE_RANGE,
    ConditionType.DAY_OF_WEEK,
    ConditionType.DAYS_AHEAD,
    ConditionType.LOCATION,
})


@dataclass(frozen=True)
class RuleClassification:
    """Enabled rule ids split by invariance, each in stored order."""
    day_invariant: Tuple[str, ...] = ()
    time_variant: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DayInvariantResult:
    blocked_rule_ids: Tuple[str, ...] = ()
    evaluated_count: int = 0


def is_day_invariant(tree: RuleTree, rule_id: str) -> bool:
    return all(
        leaf.condition_type in DAY_INVARIANT_CONDITION_TYPES
        for leaf in tree.rule_leaves(rule_id)
    )


def classify_rules(tree: RuleTree) -> RuleClassification:
    """Split the enabled rules of ``tree``."""
    day_invariant = []
    time_variant = []
    for root in tree.rules():
        if is_day_invariant(tree, root.id):
            day_invariant.append(root.id)
        else:
            time_variant.append(root.id)

    logger.info(
        "Rules classified",
        day_invariant=len(day_invariant),
        time_variant=len(time_variant)
    )
    return RuleClassification(day_invariant=tuple(day_invariant), time_variant=tuple(time_variant))


def pre_evaluate_day_invariant_rules(
    engine: RuleEngine,
    rule_ids: Iterable[str],
    context: AppointmentContext,
    preloaded: PreloadedDayData,
) -> DayInvariantResult:
    """Evaluate day-invariant rules once against a representative context.

    Any slot of the day works as ``context``; which practitioner it names
    cannot change the outcome of a day-invariant rule.
    """
    rule_ids = tuple(rule_ids)
    blocked = tuple(
        rule_id for rule_id in rule_ids
        if engine.evaluate_rule(rule_id, context, preloaded)
    )

    logger.debug(
        "Day-invariant rules pre-evaluated",
        evaluated=len(rule_ids),
        blocked_rule_ids=list(blocked)
    )
    return DayInvariantResult(blocked_rule_ids=blocked, evaluated_count=len(rule_ids))
