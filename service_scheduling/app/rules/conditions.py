"""
Leaf condition evaluation.

``evaluate_condition`` is pure: it reads the node, the booking context and
the preloaded day snapshot and nothing else. A malformed leaf raises
StructuralCorruptionError; a context that lacks an optional input the leaf
needs (no client type, no request time) simply does not match.
"""

from typing import Callable, Dict, Type

from shared.errors import StructuralCorruptionError
from ..preload.day_data import PreloadedDayData
from .models import (
    AppointmentContext, ConditionOperator, ConditionType, ConcurrencyScope, NodeType,
    RuleConditionNode, IdSetValue, DayOfWeekValue, DateRangeValue, TimeRangeValue,
    NumberValue, ConcurrentCountValue,
)

COMPARATORS = frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.GREATER_OR_EQUAL,
    ConditionOperator.LESS_OR_EQUAL,
})


def _name(member) -> str:
    return getattr(member, "value", member)


def _corrupt(node: RuleConditionNode, message: str) -> StructuralCorruptionError:
    return StructuralCorruptionError(
        message,
        {
            "node_id": node.id,
            "condition_type": _name(node.condition_type),
            "operator": _name(node.operator),
        }
    )


def compare(node: RuleConditionNode, actual: float, expected: float) -> bool:
    """Apply a numeric comparator operator."""
    if node.operator == ConditionOperator.EQUALS:
        return actual == expected
    if node.operator == ConditionOperator.GREATER_OR_EQUAL:
        return actual >= expected
    if node.operator == ConditionOperator.LESS_OR_EQUAL:
        return actual <= expected
    raise _corrupt(node, f"Operator {_name(node.operator)} cannot compare numbers")


def membership(node: RuleConditionNode, is_member: bool) -> bool:
    """Apply IS / IS_NOT to a membership test."""
    if node.operator == ConditionOperator.IS:
        return is_member
    if node.operator == ConditionOperator.IS_NOT:
        return not is_member
    raise _corrupt(node, f"Operator {_name(node.operator)} cannot test membership")


def _appointment_type(node, context, preloaded):
    return membership(node, context.appointment_type_id in node.value.ids)


def _location(node, context, preloaded):
    return membership(node, context.location_id is not None and context.location_id in node.value.ids)


def _practitioner(node, context, preloaded):
    return membership(node, context.practitioner_id in node.value.ids)


def _client_type(node, context, preloaded):
    if context.client_type is None:
        # membership(...) still validates the operator
        membership(node, False)
        return False
    return membership(node, context.client_type in node.value.ids)


def _practitioner_tag(node, context, preloaded):
    practitioner = preloaded.get_practitioner(context.practitioner_id)
    tags = practitioner.tags if practitioner else frozenset()
    return membership(node, bool(tags & node.value.ids))


def _day_of_week(node, context, preloaded):
    iso_day = context.date_time.astimezone(preloaded.timezone).isoweekday()
    target = node.value.iso_day
    if node.operator in (ConditionOperator.IS, ConditionOperator.EQUALS):
        return iso_day == target
    if node.operator == ConditionOperator.IS_NOT:
        return iso_day != target
    return compare(node, iso_day, target)


def _date_range(node, context, preloaded):
    local_date = context.date_time.astimezone(preloaded.timezone).date()
    return membership(node, node.value.start <= local_date <= node.value.end)


def _time_range(node, context, preloaded):
    local_time = context.date_time.astimezone(preloaded.timezone).time()
    return membership(node, node.value.start <= local_time < node.value.end)


def _days_ahead(node, context, preloaded):
    if node.operator not in COMPARATORS:
        raise _corrupt(node, f"Operator {_name(node.operator)} cannot compare numbers")
    if context.requested_at is None:
        return False
    appointment_date = context.date_time.astimezone(preloaded.timezone).date()
    request_date = context.requested_at.astimezone(preloaded.timezone).date()
    return compare(node, (appointment_date - request_date).days, node.value.value)


def _daily_capacity(node, context, preloaded):
    preloaded.ensure_covers(context.date_time)
    count = preloaded.daily_count(context.appointment_type_id, context.practitioner_id, context.location_id)
    return compare(node, count, node.value.value)


def _concurrent_count(node, context, preloaded):
    preloaded.ensure_covers(context.date_time)
    value: ConcurrentCountValue = node.value
    concurrent = preloaded.appointments_at(context.date_time)

    # without a context location, location scope counts practice-wide
    if value.scope == ConcurrencyScope.LOCATION and context.location_id is not None:
        concurrent = [a for a in concurrent if a.location_id == context.location_id]
    elif value.scope == ConcurrencyScope.PRACTITIONER:
        concurrent = [a for a in concurrent if a.practitioner_id == context.practitioner_id]

    if value.appointment_type_ids:
        concurrent = [a for a in concurrent if a.appointment_type_id in value.appointment_type_ids]

    # the candidate itself counts
    return compare(node, len(concurrent) + 1, value.value)


_Handler = Callable[[RuleConditionNode, AppointmentContext, PreloadedDayData], bool]

HANDLERS: Dict[ConditionType, _Handler] = {
    ConditionType.APPOINTMENT_TYPE: _appointment_type,
    ConditionType.CLIENT_TYPE: _client_type,
    ConditionType.CONCURRENT_COUNT: _concurrent_count,
    ConditionType.DAILY_CAPACITY: _daily_capacity,
    ConditionType.DATE_RANGE: _date_range,
    ConditionType.DAY_OF_WEEK: _day_of_week,
    ConditionType.DAYS_AHEAD: _days_ahead,
    ConditionType.LOCATION: _location,
    ConditionType.PRACTITIONER: _practitioner,
    ConditionType.PRACTITIONER_TAG: _practitioner_tag,
    ConditionType.TIME_RANGE: _time_range,
}

PAYLOAD_TYPES: Dict[ConditionType, Type] = {
    ConditionType.APPOINTMENT_TYPE: IdSetValue,
    ConditionType.CLIENT_TYPE: IdSetValue,
    ConditionType.CONCURRENT_COUNT: ConcurrentCountValue,
    ConditionType.DAILY_CAPACITY: NumberValue,
    ConditionType.DATE_RANGE: DateRangeValue,
    ConditionType.DAY_OF_WEEK: DayOfWeekValue,
    ConditionType.DAYS_AHEAD: NumberValue,
    ConditionType.LOCATION: IdSetValue,
    ConditionType.PRACTITIONER: IdSetValue,
    ConditionType.PRACTITIONER_TAG: IdSetValue,
    ConditionType.TIME_RANGE: TimeRangeValue,
}


def evaluate_condition(node: RuleConditionNode, context: AppointmentContext,
                       preloaded: PreloadedDayData) -> bool:
    """Evaluate one CONDITION node. True means the leaf matches."""
    if node.node_type != NodeType.CONDITION:
        raise _corrupt(node, f"Leaf evaluation called on {_name(node.node_type)} node")
    if node.condition_type is None or node.operator is None:
        raise _corrupt(node, "Condition missing condition_type or operator")

    handler = HANDLERS.get(node.condition_type)
    if handler is None:
        raise _corrupt(node, f"Unknown condition type: {node.condition_type!r}")

    if not isinstance(node.value, PAYLOAD_TYPES[node.condition_type]):
        raise _corrupt(node, f"{_name(node.condition_type)} condition has a missing or mismatched value")

    return handler(node, context, preloaded)
