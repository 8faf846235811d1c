"""
Conversion between the stored node encoding and in-memory rule nodes.

Storage keeps a flat field bag per node (``value_ids``, ``value_number``,
``scope``). In memory every leaf carries a payload class chosen by its
condition type, so the evaluator never has to guess which field applies.
"""

from datetime import date, time
from typing import Any, Mapping, Optional, Sequence, Tuple

from shared.errors import StructuralCorruptionError
from .models import (
    ConditionType, ConditionOperator, ConcurrencyScope, NodeType,
    ConditionValue, IdSetValue, DayOfWeekValue, DateRangeValue, TimeRangeValue,
    NumberValue, ConcurrentCountValue, RuleConditionNode,
)

ID_SET_CONDITION_TYPES = frozenset({
    ConditionType.APPOINTMENT_TYPE,
    ConditionType.CLIENT_TYPE,
    ConditionType.LOCATION,
    ConditionType.PRACTITIONER,
    ConditionType.PRACTITIONER_TAG,
})

NUMBER_CONDITION_TYPES = frozenset({
    ConditionType.DAYS_AHEAD,
    ConditionType.DAILY_CAPACITY,
})

_MEMBERSHIP = frozenset({ConditionOperator.IS, ConditionOperator.IS_NOT})
_COMPARATORS = frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.GREATER_OR_EQUAL,
    ConditionOperator.LESS_OR_EQUAL,
})

ALLOWED_OPERATORS = {
    ConditionType.APPOINTMENT_TYPE: _MEMBERSHIP,
    ConditionType.CLIENT_TYPE: _MEMBERSHIP,
    ConditionType.LOCATION: _MEMBERSHIP,
    ConditionType.PRACTITIONER: _MEMBERSHIP,
    ConditionType.PRACTITIONER_TAG: _MEMBERSHIP,
    ConditionType.DATE_RANGE: _MEMBERSHIP,
    ConditionType.TIME_RANGE: _MEMBERSHIP,
    ConditionType.DAYS_AHEAD: _COMPARATORS,
    ConditionType.DAILY_CAPACITY: _COMPARATORS,
    ConditionType.CONCURRENT_COUNT: _COMPARATORS,
    ConditionType.DAY_OF_WEEK: _MEMBERSHIP | _COMPARATORS,
}

LEGACY_DAY_NAMES = {
    "MONDAY": 1,
    "TUESDAY": 2,
    "WEDNESDAY": 3,
    "THURSDAY": 4,
    "FRIDAY": 5,
    "SATURDAY": 6,
    "SUNDAY": 7,
}

LEGACY_OPERATORS = {
    "GREATER_THAN_OR_EQUAL": ConditionOperator.GREATER_OR_EQUAL,
    "LESS_THAN_OR_EQUAL": ConditionOperator.LESS_OR_EQUAL,
}


def parse_condition_type(raw: Any) -> Optional[ConditionType]:
    """Parse a stored condition type; unknown values are corruption."""
    if raw is None:
        return None
    try:
        return ConditionType(raw)
    except ValueError:
        raise StructuralCorruptionError(
            f"Unknown condition type: {raw!r}",
            {"received": raw, "allowed": [t.value for t in ConditionType]}
        )


def parse_operator(raw: Any) -> Optional[ConditionOperator]:
    """Parse a stored operator, accepting the legacy comparator spelling."""
    if raw is None:
        return None
    if raw in LEGACY_OPERATORS:
        return LEGACY_OPERATORS[raw]
    try:
        return ConditionOperator(raw)
    except ValueError:
        raise StructuralCorruptionError(
            f"Unknown operator: {raw!r}",
            {"received": raw, "allowed": [o.value for o in ConditionOperator]}
        )


def check_operator(condition_type: ConditionType, operator: ConditionOperator) -> None:
    """Reject an operator the condition type cannot apply."""
    allowed = ALLOWED_OPERATORS.get(condition_type, frozenset())
    if operator not in allowed:
        raise StructuralCorruptionError(
            f"Operator {operator.value} is not valid for {condition_type.value} conditions",
            {
                "condition_type": condition_type.value,
                "operator": operator.value,
                "allowed": sorted(o.value for o in allowed),
            }
        )


def _require_number(condition_type: ConditionType, value_number: Optional[float]) -> float:
    if value_number is None:
        raise StructuralCorruptionError(
            f"{condition_type.value} condition requires a numeric value",
            {"condition_type": condition_type.value}
        )
    return float(value_number)


def _require_pair(condition_type: ConditionType, value_ids: Optional[Sequence[str]]) -> Tuple[str, str]:
    if not value_ids or len(value_ids) != 2:
        raise StructuralCorruptionError(
            f"{condition_type.value} condition requires exactly two values",
            {"condition_type": condition_type.value, "value_ids": list(value_ids or [])}
        )
    return value_ids[0], value_ids[1]


def _parse_day_of_week(value_ids: Optional[Sequence[str]], value_number: Optional[float]) -> DayOfWeekValue:
    if value_number is not None:
        iso_day = int(value_number)
        if iso_day != value_number or not 1 <= iso_day <= 7:
            raise StructuralCorruptionError(
                "DAY_OF_WEEK value must be an ISO weekday between 1 and 7",
                {"value_number": value_number}
            )
        return DayOfWeekValue(iso_day=iso_day)

    if value_ids:
        day_name = str(value_ids[0]).upper()
        if day_name in LEGACY_DAY_NAMES:
            return DayOfWeekValue(iso_day=LEGACY_DAY_NAMES[day_name])

    raise StructuralCorruptionError(
        "DAY_OF_WEEK condition has no recognizable day",
        {"value_ids": list(value_ids or []), "value_number": value_number}
    )


def decode_condition_value(
    condition_type: ConditionType,
    value_ids: Optional[Sequence[str]] = None,
    value_number: Optional[float] = None,
    scope: Optional[str] = None,
) -> ConditionValue:
    """Build the typed payload for a leaf from its stored fields."""
    if condition_type in ID_SET_CONDITION_TYPES:
        if not value_ids:
            raise StructuralCorruptionError(
                f"{condition_type.value} condition requires at least one id",
                {"condition_type": condition_type.value}
            )
        return IdSetValue(ids=frozenset(value_ids))

    if condition_type in NUMBER_CONDITION_TYPES:
        return NumberValue(value=_require_number(condition_type, value_number))

    if condition_type == ConditionType.DAY_OF_WEEK:
        return _parse_day_of_week(value_ids, value_number)

    if condition_type == ConditionType.DATE_RANGE:
        start, end = _require_pair(condition_type, value_ids)
        try:
            date_range = DateRangeValue(start=date.fromisoformat(start), end=date.fromisoformat(end))
        except ValueError:
            raise StructuralCorruptionError("DATE_RANGE values must be ISO dates", {"value_ids": list(value_ids)})
        if date_range.start > date_range.end:
            raise StructuralCorruptionError("DATE_RANGE start must not be after its end", {"value_ids": list(value_ids)})
        return date_range

    if condition_type == ConditionType.TIME_RANGE:
        start, end = _require_pair(condition_type, value_ids)
        try:
            time_range = TimeRangeValue(start=time.fromisoformat(start), end=time.fromisoformat(end))
        except ValueError:
            raise StructuralCorruptionError("TIME_RANGE values must be HH:MM times", {"value_ids": list(value_ids)})
        if time_range.start >= time_range.end:
            raise StructuralCorruptionError("TIME_RANGE start must be before its end", {"value_ids": list(value_ids)})
        return time_range

    if condition_type == ConditionType.CONCURRENT_COUNT:
        try:
            parsed_scope = ConcurrencyScope(scope or ConcurrencyScope.PRACTICE.value)
        except ValueError:
            raise StructuralCorruptionError(f"Unknown concurrency scope: {scope!r}", {"scope": scope})
        return ConcurrentCountValue(
            scope=parsed_scope,
            value=_require_number(condition_type, value_number),
            appointment_type_ids=frozenset(value_ids or ())
        )

    raise StructuralCorruptionError(f"Unknown condition type: {condition_type!r}")


def encode_condition_value(value: ConditionValue) -> Tuple[Optional[list], Optional[float], Optional[str]]:
    """Flatten a typed payload back into (value_ids, value_number, scope)."""
    if isinstance(value, IdSetValue):
        return sorted(value.ids), None, None
    if isinstance(value, NumberValue):
        return None, value.value, None
    if isinstance(value, DayOfWeekValue):
        return None, float(value.iso_day), None
    if isinstance(value, DateRangeValue):
        return [value.start.isoformat(), value.end.isoformat()], None, None
    if isinstance(value, TimeRangeValue):
        return [value.start.strftime("%H:%M"), value.end.strftime("%H:%M")], None, None
    if isinstance(value, ConcurrentCountValue):
        return sorted(value.appointment_type_ids) or None, value.value, value.scope.value
    raise StructuralCorruptionError(f"Cannot encode payload of type {type(value).__name__}")


def node_from_record(record: Mapping[str, Any]) -> RuleConditionNode:
    """Decode one stored row into a RuleConditionNode."""
    try:
        node_type = NodeType(record["node_type"])
    except ValueError:
        raise StructuralCorruptionError(
            f"Unknown node type: {record['node_type']!r}",
            {"node_id": record["id"]}
        )

    condition_type = None
    operator = None
    value = None
    if node_type == NodeType.CONDITION:
        condition_type = parse_condition_type(record.get("condition_type"))
        operator = parse_operator(record.get("operator"))
        if condition_type is not None and operator is not None:
            check_operator(condition_type, operator)
        if condition_type is not None:
            value = decode_condition_value(
                condition_type,
                record.get("value_ids"),
                record.get("value_number"),
                record.get("scope"),
            )

    return RuleConditionNode(
        id=str(record["id"]),
        tenant_id=str(record["tenant_id"]),
        rule_set_id=str(record["rule_set_id"]),
        node_type=node_type,
        is_root=bool(record.get("is_root", False)),
        enabled=bool(record.get("enabled", True)),
        parent_id=str(record["parent_id"]) if record.get("parent_id") is not None else None,
        child_order=int(record.get("child_order") or 0),
        condition_type=condition_type,
        operator=operator,
        value=value,
    )
