"""
Rule data models for the Scheduling Service.
"""

from typing import Optional, List, FrozenSet, Union
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum

from pydantic import BaseModel, Field

from shared.errors import ValidationError


class NodeType(str, Enum):
    """Condition tree node types."""
    AND = "AND"
    NOT = "NOT"
    CONDITION = "CONDITION"


class ConditionType(str, Enum):
    """Leaf predicate types."""
    APPOINTMENT_TYPE = "APPOINTMENT_TYPE"
    CLIENT_TYPE = "CLIENT_TYPE"
    CONCURRENT_COUNT = "CONCURRENT_COUNT"
    DAILY_CAPACITY = "DAILY_CAPACITY"
    DATE_RANGE = "DATE_RANGE"
    DAY_OF_WEEK = "DAY_OF_WEEK"
    DAYS_AHEAD = "DAYS_AHEAD"
    LOCATION = "LOCATION"
    PRACTITIONER = "PRACTITIONER"
    PRACTITIONER_TAG = "PRACTITIONER_TAG"
    TIME_RANGE = "TIME_RANGE"


class ConditionOperator(str, Enum):
    """Leaf comparison operators."""
    IS = "IS"
    IS_NOT = "IS_NOT"
    EQUALS = "EQUALS"
    GREATER_OR_EQUAL = "GREATER_OR_EQUAL"
    LESS_OR_EQUAL = "LESS_OR_EQUAL"


class ConcurrencyScope(str, Enum):
    """Aggregation boundary for CONCURRENT_COUNT."""
    PRACTICE = "practice"
    LOCATION = "location"
    PRACTITIONER = "practitioner"


# Leaf payloads, one shape per condition type


@dataclass(frozen=True)
class IdSetValue:
    """Opaque ids for membership tests (types, locations, practitioners, tags, client types)."""
    ids: FrozenSet[str]


@dataclass(frozen=True)
class DayOfWeekValue:
    """ISO day of week, Monday=1 ... Sunday=7."""
    iso_day: int


@dataclass(frozen=True)
class DateRangeValue:
    """Inclusive calendar date range."""
    start: date
    end: date


@dataclass(frozen=True)
class TimeRangeValue:
    """Half-open wall-clock range [start, end)."""
    start: time
    end: time


@dataclass(frozen=True)
class NumberValue:
    """Threshold for DAYS_AHEAD and DAILY_CAPACITY."""
    value: float


@dataclass(frozen=True)
class ConcurrentCountValue:
    """Threshold for CONCURRENT_COUNT with its scope and optional type filter."""
    scope: ConcurrencyScope
    value: float
    appointment_type_ids: FrozenSet[str] = frozenset()


ConditionValue = Union[
    IdSetValue,
    DayOfWeekValue,
    DateRangeValue,
    TimeRangeValue,
    NumberValue,
    ConcurrentCountValue,
]


@dataclass(frozen=True)
class RuleConditionNode:
    """One node of a stored condition tree.

    A root node (``is_root``) marks a rule; its single child is the top of
    the rule body. Only CONDITION nodes carry ``condition_type``,
    ``operator`` and ``value``.
    """
    id: str
    tenant_id: str
    rule_set_id: str
    node_type: NodeType
    is_root: bool = False
    enabled: bool = True
    parent_id: Optional[str] = None
    child_order: int = 0
    condition_type: Optional[ConditionType] = None
    operator: Optional[ConditionOperator] = None
    value: Optional[ConditionValue] = None

    @property
    def is_leaf(self) -> bool:
        return self.node_type == NodeType.CONDITION


@dataclass(frozen=True)
class AppointmentContext:
    """Per-evaluation input describing one candidate booking."""
    appointment_type_id: str
    practitioner_id: str
    date_time: datetime
    location_id: Optional[str] = None
    requested_at: Optional[datetime] = None
    client_type: Optional[str] = None

    def __post_init__(self):
        if self.date_time.tzinfo is None:
            raise ValidationError("date_time must be timezone-aware", {"date_time": self.date_time.isoformat()})
        if self.requested_at is not None and self.requested_at.tzinfo is None:
            raise ValidationError("requested_at must be timezone-aware",
                                  {"requested_at": self.requested_at.isoformat()})


@dataclass
class RuleCheckResult:
    """Result of checking every rule against one context."""
    is_blocked: bool
    blocked_by_rule_ids: List[str] = field(default_factory=list)
    evaluation_time_ms: float = 0.0


class ConditionTreeInput(BaseModel):
    """Nested condition tree as authored, before flattening into nodes."""
    node_type: NodeType = Field(..., description="AND, NOT or CONDITION")
    children: List["ConditionTreeInput"] = Field(default_factory=list, description="Child nodes in order")
    condition_type: Optional[ConditionType] = Field(None, description="Leaf predicate type")
    operator: Optional[ConditionOperator] = Field(None, description="Leaf operator")
    value_ids: Optional[List[str]] = Field(None, description="Id / string payload")
    value_number: Optional[float] = Field(None, description="Numeric payload")
    scope: Optional[ConcurrencyScope] = Field(None, description="CONCURRENT_COUNT scope")


ConditionTreeInput.model_rebuild()


class RuleCheckRequest(BaseModel):
    """Request model for an ad-hoc rule check."""
    tenant_id: str = Field(..., description="Tenant (practice) ID")
    rule_set_id: Optional[str] = Field(None, description="Rule set; defaults to the active one")
    appointment_type_id: str = Field(..., description="Appointment type ID")
    practitioner_id: str = Field(..., description="Practitioner ID")
    location_id: Optional[str] = Field(None, description="Location ID")
    date_time: datetime = Field(..., description="Candidate slot start (timezone-aware)")
    requested_at: Optional[datetime] = Field(None, description="When the booking was requested")
    client_type: Optional[str] = Field(None, description="Client type tag")

    def to_context(self) -> AppointmentContext:
        return AppointmentContext(
            appointment_type_id=self.appointment_type_id,
            practitioner_id=self.practitioner_id,
            location_id=self.location_id,
            date_time=self.date_time,
            requested_at=self.requested_at,
            client_type=self.client_type
        )


class RuleCheckResponse(BaseModel):
    """Response model for an ad-hoc rule check."""
    is_blocked: bool = Field(..., description="Whether the booking is blocked")
    blocked_by_rule_ids: List[str] = Field(default_factory=list, description="Every rule that matched")
    rule_set_id: Optional[str] = Field(None, description="Rule set that was evaluated")


class RuleDescriptionResponse(BaseModel):
    """Response model for a rule's tree description."""
    rule_id: str
    description: str
    tree_structure: str


class RuleCreateRequest(BaseModel):
    """Request model for creating a rule from a nested condition tree."""
    tenant_id: str = Field(..., description="Tenant (practice) ID")
    rule_set_id: str = Field(..., description="Rule set the rule belongs to")
    enabled: bool = Field(True, description="Whether the rule is active")
    condition_tree: ConditionTreeInput = Field(..., description="Rule body")


class RuleCreateResponse(BaseModel):
    rule_id: str
    rule_set_id: str
    node_count: int
