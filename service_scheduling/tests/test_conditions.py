"""
Unit tests for leaf condition evaluation.
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from shared.errors import PreloadMismatchError, StructuralCorruptionError
from service_scheduling.app.preload.day_data import Appointment
from service_scheduling.app.rules.conditions import evaluate_condition
from service_scheduling.app.rules.models import (
    AppointmentContext, ConcurrencyScope, ConcurrentCountValue, ConditionOperator, ConditionType,
    DateRangeValue, DayOfWeekValue, IdSetValue, NodeType, NumberValue, RuleConditionNode, TimeRangeValue,
)

MONDAY = date(2025, 3, 3)


def leaf(condition_type, operator, value, node_id="leaf-1"):
    return RuleConditionNode(
        id=node_id,
        tenant_id="tenant-1",
        rule_set_id="rule-set-1",
        node_type=NodeType.CONDITION,
        parent_id="rule-1",
        condition_type=condition_type,
        operator=operator,
        value=value,
    )


def ids(*values):
    return IdSetValue(ids=frozenset(values))


@pytest.fixture
def context(at):
    """Checkup with Dr. Müller at Main Street, Monday 09:00."""
    def _context(date_time=None, **overrides):
        fields = {
            "appointment_type_id": "checkup",
            "practitioner_id": "dr-mueller",
            "location_id": "loc-main",
            "date_time": date_time or at(MONDAY, 9),
        }
        fields.update(overrides)
        return AppointmentContext(**fields)
    return _context


@pytest.fixture
def monday_data(make_day_data, monday_appointments):
    return make_day_data(MONDAY, monday_appointments)


class TestMembershipConditions:
    """Test cases for id-set membership leaves."""

    def test_appointment_type_is(self, context, monday_data):
        """Test APPOINTMENT_TYPE IS matches a member."""
        node = leaf(ConditionType.APPOINTMENT_TYPE, ConditionOperator.IS, ids("checkup"))

        assert evaluate_condition(node, context(), monday_data) is True
        assert evaluate_condition(node, context(appointment_type_id="consultation"), monday_data) is False

    def test_appointment_type_is_not_inverts(self, context, monday_data):
        """Test APPOINTMENT_TYPE IS_NOT inverts membership."""
        node = leaf(ConditionType.APPOINTMENT_TYPE, ConditionOperator.IS_NOT, ids("checkup", "vaccination"))

        assert evaluate_condition(node, context(), monday_data) is False
        assert evaluate_condition(node, context(appointment_type_id="consultation"), monday_data) is True

    def test_practitioner_is(self, context, monday_data):
        """Test PRACTITIONER IS matches the context practitioner."""
        node = leaf(ConditionType.PRACTITIONER, ConditionOperator.IS, ids("dr-schmidt"))

        assert evaluate_condition(node, context(), monday_data) is False
        assert evaluate_condition(node, context(practitioner_id="dr-schmidt"), monday_data) is True

    def test_location_absent_is_not_a_member(self, context, monday_data):
        """Test a context without location is outside every location set."""
        is_node = leaf(ConditionType.LOCATION, ConditionOperator.IS, ids("loc-main"))
        is_not_node = leaf(ConditionType.LOCATION, ConditionOperator.IS_NOT, ids("loc-main"))

        assert evaluate_condition(is_node, context(location_id=None), monday_data) is False
        assert evaluate_condition(is_not_node, context(location_id=None), monday_data) is True

    def test_client_type_matches_tag(self, context, monday_data):
        """Test CLIENT_TYPE compares the client tag."""
        node = leaf(ConditionType.CLIENT_TYPE, ConditionOperator.IS, ids("new_patient"))

        assert evaluate_condition(node, context(client_type="new_patient"), monday_data) is True
        assert evaluate_condition(node, context(client_type="existing"), monday_data) is False

    @pytest.mark.parametrize("operator", [ConditionOperator.IS, ConditionOperator.IS_NOT])
    def test_client_type_absent_never_matches(self, context, monday_data, operator):
        """Test CLIENT_TYPE without a client tag is false for both operators."""
        node = leaf(ConditionType.CLIENT_TYPE, operator, ids("new_patient"))

        assert evaluate_condition(node, context(), monday_data) is False

    def test_practitioner_tag(self, context, monday_data):
        """Test PRACTITIONER_TAG looks up the practitioner's tags."""
        node = leaf(ConditionType.PRACTITIONER_TAG, ConditionOperator.IS, ids("senior", "surgeon"))

        assert evaluate_condition(node, context(), monday_data) is True
        assert evaluate_condition(node, context(practitioner_id="dr-schmidt"), monday_data) is False

    def test_practitioner_tag_unknown_practitioner_has_no_tags(self, context, monday_data):
        """Test an unknown practitioner matches no tag."""
        is_node = leaf(ConditionType.PRACTITIONER_TAG, ConditionOperator.IS, ids("senior"))
        is_not_node = leaf(ConditionType.PRACTITIONER_TAG, ConditionOperator.IS_NOT, ids("senior"))

        assert evaluate_condition(is_node, context(practitioner_id="dr-unknown"), monday_data) is False
        assert evaluate_condition(is_not_node, context(practitioner_id="dr-unknown"), monday_data) is True


class TestCalendarConditions:
    """Test cases for date, weekday and time-of-day leaves."""

    def test_day_of_week_sweep(self, context, make_day_data, at):
        """Test DAY_OF_WEEK EQUALS 1 matches only the Monday of a 7-day sweep."""
        node = leaf(ConditionType.DAY_OF_WEEK, ConditionOperator.EQUALS, DayOfWeekValue(iso_day=1))

        for offset in range(7):
            day = MONDAY + timedelta(days=offset)
            result = evaluate_condition(node, context(at(day, 9)), make_day_data(day))
            assert result is (offset == 0), day

    def test_day_of_week_uses_tenant_timezone(self, context, monday_data):
        """Test Monday 00:30 in Berlin is still Sunday in UTC but counts as Monday."""
        node = leaf(ConditionType.DAY_OF_WEEK, ConditionOperator.IS, DayOfWeekValue(iso_day=1))
        sunday_utc = datetime(2025, 3, 2, 23, 30, tzinfo=timezone.utc)

        assert evaluate_condition(node, context(sunday_utc), monday_data) is True

    def test_day_of_week_is_not_and_comparators(self, context, monday_data):
        """Test DAY_OF_WEEK inequality and numeric comparison."""
        is_not_node = leaf(ConditionType.DAY_OF_WEEK, ConditionOperator.IS_NOT, DayOfWeekValue(iso_day=1))
        weekend_node = leaf(ConditionType.DAY_OF_WEEK, ConditionOperator.GREATER_OR_EQUAL, DayOfWeekValue(iso_day=6))

        assert evaluate_condition(is_not_node, context(), monday_data) is False
        assert evaluate_condition(weekend_node, context(), monday_data) is False

    def test_date_range_is_inclusive(self, context, make_day_data, at):
        """Test DATE_RANGE includes both boundary dates."""
        node = leaf(
            ConditionType.DATE_RANGE,
            ConditionOperator.IS,
            DateRangeValue(start=date(2025, 3, 3), end=date(2025, 3, 5)),
        )

        for day, expected in [
            (date(2025, 3, 2), False),
            (date(2025, 3, 3), True),
            (date(2025, 3, 5), True),
            (date(2025, 3, 6), False),
        ]:
            assert evaluate_condition(node, context(at(day, 9)), make_day_data(day)) is expected, day

    def test_time_range_is_half_open(self, context, monday_data, at):
        """Test TIME_RANGE includes the start and excludes the end."""
        node = leaf(
            ConditionType.TIME_RANGE,
            ConditionOperator.IS,
            TimeRangeValue(start=time(12, 0), end=time(13, 0)),
        )

        assert evaluate_condition(node, context(at(MONDAY, 11, 55)), monday_data) is False
        assert evaluate_condition(node, context(at(MONDAY, 12, 0)), monday_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 12, 55)), monday_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 13, 0)), monday_data) is False

    def test_time_range_reads_wall_clock(self, context, monday_data):
        """Test TIME_RANGE compares local time, not UTC."""
        node = leaf(
            ConditionType.TIME_RANGE,
            ConditionOperator.IS_NOT,
            TimeRangeValue(start=time(12, 0), end=time(13, 0)),
        )
        noon_berlin = datetime(2025, 3, 3, 11, 0, tzinfo=timezone.utc)

        assert evaluate_condition(node, context(noon_berlin), monday_data) is False


class TestDaysAhead:
    """Test cases for DAYS_AHEAD."""

    @pytest.fixture
    def node(self):
        return leaf(ConditionType.DAYS_AHEAD, ConditionOperator.GREATER_OR_EQUAL, NumberValue(value=7))

    def test_exactly_n_days_blocks(self, node, context, monday_data, at):
        """Test a request exactly N days ahead matches."""
        requested_at = at(MONDAY - timedelta(days=7), 18)

        assert evaluate_condition(node, context(requested_at=requested_at), monday_data) is True

    def test_n_minus_one_days_does_not_block(self, node, context, monday_data, at):
        """Test a request N-1 days ahead does not match."""
        requested_at = at(MONDAY - timedelta(days=6), 8)

        assert evaluate_condition(node, context(requested_at=requested_at), monday_data) is False

    def test_missing_requested_at(self, node, context, monday_data):
        """Test DAYS_AHEAD without a request time does not match."""
        assert evaluate_condition(node, context(), monday_data) is False

    def test_less_or_equal(self, context, monday_data, at):
        """Test DAYS_AHEAD LESS_OR_EQUAL for short-notice bookings."""
        node = leaf(ConditionType.DAYS_AHEAD, ConditionOperator.LESS_OR_EQUAL, NumberValue(value=1))

        assert evaluate_condition(node, context(requested_at=at(MONDAY, 7)), monday_data) is True
        assert evaluate_condition(
            node, context(requested_at=at(MONDAY - timedelta(days=2), 7)), monday_data
        ) is False


class TestCapacityConditions:
    """Test cases for DAILY_CAPACITY and CONCURRENT_COUNT."""

    def test_daily_capacity_counts_by_location(self, context, monday_data):
        """Test DAILY_CAPACITY reads the (type, practitioner, location) count."""
        reached_one = leaf(ConditionType.DAILY_CAPACITY, ConditionOperator.GREATER_OR_EQUAL, NumberValue(value=1))
        reached_two = leaf(ConditionType.DAILY_CAPACITY, ConditionOperator.GREATER_OR_EQUAL, NumberValue(value=2))

        assert evaluate_condition(reached_one, context(), monday_data) is True
        assert evaluate_condition(reached_two, context(), monday_data) is False

    def test_daily_capacity_without_location_spans_locations(self, context, monday_data):
        """Test DAILY_CAPACITY without a context location counts every location."""
        node = leaf(ConditionType.DAILY_CAPACITY, ConditionOperator.GREATER_OR_EQUAL, NumberValue(value=2))

        assert evaluate_condition(node, context(location_id=None), monday_data) is True

    def test_daily_capacity_other_day_is_preload_mismatch(self, context, monday_data, at):
        """Test DAILY_CAPACITY refuses a context outside the preloaded day."""
        node = leaf(ConditionType.DAILY_CAPACITY, ConditionOperator.GREATER_OR_EQUAL, NumberValue(value=1))

        with pytest.raises(PreloadMismatchError):
            evaluate_condition(node, context(at(MONDAY + timedelta(days=1), 9)), monday_data)

    def test_concurrent_count_practice_scope(self, context, make_day_data, at):
        """Test one existing booking at the instant plus the candidate reaches 2."""
        existing = Appointment(
            id="appt-1",
            start=at(MONDAY, 9),
            appointment_type_id="checkup",
            practitioner_id="dr-schmidt",
            location_id="loc-main",
        )
        day_data = make_day_data(MONDAY, [existing])
        node = leaf(
            ConditionType.CONCURRENT_COUNT,
            ConditionOperator.GREATER_OR_EQUAL,
            ConcurrentCountValue(scope=ConcurrencyScope.PRACTICE, value=2),
        )

        assert evaluate_condition(node, context(at(MONDAY, 9)), day_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 9, 5)), day_data) is False
        assert evaluate_condition(node, context(at(MONDAY, 8, 55)), day_data) is False

    def test_concurrent_count_matches_exact_instant_across_offsets(self, context, make_day_data, at):
        """Test the same instant expressed in UTC still finds the booking."""
        existing = Appointment(
            id="appt-1",
            start=datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc),
            appointment_type_id="checkup",
            practitioner_id="dr-schmidt",
        )
        node = leaf(
            ConditionType.CONCURRENT_COUNT,
            ConditionOperator.GREATER_OR_EQUAL,
            ConcurrentCountValue(scope=ConcurrencyScope.PRACTICE, value=2),
        )

        assert evaluate_condition(node, context(at(MONDAY, 9)), make_day_data(MONDAY, [existing])) is True

    def test_concurrent_count_practitioner_scope(self, context, monday_data, at):
        """Test practitioner scope only counts the context practitioner's bookings."""
        node = leaf(
            ConditionType.CONCURRENT_COUNT,
            ConditionOperator.GREATER_OR_EQUAL,
            ConcurrentCountValue(scope=ConcurrencyScope.PRACTITIONER, value=2),
        )

        assert evaluate_condition(node, context(at(MONDAY, 9)), monday_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 9), practitioner_id="dr-new"), monday_data) is False

    def test_concurrent_count_location_scope_and_type_filter(self, context, monday_data, at):
        """Test location scope combined with an appointment-type filter."""
        node = leaf(
            ConditionType.CONCURRENT_COUNT,
            ConditionOperator.GREATER_OR_EQUAL,
            ConcurrentCountValue(
                scope=ConcurrencyScope.LOCATION,
                value=2,
                appointment_type_ids=frozenset({"consultation"}),
            ),
        )

        assert evaluate_condition(node, context(at(MONDAY, 9)), monday_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 9), location_id="loc-north"), monday_data) is False

    def test_concurrent_count_location_scope_without_context_location(self, context, make_day_data, at):
        """Test location scope counts practice-wide when the context has no location."""
        existing = [
            Appointment(id="appt-1", start=at(MONDAY, 9), appointment_type_id="checkup",
                        practitioner_id="dr-schmidt", location_id="loc-main"),
            Appointment(id="appt-2", start=at(MONDAY, 9), appointment_type_id="checkup",
                        practitioner_id="dr-schmidt", location_id="loc-north"),
        ]
        day_data = make_day_data(MONDAY, existing)
        node = leaf(
            ConditionType.CONCURRENT_COUNT,
            ConditionOperator.GREATER_OR_EQUAL,
            ConcurrentCountValue(scope=ConcurrencyScope.LOCATION, value=3),
        )

        assert evaluate_condition(node, context(at(MONDAY, 9), location_id=None), day_data) is True
        assert evaluate_condition(node, context(at(MONDAY, 9)), day_data) is False


class TestCorruptLeaves:
    """Test cases for malformed leaves."""

    def test_missing_operator(self, context, monday_data):
        """Test a leaf without operator is corruption."""
        node = leaf(ConditionType.APPOINTMENT_TYPE, None, ids("checkup"))

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)

    def test_missing_condition_type(self, context, monday_data):
        """Test a leaf without condition type is corruption."""
        node = leaf(None, ConditionOperator.IS, ids("checkup"))

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)

    def test_unknown_condition_type(self, context, monday_data):
        """Test an unrecognized condition type is corruption, not a non-match."""
        node = leaf("WEATHER", ConditionOperator.IS, ids("rain"))

        with pytest.raises(StructuralCorruptionError) as exc_info:
            evaluate_condition(node, context(), monday_data)

        assert exc_info.value.details["condition_type"] == "WEATHER"

    def test_operator_not_applicable(self, context, monday_data):
        """Test a comparator on a membership leaf is corruption."""
        node = leaf(ConditionType.APPOINTMENT_TYPE, ConditionOperator.GREATER_OR_EQUAL, ids("checkup"))

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)

    def test_days_ahead_with_membership_operator(self, context, monday_data, at):
        """Test DAYS_AHEAD IS is corruption even without a request time."""
        node = leaf(ConditionType.DAYS_AHEAD, ConditionOperator.IS, NumberValue(value=3))

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)

    def test_mismatched_payload(self, context, monday_data):
        """Test a payload of the wrong shape is corruption."""
        node = leaf(ConditionType.APPOINTMENT_TYPE, ConditionOperator.IS, NumberValue(value=1))

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)

    def test_composition_node_rejected(self, context, monday_data):
        """Test leaf evaluation refuses an AND node."""
        node = RuleConditionNode(id="and-1", tenant_id="tenant-1", rule_set_id="rule-set-1", node_type=NodeType.AND)

        with pytest.raises(StructuralCorruptionError):
            evaluate_condition(node, context(), monday_data)
