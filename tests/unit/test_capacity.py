from __future__ import annotations

import pytest

from pretender_py import ValidationError
from pretender_py.capacity import (
    CapacityTracker,
    read_capacity_units,
    write_capacity_units,
)


@pytest.mark.parametrize(
    "size, expected",
    [(0, 1), (1, 1), (4096, 1), (4097, 2), (12288, 3)],
)
def test_read_units_round_up_per_4kb(size: int, expected: int) -> None:
    assert read_capacity_units(size) == expected


@pytest.mark.parametrize(
    "size, expected",
    [(0, 1), (1024, 1), (1025, 2), (400000, 391)],
)
def test_write_units_round_up_per_kb(size: int, expected: int) -> None:
    assert write_capacity_units(size) == expected


def test_empty_read_still_costs_one_unit() -> None:
    assert read_capacity_units(0) == 1
    assert write_capacity_units(0) == 1


def test_tracker_reports_nothing_when_disabled() -> None:
    tracker = CapacityTracker()
    tracker.read("orders", 2)
    assert tracker.consumed() == []
    assert tracker.consumed_for("orders") is None


def test_tracker_totals_reads_writes_and_indexes() -> None:
    tracker = CapacityTracker("INDEXES")
    tracker.read("orders", 2)
    tracker.write("orders", 3, index_units={"by_status": 2})
    tracker.write("users", 1)

    orders = tracker.consumed_for("orders")
    assert orders is not None
    assert orders.read_capacity_units == 2.0
    assert orders.write_capacity_units == 3.0
    assert orders.capacity_units == 7.0
    assert orders.global_secondary_indexes == {"by_status": 2.0}
    assert orders.to_wire(include_indexes=True)["GlobalSecondaryIndexes"] == {
        "by_status": {"CapacityUnits": 2.0}
    }
    assert [c.table_name for c in tracker.consumed()] == ["orders", "users"]


def test_total_mode_hides_index_breakdown_but_counts_it() -> None:
    tracker = CapacityTracker("total")
    tracker.write("orders", 1, index_units={"by_status": 1})

    capacity = tracker.consumed_for("orders")
    assert capacity is not None
    assert capacity.capacity_units == 2.0
    assert capacity.global_secondary_indexes == {}
    assert "GlobalSecondaryIndexes" not in capacity.to_wire()


def test_transaction_multiplier_doubles_units() -> None:
    tracker = CapacityTracker("TOTAL", multiplier=2)
    tracker.write("orders", 1, index_units={"by_status": 1})
    tracker.read("orders", 1)

    capacity = tracker.consumed_for("orders")
    assert capacity is not None
    assert capacity.write_capacity_units == 2.0
    assert capacity.read_capacity_units == 2.0
    assert capacity.capacity_units == 6.0


def test_unknown_return_consumed_capacity_mode() -> None:
    with pytest.raises(ValidationError, match="unsupported ReturnConsumedCapacity"):
        CapacityTracker("SOME")
