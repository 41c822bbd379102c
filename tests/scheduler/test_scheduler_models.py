"""
Test cases for scheduler and pipeline models.
"""

import pytest
from pydantic import ValidationError

from conftest import make_snapshot
from pipeline.models import CycleOutcome, CycleResult, Delta, StockItem
from scheduler.models import AlignmentPolicy, SchedulerConfig


class TestSchedulerConfig:
    """Test cases for SchedulerConfig model."""

    def test_defaults(self):
        config = SchedulerConfig()

        assert config.interval_minutes == 5
        assert config.alignment == AlignmentPolicy.WALL_CLOCK
        assert config.settle_seconds == 0
        assert config.run_on_startup is False
        assert config.interval_seconds == 300

    def test_alignment_from_string(self):
        config = SchedulerConfig(alignment="free_running")
        assert config.alignment == AlignmentPolicy.FREE_RUNNING

    def test_invalid_alignment(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(alignment="hourly")

    def test_invalid_interval(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(interval_minutes=0)

    def test_negative_settle(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(settle_seconds=-1)


class TestSnapshotModels:
    """Test cases for snapshot and delta models."""

    def test_snapshot_is_immutable(self):
        snapshot = make_snapshot(seeds=[("Carrot", 5)])
        with pytest.raises(ValidationError):
            snapshot.weather = "Rain"

    def test_stock_item_is_immutable(self):
        item = StockItem(name="Carrot", quantity=5)
        with pytest.raises(ValidationError):
            item.quantity = 6

    def test_items_of_absent_category(self):
        snapshot = make_snapshot(seeds=[("Carrot", 5)])
        assert snapshot.items("eggs") == []
        assert snapshot.quantities("eggs") == {}

    def test_display_dict(self):
        snapshot = make_snapshot(seeds=[("Carrot", 5)], weather="Rain", temperature="12")
        display = snapshot.to_display_dict()

        assert display["categories"]["seeds"] == [{"name": "Carrot", "quantity": 5}]
        assert display["categories"]["gear"] == []
        assert display["weather"] == "Rain"
        assert display["observed_at"] == "2026-10-18T12:00:00"

    def test_item_count(self):
        snapshot = make_snapshot(seeds=[("Carrot", 5)], gear=[("Trowel", 1), ("Rake", 2)])
        assert snapshot.item_count() == 3

    def test_delta_signed_change(self):
        assert Delta(category="seeds", item_name="X", previous_quantity=1, current_quantity=3, change=2).signed_change == "+2"
        assert Delta(category="seeds", item_name="X", previous_quantity=3, current_quantity=1, change=-2).signed_change == "-2"


class TestCycleResult:
    """Test cases for CycleResult model."""

    def test_failed_result(self):
        result = CycleResult(cycle_id="c1", outcome=CycleOutcome.FAILED, reason="fetch failed: timeout")

        assert result.success is False
        assert result.snapshot is None

    @pytest.mark.parametrize("outcome", [
        CycleOutcome.INITIALIZED,
        CycleOutcome.UPDATED,
        CycleOutcome.UNCHANGED,
    ])
    def test_success(self, outcome):
        result = CycleResult(cycle_id="c1", outcome=outcome)
        assert result.success is True

    def test_reported_deltas_default_to_cycle_deltas(self):
        delta = Delta(category="seeds", item_name="X", previous_quantity=1, current_quantity=3, change=2)
        result = CycleResult(cycle_id="c1", outcome=CycleOutcome.UPDATED, deltas=[delta])

        assert result.flushed_deltas is None
        assert result.reported_deltas == [delta]

    def test_reported_deltas_prefer_flushed(self):
        cycle_delta = Delta(category="seeds", item_name="X", previous_quantity=3, current_quantity=5, change=2)
        burst_delta = Delta(category="seeds", item_name="X", previous_quantity=1, current_quantity=5, change=4)
        result = CycleResult(
            cycle_id="c1",
            outcome=CycleOutcome.UPDATED,
            deltas=[cycle_delta],
            flushed_deltas=[burst_delta]
        )

        assert result.reported_deltas == [burst_delta]

    def test_reverted_burst_reports_no_deltas(self):
        delta = Delta(category="seeds", item_name="X", previous_quantity=5, current_quantity=1, change=-4)
        result = CycleResult(cycle_id="c1", outcome=CycleOutcome.UPDATED, deltas=[delta], flushed_deltas=[])

        assert result.reported_deltas == []

    def test_outcome_values(self):
        assert CycleOutcome.INITIALIZED == "initialized"
        assert CycleOutcome.UNCHANGED == "unchanged"
        assert CycleOutcome.UPDATED == "updated"
        assert CycleOutcome.FAILED == "failed"
