"""
Test cases for the dispatcher cycle.
Covers idempotence, failure isolation, send errors and cycle serialization.
"""

import asyncio

import pytest

from conftest import StubFetcher, make_payload
from pipeline.dispatcher import Dispatcher
from pipeline.exceptions import FetchError, SendError
from pipeline.formatter import CHANGES_HEADING
from pipeline.models import CycleOutcome


class TestDispatcherCycle:
    """Test cases for sequential cycles."""

    @pytest.mark.asyncio
    async def test_first_cycle_initializes_and_notifies(self, sample_payload, mock_notifier):
        dispatcher = Dispatcher(StubFetcher(sample_payload), mock_notifier)

        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.INITIALIZED
        assert result.notified is True
        assert result.deltas == []
        assert dispatcher.snapshot is result.snapshot
        mock_notifier.send.assert_called_once()
        assert CHANGES_HEADING not in mock_notifier.send.call_args[0][0]

    @pytest.mark.asyncio
    async def test_identical_payloads_notify_once(self, sample_payload, mock_notifier):
        dispatcher = Dispatcher(StubFetcher(sample_payload, sample_payload), mock_notifier)

        first = await dispatcher.run_cycle()
        second = await dispatcher.run_cycle()

        assert first.outcome == CycleOutcome.INITIALIZED
        assert second.outcome == CycleOutcome.UNCHANGED
        assert second.notified is False
        assert mock_notifier.send.call_count == 1

    @pytest.mark.asyncio
    async def test_unchanged_keeps_stored_snapshot(self, sample_payload, mock_notifier):
        dispatcher = Dispatcher(StubFetcher(sample_payload, sample_payload), mock_notifier)

        await dispatcher.run_cycle()
        stored = dispatcher.snapshot
        await dispatcher.run_cycle()

        assert dispatcher.snapshot is stored

    @pytest.mark.asyncio
    async def test_change_updates_and_notifies_with_deltas(self, mock_notifier):
        before = make_payload(seeds={"Carrot": "3"})
        after = make_payload(seeds={"Carrot": "7", "Tomato": "2"})
        dispatcher = Dispatcher(StubFetcher(before, after), mock_notifier)

        await dispatcher.run_cycle()
        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.UPDATED
        assert [(d.item_name, d.change) for d in result.deltas] == [("Carrot", 4), ("Tomato", 2)]
        assert dispatcher.snapshot.quantities("seeds") == {"Carrot": 7, "Tomato": 2}
        assert mock_notifier.send.call_count == 2

        message = mock_notifier.send.call_args[0][0]
        assert CHANGES_HEADING in message
        assert "• Carrot +4" in message
        assert "• Tomato +2" in message

    @pytest.mark.asyncio
    async def test_disappearance_only_is_update_without_deltas(self, mock_notifier):
        before = make_payload(seeds={"Carrot": "3", "Tomato": "1"})
        after = make_payload(seeds={"Carrot": "3"})
        dispatcher = Dispatcher(StubFetcher(before, after), mock_notifier)

        await dispatcher.run_cycle()
        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.UPDATED
        assert result.deltas == []
        assert mock_notifier.send.call_count == 2
        assert CHANGES_HEADING not in mock_notifier.send.call_args[0][0]


class TestDispatcherFailures:
    """Test cases for failure handling."""

    @pytest.mark.asyncio
    async def test_fetch_error_leaves_state_untouched(self, sample_payload, mock_notifier):
        changed = make_payload(seeds={"Carrot": "9"})
        dispatcher = Dispatcher(
            StubFetcher(sample_payload, FetchError("timeout", source="stock"), changed),
            mock_notifier
        )

        await dispatcher.run_cycle()
        stored = dispatcher.snapshot
        failed = await dispatcher.run_cycle()

        assert failed.outcome == CycleOutcome.FAILED
        assert "fetch failed" in failed.reason
        assert failed.snapshot is None
        assert dispatcher.snapshot is stored
        assert mock_notifier.send.call_count == 1

        recovered = await dispatcher.run_cycle()
        assert recovered.outcome == CycleOutcome.UPDATED

    @pytest.mark.asyncio
    async def test_normalization_error_leaves_state_untouched(self, sample_payload, mock_notifier):
        dispatcher = Dispatcher(StubFetcher(sample_payload, {"egg": {}}), mock_notifier)

        await dispatcher.run_cycle()
        stored = dispatcher.snapshot
        failed = await dispatcher.run_cycle()

        assert failed.outcome == CycleOutcome.FAILED
        assert "normalization failed" in failed.reason
        assert dispatcher.snapshot is stored
        assert mock_notifier.send.call_count == 1

    @pytest.mark.asyncio
    async def test_failure_before_first_snapshot(self, mock_notifier):
        dispatcher = Dispatcher(StubFetcher(FetchError("boom")), mock_notifier)

        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.FAILED
        assert dispatcher.snapshot is None
        mock_notifier.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_error_does_not_roll_back(self, mock_notifier):
        before = make_payload(seeds={"Carrot": "3"})
        after = make_payload(seeds={"Carrot": "7"})
        dispatcher = Dispatcher(StubFetcher(before, after, after), mock_notifier)

        await dispatcher.run_cycle()
        mock_notifier.send.side_effect = SendError("503 from webhook", transport="webhook")
        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.UPDATED
        assert result.notified is False
        assert "503" in result.send_error
        assert dispatcher.snapshot.quantities("seeds") == {"Carrot": 7}

        # The change is consumed: the same state does not re-notify
        mock_notifier.send.side_effect = None
        again = await dispatcher.run_cycle()
        assert again.outcome == CycleOutcome.UNCHANGED
        assert mock_notifier.send.call_count == 2

    @pytest.mark.asyncio
    async def test_missing_notifier_skips_send(self, sample_payload):
        dispatcher = Dispatcher(StubFetcher(sample_payload), notifier=None)

        result = await dispatcher.run_cycle()

        assert result.outcome == CycleOutcome.INITIALIZED
        assert result.notified is False
        assert result.send_error is None
        assert dispatcher.snapshot is not None


class TestDispatcherConcurrency:
    """Test cases for serialized and coalesced cycles."""

    @pytest.mark.asyncio
    async def test_concurrent_cycles_send_one_compounded_notification(self, mock_notifier):
        base = make_payload(seeds={"Carrot": "3"})
        first_read = make_payload(seeds={"Carrot": "5"})
        second_read = make_payload(seeds={"Carrot": "8"})
        dispatcher = Dispatcher(StubFetcher(base, first_read, second_read), mock_notifier)

        await dispatcher.run_cycle()
        mock_notifier.send.reset_mock()

        results = await asyncio.gather(dispatcher.run_cycle(), dispatcher.run_cycle())

        assert [r.outcome for r in results] == [CycleOutcome.UPDATED, CycleOutcome.UPDATED]
        assert results[0].coalesced is True
        assert results[0].notified is False
        assert results[1].notified is True

        mock_notifier.send.assert_called_once()
        message = mock_notifier.send.call_args[0][0]
        assert "• Carrot +5" in message
        assert "**Carrot**: 8" in message
        assert dispatcher.snapshot.quantities("seeds") == {"Carrot": 8}

        # The closing cycle reports the compounded change it sent
        assert [d.change for d in results[1].deltas] == [3]
        assert [d.change for d in results[1].reported_deltas] == [5]
        assert results[0].flushed_deltas is None

    @pytest.mark.asyncio
    async def test_drain_waits_for_in_flight_cycle(self, sample_payload):
        dispatcher = Dispatcher(StubFetcher(sample_payload), notifier=None)

        cycle = asyncio.ensure_future(dispatcher.run_cycle())
        await asyncio.sleep(0)
        assert dispatcher.busy

        await dispatcher.drain()

        assert cycle.done()
        assert dispatcher.snapshot is not None

    @pytest.mark.asyncio
    async def test_cycles_never_overlap(self, sample_payload):
        fetcher = StubFetcher(sample_payload)
        active = 0
        peak = 0
        original_fetch = fetcher.fetch_all

        async def tracking_fetch():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            try:
                return await original_fetch()
            finally:
                active -= 1

        fetcher.fetch_all = tracking_fetch
        dispatcher = Dispatcher(fetcher, notifier=None)

        await asyncio.gather(*(dispatcher.run_cycle() for _ in range(5)))

        assert peak == 1
        assert fetcher.calls == 5

    @pytest.mark.asyncio
    async def test_burst_reverting_to_base_sends_nothing(self, mock_notifier):
        base = make_payload(seeds={"Carrot": "3"})
        spike = make_payload(seeds={"Carrot": "5"})
        dispatcher = Dispatcher(StubFetcher(base, spike, base), mock_notifier)

        await dispatcher.run_cycle()
        mock_notifier.send.reset_mock()

        results = await asyncio.gather(dispatcher.run_cycle(), dispatcher.run_cycle())

        assert results[1].reported_deltas == []
        mock_notifier.send.assert_not_called()
        assert dispatcher.snapshot.quantities("seeds") == {"Carrot": 3}

    @pytest.mark.asyncio
    async def test_pending_change_flushed_by_failing_last_cycle(self, mock_notifier):
        base = make_payload(seeds={"Carrot": "3"})
        changed = make_payload(seeds={"Carrot": "4"})
        dispatcher = Dispatcher(StubFetcher(base, changed, {"stock": None}), mock_notifier)

        await dispatcher.run_cycle()
        mock_notifier.send.reset_mock()

        results = await asyncio.gather(dispatcher.run_cycle(), dispatcher.run_cycle())

        assert results[0].outcome == CycleOutcome.UPDATED
        assert results[1].outcome == CycleOutcome.FAILED
        assert results[1].notified is True
        mock_notifier.send.assert_called_once()
        assert "• Carrot +1" in mock_notifier.send.call_args[0][0]

    @pytest.mark.asyncio
    async def test_initial_burst_sends_snapshot_without_changes(self, mock_notifier):
        first = make_payload(seeds={"Carrot": "3"})
        second = make_payload(seeds={"Carrot": "6"})
        dispatcher = Dispatcher(StubFetcher(first, second), mock_notifier)

        results = await asyncio.gather(dispatcher.run_cycle(), dispatcher.run_cycle())

        assert results[0].outcome == CycleOutcome.INITIALIZED
        assert results[1].outcome == CycleOutcome.UPDATED
        mock_notifier.send.assert_called_once()
        message = mock_notifier.send.call_args[0][0]
        assert CHANGES_HEADING not in message
        assert "**Carrot**: 6" in message
