# test_sync_triggers.py
#
#
# Imports
import asyncio
#
# Third-Party Imports
import pytest
#
# Local Imports
from course_tracker.Sync.Sync_Triggers import (
    AppStateMonitor, ConnectivityMonitor, SyncTriggerChannel, TriggerReason
)
#
#######################################################################################################################
#
# Test Classes

class TestTriggerChannel:
    def test_holds_a_single_pending_trigger(self):
        channel = SyncTriggerChannel()
        assert channel.send(TriggerReason.MANUAL) is True
        assert channel.send(TriggerReason.FOREGROUND) is False
        assert channel.dropped == 1
        assert channel.pending() is True

    @pytest.mark.asyncio
    async def test_next_returns_the_queued_reason(self):
        channel = SyncTriggerChannel()
        channel.send(TriggerReason.RECONNECT)
        assert await channel.next() == TriggerReason.RECONNECT
        assert channel.pending() is False
        assert channel.send(TriggerReason.MANUAL) is True


class TestConnectivityMonitor:
    def test_offline_to_online_sends_reconnect(self):
        channel = SyncTriggerChannel()
        monitor = ConnectivityMonitor(channel, initially_online=False)
        assert monitor.update(True) is True
        assert channel.pending()

    def test_staying_online_sends_nothing(self):
        channel = SyncTriggerChannel()
        monitor = ConnectivityMonitor(channel, initially_online=True)
        assert monitor.update(True) is False
        assert monitor.update(False) is False
        assert not channel.pending()

    def test_first_observation_is_not_a_transition(self):
        channel = SyncTriggerChannel()
        monitor = ConnectivityMonitor(channel)
        assert monitor.update(True) is False

    @pytest.mark.asyncio
    async def test_watch_feeds_probe_results(self):
        channel = SyncTriggerChannel()
        monitor = ConnectivityMonitor(channel, initially_online=False)
        results = iter([False, True])

        async def probe():
            try:
                return next(results)
            except StopIteration:
                raise ConnectionError("probe exhausted")

        task = asyncio.create_task(monitor.watch(probe, interval_seconds=0))
        reason = await asyncio.wait_for(channel.next(), timeout=1.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert reason == TriggerReason.RECONNECT


class TestAppStateMonitor:
    @pytest.mark.parametrize("previous, expected", [
        ("background", True),
        ("inactive", True),
        ("active", False),
        (None, False),
    ])
    def test_becoming_active(self, previous, expected):
        channel = SyncTriggerChannel()
        monitor = AppStateMonitor(channel, initial_state=previous)
        assert monitor.update("active") is expected
        assert channel.pending() is expected

    def test_going_to_background_sends_nothing(self):
        channel = SyncTriggerChannel()
        monitor = AppStateMonitor(channel, initial_state="active")
        assert monitor.update("background") is False


class TestRunForever:
    @pytest.mark.asyncio
    async def test_each_trigger_runs_a_cycle(self, sync_engine, mocker):
        channel = SyncTriggerChannel()
        ran = asyncio.Event()

        async def fake_trigger(reason):
            ran.set()

        trigger = mocker.patch.object(sync_engine, "trigger", side_effect=fake_trigger)
        loop_task = asyncio.create_task(sync_engine.run_forever(channel))
        channel.send(TriggerReason.STARTUP)
        await asyncio.wait_for(ran.wait(), timeout=1.0)
        loop_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await loop_task
        trigger.assert_called_once_with(TriggerReason.STARTUP)

    @pytest.mark.asyncio
    async def test_failed_cycle_is_retried_after_backoff(self, sync_engine, mocker):
        channel = SyncTriggerChannel()
        ran = asyncio.Event()

        async def fake_trigger(reason):
            ran.set()

        sync_engine.consecutive_failures = 1
        sync_engine.retry_base_seconds = 0.01
        trigger = mocker.patch.object(sync_engine, "trigger", side_effect=fake_trigger)
        loop_task = asyncio.create_task(sync_engine.run_forever(channel))
        await asyncio.wait_for(ran.wait(), timeout=1.0)
        loop_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await loop_task
        trigger.assert_any_call(TriggerReason.RETRY)

#
# End of test_sync_triggers.py
########################################################################################################################
