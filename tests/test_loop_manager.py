import asyncio

import pytest

from agent_trader.core.loop_manager import LoopStatus, TradingLoopManager
from agent_trader.core.models import Strategy
from agent_trader.data.storage import SQLiteStore
from agent_trader.utils.exceptions import (
    AlreadyRunningError,
    NotRunningError,
    PersistenceError,
    SchedulingError,
)


class Recorder:
    def __init__(self, block=None, fail=False):
        self.calls = []
        self.block = block
        self.fail = fail

    async def __call__(self, strategy_id):
        self.calls.append(strategy_id)
        if self.block is not None:
            await self.block.wait()
        if self.fail:
            raise RuntimeError("boom")


def test_second_start_raises_and_creates_no_task():
    async def run():
        manager = TradingLoopManager(Recorder(), default_interval=10)
        state = manager.start("s1")
        tasks_before = len(asyncio.all_tasks())
        with pytest.raises(AlreadyRunningError):
            manager.start("s1")
        assert len(asyncio.all_tasks()) == tasks_before
        assert manager.status("s1") is state
        manager.stop_all()

    asyncio.run(run())


def test_stop_without_start_raises():
    async def run():
        manager = TradingLoopManager(Recorder())
        with pytest.raises(NotRunningError):
            manager.stop("missing")
        assert manager.statuses() == []

    asyncio.run(run())


def test_start_requires_event_loop():
    with pytest.raises(SchedulingError):
        TradingLoopManager(Recorder()).start("s1")


def test_start_does_not_tick_immediately_and_stop_cancels():
    recorder = Recorder()

    async def run():
        manager = TradingLoopManager(recorder, default_interval=0.05)
        manager.start("s1")
        await asyncio.sleep(0)
        assert recorder.calls == []

        await asyncio.sleep(0.08)
        assert recorder.calls == ["s1"]

        state = manager.stop("s1")
        assert state.status == LoopStatus.STOPPED
        assert not manager.is_running("s1")
        await asyncio.sleep(0.12)

    asyncio.run(run())
    assert recorder.calls == ["s1"]


def test_overlapping_tick_is_skipped():
    async def run():
        release = asyncio.Event()
        recorder = Recorder(block=release)
        manager = TradingLoopManager(recorder, default_interval=0.02)
        state = manager.start("s1")

        await asyncio.sleep(0.15)
        assert recorder.calls == ["s1"]
        assert state.skipped_count >= 1

        release.set()
        await manager.shutdown()
        assert state.cycle_count == 1

    asyncio.run(run())


def test_failing_cycle_keeps_schedule():
    async def run():
        recorder = Recorder(fail=True)
        manager = TradingLoopManager(recorder, default_interval=0.02)
        state = manager.start("s1")
        await asyncio.sleep(0.15)
        await manager.shutdown()
        return recorder, state

    recorder, state = asyncio.run(run())
    assert len(recorder.calls) >= 2
    assert state.error_count == len(recorder.calls)
    assert "boom" in state.last_error


def test_stop_lets_in_flight_cycle_finish():
    async def run():
        release = asyncio.Event()
        recorder = Recorder(block=release)
        manager = TradingLoopManager(recorder, default_interval=0.02)
        state = manager.start("s1")
        await asyncio.sleep(0.03)
        manager.stop("s1")

        release.set()
        await asyncio.sleep(0.01)
        assert state.cycle_count == 1
        assert recorder.calls == ["s1"]

    asyncio.run(run())


def test_restart_waits_for_cycle_from_previous_run():
    class Tracker:
        def __init__(self, release):
            self.release = release
            self.active = 0
            self.peak = 0
            self.calls = 0

        async def __call__(self, strategy_id):
            self.calls += 1
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                await self.release.wait()
            finally:
                self.active -= 1

    async def run():
        release = asyncio.Event()
        tracker = Tracker(release)
        manager = TradingLoopManager(tracker, default_interval=0.02)
        manager.start("s1")
        await asyncio.sleep(0.03)
        manager.stop("s1")
        assert manager.cycle_in_flight("s1")

        state = manager.start("s1")
        await asyncio.sleep(0.05)
        assert tracker.peak == 1
        assert tracker.calls == 1
        assert state.skipped_count >= 1

        release.set()
        await manager.shutdown()
        assert not manager.cycle_in_flight("s1")

    asyncio.run(run())


def test_recover_registers_active_strategies(db_path):
    async def run():
        async with SQLiteStore(db_path) as store:
            for name, active in (("a", True), ("b", True), ("c", False)):
                await store.create_strategy(Strategy(name=name, symbol="AAPL", is_active=active))

            manager = TradingLoopManager(Recorder(), default_interval=60)
            resumed = await manager.recover(store)
            assert len(resumed) == 2
            assert len(manager.statuses()) == 2
            assert all(manager.is_running(sid) for sid in resumed)
            manager.stop_all()

    asyncio.run(run())


def test_recover_survives_store_failure():
    class BrokenStore:
        async def list_active_strategies(self):
            raise PersistenceError("database locked")

    async def run():
        manager = TradingLoopManager(Recorder())
        assert await manager.recover(BrokenStore()) == []
        assert manager.statuses() == []

    asyncio.run(run())


def test_recover_skips_strategy_already_running():
    class Store:
        async def list_active_strategies(self):
            return [Strategy(id="s1", name="a", symbol="AAPL"), Strategy(id="s2", name="b", symbol="MSFT")]

    async def run():
        manager = TradingLoopManager(Recorder(), default_interval=60)
        manager.start("s1")
        assert await manager.recover(Store()) == ["s2"]
        manager.stop_all()

    asyncio.run(run())
