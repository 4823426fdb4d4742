"""
Trading Loop Manager Module for Agent Trader.

One recurring asyncio timer per running strategy. Each timer fires the
trading cycle in its own task; a tick that finds the previous cycle still
running is skipped, never queued. ``start`` and ``stop`` are synchronous so
registration is atomic on the event loop.
"""

import asyncio
import functools
import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from agent_trader.utils.date_utils import add_seconds, now_utc
from agent_trader.utils.exceptions import (
    AlreadyRunningError,
    CycleError,
    NotRunningError,
    PersistenceError,
    SchedulingError,
)


logger = logging.getLogger(__name__)


CycleCallable = Callable[[str], Awaitable[Any]]


class LoopStatus(str, Enum):
    """Strategy loop status."""

    STOPPED = "stopped"
    RUNNING = "running"


class StrategyRuntimeState(BaseModel):
    """Runtime bookkeeping for one strategy's loop."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    strategy_id: str
    status: LoopStatus = LoopStatus.RUNNING
    interval_seconds: float = Field(gt=0.0)
    started_at: datetime = Field(default_factory=now_utc)
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    cycle_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None

    timer_task: Optional[asyncio.Task] = Field(default=None, exclude=True)
    cycle_task: Optional[asyncio.Task] = Field(default=None, exclude=True)

    @property
    def cycle_in_flight(self) -> bool:
        return self.cycle_task is not None and not self.cycle_task.done()


class TradingLoopManager:
    """
    Registry of running strategy loops.

    A strategy has at most one registered timer. ``start`` does not run a
    cycle immediately; the first cycle happens one interval later.
    """

    def __init__(self, cycle: CycleCallable, default_interval: float = 300.0) -> None:
        self._cycle = cycle
        self._default_interval = default_interval
        self._registry: dict[str, StrategyRuntimeState] = {}
        self._lock = threading.Lock()
        # Keyed by strategy id and kept across stop/start, so a restarted
        # strategy still sees a cycle left over from its previous run.
        self._cycles: dict[str, asyncio.Task] = {}

    # =========================================================================
    # CONTROL
    # =========================================================================

    def start(self, strategy_id: str, interval: Optional[float] = None) -> StrategyRuntimeState:
        """
        Register a recurring loop for a strategy.

        Args:
            strategy_id: Strategy to run
            interval: Seconds between cycles (defaults to the manager default)

        Returns:
            The new runtime state

        Raises:
            AlreadyRunningError: The strategy already has a loop
            SchedulingError: Invalid interval or no running event loop
        """
        interval = interval if interval is not None else self._default_interval
        if interval <= 0:
            raise SchedulingError(
                f"Interval must be positive, got {interval}",
                details={"strategy_id": strategy_id},
            )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SchedulingError("start() requires a running event loop", cause=e) from e

        with self._lock:
            if strategy_id in self._registry:
                raise AlreadyRunningError(
                    f"Strategy {strategy_id} is already running",
                    details={"strategy_id": strategy_id},
                )
            state = StrategyRuntimeState(
                strategy_id=strategy_id,
                interval_seconds=interval,
                next_run_at=add_seconds(now_utc(), interval),
            )
            state.timer_task = loop.create_task(
                self._run_timer(state), name=f"strategy-loop-{strategy_id}"
            )
            self._registry[strategy_id] = state

        logger.info(
            f"Started loop for strategy {strategy_id} every {interval:g}s",
            extra={"strategy_id": strategy_id},
        )
        return state

    def stop(self, strategy_id: str) -> StrategyRuntimeState:
        """
        Cancel a strategy's timer. A cycle already in flight may finish.

        Raises:
            NotRunningError: The strategy has no loop
        """
        with self._lock:
            state = self._registry.pop(strategy_id, None)
            if state is None:
                raise NotRunningError(
                    f"Strategy {strategy_id} is not running",
                    details={"strategy_id": strategy_id},
                )
            if state.timer_task is not None:
                state.timer_task.cancel()
            state.status = LoopStatus.STOPPED
            state.next_run_at = None

        logger.info(
            f"Stopped loop for strategy {strategy_id}",
            extra={"strategy_id": strategy_id, "cycles": state.cycle_count},
        )
        return state

    def stop_all(self) -> list[str]:
        """Stop every loop; returns the stopped strategy ids."""
        with self._lock:
            strategy_ids = list(self._registry)
        stopped = []
        for strategy_id in strategy_ids:
            try:
                self.stop(strategy_id)
            except SchedulingError:
                continue
            stopped.append(strategy_id)
        return stopped

    async def recover(self, store: Any) -> list[str]:
        """
        Register a loop for every strategy the store marks active.

        No cycle runs immediately. A store failure resumes nothing; a failure
        for one strategy skips only that strategy.

        Args:
            store: TradingStore

        Returns:
            Ids of the strategies resumed
        """
        try:
            strategies = await store.list_active_strategies()
        except PersistenceError as e:
            logger.error(f"Could not load active strategies, none resumed: {e.message}")
            return []

        resumed = []
        for strategy in strategies:
            try:
                self.start(strategy.id, strategy.interval_seconds)
            except SchedulingError as e:
                logger.warning(
                    f"Strategy {strategy.id} not resumed: {e.message}",
                    extra={"strategy_id": strategy.id},
                )
                continue
            resumed.append(strategy.id)

        logger.info(f"Recovered {len(resumed)} of {len(strategies)} active strategies")
        return resumed

    async def shutdown(self, timeout: Optional[float] = 30.0) -> None:
        """Stop all loops and wait for in-flight cycles to finish."""
        self.stop_all()
        pending = [t for t in self._cycles.values() if not t.done()]
        if not pending:
            return
        logger.info(f"Waiting for {len(pending)} in-flight cycle(s)")
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning(f"Cancelled {len(not_done)} cycle(s) that did not finish in time")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def cycle_in_flight(self, strategy_id: str) -> bool:
        """True while a cycle for the strategy is executing, registered or not."""
        task = self._cycles.get(strategy_id)
        return task is not None and not task.done()

    def is_running(self, strategy_id: str) -> bool:
        with self._lock:
            return strategy_id in self._registry

    def status(self, strategy_id: str) -> Optional[StrategyRuntimeState]:
        with self._lock:
            return self._registry.get(strategy_id)

    def statuses(self) -> list[dict[str, Any]]:
        with self._lock:
            states = list(self._registry.values())
        return [state.model_dump(mode="json") for state in states]

    # =========================================================================
    # TASKS
    # =========================================================================

    async def _run_timer(self, state: StrategyRuntimeState) -> None:
        extra = {"strategy_id": state.strategy_id}
        while True:
            await asyncio.sleep(state.interval_seconds)
            state.next_run_at = add_seconds(now_utc(), state.interval_seconds)

            if self.cycle_in_flight(state.strategy_id):
                state.skipped_count += 1
                logger.warning(
                    f"Previous cycle still running for strategy {state.strategy_id}, skipping tick",
                    extra={**extra, "skipped": state.skipped_count},
                )
                continue

            task = asyncio.get_running_loop().create_task(
                self._run_cycle(state), name=f"strategy-cycle-{state.strategy_id}"
            )
            state.cycle_task = task
            self._cycles[state.strategy_id] = task
            task.add_done_callback(functools.partial(self._forget_cycle, state.strategy_id))

    def _forget_cycle(self, strategy_id: str, task: asyncio.Task) -> None:
        if self._cycles.get(strategy_id) is task:
            del self._cycles[strategy_id]

    async def _run_cycle(self, state: StrategyRuntimeState) -> None:
        extra = {"strategy_id": state.strategy_id}
        try:
            await self._cycle(state.strategy_id)
            state.cycle_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = CycleError(
                f"Cycle failed for strategy {state.strategy_id}: {e}",
                details={"strategy_id": state.strategy_id},
                cause=e,
            )
            state.error_count += 1
            state.last_error = error.message
            logger.error(error.message, extra={**extra, "error_type": type(e).__name__}, exc_info=e)
        finally:
            state.last_run_at = now_utc()
