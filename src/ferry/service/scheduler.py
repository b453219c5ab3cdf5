"""
Task scheduler.

Every task gets one cron trigger loop plus one immediate run at start. Runs
execute in worker threads (all backend calls block) and are serialised per
task by the engine, so the immediate run and a cron tick of the same task
never overlap. A trigger loop waits for its own run before computing the next
fire time, so ticks missed during a long run coalesce into one.

``stop`` only halts the trigger loops. Runs already in flight finish on
their own; ``wait_idle`` awaits them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from ferry.config.tasks import Task
from ferry.service.cron_parser import CronParseError, next_fire_time_cron, validate_cron
from ferry.sync.engine import RunSummary, TransferEngine
from ferry.utils.logging import get_logger


class TaskScheduler:
    """
    Drive TransferEngine runs on each task's cron cadence.

    Args:
        tasks: Tasks to schedule
        engine: Engine that executes runs
        timezone: IANA timezone cron expressions are evaluated in (default: UTC)
        clock: Returns the current time as a timezone-aware datetime
        logger: Logger for scheduling events (default: ``ferry.service.scheduler``)
    """

    def __init__(
        self,
        tasks: list[Task],
        engine: TransferEngine,
        *,
        timezone: str | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.tasks = list(tasks)
        self.engine = engine
        self.timezone = timezone
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger or get_logger("ferry.service.scheduler")

        self._trigger_loops: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()
        self._next_fire: dict[str, datetime] = {}
        self._stopping = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def next_fire_times(self) -> dict[str, datetime]:
        """Next scheduled trigger per task (tasks without a valid cron are absent)."""
        return dict(self._next_fire)

    def start(self, *, run_immediately: bool = True) -> None:
        """
        Register every task's trigger, launch the immediate runs, then start the loops.

        Must be called from inside a running event loop.
        """
        if self._running:
            return
        self._stopping.clear()

        schedulable: list[Task] = []
        for task in self.tasks:
            try:
                validate_cron(task.cron)
            except CronParseError as e:
                self.logger.error(f"Failed to schedule task {task.name}: {e}")
            else:
                schedulable.append(task)
                self.logger.info(f"Scheduled task {task.name} with cron {task.cron}")

        if run_immediately:
            for task in self.tasks:
                self.logger.info(f"Executing immediate run for task: {task.name}")
                self._launch(task, trigger="startup")

        for task in schedulable:
            self._trigger_loops.append(asyncio.create_task(self._trigger_loop(task), name=f"ferry-cron-{task.name}"))
        self._running = True

    async def stop(self, *, wait: bool = False) -> None:
        """
        Halt the trigger loops so no new runs start.

        Args:
            wait: Also wait for in-flight runs to finish
        """
        self._stopping.set()
        for t in list(self._trigger_loops):
            t.cancel()
        if self._trigger_loops:
            await asyncio.gather(*self._trigger_loops, return_exceptions=True)
        self._trigger_loops.clear()
        self._next_fire.clear()
        self._running = False

        if wait:
            await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for every run that is currently in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _launch(self, task: Task, *, trigger: str) -> asyncio.Task:
        run = asyncio.create_task(self._run(task, trigger), name=f"ferry-run-{task.name}")
        self._inflight.add(run)
        run.add_done_callback(self._inflight.discard)
        return run

    async def _run(self, task: Task, trigger: str) -> RunSummary | None:
        try:
            return await asyncio.to_thread(self.engine.run_task, task)
        except Exception as e:
            self.logger.error(f"Task {task.name} failed ({trigger} run): {e}")
            return None

    async def _trigger_loop(self, task: Task) -> None:
        fire_at: datetime | None = None
        while not self._stopping.is_set():
            now = self.clock()
            try:
                fire_at = next_fire_time_cron(task.cron, now=now, timezone=self.timezone, previous=fire_at)
            except CronParseError as e:
                self.logger.error(f"Task {task.name}: cannot compute next fire time: {e}")
                return
            self._next_fire[task.name] = fire_at

            delay = max(0.0, (fire_at - now).total_seconds())
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                return
            except TimeoutError:
                pass

            run = self._launch(task, trigger="cron")
            # Shielded so cancelling this loop on stop leaves the run alone
            await asyncio.shield(run)
