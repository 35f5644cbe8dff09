"""Run coordinator — per-task run state, mutual exclusion and run logs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import async_session
from strmsync.exceptions import ConfigNotReadyError, TaskAlreadyRunningError, TaskNotFoundError
from strmsync.models.base import utcnow
from strmsync.models.file_history import FileHistory
from strmsync.models.run_log import RunLog
from strmsync.models.task import Task
from strmsync.services.strm_generator import RunStats

if TYPE_CHECKING:
    from strmsync.services.config_store import ConfigStore
    from strmsync.services.notification_service import NotificationDispatcher
    from strmsync.services.strm_generator import StrmGenerator

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.IDLE: {RunState.RUNNING},
    RunState.RUNNING: {RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED},
    RunState.COMPLETED: {RunState.IDLE},
    RunState.FAILED: {RunState.IDLE},
    RunState.CANCELLED: {RunState.IDLE},
}

TIME_RANGES: dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

MSG_STARTED = "Generating strm files"
MSG_CONFIG_NOT_READY = ConfigNotReadyError.default_message
MSG_CANCELLED = "Run cancelled"
MSG_INTERRUPTED = "Interrupted by service restart"


@dataclass
class RunSummary:
    """Outcome of a run as returned to synchronous callers."""

    task_id: int
    task_name: str
    run_log_id: int | None
    status: str
    message: str | None
    start_time: datetime
    end_time: datetime | None = None
    duration: float | None = None
    counters: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_log(cls, task_name: str, log: RunLog) -> RunSummary:
        return cls(
            task_id=log.task_id,
            task_name=task_name,
            run_log_id=log.id,
            status=log.status,
            message=log.message,
            start_time=log.start_time,
            end_time=log.end_time,
            duration=log.duration,
            counters={k: getattr(log, k) for k in RunStats().to_dict()},
        )


@dataclass
class RunAck:
    """Immediate acknowledgment for a background run."""

    task_id: int
    task_name: str
    run_log_id: int
    status: str = RunState.RUNNING.value
    message: str = "Run started in background"


class RunCoordinator:
    """Starts, tracks and finalizes task runs.

    The persisted ``Task.running`` column is the source of truth; the
    in-process lock only closes the gap between reading and setting it.
    """

    def __init__(
        self,
        generator: StrmGenerator,
        config_store: ConfigStore,
        dispatcher: NotificationDispatcher | None = None,
        session_factory: Callable[[], AsyncSession] = async_session,
        max_concurrent_runs: int = 2,
    ):
        self._generator = generator
        self._config_store = config_store
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._pool = asyncio.Semaphore(max(max_concurrent_runs, 1))
        self._active: dict[int, asyncio.Task] = {}
        self._states: dict[int, RunState] = {}

    # --- State machine ---

    def state(self, task_id: int) -> RunState:
        return self._states.get(task_id, RunState.IDLE)

    def is_active(self, task_id: int) -> bool:
        return task_id in self._active

    def _transition(self, task_id: int, new_state: RunState) -> bool:
        current = self.state(task_id)
        if new_state not in VALID_TRANSITIONS.get(current, set()):
            logger.warning("Invalid run state transition for task %d: %s -> %s",
                           task_id, current, new_state)
            return False
        self._states[task_id] = new_state
        logger.debug("Task %d: %s -> %s", task_id, current.value, new_state.value)
        return True

    # --- Execution ---

    async def execute(self, task_id: int, sync: bool = False) -> RunSummary | RunAck:
        """Start a run; ``sync`` waits for the summary, otherwise returns an ack.

        Raises TaskNotFoundError or TaskAlreadyRunningError before any side effect.
        """
        async with self._lock:
            async with self._session_factory() as db:
                task = await db.get(Task, task_id)
                if task is None:
                    raise TaskNotFoundError(task_id)
                if task.running or task_id in self._active:
                    raise TaskAlreadyRunningError(task_id)

                try:
                    self._config_store.require_ready()
                except ConfigNotReadyError as e:
                    return await self._reject_not_ready(db, task, str(e))

                now = utcnow()
                task.running = True
                log = RunLog(task_id=task_id, status=RunState.RUNNING.value,
                             message=MSG_STARTED, start_time=now)
                db.add(log)
                await db.commit()
                task_name, log_id = task.name, log.id

            self._states[task_id] = RunState.IDLE
            self._transition(task_id, RunState.RUNNING)
            job = asyncio.create_task(self._run(task_id, log_id), name=f"strm-run-{task_id}")
            self._active[task_id] = job

        logger.info("Task %d (%s) started, run log %d", task_id, task_name, log_id)
        if sync:
            # Shield so a disconnecting caller does not cancel the run itself.
            return await asyncio.shield(job)
        return RunAck(task_id=task_id, task_name=task_name, run_log_id=log_id)

    async def _reject_not_ready(self, db: AsyncSession, task: Task, message: str) -> RunSummary:
        now = utcnow()
        log = RunLog(task_id=task.id, status=RunState.FAILED.value, message=message,
                     start_time=now, end_time=now, duration=0.0)
        db.add(log)
        await db.commit()
        logger.error("Task %d not started: %s", task.id, message)
        await self._notify(task, log)
        return RunSummary.from_log(task.name, log)

    async def _run(self, task_id: int, log_id: int) -> RunSummary:
        stats = RunStats()
        status, message = RunState.COMPLETED, None
        started = time.monotonic()
        try:
            async with self._pool:
                async with self._session_factory() as db:
                    task = await db.get(Task, task_id)
                    if task is None:
                        raise TaskNotFoundError(task_id)
                    await self._generator.run(db, task, log_id, stats)
            message = (
                f"Completed: {stats.generated_file} generated, {stats.overwrite_file} overwritten, "
                f"{stats.skip_file} skipped, {stats.failed_count} failed"
            )
        except asyncio.CancelledError:
            # The run ends; cancellation does not propagate past the run log.
            status, message = RunState.CANCELLED, MSG_CANCELLED
            logger.warning("Task %d cancelled", task_id)
        except Exception as e:
            status, message = RunState.FAILED, str(e) or e.__class__.__name__
            logger.error("Task %d failed: %s", task_id, message)

        try:
            return await self._finalize(task_id, log_id, status, stats, message,
                                        time.monotonic() - started)
        finally:
            self._active.pop(task_id, None)

    async def _finalize(
        self,
        task_id: int,
        log_id: int,
        status: RunState,
        stats: RunStats,
        message: str | None,
        duration: float,
    ) -> RunSummary:
        """Close the run log and release the task. Runs exactly once per run."""
        now = utcnow()
        async with self._session_factory() as db:
            log = await db.get(RunLog, log_id)
            task = await db.get(Task, task_id)
            stats.apply_to(log)
            log.status = status.value
            log.message = message
            log.end_time = now
            log.duration = round(duration, 3)
            task_name = task.name if task else ""
            if task is not None:
                task.running = False
                task.last_run_at = now
            await db.commit()

            self._transition(task_id, status)
            self._transition(task_id, RunState.IDLE)
            logger.info("Task %d finished: %s (%.1fs)", task_id, status.value, duration)

            if task is not None:
                await self._notify(task, log)
            return RunSummary.from_log(task_name, log)

    async def _notify(self, task: Task, log: RunLog) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.notify_run(task, log)
        except Exception as e:
            logger.error("Failed to queue notification for task %d: %s", task.id, e)

    async def cancel(self, task_id: int) -> bool:
        """Ask a live run to stop. Returns False if nothing is running."""
        job = self._active.get(task_id)
        if job is None or job.done():
            return False
        job.cancel()
        logger.info("Cancellation requested for task %d", task_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every live run and wait for their run logs to be written."""
        jobs = list(self._active.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)

    # --- Admin operations ---

    async def reset_status(self, db: AsyncSession, task_id: int) -> Task:
        """Clear a stuck ``running`` flag. Refused while a run is actually live."""
        task = await db.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if task_id in self._active:
            raise TaskAlreadyRunningError(task_id)
        task.running = False
        await db.commit()
        self._states[task_id] = RunState.IDLE
        logger.info("Task %d running flag reset", task_id)
        return task

    async def recover_stale(self, db: AsyncSession) -> int:
        """Startup sweep: no run survives a restart, so release every lock."""
        now = utcnow()
        result = await db.execute(
            update(Task).where(Task.running.is_(True)).values(running=False)
        )
        await db.execute(
            update(RunLog)
            .where(RunLog.status == RunState.RUNNING.value)
            .values(status=RunState.FAILED.value, message=MSG_INTERRUPTED, end_time=now)
        )
        await db.commit()
        if result.rowcount:
            logger.warning("Recovered %d stale running task(s)", result.rowcount)
        return result.rowcount

    # --- Queries ---

    async def get_run_logs(
        self, db: AsyncSession, task_id: int | None = None, page: int = 1, page_size: int = 20
    ) -> tuple[list[RunLog], int]:
        conditions = [RunLog.task_id == task_id] if task_id is not None else []
        total = (
            await db.execute(select(func.count()).select_from(RunLog).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(RunLog)
            .where(*conditions)
            .order_by(RunLog.start_time.desc(), RunLog.id.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def get_file_processing_stats(self, db: AsyncSession, time_range: str = "week") -> dict[str, Any]:
        """Aggregate run counters and produced files over a trailing window."""
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range!r}")
        since = utcnow() - TIME_RANGES[time_range]

        counter_names = list(RunStats().to_dict())
        sums = await db.execute(
            select(*(func.coalesce(func.sum(getattr(RunLog, name)), 0) for name in counter_names))
            .where(RunLog.start_time >= since)
        )
        totals = dict(zip(counter_names, (int(v) for v in sums.one())))

        by_status = await db.execute(
            select(RunLog.status, func.count())
            .where(RunLog.start_time >= since)
            .group_by(RunLog.status)
        )
        runs = {status: count for status, count in by_status.all()}

        by_type = await db.execute(
            select(FileHistory.file_type, func.count())
            .where(FileHistory.created_at >= since)
            .group_by(FileHistory.file_type)
        )
        files = {file_type: count for file_type, count in by_type.all()}

        return {
            "time_range": time_range,
            "since": since,
            "runs": runs,
            "run_count": sum(runs.values()),
            "counters": totals,
            "files_by_type": files,
        }
