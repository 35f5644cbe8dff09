"""APScheduler-based cron triggers for tasks plus queue maintenance."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import async_session
from strmsync.exceptions import TaskAlreadyRunningError, TaskNotFoundError
from strmsync.models.task import Task

if TYPE_CHECKING:
    from strmsync.services.notification_service import NotificationDispatcher
    from strmsync.services.run_coordinator import RunCoordinator

logger = logging.getLogger(__name__)


def job_id(task_id: int) -> str:
    return f"task-{task_id}"


def parse_cron(expression: str) -> CronTrigger:
    """Build a trigger from a standard 5-field crontab expression."""
    return CronTrigger.from_crontab(expression.strip())


class TaskScheduler:
    """One cron job per enabled task; ticks that hit a running task are dropped."""

    def __init__(
        self,
        coordinator: RunCoordinator,
        dispatcher: NotificationDispatcher | None = None,
        session_factory: Callable[[], AsyncSession] = async_session,
    ):
        self._coordinator = coordinator
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        """Register cron jobs for all enabled tasks and start the scheduler."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Task).where(Task.enabled.is_(True), Task.cron.is_not(None))
            )
            tasks = list(result.scalars().all())
        for task in tasks:
            self.sync_task(task)

        if self._dispatcher is not None:
            self._scheduler.add_job(
                self._cleanup_notifications,
                "cron",
                hour=3,
                minute=15,
                id="cleanup_notifications",
                name="Purge sent notifications",
            )

        self._scheduler.start()
        logger.info("Task scheduler started with %d cron job(s)", len(self.scheduled_task_ids()))

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Task scheduler stopped")

    def scheduled_task_ids(self) -> list[int]:
        return sorted(
            int(job.id.split("-", 1)[1])
            for job in self._scheduler.get_jobs()
            if job.id.startswith("task-")
        )

    def sync_task(self, task: Task) -> bool:
        """Add, replace or remove the job for ``task``. Returns True if scheduled."""
        if not task.enabled or not task.cron or not task.cron.strip():
            self.unschedule(task.id)
            return False
        try:
            trigger = parse_cron(task.cron)
        except ValueError as e:
            logger.error("Task %d has invalid cron '%s': %s", task.id, task.cron, e)
            self.unschedule(task.id)
            return False

        # Pending jobs (added before start) are not deduplicated by id
        if self._scheduler.get_job(job_id(task.id)) is not None:
            self._scheduler.remove_job(job_id(task.id))
        self._scheduler.add_job(
            self._fire,
            trigger,
            args=[task.id],
            id=job_id(task.id),
            name=f"Run task {task.name}",
        )
        logger.info("Task %d scheduled: %s", task.id, task.cron)
        return True

    def unschedule(self, task_id: int) -> None:
        if self._scheduler.get_job(job_id(task_id)) is not None:
            self._scheduler.remove_job(job_id(task_id))
            logger.info("Task %d unscheduled", task_id)

    async def _fire(self, task_id: int) -> None:
        """Cron tick: start a background run unless one is already live."""
        try:
            async with self._session_factory() as db:
                task = await db.get(Task, task_id)
                if task is None:
                    raise TaskNotFoundError(task_id)
                if not task.enabled:
                    logger.info("Tick for task %d ignored (disabled)", task_id)
                    return
            await self._coordinator.execute(task_id, sync=False)
        except TaskAlreadyRunningError:
            logger.warning("Tick for task %d dropped: already running", task_id)
        except TaskNotFoundError:
            logger.warning("Tick for missing task %d, removing its job", task_id)
            self.unschedule(task_id)
        except Exception as e:
            logger.error("Scheduled run of task %d failed to start: %s", task_id, e)

    async def _cleanup_notifications(self) -> None:
        try:
            async with self._session_factory() as db:
                await self._dispatcher.cleanup_sent(db)
        except Exception as e:
            logger.error("Notification cleanup failed: %s", e)
