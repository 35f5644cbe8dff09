"""Tests for the task scheduler — cron parsing, job sync, dropped ticks."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from strmsync.models.run_log import RunLog
from strmsync.models.task import Task
from strmsync.services.run_coordinator import RunCoordinator
from strmsync.services.scheduler import TaskScheduler, job_id, parse_cron


@pytest.fixture
def generator():
    gen = MagicMock()
    gen.run = AsyncMock(side_effect=_return_stats)
    return gen


async def _return_stats(db, task, log_id, stats):
    return stats


@pytest.fixture
def coordinator(generator, config_store, session_factory):
    return RunCoordinator(generator, config_store, session_factory=session_factory)


@pytest.fixture
def scheduler(coordinator, session_factory):
    return TaskScheduler(coordinator, session_factory=session_factory)


@pytest_asyncio.fixture
async def task(session_factory, tmp_path):
    async with session_factory() as db:
        t = Task(name="Nightly", source_path="/media", target_path=str(tmp_path / "out"),
                 cron="0 3 * * *")
        db.add(t)
        await db.commit()
        return t


async def _log_count(session_factory, task_id):
    async with session_factory() as db:
        result = await db.execute(select(RunLog).where(RunLog.task_id == task_id))
        return len(result.scalars().all())


class TestCronParsing:
    def test_five_field_expression(self):
        trigger = parse_cron("*/15 2 * * 1-5")
        assert trigger is not None

    def test_invalid_expression(self):
        with pytest.raises(ValueError):
            parse_cron("every day")


class TestJobSync:
    def test_enabled_task_scheduled(self, scheduler, task):
        assert scheduler.sync_task(task) is True
        assert scheduler.scheduled_task_ids() == [task.id]

    def test_disabled_task_unscheduled(self, scheduler, task):
        scheduler.sync_task(task)
        task.enabled = False
        assert scheduler.sync_task(task) is False
        assert scheduler.scheduled_task_ids() == []

    def test_cron_removed(self, scheduler, task):
        scheduler.sync_task(task)
        task.cron = None
        assert scheduler.sync_task(task) is False
        assert scheduler._scheduler.get_job(job_id(task.id)) is None

    def test_invalid_cron_not_scheduled(self, scheduler, task):
        task.cron = "61 * * * *"
        assert scheduler.sync_task(task) is False

    def test_reschedule_replaces_job(self, scheduler, task):
        scheduler.sync_task(task)
        task.cron = "30 4 * * *"
        scheduler.sync_task(task)
        assert scheduler.scheduled_task_ids() == [task.id]


class TestTicks:
    @pytest.mark.asyncio
    async def test_tick_starts_run(self, scheduler, coordinator, session_factory, task):
        await scheduler._fire(task.id)
        job = coordinator._active.get(task.id)
        if job is not None:
            await asyncio.wait_for(job, timeout=2)
        assert await _log_count(session_factory, task.id) == 1

    @pytest.mark.asyncio
    async def test_tick_dropped_while_running(self, scheduler, generator, session_factory, task):
        async with session_factory() as db:
            t = await db.get(Task, task.id)
            t.running = True
            await db.commit()

        await scheduler._fire(task.id)
        await scheduler._fire(task.id)

        assert await _log_count(session_factory, task.id) == 0
        generator.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_during_live_run_not_queued(self, scheduler, coordinator, generator,
                                                   session_factory, task):
        gate = asyncio.Event()

        async def _gated(db, t, log_id, stats):
            await gate.wait()
            return stats

        generator.run.side_effect = _gated
        await coordinator.execute(task.id, sync=False)
        job = coordinator._active[task.id]

        await scheduler._fire(task.id)
        gate.set()
        await asyncio.wait_for(job, timeout=2)

        assert await _log_count(session_factory, task.id) == 1
        assert generator.run.await_count == 1
        assert not coordinator.is_active(task.id)

    @pytest.mark.asyncio
    async def test_tick_for_disabled_task_ignored(self, scheduler, session_factory, task):
        async with session_factory() as db:
            t = await db.get(Task, task.id)
            t.enabled = False
            await db.commit()

        await scheduler._fire(task.id)
        assert await _log_count(session_factory, task.id) == 0

    @pytest.mark.asyncio
    async def test_tick_for_missing_task_removes_job(self, scheduler, session_factory, task):
        scheduler.sync_task(task)
        async with session_factory() as db:
            await db.delete(await db.get(Task, task.id))
            await db.commit()

        await scheduler._fire(task.id)
        assert scheduler.scheduled_task_ids() == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_loads_enabled_cron_tasks(self, scheduler, session_factory, task, tmp_path):
        async with session_factory() as db:
            db.add(Task(name="Manual", source_path="/m", target_path=str(tmp_path / "m")))
            db.add(Task(name="Off", source_path="/o", target_path=str(tmp_path / "o"),
                        cron="0 1 * * *", enabled=False))
            await db.commit()

        await scheduler.start()
        try:
            assert scheduler.running
            assert scheduler.scheduled_task_ids() == [task.id]
        finally:
            await scheduler.stop()
