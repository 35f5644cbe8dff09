"""Task CRUD — definitions consumed by the run coordinator."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.exceptions import TaskAlreadyRunningError, TaskNotFoundError
from strmsync.models.task import Task

logger = logging.getLogger(__name__)

# Fields only the run coordinator may write
_PROTECTED = {"id", "running", "last_run_at", "created_at", "updated_at"}


class TaskService:
    async def create(self, db: AsyncSession, data: dict[str, Any]) -> Task:
        task = Task(**{k: v for k, v in data.items() if k not in _PROTECTED})
        db.add(task)
        await db.commit()
        await db.refresh(task)
        logger.info("Task %d created: %s", task.id, task.name)
        return task

    async def get(self, db: AsyncSession, task_id: int) -> Task:
        task = await db.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def list_tasks(
        self, db: AsyncSession, keyword: str | None = None, page: int = 1, page_size: int = 50
    ) -> tuple[list[Task], int]:
        conditions = [Task.name.contains(keyword)] if keyword else []
        total = (
            await db.execute(select(func.count()).select_from(Task).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(Task)
            .where(*conditions)
            .order_by(Task.id.asc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def update(self, db: AsyncSession, task_id: int, changes: dict[str, Any]) -> Task:
        task = await self.get(db, task_id)
        for key, value in changes.items():
            if key in _PROTECTED:
                continue
            setattr(task, key, value)
        await db.commit()
        await db.refresh(task)
        logger.info("Task %d updated: %s", task_id, sorted(changes))
        return task

    async def toggle(self, db: AsyncSession, task_id: int) -> Task:
        task = await self.get(db, task_id)
        task.enabled = not task.enabled
        await db.commit()
        await db.refresh(task)
        logger.info("Task %d %s", task_id, "enabled" if task.enabled else "disabled")
        return task

    async def delete(self, db: AsyncSession, task_id: int) -> None:
        task = await self.get(db, task_id)
        if task.running:
            raise TaskAlreadyRunningError(task_id)
        await db.delete(task)
        await db.commit()
        logger.info("Task %d deleted", task_id)
