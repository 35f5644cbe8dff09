"""Incremental sync driven by remote file-change notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import async_session
from strmsync.exceptions import StrmSyncError
from strmsync.models.task import Task
from strmsync.utils.paths import is_below

if TYPE_CHECKING:
    from strmsync.services.strm_generator import StrmGenerator

logger = logging.getLogger(__name__)

ACTION_CREATE = "create"
ACTION_MKDIR = "mkdir"
ACTION_DELETE = "delete"
ACTION_RENAME = "rename"
ACTION_MOVE = "move"


def _normalize(path: str) -> str:
    return path.replace("\\", "/") if path else ""


@dataclass
class FileChange:
    """One create/delete/rename reported by a file watcher."""

    action: str
    source_file: str
    destination_file: str = ""
    is_dir: bool = False

    def __post_init__(self) -> None:
        self.action = self.action.lower()
        self.source_file = _normalize(self.source_file)
        self.destination_file = _normalize(self.destination_file)

    @property
    def paths(self) -> list[str]:
        return [p for p in (self.source_file, self.destination_file) if p]


@dataclass
class ChangeSummary:
    received: int = 0
    applied: int = 0
    failed: int = 0
    ignored: int = 0


class FileEventProcessor:
    """Applies change events to every enabled task whose source root they touch."""

    def __init__(
        self,
        generator: StrmGenerator,
        session_factory: Callable[[], AsyncSession] = async_session,
    ):
        self._generator = generator
        self._session_factory = session_factory

    async def handle(self, changes: list[FileChange]) -> ChangeSummary:
        summary = ChangeSummary(received=len(changes))
        async with self._session_factory() as db:
            result = await db.execute(select(Task).where(Task.enabled.is_(True)))
            tasks = list(result.scalars().all())

            for change in changes:
                matched = [
                    t for t in tasks if any(is_below(t.source_path, p) for p in change.paths)
                ]
                if not matched:
                    logger.debug("No task watches %s", change.source_file)
                    summary.ignored += 1
                    continue
                for task in matched:
                    try:
                        applied = await self._apply(db, task, change)
                    except (StrmSyncError, OSError) as e:
                        logger.error(
                            "Task %d: %s event for %s failed: %s",
                            task.id, change.action, change.source_file, e,
                        )
                        summary.failed += 1
                        continue
                    if applied:
                        summary.applied += 1
                    else:
                        summary.ignored += 1

        logger.info(
            "File events: %d received, %d applied, %d failed, %d ignored",
            summary.received, summary.applied, summary.failed, summary.ignored,
        )
        return summary

    async def _apply(self, db: AsyncSession, task: Task, change: FileChange) -> bool:
        if change.action in (ACTION_CREATE, ACTION_MKDIR):
            await self._generator.process_created(db, task, change.source_file, change.is_dir)
        elif change.action == ACTION_DELETE:
            await self._generator.process_deleted(db, task, change.source_file, change.is_dir)
        elif change.action in (ACTION_RENAME, ACTION_MOVE):
            await self._generator.process_moved(
                db, task, change.source_file, change.destination_file, change.is_dir
            )
        else:
            logger.warning("Unsupported file event action %r for %s", change.action, change.source_file)
            return False
        return True
