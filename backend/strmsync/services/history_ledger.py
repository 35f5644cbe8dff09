"""File history ledger — append-only record of generated files."""

from __future__ import annotations

import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.models.file_history import FileHistory

logger = logging.getLogger(__name__)


class HistoryLedger:
    """Existence checks and audit trail for produced files. Rows are never updated."""

    async def exists(self, db: AsyncSession, source_path: str, target_path: str) -> bool:
        result = await db.execute(
            select(FileHistory.id).where(
                FileHistory.source_path == source_path,
                FileHistory.target_file_path == target_path,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def find_by_source(
        self, db: AsyncSession, task_id: int, source_path: str, include_children: bool = False
    ) -> list[FileHistory]:
        """Rows produced from ``source_path``, or from anything below it."""
        condition = FileHistory.source_path == source_path
        if include_children:
            prefix = source_path.rstrip("/") + "/"
            condition = or_(condition, FileHistory.source_path.startswith(prefix, autoescape=True))
        result = await db.execute(
            select(FileHistory).where(FileHistory.task_id == task_id, condition)
        )
        return list(result.scalars().all())

    async def record(self, db: AsyncSession, entry: FileHistory) -> FileHistory:
        db.add(entry)
        await db.commit()
        return entry

    async def bulk_delete(self, db: AsyncSession, ids: list[int]) -> int:
        if not ids:
            return 0
        result = await db.execute(delete(FileHistory).where(FileHistory.id.in_(ids)))
        await db.commit()
        logger.info("Deleted %d file history rows", result.rowcount)
        return result.rowcount

    async def clear_all(self, db: AsyncSession, task_id: int | None = None) -> int:
        stmt = delete(FileHistory)
        if task_id is not None:
            stmt = stmt.where(FileHistory.task_id == task_id)
        result = await db.execute(stmt)
        await db.commit()
        logger.info("Cleared %d file history rows (task=%s)", result.rowcount, task_id)
        return result.rowcount

    async def count(self, db: AsyncSession, task_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(FileHistory)
        if task_id is not None:
            stmt = stmt.where(FileHistory.task_id == task_id)
        return (await db.execute(stmt)).scalar_one()

    async def list_entries(
        self,
        db: AsyncSession,
        task_id: int | None = None,
        file_type: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[FileHistory], int]:
        conditions = []
        if task_id is not None:
            conditions.append(FileHistory.task_id == task_id)
        if file_type:
            conditions.append(FileHistory.file_type == file_type)

        total = (
            await db.execute(select(func.count()).select_from(FileHistory).where(*conditions))
        ).scalar_one()
        result = await db.execute(
            select(FileHistory)
            .where(*conditions)
            .order_by(FileHistory.id.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
