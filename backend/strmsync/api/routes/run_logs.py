"""Run log routes — history and aggregate processing stats."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import get_db
from strmsync.models.run_log import RunLog
from strmsync.schemas.run_log import ProcessingStats, RunLogOut, RunLogPage
from strmsync.services import get_coordinator

router = APIRouter()


@router.get("", response_model=RunLogPage)
async def list_run_logs(
    task_id: int | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    items, total = await get_coordinator().get_run_logs(db, task_id, page, page_size)
    return RunLogPage(items=items, total=total, page=page, page_size=page_size)


@router.get("/stats", response_model=ProcessingStats)
async def file_processing_stats(
    time_range: str = Query("week", pattern="^(day|week|month|year)$"),
    db: AsyncSession = Depends(get_db),
):
    return await get_coordinator().get_file_processing_stats(db, time_range)


@router.get("/{log_id}", response_model=RunLogOut)
async def get_run_log(log_id: int, db: AsyncSession = Depends(get_db)):
    log = await db.get(RunLog, log_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Run log not found")
    return log
