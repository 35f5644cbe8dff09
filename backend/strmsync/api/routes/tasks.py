"""Task routes — CRUD, execution, cancellation and status reset."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import get_db
from strmsync.exceptions import TaskAlreadyRunningError, TaskNotFoundError
from strmsync.models.task import Task
from strmsync.schemas.run_log import RunResult
from strmsync.schemas.task import TaskCreate, TaskExecuteRequest, TaskOut, TaskPage, TaskUpdate
from strmsync.services import get_coordinator, get_scheduler, get_task_service
from strmsync.services.run_coordinator import RunAck

logger = logging.getLogger(__name__)
router = APIRouter()


def _sync_schedule(task: Task | None, task_id: int) -> None:
    try:
        scheduler = get_scheduler()
    except RuntimeError:
        return  # Scheduler not initialized
    if task is None:
        scheduler.unschedule(task_id)
    else:
        scheduler.sync_task(task)


@router.get("", response_model=TaskPage)
async def list_tasks(
    keyword: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    items, total = await get_task_service().list_tasks(db, keyword, page, page_size)
    return TaskPage(items=items, total=total, page=page, page_size=page_size)


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(body: TaskCreate, db: AsyncSession = Depends(get_db)):
    task = await get_task_service().create(db, body.model_dump())
    _sync_schedule(task, task.id)
    return task


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(task_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await get_task_service().get(db, task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{task_id}", response_model=TaskOut)
async def update_task(task_id: int, body: TaskUpdate, db: AsyncSession = Depends(get_db)):
    try:
        task = await get_task_service().update(db, task_id, body.model_dump(exclude_unset=True))
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    _sync_schedule(task, task_id)
    return task


@router.delete("/{task_id}", status_code=204)
async def delete_task(task_id: int, db: AsyncSession = Depends(get_db)):
    try:
        await get_task_service().delete(db, task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
    _sync_schedule(None, task_id)
    return Response(status_code=204)


@router.post("/{task_id}/toggle", response_model=TaskOut)
async def toggle_task(task_id: int, db: AsyncSession = Depends(get_db)):
    try:
        task = await get_task_service().toggle(db, task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    _sync_schedule(task, task_id)
    return task


@router.post("/{task_id}/execute", response_model=RunResult)
async def execute_task(task_id: int, body: TaskExecuteRequest | None = None):
    """Run a task now. ``sync=true`` blocks until the run finishes."""
    sync = body.sync if body else False
    try:
        result = await get_coordinator().execute(task_id, sync=sync)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))

    if isinstance(result, RunAck):
        return RunResult(
            task_id=result.task_id,
            task_name=result.task_name,
            run_log_id=result.run_log_id,
            status=result.status,
            message=result.message,
            is_sync=False,
        )
    return RunResult(
        task_id=result.task_id,
        task_name=result.task_name,
        run_log_id=result.run_log_id,
        status=result.status,
        message=result.message,
        is_sync=sync,
        start_time=result.start_time,
        end_time=result.end_time,
        duration=result.duration,
        counters=result.counters,
    )


@router.post("/{task_id}/cancel")
async def cancel_task(task_id: int):
    if not await get_coordinator().cancel(task_id):
        raise HTTPException(status_code=409, detail=f"Task {task_id} is not running")
    return {"task_id": task_id, "cancel_requested": True}


@router.post("/{task_id}/reset", response_model=TaskOut)
async def reset_task_status(task_id: int, db: AsyncSession = Depends(get_db)):
    """Force-clear a stuck running flag."""
    try:
        return await get_coordinator().reset_status(db, task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TaskAlreadyRunningError as e:
        raise HTTPException(status_code=409, detail=str(e))
