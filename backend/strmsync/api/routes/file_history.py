"""File history routes — listing and operator cleanup."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import get_db
from strmsync.schemas.file_history import BulkDeleteRequest, DeleteResult, FileHistoryPage
from strmsync.services import get_ledger

router = APIRouter()


@router.get("", response_model=FileHistoryPage)
async def list_file_history(
    task_id: int | None = None,
    file_type: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    items, total = await get_ledger().list_entries(db, task_id, file_type, page, page_size)
    return FileHistoryPage(items=items, total=total, page=page, page_size=page_size)


@router.post("/bulk-delete", response_model=DeleteResult)
async def bulk_delete_file_history(body: BulkDeleteRequest, db: AsyncSession = Depends(get_db)):
    return DeleteResult(deleted=await get_ledger().bulk_delete(db, body.ids))


@router.delete("", response_model=DeleteResult)
async def clear_file_history(task_id: int | None = None, db: AsyncSession = Depends(get_db)):
    """Clear all history, or only one task's rows."""
    return DeleteResult(deleted=await get_ledger().clear_all(db, task_id))
