"""Notification routes — queue inspection and test messages."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.database import get_db
from strmsync.schemas.notification import NotificationOut, NotificationPage, NotificationTestRequest
from strmsync.services import get_config_store, get_dispatcher
from strmsync.services.config_store import NOTIFICATION
from strmsync.services.notification_channels import DEFAULT_TEMPLATES

router = APIRouter()


@router.get("", response_model=NotificationPage)
async def list_notifications(
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    items, total = await get_dispatcher().list_queue(db, status, page, page_size)
    return NotificationPage(items=items, total=total, page=page, page_size=page_size)


@router.post("/test", response_model=NotificationOut, status_code=202)
async def send_test_notification(body: NotificationTestRequest):
    """Queue a sample event; delivery happens on the dispatcher's next poll."""
    cfg = get_config_store().get(NOTIFICATION)
    channel = body.channel_type or cfg.default_channel
    dispatcher = get_dispatcher()
    if channel not in dispatcher.channels:
        raise HTTPException(status_code=400, detail=f"Unknown channel: {channel}")
    if body.template_type not in DEFAULT_TEMPLATES:
        raise HTTPException(status_code=400, detail=f"Unknown template: {body.template_type}")

    payload = {
        "task_name": "Test task",
        "status": "completed",
        "duration": 0,
        "event_time": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        "source_path": "/test",
        "target_path": "/test",
        "error_message": "Test message",
    }
    return await dispatcher.enqueue(channel, body.template_type, payload, priority=1)
