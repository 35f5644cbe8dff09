"""Webhook routes — remote file-change notifications."""

import logging

from fastapi import APIRouter, BackgroundTasks

from strmsync.schemas.webhook import FileWebhookPayload, WebhookAck
from strmsync.services import get_file_events
from strmsync.services.file_events import FileChange

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/file-notify", response_model=WebhookAck, status_code=202)
async def file_notify(body: FileWebhookPayload, background_tasks: BackgroundTasks):
    """Accept a batch of file changes; they are applied after the response is sent."""
    changes = [
        FileChange(
            action=e.action,
            source_file=e.source_file,
            destination_file=e.destination_file,
            is_dir=e.is_dir,
        )
        for e in body.data
    ]
    logger.info("Received %d file event(s) from %s", len(changes), body.device_name or "unknown device")
    if changes:
        background_tasks.add_task(get_file_events().handle, changes)
    return WebhookAck(events=len(changes))
