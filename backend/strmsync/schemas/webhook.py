"""File watcher webhook schemas."""

from datetime import datetime

from pydantic import BaseModel


class FileChangeEvent(BaseModel):
    action: str  # create, mkdir, delete, rename, move
    is_dir: bool = False
    source_file: str
    destination_file: str = ""  # rename/move only


class FileWebhookPayload(BaseModel):
    device_name: str = ""
    user_name: str = ""
    version: str = ""
    event_category: str = ""
    event_name: str = ""
    event_time: datetime | None = None  # RFC 3339 or unix seconds
    send_time: datetime | None = None
    data: list[FileChangeEvent] = []


class WebhookAck(BaseModel):
    status: str = "accepted"
    events: int
