"""Notification queue schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    channel_type: str
    template_type: str
    payload: dict[str, Any]
    status: str  # pending, processing, sent, failed
    priority: int
    retry_count: int
    next_retry_at: datetime | None = None
    error_message: str | None = None
    sent_at: datetime | None = None
    created_at: datetime


class NotificationPage(BaseModel):
    items: list[NotificationOut]
    total: int
    page: int
    page_size: int


class NotificationTestRequest(BaseModel):
    channel_type: str | None = None  # defaults to the configured default channel
    template_type: str = "taskComplete"
