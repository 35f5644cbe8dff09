"""SQLAlchemy ORM models for strmsync."""

from strmsync.models.base import Base
from strmsync.models.file_history import FileHistory
from strmsync.models.notification import NotificationQueueItem
from strmsync.models.run_log import RunLog
from strmsync.models.task import Task

__all__ = [
    "Base",
    "Task",
    "RunLog",
    "FileHistory",
    "NotificationQueueItem",
]
