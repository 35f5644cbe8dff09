"""Domain exceptions raised by the sync pipeline and its collaborators."""

from __future__ import annotations


class StrmSyncError(Exception):
    """Base class for all strmsync errors."""


class RemoteError(StrmSyncError):
    """A remote index call failed (transport error or non-200 API code)."""

    def __init__(self, message: str, *, code: int | None = None, path: str | None = None):
        super().__init__(message)
        self.code = code
        self.path = path


class InvalidPathError(StrmSyncError):
    """A remote path cannot be mapped to a local target (per-file failure)."""


class TaskNotFoundError(StrmSyncError):
    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskAlreadyRunningError(StrmSyncError):
    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} is already running")
        self.task_id = task_id


class ConfigNotReadyError(StrmSyncError):
    """Remote host or token missing; runs and change events cannot start."""

    default_message = "AList host or token not configured"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class NotificationError(StrmSyncError):
    """A notification channel failed to deliver a message."""


class ChannelDisabledError(NotificationError):
    """The target channel is disabled or not configured."""
