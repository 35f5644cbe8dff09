"""Task schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from strmsync.services.scheduler import parse_cron


def _check_cron(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    try:
        parse_cron(value)
    except ValueError as e:
        raise ValueError(f"Invalid cron expression: {e}") from e
    return value.strip()


class TaskBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    media_type: Literal["movie", "tv"] = "movie"
    source_path: str = Field(min_length=1)
    target_path: str = Field(min_length=1)
    file_suffix: str = ""  # empty = strm default suffix list
    overwrite: bool = False
    enabled: bool = True
    cron: str | None = None
    download_metadata: bool = False
    metadata_extensions: str = "nfo,jpg,png"
    download_subtitle: bool = False
    subtitle_extensions: str = "srt,ass,ssa"

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str | None) -> str | None:
        return _check_cron(value)


class TaskCreate(TaskBase):
    """Create a task."""


class TaskUpdate(BaseModel):
    """Partial task update; omitted fields are left unchanged."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    media_type: Literal["movie", "tv"] | None = None
    source_path: str | None = None
    target_path: str | None = None
    file_suffix: str | None = None
    overwrite: bool | None = None
    enabled: bool | None = None
    cron: str | None = None
    download_metadata: bool | None = None
    metadata_extensions: str | None = None
    download_subtitle: bool | None = None
    subtitle_extensions: str | None = None

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str | None) -> str | None:
        return _check_cron(value)


class TaskOut(TaskBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    running: bool = False
    last_run_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class TaskExecuteRequest(BaseModel):
    sync: bool = False


class TaskPage(BaseModel):
    items: list[TaskOut]
    total: int
    page: int
    page_size: int
