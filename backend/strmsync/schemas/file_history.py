"""File history schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FileHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    run_log_id: int | None = None
    file_name: str
    source_path: str
    source_url: str | None = None
    target_file_path: str
    file_size: int = 0
    file_type: str  # media, metadata, subtitle
    file_suffix: str = ""
    is_strm: bool = False
    hash: str | None = None
    modified_at: datetime | None = None
    created_at: datetime


class FileHistoryPage(BaseModel):
    items: list[FileHistoryOut]
    total: int
    page: int
    page_size: int


class BulkDeleteRequest(BaseModel):
    ids: list[int] = Field(min_length=1)


class DeleteResult(BaseModel):
    deleted: int
