"""Run log and execution result schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class RunLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    status: str  # running, completed, failed, cancelled
    message: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    duration: float | None = None
    total_file: int = 0
    generated_file: int = 0
    skip_file: int = 0
    overwrite_file: int = 0
    metadata_count: int = 0
    subtitle_count: int = 0
    metadata_downloaded: int = 0
    subtitle_downloaded: int = 0
    other_skipped: int = 0
    failed_count: int = 0


class RunLogPage(BaseModel):
    items: list[RunLogOut]
    total: int
    page: int
    page_size: int


class RunResult(BaseModel):
    """Summary for sync runs, acknowledgment for background runs."""
    task_id: int
    task_name: str
    run_log_id: int | None = None
    status: str
    message: str | None = None
    is_sync: bool
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float | None = None
    counters: dict[str, int] = {}


class ProcessingStats(BaseModel):
    time_range: str  # day, week, month, year
    since: datetime
    run_count: int
    runs: dict[str, int]
    counters: dict[str, int]
    files_by_type: dict[str, int]
