"""Run log model — one row per task execution."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from strmsync.models.base import Base, TimestampMixin


class RunLog(TimestampMixin, Base):
    __tablename__ = "run_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default="running", nullable=False, index=True
    )  # running | completed | failed | cancelled
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds

    total_file: Mapped[int] = mapped_column(Integer, default=0)
    generated_file: Mapped[int] = mapped_column(Integer, default=0)
    skip_file: Mapped[int] = mapped_column(Integer, default=0)
    overwrite_file: Mapped[int] = mapped_column(Integer, default=0)
    metadata_count: Mapped[int] = mapped_column(Integer, default=0)
    subtitle_count: Mapped[int] = mapped_column(Integer, default=0)
    metadata_downloaded: Mapped[int] = mapped_column(Integer, default=0)
    subtitle_downloaded: Mapped[int] = mapped_column(Integer, default=0)
    other_skipped: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<RunLog(id={self.id}, task={self.task_id}, status='{self.status}')>"
