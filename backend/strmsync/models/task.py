"""Task model — a named source→target strm synchronization definition."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from strmsync.models.base import Base, TimestampMixin


class Task(TimestampMixin, Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    media_type: Mapped[str] = mapped_column(String(20), default="movie", nullable=False)  # movie | tv
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    target_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_suffix: Mapped[str] = mapped_column(Text, default="", nullable=False)
    overwrite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    cron: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    download_metadata: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    metadata_extensions: Mapped[str] = mapped_column(
        String(255), default="nfo,jpg,png", nullable=False
    )
    download_subtitle: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    subtitle_extensions: Mapped[str] = mapped_column(
        String(255), default="srt,ass,ssa", nullable=False
    )

    # Owned by the run coordinator
    running: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, name='{self.name}', running={self.running})>"
