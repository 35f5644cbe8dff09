"""File history model — append-only ledger of produced files."""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from strmsync.models.base import Base, TimestampMixin


class FileHistory(TimestampMixin, Base):
    __tablename__ = "file_history"
    __table_args__ = (
        UniqueConstraint("source_path", "target_file_path", name="uq_file_history_source_target"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    run_log_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    target_file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, default=0)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)  # media | metadata | subtitle
    file_suffix: Mapped[str] = mapped_column(String(20), default="")
    is_strm: Mapped[bool] = mapped_column(Boolean, default=False)
    hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    modified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<FileHistory(id={self.id}, target='{self.target_file_path}')>"
