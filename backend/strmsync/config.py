"""strmsync configuration — Pydantic BaseSettings loaded from .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings. Remote/strm/notification groups seed the ConfigStore."""

    app_name: str = "strmsync"
    debug: bool = False
    log_level: str = "INFO"

    # Network
    host: str = "127.0.0.1"
    port: int = 8080
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:8080",
    ]

    # Storage paths (relative resolved from backend/ at runtime)
    data_dir: str = "./data"
    database_path: str = "./data/strmsync.db"
    max_db_connections: int = 5
    db_busy_timeout_ms: int = 5000  # run writes and API reads share one file
    db_cache_size_kb: int = 8000

    # Remote index (AList)
    alist_host: str = ""
    alist_token: str = ""
    alist_replace_host: str = ""  # external-facing host used in strm URLs
    alist_per_page: int = 100
    alist_req_delay_ms: int = 100
    alist_retry_delay_ms: int = 1000
    alist_max_retries: int = 3
    alist_timeout_seconds: float = 30.0

    # Strm generation
    strm_default_suffix: str = "mp4,mkv,avi,ts,rmvb,mov,flv,wmv,iso,m2ts"
    strm_replace_suffix: bool = True
    strm_url_encode: bool = True
    strm_min_file_size: int = 0  # MB, 0 = no filter

    # Run execution
    max_concurrent_runs: int = 2
    sidecar_batch_size: int = 3

    # Notifications
    notify_enabled: bool = False
    notify_default_channel: str = "telegram"
    telegram_enabled: bool = False
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_parse_mode: str = "Markdown"
    wework_enabled: bool = False
    wework_corp_id: str = ""
    wework_agent_id: str = ""
    wework_corp_secret: str = ""
    wework_to_user: str = "@all"
    notify_max_retries: int = 3
    notify_retry_interval_seconds: int = 60
    notify_concurrency: int = 1
    notify_poll_interval_seconds: float = 5.0
    notify_retention_days: int = 30

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_prefix="STRMSYNC_",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, str) and not value.startswith("["):
            return [o.strip() for o in value.split(",") if o.strip()]
        if isinstance(value, list):
            return value
        return ["http://localhost:5173"]

    @field_validator("alist_host", "alist_replace_host")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Ensure data paths are absolute."""
        base = Path(__file__).resolve().parent.parent  # backend/
        for field in ("data_dir", "database_path"):
            val = getattr(self, field)
            if not Path(val).is_absolute():
                setattr(self, field, str(base / val))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
