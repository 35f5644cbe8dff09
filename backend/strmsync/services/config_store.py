"""Hot-reloadable configuration — immutable snapshots with change listeners."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Callable

from strmsync.config import Settings, settings as default_settings
from strmsync.exceptions import ConfigNotReadyError

logger = logging.getLogger(__name__)

ALIST = "alist"
STRM = "strm"
NOTIFICATION = "notification"


@dataclass(frozen=True)
class AlistConfig:
    host: str = ""
    token: str = ""
    replace_host: str = ""
    per_page: int = 100
    req_delay_ms: int = 100
    retry_delay_ms: int = 1000
    max_retries: int = 3
    timeout_seconds: float = 30.0

    @property
    def public_host(self) -> str:
        """Host used when building playable URLs."""
        return self.replace_host or self.host


@dataclass(frozen=True)
class StrmConfig:
    default_suffix: str = "mp4,mkv"
    replace_suffix: bool = True
    url_encode: bool = True
    min_file_size: int = 0  # MB


@dataclass(frozen=True)
class NotificationConfig:
    enabled: bool = False
    default_channel: str = "telegram"
    telegram: dict[str, Any] = field(default_factory=dict)
    wework: dict[str, Any] = field(default_factory=dict)
    templates: dict[str, dict[str, str]] = field(default_factory=dict)
    max_retries: int = 3
    retry_interval_seconds: int = 60
    concurrency: int = 1


Listener = Callable[[Any], None]


def snapshots_from_settings(s: Settings) -> dict[str, Any]:
    """Build the initial snapshot set from environment settings."""
    return {
        ALIST: AlistConfig(
            host=s.alist_host,
            token=s.alist_token,
            replace_host=s.alist_replace_host,
            per_page=s.alist_per_page,
            req_delay_ms=s.alist_req_delay_ms,
            retry_delay_ms=s.alist_retry_delay_ms,
            max_retries=s.alist_max_retries,
            timeout_seconds=s.alist_timeout_seconds,
        ),
        STRM: StrmConfig(
            default_suffix=s.strm_default_suffix,
            replace_suffix=s.strm_replace_suffix,
            url_encode=s.strm_url_encode,
            min_file_size=s.strm_min_file_size,
        ),
        NOTIFICATION: NotificationConfig(
            enabled=s.notify_enabled,
            default_channel=s.notify_default_channel,
            telegram={
                "enabled": s.telegram_enabled,
                "bot_token": s.telegram_bot_token,
                "chat_id": s.telegram_chat_id,
                "parse_mode": s.telegram_parse_mode,
            },
            wework={
                "enabled": s.wework_enabled,
                "corp_id": s.wework_corp_id,
                "agent_id": s.wework_agent_id,
                "corp_secret": s.wework_corp_secret,
                "to_user": s.wework_to_user,
            },
            max_retries=s.notify_max_retries,
            retry_interval_seconds=s.notify_retry_interval_seconds,
            concurrency=s.notify_concurrency,
        ),
    }


class ConfigStore:
    """Publishes configuration changes to per-code subscribers.

    Readers always get a frozen snapshot; updates replace the snapshot
    wholesale, so a caller holding the old one keeps a consistent view.
    """

    def __init__(self, snapshots: dict[str, Any] | None = None):
        self._snapshots: dict[str, Any] = snapshots or snapshots_from_settings(default_settings)
        self._listeners: dict[str, list[Listener]] = {}

    @classmethod
    def from_settings(cls, s: Settings) -> ConfigStore:
        return cls(snapshots_from_settings(s))

    def codes(self) -> list[str]:
        return list(self._snapshots)

    def get(self, code: str) -> Any:
        try:
            return self._snapshots[code]
        except KeyError:
            raise KeyError(f"Unknown config code: {code}") from None

    def as_dict(self, code: str) -> dict[str, Any]:
        return asdict(self.get(code))

    def subscribe(self, code: str, listener: Listener) -> None:
        """Register a listener called with the new snapshot on every update."""
        self.get(code)
        self._listeners.setdefault(code, []).append(listener)

    def unsubscribe(self, code: str, listener: Listener) -> None:
        listeners = self._listeners.get(code, [])
        if listener in listeners:
            listeners.remove(listener)

    def update(self, code: str, **changes: Any) -> Any:
        """Swap in a new snapshot with the given fields replaced and notify listeners."""
        current = self.get(code)
        known = {f.name for f in fields(current)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown {code} config fields: {sorted(unknown)}")

        new = replace(current, **changes)
        self._snapshots[code] = new
        logger.info("Config '%s' updated: %s", code, sorted(changes))
        self._notify(code, new)
        return new

    def is_ready(self) -> bool:
        """Remote index host and token are both configured."""
        alist: AlistConfig = self.get(ALIST)
        return bool(alist.host and alist.token)

    def require_ready(self) -> None:
        if not self.is_ready():
            raise ConfigNotReadyError()

    def _notify(self, code: str, snapshot: Any) -> None:
        for listener in list(self._listeners.get(code, [])):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Config listener for '%s' failed: %s", code, e)
