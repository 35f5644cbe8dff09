"""Notification channels — Telegram and WeWork (WeCom) delivery."""

from __future__ import annotations

import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from strmsync.exceptions import ChannelDisabledError, NotificationError

logger = logging.getLogger(__name__)

CHANNEL_TELEGRAM = "telegram"
CHANNEL_WEWORK = "wework"

TEMPLATE_TASK_COMPLETE = "taskComplete"
TEMPLATE_TASK_FAILED = "taskFailed"

DEFAULT_TEMPLATES: dict[str, dict[str, str]] = {
    TEMPLATE_TASK_COMPLETE: {
        CHANNEL_TELEGRAM: (
            "✅ *Task completed*\n"
            "Task: {task_name}\n"
            "Duration: {duration}s\n"
            "Source: `{source_path}`\n"
            "Target: `{target_path}`\n"
            "Files: {total_file} scanned, {generated_file} generated, "
            "{overwrite_file} overwritten, {skip_file} skipped\n"
            "Sidecars: {metadata_count} metadata, {subtitle_count} subtitles\n"
            "Failed: {failed_count}\n"
            "Time: {event_time}"
        ),
        CHANNEL_WEWORK: (
            "Task completed\n"
            "Task: {task_name}\n"
            "Duration: {duration}s\n"
            "Files: {total_file} scanned, {generated_file} generated, "
            "{overwrite_file} overwritten, {skip_file} skipped\n"
            "Sidecars: {metadata_count} metadata, {subtitle_count} subtitles\n"
            "Failed: {failed_count}\n"
            "Time: {event_time}"
        ),
    },
    TEMPLATE_TASK_FAILED: {
        CHANNEL_TELEGRAM: (
            "❌ *Task {status}*\n"
            "Task: {task_name}\n"
            "Duration: {duration}s\n"
            "Source: `{source_path}`\n"
            "Files: {total_file} scanned, {generated_file} generated, {failed_count} failed\n"
            "Error: {error_message}\n"
            "Time: {event_time}"
        ),
        CHANNEL_WEWORK: (
            "Task {status}\n"
            "Task: {task_name}\n"
            "Duration: {duration}s\n"
            "Files: {total_file} scanned, {generated_file} generated, {failed_count} failed\n"
            "Error: {error_message}\n"
            "Time: {event_time}"
        ),
    },
}


class _Payload(dict):
    """format_map source that renders unknown fields as empty strings."""

    def __missing__(self, key: str) -> str:
        return ""


class NotificationChannel(ABC):
    """A delivery target. Each channel renders templates in its own dialect."""

    channel_type: str = ""

    def __init__(self, config: dict[str, Any], templates: dict[str, dict[str, str]] | None = None):
        self._config = dict(config)
        self._templates = templates or DEFAULT_TEMPLATES

    def type(self) -> str:
        return self.channel_type

    @abstractmethod
    def is_enabled(self) -> bool:
        """Channel is switched on and has the credentials it needs."""

    def template_for(self, template_type: str) -> str:
        template = (self._templates.get(template_type) or {}).get(self.channel_type)
        if not template:
            template = DEFAULT_TEMPLATES.get(template_type, {}).get(self.channel_type)
        if not template:
            raise NotificationError(f"No {self.channel_type} template for {template_type!r}")
        return template

    def escape(self, value: str) -> str:
        return value

    def render(self, template_type: str, payload: dict[str, Any]) -> str:
        values = _Payload({
            k: self.escape("" if v is None else str(v)) for k, v in payload.items()
        })
        try:
            return self.template_for(template_type).format_map(values)
        except (ValueError, IndexError) as e:
            raise NotificationError(f"Invalid {self.channel_type} template: {e}") from e

    async def send(self, template_type: str, payload: dict[str, Any]) -> None:
        if not self.is_enabled():
            raise ChannelDisabledError(f"{self.channel_type} channel is disabled")
        await self._deliver(self.render(template_type, payload))

    @abstractmethod
    async def _deliver(self, message: str) -> None:
        ...


class TelegramChannel(NotificationChannel):
    """Telegram Bot API ``sendMessage``."""

    channel_type = CHANNEL_TELEGRAM
    API_BASE = "https://api.telegram.org"
    TIMEOUT = 10.0

    _MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")

    def is_enabled(self) -> bool:
        return bool(
            self._config.get("enabled")
            and self._config.get("bot_token")
            and self._config.get("chat_id")
        )

    def escape(self, value: str) -> str:
        if self._config.get("parse_mode", "Markdown") == "Markdown":
            return self._MARKDOWN_SPECIAL.sub(r"\\\1", value)
        return value

    async def _deliver(self, message: str) -> None:
        url = f"{self.API_BASE}/bot{self._config['bot_token']}/sendMessage"
        body = {
            "chat_id": self._config["chat_id"],
            "text": message,
            "parse_mode": self._config.get("parse_mode") or "Markdown",
        }
        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                resp = await client.post(url, json=body)
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"Telegram request failed: {e}") from e

        if resp.status_code != 200 or not data.get("ok"):
            raise NotificationError(
                f"Telegram API error {resp.status_code}: {data.get('description', '')}"
            )


class WeworkChannel(NotificationChannel):
    """WeCom application message (plain text)."""

    channel_type = CHANNEL_WEWORK
    API_BASE = "https://qyapi.weixin.qq.com/cgi-bin"
    TIMEOUT = 10.0
    TOKEN_MARGIN = 300  # refresh this many seconds before expiry

    def __init__(self, config: dict[str, Any], templates: dict[str, dict[str, str]] | None = None):
        super().__init__(config, templates)
        self._token: str | None = None
        self._token_expires: float = 0.0

    def is_enabled(self) -> bool:
        return bool(
            self._config.get("enabled")
            and self._config.get("corp_id")
            and self._config.get("agent_id")
            and self._config.get("corp_secret")
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if self._token and time.monotonic() < self._token_expires:
            return self._token

        resp = await client.get(
            f"{self.API_BASE}/gettoken",
            params={"corpid": self._config["corp_id"], "corpsecret": self._config["corp_secret"]},
        )
        data = resp.json()
        if data.get("errcode", 0) != 0:
            raise NotificationError(f"WeWork token error {data.get('errcode')}: {data.get('errmsg')}")

        self._token = data["access_token"]
        self._token_expires = time.monotonic() + int(data.get("expires_in", 7200)) - self.TOKEN_MARGIN
        return self._token

    async def _deliver(self, message: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                token = await self._access_token(client)
                resp = await client.post(
                    f"{self.API_BASE}/message/send",
                    params={"access_token": token},
                    json={
                        "touser": self._config.get("to_user") or "@all",
                        "msgtype": "text",
                        "agentid": self._config["agent_id"],
                        "text": {"content": message},
                    },
                )
                data = resp.json()
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise NotificationError(f"WeWork request failed: {e}") from e

        if data.get("errcode", 0) != 0:
            raise NotificationError(f"WeWork API error {data.get('errcode')}: {data.get('errmsg')}")


CHANNELS: dict[str, type[NotificationChannel]] = {
    CHANNEL_TELEGRAM: TelegramChannel,
    CHANNEL_WEWORK: WeworkChannel,
}


def build_channels(notification_config) -> dict[str, NotificationChannel]:
    """Instantiate every known channel from a NotificationConfig snapshot."""
    templates = notification_config.templates or DEFAULT_TEMPLATES
    return {
        name: cls(getattr(notification_config, name, {}) or {}, templates)
        for name, cls in CHANNELS.items()
    }
