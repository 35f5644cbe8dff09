"""AList remote index client — paginated listing, file info and raw download."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from strmsync.exceptions import RemoteError
from strmsync.services.config_store import ALIST

if TYPE_CHECKING:
    from strmsync.services.config_store import AlistConfig, ConfigStore
    from strmsync.services.retry import RetryExecutor

logger = logging.getLogger(__name__)


@dataclass
class RemoteEntry:
    """One item of a remote directory listing."""

    path: str  # full remote path, e.g. /movies/a/movie.mp4
    name: str
    is_dir: bool
    size: int = 0
    modified: datetime | None = None
    sign: str = ""
    hash: str | None = None

    @property
    def suffix(self) -> str:
        """Extension without the dot; empty for names without one."""
        if "." not in self.name.strip("."):
            return ""
        return self.name.rsplit(".", 1)[1]


def join_remote(parent: str, name: str) -> str:
    return f"{parent.rstrip('/')}/{name}"


def _parse_modified(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _entry_from_item(parent: str, item: dict[str, Any]) -> RemoteEntry:
    hash_info = item.get("hash_info") or {}
    return RemoteEntry(
        path=join_remote(parent, item.get("name", "")),
        name=item.get("name", ""),
        is_dir=bool(item.get("is_dir")),
        size=int(item.get("size") or 0),
        modified=_parse_modified(item.get("modified")),
        sign=item.get("sign") or "",
        hash=hash_info.get("sha1") if isinstance(hash_info, dict) else None,
    )


def build_file_url(host: str, path: str, sign: str = "", url_encode: bool = False) -> str:
    """Playable URL ``{host}/d{path}?sign=...``; only the path is ever encoded."""
    if url_encode:
        path = "/".join(quote(segment, safe="") for segment in path.split("/"))
    url = f"{host.rstrip('/')}/d{path}"
    if sign:
        url = f"{url}?sign={sign}"
    return url


class AlistClient:
    """Async AList API client; every call goes through the retry executor."""

    LIST_ENDPOINT = "/api/fs/list"
    GET_ENDPOINT = "/api/fs/get"

    def __init__(
        self,
        retry: RetryExecutor,
        config: AlistConfig | None = None,
        config_store: ConfigStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if config is None:
            if config_store is None:
                raise ValueError("AlistClient needs a config snapshot or a config store")
            config = config_store.get(ALIST)
        self._config = config
        self._retry = retry
        self._transport = transport
        if config_store is not None:
            config_store.subscribe(ALIST, self._on_config_change)

    @property
    def config(self) -> AlistConfig:
        return self._config

    def _on_config_change(self, cfg: AlistConfig) -> None:
        self._config = cfg
        logger.info("AList client config updated (host=%s)", cfg.host)

    def _client(self, cfg: AlistConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=cfg.timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        )

    async def _post(self, cfg: AlistConfig, endpoint: str, body: dict[str, Any]) -> Any:
        """POST to the AList API and unwrap the ``{code, message, data}`` envelope."""
        path = body.get("path")
        try:
            async with self._client(cfg) as client:
                resp = await client.post(
                    f"{cfg.host}{endpoint}",
                    json=body,
                    headers={"Authorization": cfg.token},
                )
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as e:
            raise RemoteError(f"{endpoint} request failed: {e}", path=path) from e
        except ValueError as e:
            raise RemoteError(f"{endpoint} returned invalid JSON", path=path) from e

        code = payload.get("code")
        if code != 200:
            raise RemoteError(
                f"{endpoint} error {code}: {payload.get('message', '')}", code=code, path=path
            )
        return payload.get("data") or {}

    async def list_page(self, path: str, page: int, per_page: int | None = None) -> list[RemoteEntry]:
        """Fetch one listing page (1-based) of ``path``."""
        cfg = self._config
        per_page = per_page or cfg.per_page
        body = {
            "path": path,
            "password": "",
            "page": page,
            "per_page": per_page,
            "refresh": False,
        }
        data = await self._retry.execute(
            lambda: self._post(cfg, self.LIST_ENDPOINT, body),
            f"List {path} (page {page})",
        )
        content = data.get("content") or []
        return [_entry_from_item(path, item) for item in content]

    async def get_info(self, path: str) -> RemoteEntry:
        """Current metadata (size, sign, hash) of a single remote path."""
        cfg = self._config
        body = {"path": path, "password": ""}
        data = await self._retry.execute(
            lambda: self._post(cfg, self.GET_ENDPOINT, body),
            f"Get info {path}",
        )
        parent = path.rsplit("/", 1)[0] or "/"
        return replace(_entry_from_item(parent, data), path=path)

    def file_url(self, entry: RemoteEntry, url_encode: bool = False, public: bool = True) -> str:
        cfg = self._config
        host = cfg.public_host if public else cfg.host
        return build_file_url(host, entry.path, entry.sign, url_encode)

    async def download(self, entry: RemoteEntry) -> bytes:
        """Fetch the raw bytes of a (small) sidecar file from the internal host."""
        cfg = self._config
        url = build_file_url(cfg.host, entry.path, entry.sign, url_encode=True)

        async def _fetch() -> bytes:
            try:
                async with self._client(cfg) as client:
                    resp = await client.get(url, headers={"Authorization": cfg.token})
                    resp.raise_for_status()
                    return resp.content
            except httpx.HTTPError as e:
                raise RemoteError(f"Download failed: {e}", path=entry.path) from e

        return await self._retry.execute(_fetch, f"Download {entry.path}")
