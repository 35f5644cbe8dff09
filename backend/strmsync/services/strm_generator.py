"""Strm generation — per-file generate/skip/overwrite decisions and sidecar fetch."""

from __future__ import annotations

import asyncio
import logging
import posixpath
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.exceptions import InvalidPathError
from strmsync.models.file_history import FileHistory
from strmsync.services.alist_client import RemoteEntry
from strmsync.services.config_store import STRM
from strmsync.services.walker import RemoteWalker
from strmsync.utils.paths import is_below, map_target_path, parse_suffixes, strm_name

if TYPE_CHECKING:
    from strmsync.models.task import Task
    from strmsync.services.alist_client import AlistClient
    from strmsync.services.config_store import ConfigStore, StrmConfig
    from strmsync.services.history_ledger import HistoryLedger

logger = logging.getLogger(__name__)

FILE_TYPE_MEDIA = "media"
FILE_TYPE_METADATA = "metadata"
FILE_TYPE_SUBTITLE = "subtitle"

BYTES_PER_MB = 1024 * 1024


@dataclass
class RunStats:
    """Counters accumulated over one run; mirrored onto the RunLog row."""

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

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    def apply_to(self, obj) -> None:
        for key, value in asdict(self).items():
            setattr(obj, key, value)


@dataclass
class _Sidecar:
    entry: RemoteEntry
    file_type: str
    target: Path
    existed: bool


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _write_bytes(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _suffix_sets(task: Task, strm_cfg: StrmConfig) -> tuple[set[str], set[str], set[str]]:
    """Media, metadata and subtitle suffixes in effect for ``task``."""
    media = parse_suffixes(task.file_suffix or strm_cfg.default_suffix)
    metadata = parse_suffixes(task.metadata_extensions) if task.download_metadata else set()
    subtitle = parse_suffixes(task.subtitle_extensions) if task.download_subtitle else set()
    return media, metadata, subtitle


async def _one(entry: RemoteEntry) -> AsyncIterator[RemoteEntry]:
    yield entry


def _prune_empty_dirs(root: Path) -> None:
    """Remove ``root`` and directories below it that hold no files."""
    if not root.is_dir():
        return
    dirs = sorted((p for p in root.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True)
    for d in [*dirs, root]:
        try:
            d.rmdir()
        except OSError:
            continue  # not empty


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class StrmGenerator:
    """Walks a task's source tree and materializes strm pointer files."""

    def __init__(
        self,
        client: AlistClient,
        ledger: HistoryLedger,
        config_store: ConfigStore,
        sidecar_batch_size: int = 3,
    ):
        self._client = client
        self._ledger = ledger
        self._config_store = config_store
        self._batch_size = max(sidecar_batch_size, 1)

    def target_for(self, task: Task, entry: RemoteEntry, replace_suffix: bool) -> Path:
        """Local strm path for a media entry."""
        if not entry.name:
            raise InvalidPathError(f"Entry without a name at {entry.path!r}")
        return map_target_path(
            task.source_path, task.target_path, entry.path, strm_name(entry.name, replace_suffix)
        )

    async def run(
        self,
        db: AsyncSession,
        task: Task,
        run_log_id: int | None,
        stats: RunStats | None = None,
    ) -> RunStats:
        """Process every file below ``task.source_path``.

        ``stats`` is updated in place so a caller that cancels the run still
        sees the counters accumulated so far.
        """
        stats = stats if stats is not None else RunStats()
        self._config_store.require_ready()
        # One snapshot for the whole run.
        strm_cfg: StrmConfig = self._config_store.get(STRM)

        logger.info("Task %d: scanning %s -> %s", task.id, task.source_path, task.target_path)
        entries = self._walk(task.source_path, stats)
        await self._consume(db, task, run_log_id, entries, strm_cfg, stats)

        logger.info(
            "Task %d: %d scanned, %d generated, %d overwritten, %d skipped, %d failed",
            task.id, stats.total_file, stats.generated_file, stats.overwrite_file,
            stats.skip_file, stats.failed_count,
        )
        return stats

    def _walk(self, root: str, stats: RunStats) -> AsyncIterator[RemoteEntry]:
        def _on_walk_error(path: str, exc: Exception) -> None:
            stats.failed_count += 1

        return RemoteWalker(self._client).walk(root, on_error=_on_walk_error)

    async def _consume(
        self,
        db: AsyncSession,
        task: Task,
        run_log_id: int | None,
        entries: AsyncIterator[RemoteEntry],
        strm_cfg: StrmConfig,
        stats: RunStats,
    ) -> None:
        """Classify each entry and process it; sidecars are flushed in batches."""
        media_suffixes, metadata_suffixes, subtitle_suffixes = _suffix_sets(task, strm_cfg)
        pending: list[tuple[RemoteEntry, str]] = []

        async for entry in entries:
            suffix = entry.suffix
            if suffix in media_suffixes:
                stats.total_file += 1
                await self._process_media(db, task, run_log_id, entry, strm_cfg, stats)
            elif suffix in metadata_suffixes:
                stats.metadata_count += 1
                pending.append((entry, FILE_TYPE_METADATA))
            elif suffix in subtitle_suffixes:
                stats.subtitle_count += 1
                pending.append((entry, FILE_TYPE_SUBTITLE))
            else:
                stats.other_skipped += 1

            if len(pending) >= self._batch_size:
                await self._process_sidecars(db, task, run_log_id, pending, stats)
                pending = []

        if pending:
            await self._process_sidecars(db, task, run_log_id, pending, stats)

    # --- Incremental changes ---

    async def process_created(
        self, db: AsyncSession, task: Task, remote_path: str, is_dir: bool = False
    ) -> RunStats:
        """Generate files for one path that appeared below the task's source root.

        A file is looked up with ``get_info`` so its size and sign are current;
        a directory is walked like a run root.
        """
        self._config_store.require_ready()
        if not is_below(task.source_path, remote_path):
            raise InvalidPathError(f"{remote_path!r} is outside source root {task.source_path!r}")
        strm_cfg: StrmConfig = self._config_store.get(STRM)
        stats = RunStats()

        if is_dir:
            entries = self._walk(remote_path, stats)
        else:
            entry = await self._client.get_info(remote_path)
            entries = self._walk(entry.path, stats) if entry.is_dir else _one(entry)
        await self._consume(db, task, None, entries, strm_cfg, stats)

        logger.info(
            "Task %d: %s created, %d generated, %d overwritten, %d skipped, %d failed",
            task.id, remote_path, stats.generated_file, stats.overwrite_file,
            stats.skip_file, stats.failed_count,
        )
        return stats

    async def process_deleted(
        self, db: AsyncSession, task: Task, remote_path: str, is_dir: bool = False
    ) -> int:
        """Remove local files produced from ``remote_path``; returns how many were removed.

        History rows name what earlier runs wrote. For a single file the
        expected strm or sidecar path is removed too, in case it predates
        the history.
        """
        if not is_below(task.source_path, remote_path):
            raise InvalidPathError(f"{remote_path!r} is outside source root {task.source_path!r}")
        strm_cfg: StrmConfig = self._config_store.get(STRM)

        rows = await self._ledger.find_by_source(db, task.id, remote_path, include_children=is_dir)
        targets = {Path(row.target_file_path) for row in rows}
        if not is_dir:
            expected = self._expected_target(task, remote_path, strm_cfg)
            if expected is not None:
                targets.add(expected)

        removed = 0
        for target in sorted(targets):
            try:
                if target.is_file():
                    target.unlink()
                    removed += 1
            except OSError as e:
                logger.warning("Task %d: cannot remove %s: %s", task.id, target, e)

        if is_dir:
            _prune_empty_dirs(map_target_path(task.source_path, task.target_path, remote_path))
        if rows:
            await self._ledger.bulk_delete(db, [row.id for row in rows])

        logger.info("Task %d: %s deleted, %d local file(s) removed", task.id, remote_path, removed)
        return removed

    async def process_moved(
        self,
        db: AsyncSession,
        task: Task,
        source: str,
        destination: str,
        is_dir: bool = False,
    ) -> RunStats:
        """A rename is a delete of ``source`` plus a create of ``destination``.

        Either side may lie outside the task's source root; that side is ignored.
        """
        if is_below(task.source_path, source):
            await self.process_deleted(db, task, source, is_dir=is_dir)
        if destination and is_below(task.source_path, destination):
            return await self.process_created(db, task, destination, is_dir=is_dir)
        return RunStats()

    def _expected_target(self, task: Task, remote_path: str, strm_cfg: StrmConfig) -> Path | None:
        name = posixpath.basename(remote_path)
        entry = RemoteEntry(path=remote_path, name=name, is_dir=False)
        media_suffixes, _, _ = _suffix_sets(task, strm_cfg)
        try:
            if entry.suffix in media_suffixes:
                return self.target_for(task, entry, strm_cfg.replace_suffix)
            sidecar_suffixes = (
                parse_suffixes(task.metadata_extensions) | parse_suffixes(task.subtitle_extensions)
            )
            if entry.suffix in sidecar_suffixes:
                return map_target_path(task.source_path, task.target_path, remote_path)
        except InvalidPathError as e:
            logger.warning("Task %d: %s", task.id, e)
        return None

    async def _process_media(
        self,
        db: AsyncSession,
        task: Task,
        run_log_id: int | None,
        entry: RemoteEntry,
        strm_cfg: StrmConfig,
        stats: RunStats,
    ) -> None:
        try:
            target = self.target_for(task, entry, strm_cfg.replace_suffix)
        except InvalidPathError as e:
            logger.warning("Task %d: %s", task.id, e)
            stats.failed_count += 1
            return

        if strm_cfg.min_file_size and entry.size < strm_cfg.min_file_size * BYTES_PER_MB:
            stats.skip_file += 1
            return

        existed = target.exists()
        if existed and not task.overwrite:
            stats.skip_file += 1
            return

        url = self._client.file_url(entry, url_encode=strm_cfg.url_encode)
        try:
            _write_text(target, url)
        except OSError as e:
            logger.warning("Task %d: cannot write %s: %s", task.id, target, e)
            stats.failed_count += 1
            return

        if existed:
            stats.overwrite_file += 1
        else:
            stats.generated_file += 1
        await self._record(db, task, run_log_id, entry, target, FILE_TYPE_MEDIA, url, is_strm=True)

    async def _process_sidecars(
        self,
        db: AsyncSession,
        task: Task,
        run_log_id: int | None,
        batch: list[tuple[RemoteEntry, str]],
        stats: RunStats,
    ) -> None:
        """Download a batch of sidecar files concurrently, then write them in order."""
        todo: list[_Sidecar] = []
        for entry, file_type in batch:
            try:
                target = map_target_path(task.source_path, task.target_path, entry.path)
            except InvalidPathError as e:
                logger.warning("Task %d: %s", task.id, e)
                stats.failed_count += 1
                continue
            existed = target.exists()
            if existed and not task.overwrite:
                stats.skip_file += 1
                continue
            todo.append(_Sidecar(entry, file_type, target, existed))

        if not todo:
            return

        results = await asyncio.gather(
            *(self._client.download(item.entry) for item in todo),
            return_exceptions=True,
        )

        for item, result in zip(todo, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.warning("Task %d: sidecar %s failed: %s", task.id, item.entry.path, result)
                stats.failed_count += 1
                continue
            try:
                _write_bytes(item.target, result)
            except OSError as e:
                logger.warning("Task %d: cannot write %s: %s", task.id, item.target, e)
                stats.failed_count += 1
                continue

            if item.file_type == FILE_TYPE_METADATA:
                stats.metadata_downloaded += 1
            else:
                stats.subtitle_downloaded += 1
            if item.existed:
                stats.overwrite_file += 1
            await self._record(
                db, task, run_log_id, item.entry, item.target, item.file_type,
                self._client.file_url(item.entry, public=False),
            )

    async def _record(
        self,
        db: AsyncSession,
        task: Task,
        run_log_id: int | None,
        entry: RemoteEntry,
        target: Path,
        file_type: str,
        url: str,
        is_strm: bool = False,
    ) -> None:
        target_str = str(target)
        if await self._ledger.exists(db, entry.path, target_str):
            return
        await self._ledger.record(db, FileHistory(
            task_id=task.id,
            run_log_id=run_log_id,
            file_name=target.name,
            source_path=entry.path,
            source_url=url,
            target_file_path=target_str,
            file_size=entry.size,
            file_type=file_type,
            file_suffix=entry.suffix,
            is_strm=is_strm,
            hash=entry.hash,
            modified_at=_naive_utc(entry.modified),
        ))
