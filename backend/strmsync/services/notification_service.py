"""Notification dispatcher — persistent queue with a background delivery worker."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from strmsync.config import settings
from strmsync.database import async_session
from strmsync.exceptions import ChannelDisabledError
from strmsync.models.base import utcnow
from strmsync.models.notification import NotificationQueueItem
from strmsync.services.config_store import NOTIFICATION
from strmsync.services.notification_channels import (
    TEMPLATE_TASK_COMPLETE,
    TEMPLATE_TASK_FAILED,
    build_channels,
)

if TYPE_CHECKING:
    from strmsync.models.run_log import RunLog
    from strmsync.models.task import Task
    from strmsync.services.config_store import ConfigStore, NotificationConfig
    from strmsync.services.notification_channels import NotificationChannel

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"

DEFAULT_PRIORITY = 5


def build_task_payload(task: Task, run_log: RunLog) -> dict[str, Any]:
    """Template variables describing a finished run."""
    event_time = run_log.end_time or utcnow()
    return {
        "task_id": task.id,
        "task_name": task.name,
        "status": run_log.status,
        "duration": round(run_log.duration or 0.0, 1),
        "event_time": event_time.strftime("%Y-%m-%d %H:%M:%S"),
        "source_path": task.source_path,
        "target_path": task.target_path,
        "total_file": run_log.total_file,
        "generated_file": run_log.generated_file,
        "skip_file": run_log.skip_file,
        "overwrite_file": run_log.overwrite_file,
        "metadata_count": run_log.metadata_count,
        "subtitle_count": run_log.subtitle_count,
        "failed_count": run_log.failed_count,
        "error_message": run_log.message if run_log.status != "completed" else "",
    }


class NotificationDispatcher:
    """Delivers queued events through their channel, retrying on a fixed interval.

    Runs its own polling loop so slow channels never hold up a sync run.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        session_factory: Callable[[], AsyncSession] = async_session,
        poll_interval: float | None = None,
    ):
        self._config_store = config_store
        self._session_factory = session_factory
        self._poll_interval = poll_interval or settings.notify_poll_interval_seconds
        self._config: NotificationConfig = config_store.get(NOTIFICATION)
        self._channels: dict[str, NotificationChannel] = build_channels(self._config)
        self._task: asyncio.Task | None = None
        config_store.subscribe(NOTIFICATION, self._on_config_change)

    @property
    def channels(self) -> dict[str, NotificationChannel]:
        return self._channels

    def _on_config_change(self, cfg: NotificationConfig) -> None:
        self._config = cfg
        self._channels = build_channels(cfg)
        logger.info("Notification channels rebuilt (default=%s)", cfg.default_channel)

    # --- Producer side ---

    async def enqueue(
        self,
        channel_type: str,
        template_type: str,
        payload: dict[str, Any],
        priority: int = DEFAULT_PRIORITY,
    ) -> NotificationQueueItem:
        async with self._session_factory() as db:
            item = NotificationQueueItem(
                channel_type=channel_type,
                template_type=template_type,
                payload=payload,
                status=STATUS_PENDING,
                priority=priority,
            )
            db.add(item)
            await db.commit()
            logger.debug("Queued %s/%s notification #%d", channel_type, template_type, item.id)
            return item

    async def notify_run(self, task: Task, run_log: RunLog) -> NotificationQueueItem | None:
        """Queue the outcome of a finished run on the default channel."""
        cfg = self._config
        if not cfg.enabled:
            return None
        template_type = (
            TEMPLATE_TASK_COMPLETE if run_log.status == "completed" else TEMPLATE_TASK_FAILED
        )
        return await self.enqueue(
            cfg.default_channel, template_type, build_task_payload(task, run_log)
        )

    # --- Worker side ---

    def start(self) -> None:
        """Start the background delivery loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Notification dispatcher started")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Notification dispatcher stopped")

    async def _run_loop(self) -> None:
        while True:
            try:
                await self.process_queue()
            except Exception as e:
                logger.error("Notification queue processing failed: %s", e)
            await asyncio.sleep(self._poll_interval)

    async def process_queue(self) -> int:
        """Deliver one batch of due events; returns how many were attempted."""
        cfg = self._config
        now = utcnow()
        async with self._session_factory() as db:
            result = await db.execute(
                select(NotificationQueueItem)
                .where(
                    NotificationQueueItem.status == STATUS_PENDING,
                    or_(
                        NotificationQueueItem.next_retry_at.is_(None),
                        NotificationQueueItem.next_retry_at <= now,
                    ),
                )
                .order_by(NotificationQueueItem.priority.asc(), NotificationQueueItem.created_at.asc(),
                          NotificationQueueItem.id.asc())
                .limit(max(cfg.concurrency, 1))
            )
            items = list(result.scalars().all())
            if not items:
                return 0
            for item in items:
                item.status = STATUS_PROCESSING
            await db.commit()

            try:
                outcomes = await asyncio.gather(
                    *(self._attempt(item) for item in items), return_exceptions=True
                )
                for item, outcome in zip(items, outcomes):
                    self._apply_outcome(item, outcome, cfg)
            except (asyncio.CancelledError, Exception):
                # Unclaim so the next pass picks them up again
                for item in items:
                    item.status = STATUS_PENDING
                await db.commit()
                logger.warning("Delivery of %d notification(s) interrupted, requeued", len(items))
                raise
            await db.commit()
        return len(items)

    async def _attempt(self, item: NotificationQueueItem) -> None:
        channel = self._channels.get(item.channel_type)
        if channel is None:
            raise ChannelDisabledError(f"Unknown notification channel: {item.channel_type}")
        if not channel.is_enabled():
            raise ChannelDisabledError(f"{item.channel_type} channel is disabled")
        await channel.send(item.template_type, item.payload)

    def _apply_outcome(
        self, item: NotificationQueueItem, outcome: BaseException | None, cfg: NotificationConfig
    ) -> None:
        if outcome is None:
            item.status = STATUS_SENT
            item.sent_at = utcnow()
            item.error_message = None
            logger.info("Notification #%d sent via %s", item.id, item.channel_type)
            return

        item.error_message = str(outcome)
        if isinstance(outcome, ChannelDisabledError):
            item.status = STATUS_FAILED
            logger.error("Notification #%d dropped: %s", item.id, outcome)
        elif item.retry_count < cfg.max_retries:
            item.retry_count += 1
            item.status = STATUS_PENDING
            item.next_retry_at = utcnow() + timedelta(seconds=cfg.retry_interval_seconds)
            logger.warning(
                "Notification #%d failed (%s), retry %d/%d at %s",
                item.id, outcome, item.retry_count, cfg.max_retries, item.next_retry_at,
            )
        else:
            item.status = STATUS_FAILED
            logger.error(
                "Notification #%d failed permanently after %d attempts: %s",
                item.id, item.retry_count + 1, outcome,
            )

    # --- Maintenance / queries ---

    async def recover_stale(self, db: AsyncSession) -> int:
        """Startup sweep: rows left `processing` by a dead worker go back to `pending`."""
        result = await db.execute(
            update(NotificationQueueItem)
            .where(NotificationQueueItem.status == STATUS_PROCESSING)
            .values(status=STATUS_PENDING)
        )
        await db.commit()
        if result.rowcount:
            logger.warning("Requeued %d interrupted notification(s)", result.rowcount)
        return result.rowcount

    async def cleanup_sent(self, db: AsyncSession, days: int | None = None) -> int:
        """Delete sent events older than the retention window."""
        days = settings.notify_retention_days if days is None else days
        cutoff = utcnow() - timedelta(days=days)
        result = await db.execute(
            delete(NotificationQueueItem).where(
                NotificationQueueItem.status == STATUS_SENT,
                NotificationQueueItem.created_at < cutoff,
            )
        )
        await db.commit()
        if result.rowcount:
            logger.info("Purged %d sent notifications older than %d days", result.rowcount, days)
        return result.rowcount

    async def list_queue(
        self, db: AsyncSession, status: str | None = None, page: int = 1, page_size: int = 50
    ) -> tuple[list[NotificationQueueItem], int]:
        conditions = [NotificationQueueItem.status == status] if status else []
        total = (
            await db.execute(
                select(func.count()).select_from(NotificationQueueItem).where(*conditions)
            )
        ).scalar_one()
        result = await db.execute(
            select(NotificationQueueItem)
            .where(*conditions)
            .order_by(NotificationQueueItem.id.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total
