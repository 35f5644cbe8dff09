"""Business logic services — singleton registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from strmsync.config import settings

if TYPE_CHECKING:
    from strmsync.services.alist_client import AlistClient
    from strmsync.services.config_store import ConfigStore
    from strmsync.services.file_events import FileEventProcessor
    from strmsync.services.history_ledger import HistoryLedger
    from strmsync.services.notification_service import NotificationDispatcher
    from strmsync.services.run_coordinator import RunCoordinator
    from strmsync.services.scheduler import TaskScheduler
    from strmsync.services.task_service import TaskService

logger = logging.getLogger(__name__)

_config_store: ConfigStore | None = None
_alist_client: AlistClient | None = None
_ledger: HistoryLedger | None = None
_dispatcher: NotificationDispatcher | None = None
_coordinator: RunCoordinator | None = None
_scheduler: TaskScheduler | None = None
_task_service: TaskService | None = None
_file_events: FileEventProcessor | None = None


async def init_services(db_session) -> None:
    """Create and wire up all service singletons."""
    global _config_store, _alist_client, _ledger, _dispatcher, _coordinator, _scheduler
    global _task_service, _file_events

    from strmsync.services.alist_client import AlistClient
    from strmsync.services.config_store import ConfigStore
    from strmsync.services.file_events import FileEventProcessor
    from strmsync.services.history_ledger import HistoryLedger
    from strmsync.services.notification_service import NotificationDispatcher
    from strmsync.services.retry import RetryExecutor
    from strmsync.services.run_coordinator import RunCoordinator
    from strmsync.services.scheduler import TaskScheduler
    from strmsync.services.strm_generator import StrmGenerator
    from strmsync.services.task_service import TaskService

    _config_store = ConfigStore.from_settings(settings)
    if not _config_store.is_ready():
        logger.warning(
            "AList host/token not configured (STRMSYNC_ALIST_HOST / STRMSYNC_ALIST_TOKEN) — "
            "runs will fail until configured"
        )

    retry = RetryExecutor(config_store=_config_store)
    _alist_client = AlistClient(retry, config_store=_config_store)
    _ledger = HistoryLedger()
    _task_service = TaskService()
    generator = StrmGenerator(
        _alist_client, _ledger, _config_store, sidecar_batch_size=settings.sidecar_batch_size
    )
    _file_events = FileEventProcessor(generator)

    _dispatcher = NotificationDispatcher(_config_store)
    _coordinator = RunCoordinator(
        generator,
        _config_store,
        dispatcher=_dispatcher,
        max_concurrent_runs=settings.max_concurrent_runs,
    )

    # Stale-lock recovery must happen before anything can start a run
    await _coordinator.recover_stale(db_session)
    await _dispatcher.recover_stale(db_session)

    _dispatcher.start()
    _scheduler = TaskScheduler(_coordinator, _dispatcher)
    await _scheduler.start()
    logger.info("Services initialized (coordinator, scheduler, notifications)")


async def shutdown_services() -> None:
    """Cancel live runs, stop scheduler and notification worker."""
    global _scheduler, _dispatcher, _coordinator
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None
    if _coordinator:
        await _coordinator.shutdown()
        _coordinator = None
    if _dispatcher:
        await _dispatcher.stop()
        _dispatcher = None


def get_config_store() -> ConfigStore:
    if _config_store is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _config_store


def get_alist_client() -> AlistClient:
    if _alist_client is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _alist_client


def get_ledger() -> HistoryLedger:
    if _ledger is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _ledger


def get_dispatcher() -> NotificationDispatcher:
    if _dispatcher is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _dispatcher


def get_coordinator() -> RunCoordinator:
    if _coordinator is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _coordinator


def get_scheduler() -> TaskScheduler:
    if _scheduler is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _scheduler


def get_task_service() -> TaskService:
    if _task_service is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _task_service


def get_file_events() -> FileEventProcessor:
    if _file_events is None:
        raise RuntimeError("Services not initialized — call init_services() first")
    return _file_events
