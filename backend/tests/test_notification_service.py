"""Tests for the notification dispatcher — ordering, retries and terminal failure."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from strmsync.exceptions import NotificationError
from strmsync.models.base import utcnow
from strmsync.models.notification import NotificationQueueItem
from strmsync.models.run_log import RunLog
from strmsync.models.task import Task
from strmsync.services.config_store import NOTIFICATION
from strmsync.services.notification_channels import TEMPLATE_TASK_COMPLETE, TEMPLATE_TASK_FAILED
from strmsync.services.notification_service import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SENT,
    NotificationDispatcher,
    build_task_payload,
)


class FakeChannel:
    def __init__(self, enabled=True, error=None):
        self.enabled = enabled
        self.send = AsyncMock(side_effect=error)

    def type(self):
        return "telegram"

    def is_enabled(self):
        return self.enabled


@pytest.fixture
def dispatcher(config_store, session_factory):
    return NotificationDispatcher(config_store, session_factory=session_factory, poll_interval=0.01)


async def _load(session_factory, item_id):
    async with session_factory() as db:
        return await db.get(NotificationQueueItem, item_id)


def _finished_run(status="completed", message=None):
    task = Task(id=1, name="movies", source_path="/media", target_path="/strm")
    log = RunLog(task_id=1, status=status, message=message, start_time=utcnow(),
                 end_time=utcnow(), duration=3.21, total_file=4, generated_file=3,
                 skip_file=1, overwrite_file=0, metadata_count=0, subtitle_count=0,
                 failed_count=0)
    return task, log


class TestDelivery:
    @pytest.mark.asyncio
    async def test_sent_on_success(self, dispatcher, session_factory):
        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        item = await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {"task_name": "x"})

        assert await dispatcher.process_queue() == 1

        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_SENT
        assert stored.sent_at is not None
        channel.send.assert_awaited_once_with(TEMPLATE_TASK_COMPLETE, {"task_name": "x"})

    @pytest.mark.asyncio
    async def test_empty_queue(self, dispatcher):
        assert await dispatcher.process_queue() == 0

    @pytest.mark.asyncio
    async def test_retries_then_fails_terminally(self, dispatcher, session_factory):
        channel = FakeChannel(error=NotificationError("boom"))
        dispatcher._channels = {"telegram": channel}
        item = await dispatcher.enqueue("telegram", TEMPLATE_TASK_FAILED, {})

        # max_retries=3: one initial attempt plus three retries
        for _ in range(6):
            await dispatcher.process_queue()

        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_FAILED
        assert stored.retry_count == 3
        assert stored.error_message == "boom"
        assert channel.send.await_count == 4

    @pytest.mark.asyncio
    async def test_retry_waits_for_interval(self, dispatcher, config_store, session_factory):
        config_store.update(NOTIFICATION, retry_interval_seconds=3600)
        channel = FakeChannel(error=NotificationError("boom"))
        dispatcher._channels = {"telegram": channel}
        item = await dispatcher.enqueue("telegram", TEMPLATE_TASK_FAILED, {})

        await dispatcher.process_queue()
        assert await dispatcher.process_queue() == 0

        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_PENDING
        assert stored.retry_count == 1
        assert stored.next_retry_at > utcnow()

    @pytest.mark.asyncio
    async def test_disabled_channel_fails_immediately(self, dispatcher, session_factory):
        channel = FakeChannel(enabled=False)
        dispatcher._channels = {"telegram": channel}
        item = await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {})

        await dispatcher.process_queue()

        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_FAILED
        assert stored.retry_count == 0
        channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_channel_fails_immediately(self, dispatcher, session_factory):
        item = await dispatcher.enqueue("pigeon", TEMPLATE_TASK_COMPLETE, {})
        await dispatcher.process_queue()
        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_FAILED
        assert "pigeon" in stored.error_message


class TestOrdering:
    @pytest.mark.asyncio
    async def test_priority_before_age(self, dispatcher, session_factory):
        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        low = await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {"n": "low"}, priority=9)
        high = await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {"n": "high"}, priority=1)

        # concurrency=1 delivers one item per pass
        await dispatcher.process_queue()

        assert (await _load(session_factory, high.id)).status == STATUS_SENT
        assert (await _load(session_factory, low.id)).status == STATUS_PENDING

    @pytest.mark.asyncio
    async def test_same_priority_oldest_first(self, dispatcher, config_store):
        config_store.update(NOTIFICATION, concurrency=5)
        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        for n in ("a", "b", "c"):
            await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {"n": n})

        assert await dispatcher.process_queue() == 3
        sent = [call.args[1]["n"] for call in channel.send.await_args_list]
        assert sent == ["a", "b", "c"]


class TestNotifyRun:
    @pytest.mark.asyncio
    async def test_completed_run_uses_complete_template(self, dispatcher):
        task, log = _finished_run()
        item = await dispatcher.notify_run(task, log)
        assert item.template_type == TEMPLATE_TASK_COMPLETE
        assert item.channel_type == "telegram"
        assert item.payload["task_name"] == "movies"
        assert item.payload["error_message"] == ""

    @pytest.mark.asyncio
    async def test_failed_run_uses_failed_template(self, dispatcher):
        task, log = _finished_run(status="failed", message="root listing failed")
        item = await dispatcher.notify_run(task, log)
        assert item.template_type == TEMPLATE_TASK_FAILED
        assert item.payload["error_message"] == "root listing failed"

    @pytest.mark.asyncio
    async def test_disabled_notifications_queue_nothing(self, dispatcher, config_store, session_factory):
        config_store.update(NOTIFICATION, enabled=False)
        task, log = _finished_run()
        assert await dispatcher.notify_run(task, log) is None
        async with session_factory() as db:
            result = await db.execute(select(NotificationQueueItem))
            assert result.scalars().all() == []

    def test_payload_fields(self):
        task, log = _finished_run()
        payload = build_task_payload(task, log)
        assert payload["duration"] == 3.2
        assert payload["generated_file"] == 3
        assert payload["source_path"] == "/media"


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_cleanup_removes_only_old_sent(self, dispatcher, db_session):
        old = utcnow() - timedelta(days=40)
        db_session.add_all([
            NotificationQueueItem(channel_type="telegram", template_type=TEMPLATE_TASK_COMPLETE,
                                  payload={}, status=STATUS_SENT, created_at=old),
            NotificationQueueItem(channel_type="telegram", template_type=TEMPLATE_TASK_COMPLETE,
                                  payload={}, status=STATUS_FAILED, created_at=old),
            NotificationQueueItem(channel_type="telegram", template_type=TEMPLATE_TASK_COMPLETE,
                                  payload={}, status=STATUS_SENT),
        ])
        await db_session.commit()

        assert await dispatcher.cleanup_sent(db_session, days=30) == 1
        items, total = await dispatcher.list_queue(db_session)
        assert total == 2

    @pytest.mark.asyncio
    async def test_config_change_rebuilds_channels(self, dispatcher, config_store):
        assert dispatcher.channels["telegram"].is_enabled() is False
        config_store.update(NOTIFICATION, telegram={"enabled": True, "bot_token": "t", "chat_id": "c"})
        assert dispatcher.channels["telegram"].is_enabled() is True

    @pytest.mark.asyncio
    async def test_worker_loop_delivers(self, dispatcher):
        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {})
        dispatcher.start()
        try:
            for _ in range(100):
                if channel.send.await_count:
                    break
                await asyncio.sleep(0.01)
        finally:
            await dispatcher.stop()
        assert channel.send.await_count == 1


class TestInterruptedDelivery:
    @pytest.mark.asyncio
    async def test_cancel_mid_send_requeues(self, dispatcher, session_factory):
        started = asyncio.Event()

        async def _hang(*args):
            started.set()
            await asyncio.Event().wait()

        hanging = FakeChannel()
        hanging.send = AsyncMock(side_effect=_hang)
        dispatcher._channels = {"telegram": hanging}
        item = await dispatcher.enqueue("telegram", TEMPLATE_TASK_COMPLETE, {"task_name": "x"})

        pass_task = asyncio.create_task(dispatcher.process_queue())
        await asyncio.wait_for(started.wait(), timeout=5)
        pass_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pass_task

        stored = await _load(session_factory, item.id)
        assert stored.status == STATUS_PENDING
        assert stored.retry_count == 0

        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        assert await dispatcher.process_queue() == 1
        assert (await _load(session_factory, item.id)).status == STATUS_SENT

    @pytest.mark.asyncio
    async def test_recover_stale_resets_processing(self, dispatcher, session_factory):
        async with session_factory() as db:
            stuck = NotificationQueueItem(channel_type="telegram", template_type=TEMPLATE_TASK_COMPLETE,
                                          payload={}, status=STATUS_PROCESSING)
            done = NotificationQueueItem(channel_type="telegram", template_type=TEMPLATE_TASK_COMPLETE,
                                         payload={}, status=STATUS_SENT)
            db.add_all([stuck, done])
            await db.commit()

            assert await dispatcher.recover_stale(db) == 1

        assert (await _load(session_factory, stuck.id)).status == STATUS_PENDING
        assert (await _load(session_factory, done.id)).status == STATUS_SENT

        channel = FakeChannel()
        dispatcher._channels = {"telegram": channel}
        assert await dispatcher.process_queue() == 1
        channel.send.assert_awaited_once()
