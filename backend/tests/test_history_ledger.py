"""Tests for the file history ledger."""

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from strmsync.models.file_history import FileHistory
from strmsync.services.history_ledger import HistoryLedger


def _row(task_id=1, source="/m/a.mp4", target="/out/a.strm", file_type="media"):
    return FileHistory(
        task_id=task_id,
        file_name=target.rsplit("/", 1)[-1],
        source_path=source,
        target_file_path=target,
        file_type=file_type,
        file_suffix="mp4",
        is_strm=file_type == "media",
    )


@pytest_asyncio.fixture
async def ledger():
    return HistoryLedger()


@pytest.mark.asyncio
async def test_exists_after_record(db_session, ledger):
    assert await ledger.exists(db_session, "/m/a.mp4", "/out/a.strm") is False
    await ledger.record(db_session, _row())
    assert await ledger.exists(db_session, "/m/a.mp4", "/out/a.strm") is True
    assert await ledger.exists(db_session, "/m/a.mp4", "/other/a.strm") is False


@pytest.mark.asyncio
async def test_source_target_pair_unique(db_session, ledger):
    await ledger.record(db_session, _row())
    with pytest.raises(IntegrityError):
        await ledger.record(db_session, _row())
    await db_session.rollback()


@pytest.mark.asyncio
async def test_bulk_delete(db_session, ledger):
    a = await ledger.record(db_session, _row(source="/m/a.mp4", target="/out/a.strm"))
    b = await ledger.record(db_session, _row(source="/m/b.mp4", target="/out/b.strm"))
    await ledger.record(db_session, _row(source="/m/c.mp4", target="/out/c.strm"))

    assert await ledger.bulk_delete(db_session, [a.id, b.id]) == 2
    assert await ledger.count(db_session) == 1
    assert await ledger.bulk_delete(db_session, []) == 0


@pytest.mark.asyncio
async def test_clear_all_scoped_to_task(db_session, ledger):
    await ledger.record(db_session, _row(task_id=1, source="/m/a.mp4", target="/o/a.strm"))
    await ledger.record(db_session, _row(task_id=2, source="/m/b.mp4", target="/o/b.strm"))

    assert await ledger.clear_all(db_session, task_id=1) == 1
    assert await ledger.count(db_session, task_id=2) == 1
    assert await ledger.clear_all(db_session) == 1
    assert await ledger.count(db_session) == 0


@pytest.mark.asyncio
async def test_list_entries_paginates_and_filters(db_session, ledger):
    for i in range(5):
        await ledger.record(db_session, _row(source=f"/m/{i}.mp4", target=f"/o/{i}.strm"))
    await ledger.record(db_session, _row(source="/m/0.nfo", target="/o/0.nfo", file_type="metadata"))

    items, total = await ledger.list_entries(db_session, task_id=1, file_type="media", page=2, page_size=2)
    assert total == 5
    assert len(items) == 2
    assert all(i.file_type == "media" for i in items)
