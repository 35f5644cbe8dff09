"""Test fixtures — SQLite databases, a fake AList server and FastAPI test client."""

import json

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from strmsync.database import get_db
from strmsync.main import create_app
from strmsync.models.base import Base
from strmsync.services.alist_client import AlistClient
from strmsync.services.config_store import (
    ALIST,
    NOTIFICATION,
    STRM,
    AlistConfig,
    ConfigStore,
    NotificationConfig,
    StrmConfig,
)
from strmsync.services.retry import RetryExecutor, RetryPolicy

ALIST_HOST = "http://alist.local"
PUBLIC_HOST = "https://media.example.com"


@pytest_asyncio.fixture
async def db_session():
    """Provide an async in-memory SQLite session for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """File-backed session factory for code that opens its own sessions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession):
    """Provide an async test client with overridden DB dependency."""
    app = create_app()

    async def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def file_item(name, size=1024, sign="sig", modified="2024-05-01T12:00:00Z"):
    return {
        "name": name,
        "size": size,
        "is_dir": False,
        "modified": modified,
        "sign": sign,
        "hash_info": {"sha1": "da39a3ee"},
    }


def dir_item(name):
    return {"name": name, "size": 0, "is_dir": True, "modified": "2024-05-01T12:00:00Z", "sign": ""}


class FakeAlist:
    """In-process AList: serves ``/api/fs/list`` pages, ``/api/fs/get`` info and ``/d/...`` downloads."""

    def __init__(self, tree=None, files=None):
        self.tree = tree or {}
        self.files = files or {}
        self.fail_paths = set()
        self.list_calls = []
        self.download_calls = []
        self.info = {}
        self.get_calls = []
        self.get_failures = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/fs/list":
            body = json.loads(request.content)
            path, page, per_page = body["path"], body["page"], body["per_page"]
            self.list_calls.append((path, page))
            if path in self.fail_paths:
                return httpx.Response(200, json={"code": 500, "message": "failed get storage", "data": None})
            items = self.tree.get(path)
            if items is None:
                return httpx.Response(200, json={"code": 500, "message": "object not found", "data": None})
            start = (page - 1) * per_page
            content = items[start:start + per_page]
            return httpx.Response(
                200,
                json={"code": 200, "message": "success", "data": {"content": content, "total": len(items)}},
            )
        if request.url.path == "/api/fs/get":
            path = json.loads(request.content)["path"]
            self.get_calls.append(path)
            if self.get_failures > 0:
                self.get_failures -= 1
                return httpx.Response(200, json={"code": 500, "message": "storage busy", "data": None})
            item = self.info.get(path)
            if item is None:
                return httpx.Response(200, json={"code": 500, "message": "object not found", "data": None})
            return httpx.Response(200, json={"code": 200, "message": "success", "data": item})
        if request.url.path.startswith("/d/"):
            path = request.url.path[len("/d"):]
            self.download_calls.append(path)
            if path in self.files:
                return httpx.Response(200, content=self.files[path])
            return httpx.Response(404)
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_alist():
    return FakeAlist()


@pytest.fixture
def config_store():
    return ConfigStore({
        ALIST: AlistConfig(host=ALIST_HOST, token="alist-token", replace_host=PUBLIC_HOST, per_page=2,
                           req_delay_ms=0, retry_delay_ms=0, max_retries=1),
        STRM: StrmConfig(default_suffix="mp4,mkv", replace_suffix=True, url_encode=False),
        NOTIFICATION: NotificationConfig(enabled=True, default_channel="telegram",
                                         max_retries=3, retry_interval_seconds=0),
    })


@pytest.fixture
def alist_client(config_store, fake_alist):
    retry = RetryExecutor(RetryPolicy(max_retries=1, retry_delay=0, req_delay=0))
    return AlistClient(retry, config_store=config_store, transport=fake_alist.transport())
