"""Shared pytest fixtures for quizsync tests."""

import json
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from quizsync.config import Settings, SyncMode
from quizsync.context import QuizSyncContext
from quizsync.db.session import init_local_db
from quizsync.main import app
from quizsync.services.local_store import LocalStore

REMOTE_URL = "https://remote.test"


# ── fake PostgREST backend ────────────────────────────────────────────────────


class FakePostgrest:
    """In-memory stand-in for the hosted REST database.

    Supports the subset the client uses: ``eq``/``gte`` filters, ``order``,
    ``limit``, inserts that fail with 409/23505 on unique keys, upserts with
    ``on_conflict`` + ``resolution=merge-duplicates|ignore-duplicates``,
    PATCH and DELETE (deleting a user cascades to their rows).
    """

    UNIQUE = {
        "users": ("user_name",),
        "quiz_results": ("user_name", "app_id", "completed_at"),
        "wrong_answers": ("user_name", "app_id", "question_id"),
        "bookmarks": ("user_name", "app_id", "question_id"),
        "adaptive_learning": ("user_name", "app_id", "question_id"),
        "study_time": ("user_name", "app_id", "study_date"),
    }
    _RESERVED = {"select", "order", "limit", "on_conflict"}

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {name: [] for name in self.UNIQUE}
        self.requests: list[tuple[str, str]] = []
        self.down = False
        self._lock = threading.Lock()

    def rows(self, table: str, **match) -> list[dict]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in match.items())]

    def _matches(self, row: dict, params: httpx.QueryParams) -> bool:
        for key, raw in params.multi_items():
            if key in self._RESERVED:
                continue
            op, _, value = raw.partition(".")
            current = row.get(key)
            if op == "eq" and str(current) != value:
                return False
            if op == "gte" and (current is None or str(current) < value):
                return False
        return True

    def _key(self, table: str, row: dict) -> tuple:
        return tuple(row.get(k) for k in self.UNIQUE[table])

    def _find(self, table: str, row: dict) -> dict | None:
        key = self._key(table, row)
        for existing in self.tables[table]:
            if self._key(table, existing) == key:
                return existing
        return None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        # Background sync workers call in from several threads.
        with self._lock:
            return self._handle(request)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        table = request.url.path.rsplit("/", 1)[-1]
        self.requests.append((request.method, table))
        params = request.url.params
        matching = [r for r in self.tables[table] if self._matches(r, params)]

        if request.method == "GET":
            order = params.get("order")
            if order:
                col, _, direction = order.partition(".")
                matching.sort(key=lambda r: str(r.get(col)), reverse=direction == "desc")
            if params.get("limit"):
                matching = matching[: int(params["limit"])]
            return httpx.Response(200, json=matching)

        if request.method == "POST":
            body = json.loads(request.content)
            incoming = body if isinstance(body, list) else [body]
            prefer = request.headers.get("prefer", "")
            if "on_conflict" in params:
                stored = []
                for row in incoming:
                    existing = self._find(table, row)
                    if existing is None:
                        self.tables[table].append(dict(row))
                        stored.append(dict(row))
                    elif "merge-duplicates" in prefer:
                        existing.update(row)
                        stored.append(dict(existing))
                return httpx.Response(201, json=stored)
            if any(self._find(table, row) is not None for row in incoming):
                return httpx.Response(
                    409,
                    json={"code": "23505", "message": "duplicate key value violates unique constraint"},
                )
            for row in incoming:
                self.tables[table].append(dict(row))
            return httpx.Response(201, json=[dict(r) for r in incoming])

        if request.method == "PATCH":
            values = json.loads(request.content)
            for row in matching:
                row.update(values)
            return httpx.Response(200, json=[dict(r) for r in matching])

        if request.method == "DELETE":
            self.tables[table] = [r for r in self.tables[table] if r not in matching]
            if table == "users":
                names = {r["user_name"] for r in matching}
                for other in self.tables:
                    self.tables[other] = [
                        r for r in self.tables[other] if r.get("user_name") not in names
                    ]
            return httpx.Response(204)

        return httpx.Response(405)


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("network is unreachable", request=request)


# ── clock ─────────────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc))


# ── storage ───────────────────────────────────────────────────────────────────


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database for each test (StaticPool keeps it alive)."""
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    init_local_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def local_store(engine) -> LocalStore:
    return LocalStore(engine)


@pytest.fixture
def remote_db() -> FakePostgrest:
    return FakePostgrest()


# ── celery ────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Keep API tests from running real background uploads."""
    mock_task = MagicMock()
    mock_task.delay = MagicMock(return_value=MagicMock(id="fake-task-id"))
    with patch("quizsync.api.sync.upload_local_snapshot", mock_task):
        yield mock_task


# ── contexts ──────────────────────────────────────────────────────────────────


@pytest.fixture
def local_settings() -> Settings:
    return Settings(MODE=SyncMode.LOCAL, SYNC_WORKERS=2)


@pytest.fixture
def cloud_settings() -> Settings:
    return Settings(
        MODE=SyncMode.CLOUD,
        REMOTE_URL=REMOTE_URL,
        REMOTE_API_KEY="test-anon-key",
        SYNC_WORKERS=2,
    )


@pytest.fixture
def ctx(engine, local_settings, clock):
    context = QuizSyncContext(local_settings, engine=engine, clock=clock)
    yield context
    context.close()


@pytest.fixture
def cloud_ctx(engine, cloud_settings, clock, remote_db):
    context = QuizSyncContext(
        cloud_settings, engine=engine, transport=httpx.MockTransport(remote_db), clock=clock
    )
    yield context
    context.close()


@pytest.fixture
def offline_ctx(engine, cloud_settings, clock):
    """Cloud mode whose remote store can never be reached."""
    context = QuizSyncContext(
        cloud_settings, engine=engine, transport=httpx.MockTransport(_unreachable), clock=clock
    )
    yield context
    context.close()


@pytest.fixture
def client(ctx):
    """FastAPI test client bound to the local-mode context."""
    app.state.context = ctx
    with TestClient(app) as test_client:
        yield test_client
    app.state.context = None


@pytest.fixture
def cloud_client(cloud_ctx):
    app.state.context = cloud_ctx
    with TestClient(app) as test_client:
        yield test_client
    app.state.context = None
