import os
from importlib import import_module
from pathlib import Path

import pytest

MiB = 1024 * 1024


@pytest.fixture(scope="session", autouse=True)
def env_test():
    """Pin APP_ENV=test and keep collaborators offline for the whole session."""
    keys = {
        "APP_ENV": "test",
        "TASKS_DRY_RUN": "false",
        "TASKS_AUTH": "test-tasks-secret",
    }
    prev = {k: os.environ.get(k) for k in keys}
    for k, v in keys.items():
        os.environ[k] = v
    try:
        yield
    finally:
        for k, old in prev.items():
            if old is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = old


@pytest.fixture(scope="function")
def db_engine(tmp_path: Path):
    """Provide a temporary SQLite engine with all tables created.

    We patch ``cutroom.core.database.engine`` in place so ``get_session`` and
    the health check pick up the new engine.
    """
    from sqlmodel import create_engine

    db_path = tmp_path / "test.db"
    db = import_module("cutroom.core.database")
    old_engine = getattr(db, "engine")
    new_engine = create_engine(
        f"sqlite:///{db_path.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    setattr(db, "engine", new_engine)
    db.create_db_and_tables()
    try:
        yield new_engine
    finally:
        setattr(db, "engine", old_engine)
        new_engine.dispose()


@pytest.fixture(scope="function")
def session(db_engine):
    """Database session bound to the temporary test engine."""
    from sqlmodel import Session as SQLSession

    with SQLSession(db_engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture(scope="function")
def app(db_engine):
    main = import_module("cutroom.main")
    return main.create_app()


@pytest.fixture(scope="function")
def client(app):
    """Synchronous FastAPI TestClient bound to the temp DB."""
    from fastapi.testclient import TestClient

    with TestClient(app) as tc:
        yield tc


@pytest.fixture(autouse=True)
def settings_overrides(monkeypatch):
    """Deterministic settings for every test; individual tests may patch further."""
    from cutroom.core.config import settings

    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "TASKS_AUTH", "test-tasks-secret")
    monkeypatch.setattr(settings, "UPLOAD_MIN_CHUNK_SIZE", 5 * MiB)
    monkeypatch.setattr(settings, "UPLOAD_MAX_PARTS", 10_000)
    for event in ("UPLOAD", "EDIT", "APPROVAL", "PUBLISH", "REJECTION"):
        monkeypatch.setattr(settings, f"NOTIFY_DEFAULT_{event}", "")
    return settings


@pytest.fixture(autouse=True)
def reset_breaker():
    from cutroom.core.circuit_breaker import PROCESSING_BREAKER

    PROCESSING_BREAKER.reset()
    yield
    PROCESSING_BREAKER.reset()


class Outbox:
    """Captures mailer.send calls; flip ``fail`` or ``error`` to simulate delivery problems."""

    def __init__(self) -> None:
        self.messages = []
        self.fail = False
        self.error = None

    def send(self, to, subject, text, html=None):
        if self.error is not None:
            raise self.error
        if self.fail:
            return False
        recipients = [to] if isinstance(to, str) else list(to)
        self.messages.append({"to": recipients, "subject": subject, "text": text})
        return True

    def to(self, subject_prefix: str):
        return [m["to"] for m in self.messages if m["subject"].startswith(subject_prefix)]


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> Outbox:
    from cutroom.services.mailer import mailer

    box = Outbox()
    monkeypatch.setattr(mailer, "send", box.send)
    return box


class TaskRecorder:
    """Captures enqueue_http_task calls; set ``fail`` to make the queue unavailable."""

    def __init__(self) -> None:
        self.calls = []
        self.fail = False

    def enqueue(self, path, body):
        if self.fail:
            raise RuntimeError("worker unavailable")
        self.calls.append((path, body))
        return {"name": f"task-{len(self.calls)}"}


@pytest.fixture(autouse=True)
def tasks(monkeypatch) -> TaskRecorder:
    from cutroom.infrastructure import tasks_client

    recorder = TaskRecorder()
    monkeypatch.setattr(tasks_client, "enqueue_http_task", recorder.enqueue)
    return recorder


@pytest.fixture
def open_session(session):
    """Initiate an upload session with sensible defaults; keyword overrides pass through."""
    from cutroom.services import uploads

    def _open(asset_group_key="course-101", declared_size=25 * MiB, chunk_size=10 * MiB, **kwargs):
        kwargs.setdefault("actor", "uploader@example.com")
        return uploads.initiate(
            session,
            asset_group_key=asset_group_key,
            declared_size=declared_size,
            chunk_size=chunk_size,
            **kwargs,
        )

    return _open


@pytest.fixture
def upload_version(session, open_session):
    """Run a whole upload (initiate, report every part, complete) and return the version."""
    from cutroom.services import uploads

    def _upload(asset_group_key="course-101", **kwargs):
        upload = open_session(asset_group_key=asset_group_key, **kwargs)
        for n in range(1, upload.total_parts + 1):
            uploads.report_part(session, upload.id, n, f"etag-{n}")
        return uploads.complete(session, upload.id)

    return _upload


@pytest.fixture
def actor_headers() -> dict:
    return {"X-Actor": "editor@example.com"}
