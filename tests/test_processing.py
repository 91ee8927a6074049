import json

import httpx
import pytest

from cutroom.core.circuit_breaker import PROCESSING_BREAKER, CircuitState
from cutroom.core.errors import ProcessingRequestFailed
from cutroom.infrastructure import tasks_client
from cutroom.services import processing, uploads

# The autouse ``tasks`` fixture swaps this out; keep the real one for the client tests
REAL_ENQUEUE = tasks_client.enqueue_http_task


@pytest.fixture
def version(upload_version):
    return upload_version(declared_size=1024, chunk_size=1024)


class TestRequestProcessing:
    def test_success_records_request_time(self, session, version, tasks):
        updated = processing.request_processing(session, version.id)

        assert updated.processing_requested_at is not None
        assert updated.processing_error is None
        assert tasks.calls == [
            (
                "/api/tasks/package-hls",
                {
                    "asset_version_id": str(version.id),
                    "asset_group_key": "course-101",
                    "version_number": 1,
                    "storage_key": version.storage_key,
                },
            )
        ]

    def test_failure_is_recorded_and_raised(self, session, version, tasks):
        tasks.fail = True
        with pytest.raises(ProcessingRequestFailed) as exc:
            processing.request_processing(session, version.id)

        assert exc.value.code == "PROCESSING_REQUEST_FAILED"
        assert exc.value.retryable is True
        assert exc.value.details["technical_message"] == "worker unavailable"
        session.refresh(version)
        assert version.processing_error == "worker unavailable"
        assert version.processing_requested_at is None

    def test_success_clears_previous_error(self, session, version, tasks):
        tasks.fail = True
        with pytest.raises(ProcessingRequestFailed):
            processing.request_processing(session, version.id)
        tasks.fail = False

        updated = processing.request_processing(session, version.id)
        assert updated.processing_error is None
        assert updated.processing_requested_at is not None

    def test_breaker_opens_after_repeated_failures(self, session, version, tasks):
        tasks.fail = True
        for _ in range(PROCESSING_BREAKER.failure_threshold):
            with pytest.raises(ProcessingRequestFailed):
                processing.request_processing(session, version.id)
        assert PROCESSING_BREAKER.state is CircuitState.OPEN

        tasks.fail = False
        with pytest.raises(ProcessingRequestFailed) as exc:
            processing.request_processing(session, version.id)
        assert "OPEN" in exc.value.details["technical_message"]
        assert tasks.calls == []

    def test_request_after_commit_swallows_failure(self, session, version, tasks):
        tasks.fail = True
        processing.request_after_commit(session, version.id)
        session.refresh(version)
        assert version.processing_error == "worker unavailable"


def test_auto_process_runs_after_completion(session, open_session, tasks):
    upload = open_session(declared_size=1024, chunk_size=1024, auto_process=True)
    uploads.report_part(session, upload.id, 1, "etag-1")

    version = uploads.complete(session, upload.id)

    assert version.auto_process_requested is True
    assert [body["asset_version_id"] for _, body in tasks.calls] == [str(version.id)]
    assert version.processing_requested_at is not None


def test_auto_process_failure_keeps_version(session, open_session, tasks):
    tasks.fail = True
    upload = open_session(declared_size=1024, chunk_size=1024, auto_process=True)
    uploads.report_part(session, upload.id, 1, "etag-1")

    version = uploads.complete(session, upload.id)

    assert version.version_number == 1
    assert version.processing_error == "worker unavailable"


class TestTasksClient:
    def test_dry_run(self, monkeypatch):
        monkeypatch.setenv("TASKS_DRY_RUN", "true")
        assert REAL_ENQUEUE("/api/tasks/package-hls", {"asset_version_id": "x"})["name"].startswith("dry-run-")

    def test_local_noop_without_worker(self, monkeypatch):
        monkeypatch.delenv("WORKER_URL_BASE", raising=False)
        assert REAL_ENQUEUE("/api/tasks/package-hls", {"asset_version_id": "x"})["name"].startswith("local-noop-")

    def _route_worker(self, monkeypatch, handler):
        transport = httpx.MockTransport(handler)
        real_client = httpx.Client

        def _client(**kwargs):
            return real_client(transport=transport, **kwargs)

        monkeypatch.setenv("WORKER_URL_BASE", "http://worker.example.com/")
        monkeypatch.setattr(tasks_client.httpx, "Client", _client)

    def test_worker_post(self, monkeypatch):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"name": "worker-task-1"})

        self._route_worker(monkeypatch, handler)
        result = REAL_ENQUEUE("/api/tasks/package-hls", {"asset_version_id": "abc"})

        assert result == {"name": "worker-task-1"}
        request = seen[0]
        assert str(request.url) == "http://worker.example.com/api/tasks/package-hls"
        assert request.headers["X-Tasks-Auth"] == "test-tasks-secret"
        assert json.loads(request.content) == {"asset_version_id": "abc"}

    def test_worker_error_status(self, monkeypatch):
        self._route_worker(monkeypatch, lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(RuntimeError, match="503"):
            REAL_ENQUEUE("/api/tasks/package-hls", {})

    def test_worker_transport_error(self, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        self._route_worker(monkeypatch, handler)
        with pytest.raises(RuntimeError, match="failed"):
            REAL_ENQUEUE("/api/tasks/package-hls", {})

    def test_production_requires_cloud_tasks_config(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        for name in ("GOOGLE_CLOUD_PROJECT", "TASKS_LOCATION", "TASKS_QUEUE", "TASKS_URL_BASE"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(ValueError):
            tasks_client.should_use_cloud_tasks()

    def test_staging_without_config_falls_back_to_local(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "staging")
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        assert tasks_client.should_use_cloud_tasks() is False
