import json
import logging
import os
from datetime import datetime, timezone

import httpx
from google.cloud import tasks_v2

log = logging.getLogger("tasks.client")

_TRUTHY = {"true", "1", "yes", "on"}

# Packaging a long video into HLS can take a while; Cloud Tasks caps this at 1800s
_PROCESSING_DEADLINE_SECONDS = 1800


def _app_env() -> str:
    return (
        os.getenv("APP_ENV")
        or os.getenv("ENV")
        or os.getenv("PYTHON_ENV")
        or ""
    ).strip().lower()


def should_use_cloud_tasks() -> bool:
    """Return ``True`` when Cloud Tasks HTTP dispatch should be used."""

    env_value = _app_env()
    is_dev_env = env_value in {"", "dev", "development", "local"}
    is_test_env = env_value in {"test", "testing"}
    is_prod_env = env_value == "production"

    if is_dev_env or is_test_env:
        log.info("event=tasks.cloud.disabled reason=dev_env is_dev=%s is_test=%s", is_dev_env, is_test_env)
        return False

    required = {
        "GOOGLE_CLOUD_PROJECT": os.getenv("GOOGLE_CLOUD_PROJECT"),
        "TASKS_LOCATION": os.getenv("TASKS_LOCATION"),
        "TASKS_QUEUE": os.getenv("TASKS_QUEUE"),
        "TASKS_URL_BASE": os.getenv("TASKS_URL_BASE"),
    }

    missing = [name for name, value in required.items() if not (value and value.strip())]
    if missing:
        log.warning("event=tasks.cloud.disabled reason=missing_config missing=%s", missing)
        if is_prod_env:
            raise ValueError(f"Missing required Cloud Tasks configuration: {', '.join(missing)}")
        return False

    log.info("event=tasks.cloud.enabled all_checks_passed")
    return True


def _dispatch_local_task(path: str, body: dict) -> dict:
    """Deliver a task without Cloud Tasks.

    When ``WORKER_URL_BASE`` is set the task is POSTed straight to the
    processing worker with the shared ``X-Tasks-Auth`` secret; a non-2xx
    answer or a transport error raises ``RuntimeError``. Without a worker the
    request is only logged, which keeps dev and test runs free of side effects.
    """
    worker_url_base = (os.getenv("WORKER_URL_BASE") or "").strip()
    if not worker_url_base:
        log.info("event=tasks.dev.noop path=%s body_keys=%s", path, sorted(body.keys()))
        return {"name": f"local-noop-{datetime.now(timezone.utc).isoformat()}"}

    url = f"{worker_url_base.rstrip('/')}{path}"
    headers = {"Content-Type": "application/json", "X-Tasks-Auth": os.getenv("TASKS_AUTH", "a-secure-local-secret")}
    timeout = float(os.getenv("WORKER_TIMEOUT_SECONDS", "30"))
    log.info("event=tasks.dev.using_worker_server path=%s url=%s timeout=%s", path, url, timeout)

    try:
        with httpx.Client(timeout=timeout) as client:
            r = client.post(url, json=body, headers=headers)
    except httpx.TimeoutException as e:
        log.error("event=tasks.dev.worker_timeout path=%s timeout=%s error=%s", path, timeout, str(e))
        raise RuntimeError(f"Worker server timeout after {timeout}s: {e}") from e
    except httpx.HTTPError as e:
        log.error("event=tasks.dev.worker_exception path=%s error=%s", path, str(e))
        raise RuntimeError(f"Worker server call failed: {e}") from e

    if not (200 <= r.status_code < 300):
        log.error("event=tasks.dev.worker_non_2xx path=%s status=%s response=%s", path, r.status_code, r.text[:200])
        raise RuntimeError(f"Worker server returned status {r.status_code}: {r.text[:200]}")

    log.info("event=tasks.dev.worker_success path=%s status=%s", path, r.status_code)
    result = r.json() if r.content else {}
    if not isinstance(result, dict) or "name" not in result:
        result = {"name": f"worker-{datetime.now(timezone.utc).isoformat()}"}
    return result


def enqueue_http_task(path: str, body: dict) -> dict:
    """Enqueue an HTTP task via the centralized dispatch system.

    This is the only entry point for task dispatch.

    Args:
        path: Task endpoint path (e.g., "/api/tasks/package-hls")
        body: Task payload as a dictionary

    Returns:
        Dictionary with "name" key containing task identifier

    Raises:
        ValueError: If required configuration is missing
        RuntimeError: Any error during task creation (no silent fallbacks)
    """
    log.info("event=tasks.enqueue_http_task.start path=%s", path)

    if (os.getenv("TASKS_DRY_RUN", "false") or "").lower().strip() in _TRUTHY:
        task_id = f"dry-run-{datetime.now(timezone.utc).isoformat()}"
        log.info("event=tasks.dry_run path=%s task_id=%s", path, task_id)
        return {"name": task_id}

    if not should_use_cloud_tasks():
        log.info("event=tasks.enqueue_http_task.using_local_dispatch path=%s", path)
        return _dispatch_local_task(path, body)

    log.info("event=tasks.enqueue_http_task.using_cloud_tasks path=%s", path)

    try:
        client = tasks_v2.CloudTasksClient()
    except Exception as e:
        log.error("event=tasks.enqueue_http_task.cloud_tasks_client_failed path=%s error=%s", path, e)
        raise RuntimeError(f"Failed to create CloudTasksClient: {e}") from e

    project = os.getenv("GOOGLE_CLOUD_PROJECT")
    location = os.getenv("TASKS_LOCATION")
    queue = os.getenv("TASKS_QUEUE")
    parent = client.queue_path(project, location, queue)

    # Processing is heavy: route it to the dedicated worker service when one exists
    base_url = (os.getenv("WORKER_URL_BASE") or os.getenv("TASKS_URL_BASE") or "").rstrip("/")
    if not base_url:
        log.error("event=tasks.enqueue_http_task.base_url_missing path=%s", path)
        raise ValueError("Missing TASKS_URL_BASE (and WORKER_URL_BASE for worker-bound tasks)")
    url = f"{base_url}{path}"

    tasks_auth = os.getenv("TASKS_AUTH")
    if not tasks_auth:
        log.warning("event=tasks.enqueue_http_task.tasks_auth_missing path=%s", path)

    from google.protobuf import duration_pb2

    deadline = duration_pb2.Duration()
    deadline.seconds = _PROCESSING_DEADLINE_SECONDS
    task = tasks_v2.Task(
        http_request=tasks_v2.HttpRequest(
            http_method=tasks_v2.HttpMethod.POST,
            url=url,
            headers={"Content-Type": "application/json", "X-Tasks-Auth": tasks_auth or ""},
            body=json.dumps(body).encode(),
        ),
        dispatch_deadline=deadline,
    )

    try:
        log.info(
            "event=tasks.enqueue_http_task.creating_task path=%s url=%s asset_version_id=%s",
            path,
            url,
            body.get("asset_version_id"),
        )
        created = client.create_task(request={"parent": parent, "task": task})
    except Exception as e:
        log.error("event=tasks.enqueue_http_task.create_task_failed path=%s url=%s error=%s", path, url, str(e))
        raise RuntimeError(f"Failed to create Cloud Task: {e}") from e

    log.info("event=tasks.cloud.enqueued path=%s url=%s task_name=%s deadline=%ds", path, url, created.name, _PROCESSING_DEADLINE_SECONDS)
    return {"name": created.name}
