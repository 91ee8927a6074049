"""HTTP flow tests against the FastAPI app on a temporary SQLite database."""

MiB = 1024 * 1024


def _initiate(client, headers, **overrides):
    body = {"asset_group_key": "course-101", "declared_size": 25 * MiB, "chunk_size": 10 * MiB}
    body.update(overrides)
    return client.post("/api/uploads/initiate", json=body, headers=headers)


def _upload(client, headers, **overrides):
    r = _initiate(client, headers, **overrides)
    assert r.status_code == 201, r.text
    session_id = r.json()["session_id"]
    for n in range(1, r.json()["total_parts"] + 1):
        ok = client.post(
            "/api/uploads/report-part",
            json={"session_id": session_id, "part_number": n, "integrity_token": f"etag-{n}"},
            headers=headers,
        )
        assert ok.status_code == 200, ok.text
    done = client.post("/api/uploads/complete", json={"session_id": session_id}, headers=headers)
    assert done.status_code == 200, done.text
    return done.json()


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    deep = client.get("/api/health/deep")
    assert deep.status_code == 200
    assert deep.json() == {"db": "ok"}


def test_request_id_round_trips(client):
    r = client.get("/api/health", headers={"X-Request-ID": "req-42"})
    assert r.headers["X-Request-ID"] == "req-42"
    assert client.get("/api/health").headers["X-Request-ID"]


def test_upload_flow(client, actor_headers):
    r = _initiate(client, actor_headers, notification_lists={"upload": ["producer@example.com"]})
    assert r.status_code == 201
    body = r.json()
    assert body["version_number"] == 1
    assert body["version_kind"] == "original"
    assert body["initial_status"] == "draft"
    assert body["total_parts"] == 3
    session_id = body["session_id"]

    urls = client.post(
        "/api/uploads/batch-part-urls",
        json={"session_id": session_id, "part_numbers": [1, 2, 3]},
        headers=actor_headers,
    )
    assert urls.status_code == 200
    assert [u["part_number"] for u in urls.json()] == [1, 2, 3]

    for n in (2, 3):
        client.post(
            "/api/uploads/report-part",
            json={"session_id": session_id, "part_number": n, "integrity_token": f"etag-{n}"},
            headers=actor_headers,
        )

    incomplete = client.post("/api/uploads/complete", json={"session_id": session_id}, headers=actor_headers)
    assert incomplete.status_code == 409
    assert incomplete.json()["error"]["code"] == "INCOMPLETE_UPLOAD"
    assert incomplete.json()["error"]["details"]["missing_parts"] == [1]

    state = client.get(f"/api/uploads/{session_id}").json()
    assert state["status"] == "in_progress"
    assert state["missing_parts"] == [1]

    client.post(
        "/api/uploads/report-part",
        json={"session_id": session_id, "part_number": 1, "integrity_token": "etag-1"},
        headers=actor_headers,
    )
    done = client.post("/api/uploads/complete", json={"session_id": session_id}, headers=actor_headers)
    assert done.status_code == 200
    version = done.json()
    assert version["version_number"] == 1
    assert version["workflow_status"] == "draft"

    again = client.post("/api/uploads/complete", json={"session_id": session_id}, headers=actor_headers)
    assert again.json()["id"] == version["id"]

    lineage = client.get("/api/assets/course-101/lineage").json()
    assert [v["id"] for v in lineage] == [version["id"]]
    assert client.get("/api/assets/course-101/latest").json()["id"] == version["id"]

    history = client.get(f"/api/assets/versions/{version['id']}/notification-history").json()
    assert [(h["event_type"], h["recipients"], h["delivery_status"]) for h in history] == [
        ("upload", ["producer@example.com"], "sent")
    ]


def test_write_requires_actor(client):
    r = _initiate(client, {})
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "http_error"


def test_request_validation_uses_envelope(client, actor_headers):
    r = client.post("/api/uploads/initiate", json={"asset_group_key": "g"}, headers=actor_headers)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "validation_error"


def test_engine_validation_code(client, actor_headers):
    r = _initiate(client, actor_headers, declared_size=0)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION"


def test_bad_notification_address_rejected(client, actor_headers):
    r = _initiate(client, actor_headers, notification_lists={"upload": ["not-an-address"]})
    assert r.status_code == 422


def test_duplicate_original_has_debug_id(client, actor_headers):
    _upload(client, actor_headers, declared_size=1024, chunk_size=1024)
    r = _initiate(client, actor_headers, declared_size=1024, chunk_size=1024)

    assert r.status_code == 409
    error = r.json()["error"]
    assert error["code"] == "DUPLICATE_ORIGINAL"
    assert r.headers["X-Debug-ID"] == error["error_id"]


def test_workflow_flow(client, actor_headers, outbox):
    version = _upload(
        client,
        actor_headers,
        declared_size=1024,
        chunk_size=1024,
        notification_lists={"rejection": ["editor@example.com"]},
    )
    vid = version["id"]

    r = client.post(f"/api/workflow/{vid}/send-for-review", headers=actor_headers)
    assert r.json()["workflow_status"] == "pending_review"

    stale = client.post(f"/api/workflow/{vid}/approve", json={"expected_status": "draft"}, headers=actor_headers)
    assert stale.status_code == 409
    assert stale.json()["error"]["code"] == "STALE_STATE"

    missing = client.post(f"/api/workflow/{vid}/reject", json={"reason": " "}, headers=actor_headers)
    assert missing.status_code == 422
    assert missing.json()["error"]["code"] == "MISSING_REASON"

    rejected = client.post(f"/api/workflow/{vid}/reject", json={"reason": "audio desync"}, headers=actor_headers)
    assert rejected.status_code == 200
    assert rejected.json()["rejected_by"] == "editor@example.com"

    illegal = client.post(f"/api/workflow/{vid}/publish", headers=actor_headers)
    assert illegal.status_code == 409
    assert illegal.json()["error"]["code"] == "INVALID_TRANSITION"

    actions = [e["action"] for e in client.get(f"/api/workflow/{vid}/history").json()]
    assert actions == ["created", "send_for_review", "reject"]
    assert outbox.to("Changes requested") == [["editor@example.com"]]


def test_auto_publish_over_http(client, actor_headers, tasks):
    vid = _upload(client, actor_headers, declared_size=1024, chunk_size=1024)["id"]
    client.post(f"/api/workflow/{vid}/send-for-review", headers=actor_headers)

    r = client.post(
        f"/api/workflow/{vid}/approve",
        json={"auto_publish": True, "request_processing": True},
        headers=actor_headers,
    )

    assert r.status_code == 200
    assert r.json()["workflow_status"] == "published"
    assert r.json()["is_published"] is True
    assert len(tasks.calls) == 1


def test_request_processing_failure_is_502(client, actor_headers, tasks):
    vid = _upload(client, actor_headers, declared_size=1024, chunk_size=1024)["id"]
    tasks.fail = True

    r = client.post(f"/api/workflow/{vid}/request-processing", headers=actor_headers)

    assert r.status_code == 502
    error = r.json()["error"]
    assert error["code"] == "PROCESSING_REQUEST_FAILED"
    assert error["retryable"] is True
    version = client.get(f"/api/assets/versions/{vid}").json()
    assert version["processing_error"] == "worker unavailable"


def test_version_reads(client, actor_headers):
    v1 = _upload(client, actor_headers, declared_size=1024, chunk_size=1024)
    v2 = _upload(client, actor_headers, declared_size=1024, chunk_size=1024, parent_version_id=v1["id"])

    chain = client.get(f"/api/assets/versions/{v2['id']}/ancestry").json()
    assert [v["version_number"] for v in chain] == [2, 1]

    download = client.get(f"/api/assets/versions/{v2['id']}/download-url").json()
    assert download["url"].endswith(v2["storage_key"])

    missing = client.get("/api/assets/versions/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "VERSION_NOT_FOUND"

    assert client.get("/api/assets/empty-group/latest").status_code == 404


def test_abort_over_http(client, actor_headers):
    session_id = _initiate(client, actor_headers).json()["session_id"]
    r = client.post("/api/uploads/abort", json={"session_id": session_id}, headers=actor_headers)
    assert r.json() == {"aborted": True, "status": "aborted"}

    terminal = client.post(
        "/api/uploads/batch-part-urls",
        json={"session_id": session_id, "part_numbers": [1]},
        headers=actor_headers,
    )
    assert terminal.status_code == 409
    assert terminal.json()["error"]["code"] == "SESSION_TERMINAL"


def test_sweep_requires_tasks_auth(client):
    assert client.post("/api/tasks/sweep-upload-sessions").status_code == 401
    assert client.post("/api/tasks/sweep-upload-sessions", headers={"X-Tasks-Auth": "wrong"}).status_code == 401

    r = client.post("/api/tasks/sweep-upload-sessions", headers={"X-Tasks-Auth": "test-tasks-secret"})
    assert r.status_code == 200
    assert r.json() == {"aborted": 0}
