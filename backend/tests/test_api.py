from __future__ import annotations

import pytest

pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from app.jobs.queue import get_job_queue, set_job_queue
from app.jobs.worker import OriginalityWorker
from app.main import app
from app.settings import settings
from app.storage_provider import get_storage_provider

STUDENT = {"X-User-Id": "stu-1", "X-User-Role": "student"}
OTHER_STUDENT = {"X-User-Id": "stu-2", "X-User-Role": "student"}
ADVISER = {"X-User-Id": "adv-1", "X-User-Role": "adviser"}

CHAPTER_TEXT = (
    "Chapter one introduces an attendance monitoring prototype for lecture halls and "
    "explains why manual roll calls waste time in large classes."
).encode()


@pytest.fixture
def client(isolated_db):
    with TestClient(app) as client:
        yield client


def _create_project(client: TestClient, title: str = "Smart Attendance Monitoring System", keywords=None) -> dict:
    response = client.post(
        "/api/projects",
        json={"title": title, "keywords": keywords or ["IoT", "biometric"], "adviser_id": "adv-1"},
        headers=STUDENT,
    )
    assert response.status_code == 201
    return response.json()


def _upload(client: TestClient, project_id: int, data: bytes = CHAPTER_TEXT, filename: str = "chapter1.txt", **form):
    fields = {"document_type": "chapter", "chapter": "1", **form}
    return client.post(
        f"/api/projects/{project_id}/submissions",
        data=fields,
        files={"file": (filename, data, "application/octet-stream")},
        headers=STUDENT,
    )


def test_title_check_flags_near_duplicate(client) -> None:
    existing = _create_project(client)

    response = client.post(
        "/api/projects/title-check",
        json={"title": "Smart Attendance System", "keywords": ["IoT", "attendance"]},
    )

    assert response.status_code == 200
    assert response.json() == [{"id": existing["id"], "title": "Smart Attendance Monitoring System", "score": 0.67}]


def test_create_project_returns_similar_titles(client) -> None:
    _create_project(client)

    created = client.post(
        "/api/projects",
        json={"title": "Smart Attendance System", "keywords": ["IoT", "attendance"]},
        headers=STUDENT,
    )

    assert created.status_code == 201
    payload = created.json()
    assert payload["keywords"] == ["attendance", "iot"]
    assert [m["title"] for m in payload["similar_titles"]] == ["Smart Attendance Monitoring System"]


def test_upload_creates_version_and_queues_check(client) -> None:
    project = _create_project(client)

    first = _upload(client, project["id"])
    second = _upload(client, project["id"], data=CHAPTER_TEXT + b" Revised.")

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["version"] == 1
    assert second.json()["version"] == 2
    assert second.json()["content_type"] == "text/plain"
    assert second.json()["originality"]["status"] == "queued"

    lineage = client.get(f"/api/projects/{project['id']}/lineages/chapter-1", headers=STUDENT)
    assert [s["version"] for s in lineage.json()] == [2, 1]


def test_upload_rejects_unrecognized_and_oversized_files(client, monkeypatch) -> None:
    project = _create_project(client)

    unknown = _upload(client, project["id"], data=b"\x89PNG\r\n\x1a\n\x00\x00", filename="scan.png")
    disguised = _upload(client, project["id"], data=b"MZ\x90\x00 executable", filename="chapter1.pdf")
    assert unknown.status_code == 400
    assert disguised.status_code == 400

    monkeypatch.setattr(settings, "max_upload_mb", 0)
    too_large = _upload(client, project["id"])
    assert too_large.status_code == 413

    history = client.get(f"/api/projects/{project['id']}/lineages/chapter-1", headers=STUDENT)
    assert history.json() == []


def test_upload_requires_student_identity(client) -> None:
    project = _create_project(client)

    anonymous = client.post(
        f"/api/projects/{project['id']}/submissions",
        data={"document_type": "chapter", "chapter": "1"},
        files={"file": ("chapter1.txt", CHAPTER_TEXT, "text/plain")},
    )
    as_adviser = client.post(
        f"/api/projects/{project['id']}/submissions",
        data={"document_type": "chapter", "chapter": "1"},
        files={"file": ("chapter1.txt", CHAPTER_TEXT, "text/plain")},
        headers=ADVISER,
    )

    assert anonymous.status_code == 401
    assert as_adviser.status_code == 403


def test_upload_succeeds_in_degraded_mode(isolated_db, flaky_queue_cls) -> None:
    job_queue = flaky_queue_cls(available=False)
    set_job_queue(job_queue)

    with TestClient(app) as client:
        project = _create_project(client)
        deferred = _upload(client, project["id"])
        health = client.get("/health")

        job_queue.available = True
        queued = _upload(client, project["id"], data=CHAPTER_TEXT + b" Second draft.")

    assert deferred.status_code == 201
    assert deferred.json()["originality"] == {"status": "unchecked", "score": None, "matches": None, "checked_at": None, "error": None}
    assert health.json()["queue_available"] is False
    assert queued.status_code == 201
    assert queued.json()["originality"]["status"] == "queued"


def test_review_lock_unlock_flow(client) -> None:
    project = _create_project(client)
    submission_id = _upload(client, project["id"]).json()["id"]

    forbidden = client.post(f"/api/submissions/{submission_id}/review", json={"decision": "approve"}, headers=STUDENT)
    assert forbidden.status_code == 403

    opened = client.post(f"/api/submissions/{submission_id}/open-review", headers=ADVISER)
    assert opened.json()["status"] == "under_review"

    approved = client.post(
        f"/api/submissions/{submission_id}/review",
        json={"decision": "approve", "reviewNote": "Well argued"},
        headers=ADVISER,
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["review_note"] == "Well argued"

    assert client.post(f"/api/submissions/{submission_id}/review", json={"decision": "reject"}, headers=ADVISER).status_code == 409

    locked = client.post(f"/api/submissions/{submission_id}/lock", headers=ADVISER)
    assert locked.json()["status"] == "locked"
    assert _upload(client, project["id"]).status_code == 409

    missing_reason = client.post(f"/api/submissions/{submission_id}/unlock", json={}, headers=ADVISER)
    assert missing_reason.status_code == 400

    unlocked = client.post(f"/api/submissions/{submission_id}/unlock", json={"reason": "Update the budget table"}, headers=ADVISER)
    assert unlocked.json()["status"] == "revisions_required"

    history = client.get(f"/api/submissions/{submission_id}/history", headers=STUDENT).json()
    assert [e["kind"] for e in history] == ["uploaded", "review_opened", "review:approve", "locked", "unlocked"]
    assert history[-1]["detail"] == "Update the budget table"

    assert _upload(client, project["id"]).json()["version"] == 2

    worklist = client.get("/api/submissions", params={"status": "revisions_required"}, headers=ADVISER)
    assert [s["id"] for s in worklist.json()] == [submission_id]


def test_originality_result_is_hidden_until_completed(client) -> None:
    project = _create_project(client)
    submission_id = _upload(client, project["id"]).json()["id"]

    pending = client.get(f"/api/submissions/{submission_id}/originality", headers=STUDENT)
    assert pending.json() == {"status": "queued"}

    job_queue = get_job_queue()
    worker = OriginalityWorker(get_storage_provider())
    job = job_queue.dequeue(timeout=0.1)
    worker.process(job)
    job_queue.ack(job)

    completed = client.get(f"/api/submissions/{submission_id}/originality", headers=STUDENT)
    assert completed.json()["status"] == "completed"
    assert completed.json()["score"] == 100
    assert completed.json()["matches"] == []

    recheck = client.post(f"/api/submissions/{submission_id}/originality/recheck", headers=ADVISER)
    assert recheck.status_code == 200
    assert recheck.json()["originality"]["status"] == "queued"


def test_annotations_can_only_be_removed_by_author_or_instructor(client) -> None:
    project = _create_project(client)
    submission_id = _upload(client, project["id"]).json()["id"]

    created = client.post(
        f"/api/submissions/{submission_id}/annotations",
        json={"page": 2, "content": "Cite your sources"},
        headers=ADVISER,
    )
    assert created.status_code == 201
    annotation_id = created.json()["id"]

    denied = client.delete(f"/api/submissions/{submission_id}/annotations/{annotation_id}", headers=OTHER_STUDENT)
    assert denied.status_code == 403

    removed = client.delete(
        f"/api/submissions/{submission_id}/annotations/{annotation_id}",
        headers={"X-User-Id": "ins-9", "X-User-Role": "instructor"},
    )
    assert removed.status_code == 204
    assert client.get(f"/api/submissions/{submission_id}", headers=STUDENT).json()["annotations"] == []


def test_unknown_submission_returns_404(client) -> None:
    assert client.get("/api/submissions/999", headers=STUDENT).status_code == 404
    assert client.post("/api/submissions/999/unlock", json={"reason": "x"}, headers=ADVISER).status_code == 404


def test_api_key_guards_non_public_routes(client, monkeypatch) -> None:
    monkeypatch.setenv("BACKEND_API_KEY", "test-api-key")

    denied = client.post("/api/projects/title-check", json={"title": "Anything"})
    allowed = client.post(
        "/api/projects/title-check",
        json={"title": "Anything"},
        headers={"X-API-Key": "test-api-key"},
    )
    health = client.get("/health")

    assert denied.status_code == 401
    assert allowed.status_code == 200
    assert health.status_code == 200
