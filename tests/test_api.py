from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from drivebridge.api.dependencies import get_settings, get_transfer_runtime
from drivebridge.infrastructure.events import NoopTransferEventPublisher
from drivebridge.infrastructure.repositories import InMemoryTransferJobRepository
from drivebridge.main import app


def _submit_payload(user_id: str = "user-1", **overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "userId": user_id,
        "sourceService": "google-drive",
        "destinationService": "onedrive",
        "sourceFiles": [
            {"id": "f1", "name": "a.txt", "size": 3},
            {"id": "f2", "name": "b.txt", "size": 4},
        ],
        "destinationPath": "folder-1",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("DRIVEBRIDGE_SCHEDULER_ENABLED", "false")
    get_transfer_runtime.cache_clear()
    get_settings.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_transfer_runtime.cache_clear()
    get_settings.cache_clear()


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_submit_then_get_returns_queued_job(client: TestClient) -> None:
    response = client.post("/transfers", json=_submit_payload())

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["jobId"].startswith("transfer_")
    assert body["message"] == "Transfer job queued successfully"

    job_response = client.get("/transfers", params={"jobId": body["jobId"]})

    assert job_response.status_code == 200
    job = job_response.json()["job"]
    assert job["id"] == body["jobId"]
    assert job["status"] == "queued"
    assert job["progress"] == 0
    assert job["retryCount"] == 0
    assert job["maxRetries"] == 3
    assert job["priority"] == 1
    assert job["destinationPath"] == "folder-1"
    assert [item["name"] for item in job["sourceFiles"]] == ["a.txt", "b.txt"]


def test_submit_defaults_destination_path_to_root(client: TestClient) -> None:
    payload = _submit_payload()
    payload.pop("destinationPath")
    job_id = client.post("/transfers", json=payload).json()["jobId"]

    job = client.get("/transfers", params={"jobId": job_id}).json()["job"]

    assert job["destinationPath"] == "root"


def test_submit_without_source_files_is_rejected(client: TestClient) -> None:
    payload = _submit_payload(user_id="user-missing")
    payload.pop("sourceFiles")

    response = client.post("/transfers", json=payload)

    assert response.status_code == 400
    assert "sourceFiles" in response.json()["detail"]
    listing = client.get("/transfers", params={"userId": "user-missing"})
    assert listing.json() == {"jobs": []}


def test_submit_with_empty_source_files_is_rejected(client: TestClient) -> None:
    response = client.post("/transfers", json=_submit_payload(sourceFiles=[]))

    assert response.status_code == 400


def test_get_requires_job_id_or_user_id(client: TestClient) -> None:
    response = client.get("/transfers")

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing jobId or userId"


def test_get_unknown_job_returns_404(client: TestClient) -> None:
    response = client.get("/transfers", params={"jobId": "transfer_missing"})

    assert response.status_code == 404


def test_get_by_user_lists_active_jobs_newest_first(client: TestClient) -> None:
    first = client.post("/transfers", json=_submit_payload(user_id="user-list")).json()
    second = client.post("/transfers", json=_submit_payload(user_id="user-list")).json()
    client.post("/transfers", json=_submit_payload(user_id="someone-else"))

    response = client.get("/transfers", params={"userId": "user-list"})

    assert response.status_code == 200
    job_ids = [job["id"] for job in response.json()["jobs"]]
    assert sorted(job_ids) == sorted([first["jobId"], second["jobId"]])


def test_put_without_job_id_returns_400(client: TestClient) -> None:
    response = client.put("/transfers", json={"status": "paused"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing jobId"


def test_put_stamps_lifecycle_timestamps(client: TestClient) -> None:
    job_id = client.post("/transfers", json=_submit_payload()).json()["jobId"]

    processing = client.put("/transfers", json={"jobId": job_id, "status": "processing"})
    assert processing.status_code == 200
    assert processing.json()["success"] is True
    assert processing.json()["job"]["startedAt"] is not None
    assert processing.json()["job"]["completedAt"] is None

    completed = client.put("/transfers", json={"jobId": job_id, "status": "completed"})
    assert completed.status_code == 200
    job = completed.json()["job"]
    assert job["status"] == "completed"
    assert job["progress"] == 100
    assert job["completedAt"] is not None


def test_put_on_completed_job_returns_409(client: TestClient) -> None:
    job_id = client.post("/transfers", json=_submit_payload()).json()["jobId"]
    client.put("/transfers", json={"jobId": job_id, "status": "completed"})

    response = client.put("/transfers", json={"jobId": job_id, "status": "queued"})

    assert response.status_code == 409


def test_put_rejects_progress_100_without_completion(client: TestClient) -> None:
    job_id = client.post("/transfers", json=_submit_payload()).json()["jobId"]

    response = client.put("/transfers", json={"jobId": job_id, "progress": 100})

    assert response.status_code == 400


def test_put_with_foreign_user_returns_400(client: TestClient) -> None:
    job_id = client.post("/transfers", json=_submit_payload()).json()["jobId"]

    response = client.put(
        "/transfers",
        json={"jobId": job_id, "status": "paused", "userId": "intruder"},
    )

    assert response.status_code == 400


def test_status_overview_splits_active_and_recent_jobs(client: TestClient) -> None:
    active_id = client.post("/transfers", json=_submit_payload(user_id="user-st")).json()["jobId"]
    failed_id = client.post("/transfers", json=_submit_payload(user_id="user-st")).json()["jobId"]
    client.put(
        "/transfers",
        json={"jobId": failed_id, "status": "failed", "error": "quota exceeded"},
    )

    response = client.get("/transfers/status", params={"userId": "user-st"})

    assert response.status_code == 200
    body = response.json()
    assert body["totalActive"] == 1
    assert body["totalRecent"] == 1
    assert body["activeJobs"][0]["id"] == active_id
    assert body["recentJobs"][0]["id"] == failed_id
    assert body["recentJobs"][0]["error"] == "quota exceeded"


def test_history_is_empty_for_new_user(client: TestClient) -> None:
    response = client.get("/transfers/history", params={"userId": "user-new"})

    assert response.status_code == 200
    assert response.json() == {"history": []}


def test_put_connection_stores_credentials(client: TestClient) -> None:
    response = client.put(
        "/connections",
        json={
            "userId": "user-1",
            "serviceId": "google-drive",
            "provider": "google",
            "accessToken": "token-1",
        },
    )

    assert response.status_code == 204


def test_submit_accepts_browser_file_items(client: TestClient) -> None:
    payload = _submit_payload(
        user_id="user-ui",
        sourceFiles=[
            {
                "id": "f1",
                "name": "a.txt",
                "size": 10,
                "mimeType": "text/plain",
            },
            {
                "id": "f2",
                "name": "report.pdf",
                "type": "file",
                "mimeType": "application/pdf",
                "size": "2.3 KB",
                "modified": "2024-05-01",
                "path": "/Documents",
                "selected": True,
            },
        ],
    )

    response = client.post("/transfers", json=payload)

    assert response.status_code == 201
    job = client.get("/transfers", params={"jobId": response.json()["jobId"]}).json()["job"]
    assert job["sourceFiles"] == [
        {"id": "f1", "name": "a.txt", "size": 10},
        {"id": "f2", "name": "report.pdf", "size": None},
    ]


def test_shutdown_closes_event_publisher_and_repository(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    closed: list[str] = []

    async def close_repository(self: InMemoryTransferJobRepository) -> None:
        closed.append("repository")

    monkeypatch.setattr(
        NoopTransferEventPublisher,
        "close",
        lambda self: closed.append("events"),
    )
    monkeypatch.setattr(InMemoryTransferJobRepository, "close", close_repository)
    monkeypatch.setenv("DRIVEBRIDGE_SCHEDULER_ENABLED", "true")
    get_transfer_runtime.cache_clear()
    get_settings.cache_clear()

    with TestClient(app) as test_client:
        assert test_client.get("/healthz").status_code == 200
        assert closed == []
    get_transfer_runtime.cache_clear()
    get_settings.cache_clear()

    assert closed == ["events", "repository"]
