"""
API endpoint tests with an injected job manager.
"""

import time

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from core.job_manager import NO_RECORDS_MESSAGE, JobLifecycleManager
from core.job_store import JobStore
from tests.fakes import FakeDataSource, FakeOrchestrator, FakeStorage


@pytest.fixture
def manager(files, sample_records):
    return JobLifecycleManager(
        JobStore(),
        FakeDataSource(sample_records),
        FakeOrchestrator(files, token="APITKN1"),
        FakeStorage(),
        files,
    )


@pytest.fixture
def client(manager):
    with TestClient(create_app(manager)) as test_client:
        yield test_client


def wait_until_finished(client, job_id, attempts=200):
    for _ in range(attempts):
        body = client.get(f"/cep/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.mark.integration
class TestCepEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert [e["name"] for e in body["engines"]] == ["EngineA", "EngineB", "EngineC"]

    def test_yesterday_job_is_accepted(self, client):
        response = client.post("/cep/yesterday", json={"email": "ops@bank.mx", "format": "pdf"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert body["job_id"]

        finished = wait_until_finished(client, body["job_id"])
        assert finished["status"] == "completed"
        assert finished["token"] == "APITKN1"
        assert finished["download_available"] is True
        assert finished["records_processed"] == 3

    def test_range_job(self, client, manager):
        response = client.post("/cep/range", json={
            "email": "ops@bank.mx",
            "format": "ambos",
            "start_date": "2024-03-01",
            "end_date": "2024-03-15",
        })

        assert response.status_code == 202
        finished = wait_until_finished(client, response.json()["job_id"])
        assert finished["format"] == "both"
        assert finished["start_date"] == "2024-03-01"
        assert manager.data_source.calls == [("range", "2024-03-01", "2024-03-15")]

    def test_failed_job_reports_error(self, client, manager):
        manager.data_source.records = []

        job_id = client.post("/cep/yesterday", json={"email": "ops@bank.mx"}).json()["job_id"]
        finished = wait_until_finished(client, job_id)

        assert finished["status"] == "failed"
        assert finished["error"] == NO_RECORDS_MESSAGE
        assert finished["download_available"] is False

    @pytest.mark.parametrize("payload", [
        {"email": "not-an-email"},
        {"email": "ops@bank.mx", "format": "docx"},
    ])
    def test_invalid_yesterday_request(self, client, payload):
        assert client.post("/cep/yesterday", json=payload).status_code == 422

    def test_range_must_be_ordered(self, client):
        response = client.post("/cep/range", json={
            "email": "ops@bank.mx",
            "start_date": "2024-03-15",
            "end_date": "2024-03-01",
        })
        assert response.status_code == 422

    def test_unknown_job(self, client):
        assert client.get("/cep/20240101-0000-ZZZ").status_code == 404
        assert client.post("/cep/20240101-0000-ZZZ/cancel").status_code == 404

    def test_cancel_finished_job(self, client):
        job_id = client.post("/cep/yesterday", json={"email": "ops@bank.mx"}).json()["job_id"]
        wait_until_finished(client, job_id)

        assert client.post(f"/cep/{job_id}/cancel").status_code == 409

    def test_list_jobs(self, client):
        ids = {client.post("/cep/yesterday", json={"email": f"u{n}@bank.mx"}).json()["job_id"] for n in range(2)}

        listed = {job["job_id"] for job in client.get("/cep").json()}
        assert ids <= listed
