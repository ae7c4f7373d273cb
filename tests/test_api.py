"""Tests for the REST endpoints."""

import pytest
from fastapi.testclient import TestClient

from neuro_discharge import orchestrator
from neuro_discharge.clients import llm_client


@pytest.fixture
def client(app, monkeypatch, unconfigured_client):
    monkeypatch.setattr(llm_client, "_client", unconfigured_client)
    monkeypatch.setattr(orchestrator, "_orchestrator", None)
    return TestClient(app)


class TestExtract:
    def test_blank_notes_rejected(self, client):
        response = client.post("/discharge/extract", json={"notes": "   \n"})
        assert response.status_code == 400
        assert response.json()["detail"] == "No clinical notes provided"

    def test_missing_notes_field(self, client):
        assert client.post("/discharge/extract", json={}).status_code == 422

    def test_extract_notes(self, client, segmented_notes):
        response = client.post("/discharge/extract", json={"notes": segmented_notes})
        assert response.status_code == 200
        body = response.json()
        assert body["record"]["patientName"] == "John Smith"
        assert body["validation"]["isValid"] is True
        assert body["metadata"]["approach"] == "deterministic-only"
        assert body["pipeline"]["narrative"] == "fallback"

    def test_extract_bundle(self, client):
        response = client.post("/discharge/extract/bundle", json={
            "bundle": {"final": "Discharge Exam: Nonfocal, ambulating independently"},
            "use_llm": False,
        })
        assert response.status_code == 200
        assert response.json()["record"]["dischargeExam"].startswith("Nonfocal")

    def test_empty_bundle_rejected(self, client):
        response = client.post("/discharge/extract/bundle", json={"bundle": {"admission": "  "}})
        assert response.status_code == 400


class TestDetect:
    def test_detect(self, client, segmented_notes):
        response = client.post("/discharge/detect", json={"notes": segmented_notes})
        assert response.status_code == 200
        body = response.json()
        assert body["admission"].startswith("ADMISSION H&P")
        assert body["consultant"].startswith("Cardiology Consult")


class TestStatus:
    def test_status(self, client):
        body = client.get("/discharge/status").json()
        assert body["service"] == "neuro-discharge"
        assert body["llm"] == {"configured": False, "provider": "anthropic", "model": "claude-sonnet-4-20250514"}

    def test_pipeline(self, client):
        body = client.get("/discharge/pipeline").json()
        assert body["approach"] == "deterministic-only"
        assert "augmenting" in body["stages"]
