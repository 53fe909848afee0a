"""
Tests for the HTTP API (FastAPI TestClient, fake collaborators).
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from api.db import configure_pipeline
from api.server import app
from factories import (
    ANALYSIS_WIRE,
    DOCUMENT_WIRE,
    FakeModel,
    FixedReputation,
    FixedTriangulator,
    analysis_wire,
    make_enriched,
)
from hunter.extraction import PLACEHOLDER, PromptTemplateCache
from hunter.verification import StaticToneAnalyzer


@pytest.fixture
def client(db_path, tmp_path, monkeypatch):
    monkeypatch.setenv("HUNTER_DB_PATH", str(db_path))
    prompt = tmp_path / "prompt.txt"
    prompt.write_text(f"Extract.\n{PLACEHOLDER}\n", encoding="utf-8")
    configure_pipeline(
        model=FakeModel(json.dumps(ANALYSIS_WIRE)),
        reputation=FixedReputation(84.0),
        triangulator=FixedTriangulator(count=10),
        tone_analyzer=StaticToneAnalyzer(),
        prompts=PromptTemplateCache(prompt),
    )
    with TestClient(app) as test_client:
        yield test_client
    configure_pipeline()


def queue_manual_review(client) -> dict:
    response = client.post("/api/decisions", json=make_enriched(confidence=80, quality=85).to_wire())
    assert response.status_code == 200
    assert response.json()["decision"] == "ManualReview"
    entries = client.get("/api/manual-review").json()
    assert len(entries) == 1
    return entries[0]


class TestHealthAndStats:

    def test_health(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_stats_empty(self, client):
        stats = client.get("/api/stats").json()
        assert stats["decisions"] == {}
        assert stats["pending_reviews"] == 0


class TestDocuments:
    """POST /api/documents."""

    def test_invalid_document(self, client):
        response = client.post("/api/documents", json={"text": "no url"})
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["schema"] == "candidate_document"
        assert set(detail["fields"]) == {"sourceURL", "sourceDomain"}

    def test_document_flows_to_decision(self, client):
        response = client.post("/api/documents", json=DOCUMENT_WIRE)
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "accepted"
        assert body["key"] == DOCUMENT_WIRE["sourceURL"]
        assert body["messageId"]

        # Processing continues on the server loop after the 202
        deadline = time.monotonic() + 5
        stats = {}
        while time.monotonic() < deadline:
            stats = client.get("/api/stats").json()
            if stats["decisions"]:
                break
            time.sleep(0.05)
        assert stats["decisions"] == {"Approved": 1}


class TestDecisions:
    """POST /api/decisions."""

    def test_approved(self, client):
        response = client.post("/api/decisions", json=make_enriched(confidence=92, quality=95).to_wire())
        assert response.status_code == 200
        body = response.json()
        assert body["decision"] == "Approved"
        assert body["sourceURL"] == ANALYSIS_WIRE["sourceURL"]
        assert "decidedAt" in body

    def test_invalid_enriched_record(self, client):
        wire = make_enriched(confidence=92, quality=95).to_wire()
        del wire["internalQc"]
        response = client.post("/api/decisions", json=wire)
        assert response.status_code == 422
        assert response.json()["detail"]["schema"] == "enriched_record"


class TestManualReview:
    """GET /api/manual-review and /api/manual-review/{id}."""

    def test_empty_list_not_null(self, client):
        response = client.get("/api/manual-review")
        assert response.status_code == 200
        assert response.json() == []

    def test_entry_lookup(self, client):
        entry = queue_manual_review(client)
        response = client.get(f"/api/manual-review/{entry['id']}")
        assert response.status_code == 200
        assert response.json()["internalQc"]["qualityScore"] == 85
        assert client.get("/api/manual-review/missing").status_code == 404


class TestCorrections:
    """POST/GET /api/corrections."""

    def test_missing_entry_id(self, client):
        queue_manual_review(client)
        response = client.post("/api/corrections", json=analysis_wire())
        assert response.status_code == 400
        assert len(client.get("/api/manual-review").json()) == 1
        assert client.get("/api/corrections").json() == []

    def test_unknown_entry_id(self, client):
        queue_manual_review(client)
        response = client.post("/api/corrections", json=analysis_wire(entryId="deadbeef"))
        assert response.status_code == 404
        assert len(client.get("/api/manual-review").json()) == 1

    def test_invalid_correction(self, client):
        entry = queue_manual_review(client)
        response = client.post("/api/corrections", json=analysis_wire(entryId=entry["id"], opportunityScore=11))
        assert response.status_code == 422
        assert response.json()["detail"]["fields"] == ["opportunityScore"]
        assert len(client.get("/api/manual-review").json()) == 1

    def test_valid_correction(self, client):
        entry = queue_manual_review(client)
        response = client.post("/api/corrections", json=analysis_wire(entryId=entry["id"], opportunityScore=7))
        assert response.status_code == 201
        assert response.json()["entryId"] == entry["id"]
        assert response.json()["opportunityScore"] == 7

        assert client.get("/api/manual-review").json() == []
        corrections = client.get("/api/corrections").json()
        assert len(corrections) == 1
        assert corrections[0]["entryId"] == entry["id"]
