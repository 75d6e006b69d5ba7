"""
HTTP tests for the analysis endpoints.
"""

import httpx
import pytest

from content_triage.config import settings
from content_triage.dependencies import get_job_manager, get_orchestrator, get_resolution_service
from content_triage.main import create_app

from conftest import CAMPAIGN_ID, OTHER_CAMPAIGN_ID

NOTE = "The Black Lotus met at Eldoria. Later, Mira arrived."
BASE = f"/api/v1/campaigns/{CAMPAIGN_ID}/analysis"


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
async def client(job_manager, resolution_service, orchestrator, entities):
    app = create_app()
    app.dependency_overrides[get_job_manager] = lambda: job_manager
    app.dependency_overrides[get_resolution_service] = lambda: resolution_service
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await orchestrator.drain()


async def _trigger(client, content=NOTE, source_id=10):
    response = await client.post(f"{BASE}/trigger", json={
        "source_table": "sessions",
        "source_id": source_id,
        "source_field": "notes",
        "content": content,
    })
    assert response.status_code == 201, response.text
    return response.json()


class TestTriggerEndpoint:

    async def test_trigger_returns_job_and_items(self, client):
        body = await _trigger(client)

        assert body["job"]["status"] == "completed"
        assert body["job"]["total_items"] == 3
        assert body["job"]["phases"] == ["identification"]
        assert [i["matched_text"] for i in body["items"]] == ["Black Lotus", "Eldoria", "Mira"]
        assert all(i["resolution"] == "pending" for i in body["items"])

    async def test_missing_fields_are_rejected(self, client):
        response = await client.post(f"{BASE}/trigger", json={"source_table": "sessions"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ERR_VALIDATION"

    async def test_oversized_content_is_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_ANALYSIS_CONTENT_CHARS", 5)
        response = await client.post(f"{BASE}/trigger", json={
            "source_table": "sessions", "source_id": 1, "source_field": "notes", "content": NOTE,
        })
        assert response.status_code == 400
        assert response.json()["error"]["details"]["length"] == len(NOTE)


class TestJobEndpoints:

    async def test_get_and_list_jobs(self, client):
        job = (await _trigger(client))["job"]

        response = await client.get(f"{BASE}/jobs/{job['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == job["id"]

        listed = await client.get(f"{BASE}/jobs", params={"status": "completed", "source_table": "sessions"})
        assert [j["id"] for j in listed.json()] == [job["id"]]

        listed = await client.get(f"{BASE}/jobs", params={"status": "failed"})
        assert listed.json() == []

    async def test_other_campaign_sees_not_found(self, client):
        job = (await _trigger(client))["job"]
        response = await client.get(f"/api/v1/campaigns/{OTHER_CAMPAIGN_ID}/analysis/jobs/{job['id']}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_NOT_FOUND"

    async def test_list_items_by_resolution(self, client):
        body = await _trigger(client)
        job_id = body["job"]["id"]
        await client.put(f"{BASE}/items/{body['items'][0]['id']}", json={"resolution": "dismissed"})

        response = await client.get(f"{BASE}/jobs/{job_id}/items", params={"resolution": "pending"})
        assert response.status_code == 200
        assert len(response.json()) == 2


class TestItemEndpoints:

    async def test_resolve_and_revert(self, client):
        body = await _trigger(client)
        item_id = body["items"][2]["id"]

        response = await client.put(f"{BASE}/items/{item_id}", json={"resolution": "accepted"})
        assert response.status_code == 200
        assert response.json()["resolution"] == "accepted"

        again = await client.put(f"{BASE}/items/{item_id}", json={"resolution": "dismissed"})
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ERR_ALREADY_RESOLVED"

        reverted = await client.put(f"{BASE}/items/{item_id}/revert")
        assert reverted.json()["resolution"] == "pending"

        again = await client.put(f"{BASE}/items/{item_id}/revert")
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "ERR_NOT_RESOLVED"

    async def test_unknown_resolution_is_rejected(self, client):
        body = await _trigger(client)
        response = await client.put(f"{BASE}/items/{body['items'][0]['id']}", json={"resolution": "maybe"})
        assert response.status_code == 400

    async def test_batch_resolve(self, client):
        job_id = (await _trigger(client))["job"]["id"]
        url = f"{BASE}/jobs/{job_id}/resolve-all"

        first = await client.put(url, json={"detection_type": "untagged_mention", "resolution": "dismissed"})
        second = await client.put(url, json={"detection_type": "untagged_mention", "resolution": "dismissed"})
        assert first.json() == {"resolved_count": 3}
        assert second.json() == {"resolved_count": 0}

        bulk_new = await client.put(url, json={"detection_type": "untagged_mention", "resolution": "new_entity"})
        assert bulk_new.status_code == 422
        assert bulk_new.json()["error"]["code"] == "ERR_UNSUPPORTED_RESOLUTION"

    async def test_pending_count(self, client):
        await _trigger(client, source_id=10)
        await _trigger(client, content="Visited [[Silver Fox Inn]].", source_id=11)

        response = await client.get(f"{BASE}/pending-count")
        assert response.json() == {"pending_count": 4}
        response = await client.get(f"{BASE}/pending-count", params={"source_table": "sessions", "source_id": 11})
        assert response.json() == {"pending_count": 1}


class TestEnrichmentEndpoints:

    async def test_enrich_then_poll(self, client, orchestrator):
        job_id = (await _trigger(client))["job"]["id"]

        response = await client.post(f"{BASE}/jobs/{job_id}/enrich")
        assert response.status_code == 202
        assert response.json()["status"] == "enriching"
        assert response.json()["entity_count"] == 0

        await orchestrator.wait(job_id)
        job = (await client.get(f"{BASE}/jobs/{job_id}")).json()
        assert job["status"] == "completed"
        assert job["phases"] == ["identification", "enrichment"]

    async def test_cancel_without_run(self, client):
        job_id = (await _trigger(client))["job"]["id"]
        response = await client.post(f"{BASE}/jobs/{job_id}/cancel-enrichment")
        assert response.status_code == 200
        assert response.json()["status"] == "not_running"


class TestApiKey:

    async def test_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")

        response = await client.get(f"{BASE}/pending-count")
        assert response.status_code == 401

        response = await client.get(f"{BASE}/pending-count", headers={"X-API-Key": "secret"})
        assert response.status_code == 200
