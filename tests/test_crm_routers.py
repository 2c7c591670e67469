"""Tests for the admin HTTP API."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from crmsync.db.enums import CrmBackendType, CrmJobStatus
from crmsync.main import app
from crmsync.schemas.crm_connection import SelectorInspectResult
from crmsync.services import crm_connection_service
from crmsync.services.crm_connection_service import MASKED_SECRET


@pytest.mark.asyncio
async def test_health():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        response = await c.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestInternalSecret:
    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client):
        response = await client.get("/crm/jobs/stats", headers={"X-Internal-Secret": "nope"})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_secret_rejected(self, client):
        del client.headers["X-Internal-Secret"]
        response = await client.get("/crm/jobs/stats")
        assert response.status_code == 422


class TestJobsRouter:
    @pytest.mark.asyncio
    async def test_list_and_stats(self, client, make_job):
        make_job()
        failed = make_job(status=CrmJobStatus.FAILED, error_message="boom")

        response = await client.get("/crm/jobs", params={"status": "failed"})
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["page"] == 1
        assert body["data"][0]["id"] == str(failed.id)
        assert body["data"][0]["error_preview"] == "boom"

        stats = (await client.get("/crm/jobs/stats")).json()
        assert stats == {"pending": 1, "running": 0, "success": 0, "failed": 1, "cancelled": 0}

    @pytest.mark.asyncio
    async def test_get_job(self, client, make_job):
        job = make_job(status=CrmJobStatus.FAILED)

        response = await client.get(f"/crm/jobs/{job.id}")
        assert response.status_code == 200
        assert response.json()["can_retry"] is True
        assert response.json()["can_cancel"] is False

        missing = await client.get(f"/crm/jobs/{uuid.uuid4()}")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_retry(self, client, make_job):
        failed = make_job(status=CrmJobStatus.FAILED, retry_count=3, max_retries=3)
        succeeded = make_job(status=CrmJobStatus.SUCCESS)

        response = await client.post(f"/crm/jobs/{failed.id}/retry")
        assert response.status_code == 200
        job = response.json()["job"]
        assert job["status"] == "pending"
        assert job["retry_count"] == 4

        assert (await client.post(f"/crm/jobs/{succeeded.id}/retry")).status_code == 400
        assert (await client.post(f"/crm/jobs/{uuid.uuid4()}/retry")).status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, client, make_job):
        pending = make_job()
        running = make_job(status=CrmJobStatus.RUNNING)

        response = await client.post(f"/crm/jobs/{pending.id}/cancel")
        assert response.status_code == 200
        assert response.json()["job"]["status"] == "cancelled"

        assert (await client.post(f"/crm/jobs/{running.id}/cancel")).status_code == 400


class TestConnectionsRouter:
    @pytest.mark.asyncio
    async def test_create_read_update_deactivate(self, client):
        response = await client.post(
            "/crm/connections",
            json={
                "display_name": "Endpoint",
                "backend_type": CrmBackendType.GENERIC_REST.value,
                "target_url": "https://api.example.com/leads",
                "config": {"api_key": "secret-key", "method": "POST"},
            },
        )
        assert response.status_code == 201
        created = response.json()
        assert created["config"]["api_key"] == MASKED_SECRET

        connection_id = created["id"]
        response = await client.put(
            f"/crm/connections/{connection_id}",
            json={"display_name": "Renamed", "config": {"api_key": MASKED_SECRET}},
        )
        assert response.status_code == 200
        assert response.json()["display_name"] == "Renamed"
        assert response.json()["config"]["api_key"] == MASKED_SECRET

        listed = (await client.get("/crm/connections")).json()
        assert [c["id"] for c in listed] == [connection_id]

        response = await client.delete(f"/crm/connections/{connection_id}")
        assert response.status_code == 200
        assert response.json()["is_active"] is False

    @pytest.mark.asyncio
    async def test_missing_connection(self, client):
        response = await client.get(f"/crm/connections/{uuid.uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_inspect_selector(self, client, monkeypatch):
        calls = []

        async def fake_inspect(url, selector):
            calls.append((url, selector))
            return SelectorInspectResult(count=1, final_url=url, screenshot="aGk=")

        monkeypatch.setattr(crm_connection_service, "inspect_selector", fake_inspect)

        response = await client.post(
            "/crm/connections/inspect-selector",
            json={"url": "https://crm.example.com", "selector": "#email"},
        )

        assert response.status_code == 200
        assert response.json()["count"] == 1
        assert calls == [("https://crm.example.com", "#email")]

    @pytest.mark.asyncio
    async def test_inspect_selector_requires_selector(self, client):
        response = await client.post(
            "/crm/connections/inspect-selector",
            json={"url": "https://crm.example.com", "selector": ""},
        )
        assert response.status_code == 422


class TestMappingsRouter:
    @pytest.mark.asyncio
    async def test_upsert_list_delete(self, client, make_connection):
        connection = make_connection()
        form_id = str(uuid.uuid4())
        payload = {
            "form_id": form_id,
            "connection_id": str(connection.id),
            "rules": [{"source_field": "Name", "target_field": "LastName"}],
        }

        first = await client.put("/crm/mappings", json=payload)
        assert first.status_code == 200
        payload["rules"].append({"source_field": "Email", "target_field": "Email"})
        second = await client.put("/crm/mappings", json=payload)
        assert second.json()["id"] == first.json()["id"]

        listed = (await client.get("/crm/mappings", params={"form_id": form_id})).json()
        assert len(listed) == 1
        assert [r["target_field"] for r in listed[0]["rules"]] == ["LastName", "Email"]

        mapping_id = listed[0]["id"]
        assert (await client.delete(f"/crm/mappings/{mapping_id}")).status_code == 204
        assert (await client.delete(f"/crm/mappings/{mapping_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_connection(self, client):
        response = await client.put(
            "/crm/mappings",
            json={"form_id": str(uuid.uuid4()), "connection_id": str(uuid.uuid4()), "rules": []},
        )
        assert response.status_code == 400
