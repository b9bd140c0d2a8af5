"""Tests for the HTTP API."""

import pytest
from httpx import AsyncClient

from acm_gateway.core.config import settings
from acm_gateway.integrations.hl7.protocols import AlarmRecord
from acm_gateway.main import app
from acm_gateway.services.alarm_record_service import AlarmRecordWriter
from acm_gateway.services.codesystem_service import CodeTableRegistry
from acm_gateway.services.session_manager import ConnectionSessionManager


async def store_record(session_factory, pat_id: str, date: str, local_time: str) -> int:
    writer = AlarmRecordWriter(session_factory)
    return await writer.insert(AlarmRecord(
        pat_id=pat_id,
        date=date,
        local_time=local_time,
        alarm_message="Heart Rate < 22",
        limit_violation_type="below",
        limit_violation_value=2.0,
        raw_message="MSH|...",
    ))


class TestHealthAPI:
    """Tests for health endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient):
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["components"][0]["name"] == "application"

    @pytest.mark.asyncio
    async def test_readiness_without_listener(self, client: AsyncClient):
        response = await client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        statuses = {c["name"]: c["status"] for c in data["components"]}
        assert statuses == {
            "database": "healthy",
            "mllp_listener": "degraded",
            "code_registry": "healthy",
        }

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, client: AsyncClient):
        """Prometheus exposition includes request and gateway metrics."""
        await client.get("/api/codesystems")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "acm_codetags_loaded" in response.text

    def test_app_title_from_settings(self):
        """OpenAPI title follows the configured application name."""
        assert app.title == settings.app_name


class TestConnectionsAPI:
    """Tests for connection statistics endpoints."""

    @pytest.mark.asyncio
    async def test_empty_stats(self, client: AsyncClient):
        response = await client.get("/api/connections")

        assert response.status_code == 200
        assert response.json() == {
            "active_connections": 0,
            "total_connections": 0,
            "total_messages_received": 0,
            "clients": [],
        }

    @pytest.mark.asyncio
    async def test_client_details(self, client: AsyncClient, session_manager: ConnectionSessionManager):
        session = session_manager.open("10.0.0.5", 50123)
        session_manager.record_message(session, "MSH|one")

        response = await client.get("/api/connections/10.0.0.5:50123")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == "10.0.0.5:50123"
        assert data["messages_received"] == 1
        assert data["messages"][0]["content"] == "MSH|one"

        stats = (await client.get("/api/connections")).json()
        assert stats["active_connections"] == 1

    @pytest.mark.asyncio
    async def test_unknown_client(self, client: AsyncClient):
        response = await client.get("/api/connections/1.2.3.4:1")

        assert response.status_code == 404
        assert response.json()["detail"] == "Client not found"


class TestAlarmRecordsAPI:
    """Tests for alarm record browsing."""

    @pytest.mark.asyncio
    async def test_list_records(self, client: AsyncClient, session_factory):
        await store_record(session_factory, "12345", "2025-04-01", "2025-04-01 08:00:00")
        await store_record(session_factory, "12345", "2025-04-02", "2025-04-02 09:00:00")
        await store_record(session_factory, "67890", "2025-04-02", "2025-04-02 10:00:00")

        response = await client.get("/api/alarm-records")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["total_pages"] == 1
        assert [item["local_time"] for item in data["items"]] == [
            "2025-04-02 10:00:00",
            "2025-04-02 09:00:00",
            "2025-04-01 08:00:00",
        ]
        item = data["items"][0]
        assert item["pat_ID"] == "67890"
        assert item["Date"] == "2025-04-02"
        assert item["Limit_Violation_Type"] == "below"
        assert item["Limit_Violation_Value"] == "2"
        assert "raw_message" not in item

    @pytest.mark.asyncio
    async def test_filter_records(self, client: AsyncClient, session_factory):
        await store_record(session_factory, "12345", "2025-04-01", "2025-04-01 08:00:00")
        await store_record(session_factory, "12345", "2025-04-02", "2025-04-02 09:00:00")
        await store_record(session_factory, "67890", "2025-04-02", "2025-04-02 10:00:00")

        response = await client.get(
            "/api/alarm-records",
            params={"patient_id": "12345", "start_date": "2025-04-02", "end_date": "2025-04-02"},
        )

        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["local_time"] == "2025-04-02 09:00:00"

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, session_factory):
        for hour in range(5):
            await store_record(session_factory, "12345", "2025-04-02", f"2025-04-02 0{hour}:00:00")

        response = await client.get("/api/alarm-records", params={"page": 2, "page_size": 2})

        data = response.json()
        assert data["total"] == 5
        assert data["total_pages"] == 3
        assert [item["local_time"] for item in data["items"]] == [
            "2025-04-02 02:00:00",
            "2025-04-02 01:00:00",
        ]

    @pytest.mark.asyncio
    async def test_invalid_date(self, client: AsyncClient):
        response = await client.get("/api/alarm-records", params={"start_date": "yesterday"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_record(self, client: AsyncClient, session_factory):
        record_id = await store_record(session_factory, "12345", "2025-04-02", "2025-04-02 09:00:00")

        response = await client.get(f"/api/alarm-records/{record_id}")

        assert response.status_code == 200
        assert response.json()["id"] == record_id

        missing = await client.get("/api/alarm-records/9999")
        assert missing.status_code == 404


class TestCodesystemsAPI:
    """Tests for code system administration."""

    @pytest.mark.asyncio
    async def test_list_codesystems(self, client: AsyncClient):
        response = await client.get("/api/codesystems")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["name"] == "300"
        assert data[0]["table_name"] == "hl7_codesystem_300"
        assert data[0]["is_default"] is True
        assert data[0]["active"] is True

    @pytest.mark.asyncio
    async def test_list_tags(self, client: AsyncClient):
        response = await client.get("/api/codesystems/300/tags", params={"page_size": 4})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 6
        assert data["total_pages"] == 2
        assert data["items"][0]["tagkey"] == "1"
        assert data["items"][0]["subid"] == "1.1.1.1"

    @pytest.mark.asyncio
    async def test_upsert_tags(self, client: AsyncClient, registry: CodeTableRegistry):
        response = await client.post(
            "/api/codesystems/300/tags",
            json={"tags": [
                {"tagkey": "1", "encode": "147842", "subid": "1.1.1.1", "description": "HR"},
                {"tagkey": "99", "encode": "150456", "description": "SpO2"},
            ]},
        )

        assert response.status_code == 200
        assert response.json() == {"name": "300", "table_name": "hl7_codesystem_300", "updated": 2}
        assert registry.describe("147842", "1.1.1.1") == "HR"

    @pytest.mark.asyncio
    async def test_upsert_without_force(self, client: AsyncClient):
        response = await client.post(
            "/api/codesystems/300/tags",
            json={"force_update": False, "tags": [{"tagkey": "1", "description": "HR"}]},
        )

        assert response.json()["updated"] == 0

    @pytest.mark.asyncio
    async def test_upsert_requires_tags(self, client: AsyncClient):
        response = await client.post("/api/codesystems/300/tags", json={"tags": []})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_codesystem(self, client: AsyncClient):
        response = await client.post(
            "/api/codesystems",
            json={"name": "icu", "tags": [{"tagkey": "1", "encode": "150456", "description": "SpO2"}]},
        )

        assert response.status_code == 201
        assert response.json()["table_name"] == "hl7_codesystem_icu"

        names = [entry["name"] for entry in (await client.get("/api/codesystems")).json()]
        assert names == ["300", "icu"]

        tags = (await client.get("/api/codesystems/icu/tags")).json()
        assert tags["total"] == 1

    @pytest.mark.asyncio
    async def test_create_duplicate_codesystem(self, client: AsyncClient):
        response = await client.post("/api/codesystems", json={"name": "300"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_create_invalid_name(self, client: AsyncClient):
        response = await client.post("/api/codesystems", json={"name": "bad-name"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_reload_codesystem(self, client: AsyncClient):
        """Reloading the bundled document should keep the stored table."""
        response = await client.post("/api/codesystems/reload")

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "300"
        assert data["status"] == "reloaded"
        assert data["tag_count"] == 6
