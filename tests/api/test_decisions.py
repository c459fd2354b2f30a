"""Tests for the decisions API."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from app.api.decisions import build_decision_alert
from app.core.config import settings
from app.core.exceptions import LAPIConnectionError, LAPIResponseError
from app.schemas.decision import DecisionCreate

# Long enough to still be active whenever the tests run
LONG_DURATION = "87600h"


@pytest_asyncio.fixture
async def seeded(sync_service, mock_lapi_client, make_alert, make_decision):
    """Two alerts: one with an expired ban, one with active decisions."""
    mock_lapi_client.fetch_alerts.return_value = [
        make_alert(1, decisions=[make_decision(10, duration="4h")], created_at="2024-01-01T00:00:00Z"),
        make_alert(
            2,
            scenario="crowdsecurity/http-probing",
            source={"scope": "Ip", "value": "5.6.7.8", "ip": "5.6.7.8", "cn": "DE", "as_name": "Other Hosting"},
            decisions=[
                make_decision(20, value="5.6.7.8", duration=LONG_DURATION, scenario="crowdsecurity/http-probing"),
                make_decision(21, value="5.6.7.8", duration=LONG_DURATION, type="captcha", scenario="crowdsecurity/http-probing"),
            ],
            created_at="2024-01-02T00:00:00Z",
        ),
    ]
    await sync_service.sync_alerts()
    mock_lapi_client.fetch_alerts.reset_mock()


def valid_decision(**overrides) -> dict:
    data = {"ip": "192.0.2.10", "duration": "4h", "reason": "Manual ban, abuse report", "type": "ban"}
    data.update(overrides)
    return data


class TestListDecisions:
    @pytest.mark.asyncio
    async def test_newest_first(self, client, seeded):
        response = await client.get("/api/v1/decisions")

        assert response.status_code == 200
        data = response.json()
        assert [d["id"] for d in data["items"]] == [21, 20, 10]
        assert data["pagination"] == {"page": 1, "amount": 3, "total": 3}

    @pytest.mark.asyncio
    async def test_filter_by_type(self, client, seeded):
        response = await client.get("/api/v1/decisions", params={"type": "captcha"})
        assert [d["id"] for d in response.json()["items"]] == [21]

    @pytest.mark.asyncio
    async def test_filter_by_value_substring(self, client, seeded):
        response = await client.get("/api/v1/decisions", params={"value": "1.2.3"})
        assert [d["id"] for d in response.json()["items"]] == [10]

    @pytest.mark.asyncio
    async def test_filter_by_ip_address(self, client, seeded):
        response = await client.get("/api/v1/decisions", params=[("ip_address", "5.6.7.8"), ("ip_address", "9.9.9.9")])
        assert [d["id"] for d in response.json()["items"]] == [21, 20]

    @pytest.mark.asyncio
    async def test_filter_by_scenario(self, client, seeded):
        response = await client.get("/api/v1/decisions", params={"scenario": "ssh"})
        assert [d["id"] for d in response.json()["items"]] == [10]

    @pytest.mark.asyncio
    async def test_filter_by_alert_country(self, client, seeded):
        response = await client.get("/api/v1/decisions", params={"country": "de"})
        assert [d["id"] for d in response.json()["items"]] == [21, 20]

    @pytest.mark.asyncio
    async def test_only_active(self, client, seeded):
        response = await client.get("/api/v1/decisions", params={"only_active": "true"})
        assert [d["id"] for d in response.json()["items"]] == [21, 20]

    @pytest.mark.asyncio
    async def test_expiration_is_alert_time_plus_duration(self, client, seeded):
        response = await client.get("/api/v1/decisions/10")

        expiration = datetime.fromisoformat(response.json()["expiration"].replace("Z", "+00:00"))
        assert expiration == datetime(2024, 1, 1, 4, tzinfo=UTC)


class TestActiveDecisions:
    @pytest.mark.asyncio
    async def test_only_unexpired(self, client, seeded):
        response = await client.get("/api/v1/decisions/active")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert {d["id"] for d in data["items"]} == {20, 21}


class TestDecisionStats:
    @pytest.mark.asyncio
    async def test_grouped_by_type_and_scope(self, client, seeded):
        response = await client.get("/api/v1/decisions/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total": 3,
            "by_type": [{"type": "ban", "count": 2}, {"type": "captcha", "count": 1}],
            "by_scope": [{"scope": "Ip", "count": 3}],
        }


class TestGetDecision:
    @pytest.mark.asyncio
    async def test_unknown_decision_is_404(self, client, seeded):
        response = await client.get("/api/v1/decisions/999")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Decision not found"


class TestCreateDecision:
    @pytest.mark.asyncio
    async def test_creates_alert_upstream_and_resyncs(self, client, mock_lapi_client, monkeypatch):
        monkeypatch.setattr(settings, "CROWDSEC_USER", "monitor")
        mock_lapi_client.create_alerts.return_value = ["77"]

        response = await client.post("/api/v1/decisions", json=valid_decision())

        assert response.status_code == 201
        data = response.json()
        assert data["alert_ids"] == ["77"]
        assert data["decision"]["ip"] == "192.0.2.10"

        (payload,), _ = mock_lapi_client.create_alerts.await_args
        assert len(payload) == 1
        alert = payload[0]
        assert alert["scenario"] == "manual/crowdsec-monitor"
        assert alert["message"] == "Manual ban, abuse report"
        assert alert["source"] == {"scope": "ip", "value": "192.0.2.10"}
        assert alert["decisions"][0]["origin"] == "monitor"
        assert alert["decisions"][0]["duration"] == "4h"
        mock_lapi_client.fetch_alerts.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_accepts_ipv6(self, client):
        response = await client.post("/api/v1/decisions", json=valid_decision(ip="2001:db8::1"))
        assert response.status_code == 201

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"ip": "999.1.1.1"},
            {"ip": "not-an-ip"},
            {"duration": "4x"},
            {"duration": "10s"},
            {"reason": "drop table; --"},
            {"reason": ""},
            {"type": "kill"},
        ],
    )
    async def test_invalid_input_is_rejected(self, client, mock_lapi_client, overrides):
        response = await client.post("/api/v1/decisions", json=valid_decision(**overrides))

        assert response.status_code == 422
        mock_lapi_client.create_alerts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_compound_duration_is_accepted(self, client):
        response = await client.post("/api/v1/decisions", json=valid_decision(duration="1d4h15m"))
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_upstream_failure_is_reported(self, client, mock_lapi_client):
        mock_lapi_client.create_alerts.side_effect = LAPIResponseError("creating alerts", 500, "boom")

        response = await client.post("/api/v1/decisions", json=valid_decision())

        assert response.status_code == 500
        mock_lapi_client.fetch_alerts.assert_not_awaited()


class TestBuildDecisionAlert:
    def test_payload_shape(self):
        now = datetime(2024, 5, 1, 12, tzinfo=UTC)
        decision = DecisionCreate(**valid_decision(type="captcha"))

        alert = build_decision_alert(decision, origin="monitor", now=now)

        assert alert.start_at == alert.stop_at == now.isoformat()
        assert alert.capacity == 0
        assert alert.leakspeed == "0"
        assert alert.events_count == 1
        assert alert.decisions[0].type == "captcha"
        assert alert.decisions[0].scope == "ip"
        assert alert.decisions[0].scenario == "manual/crowdsec-monitor"


class TestDeleteDecision:
    @pytest.mark.asyncio
    async def test_deletes_upstream_and_resyncs(self, client, seeded, mock_lapi_client, make_alert, make_decision):
        # Upstream now only reports decision 21 under alert 2
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(2, decisions=[make_decision(21, duration=LONG_DURATION)], created_at="2024-01-02T00:00:00Z"),
        ]

        response = await client.delete("/api/v1/decisions/20")

        assert response.status_code == 200
        assert response.json() == {"message": "Decision deleted successfully", "nb_deleted": 1}
        mock_lapi_client.delete_decision.assert_awaited_once_with(20)
        assert (await client.get("/api/v1/decisions/20")).status_code == 404

    @pytest.mark.asyncio
    async def test_expires_locally_even_if_resync_fails(self, client, seeded, mock_lapi_client):
        mock_lapi_client.fetch_alerts.side_effect = LAPIConnectionError("fetching alerts", "timeout")
        before = datetime.now(UTC)

        response = await client.delete("/api/v1/decisions/20")

        assert response.status_code == 200
        decision = (await client.get("/api/v1/decisions/20")).json()
        expiration = datetime.fromisoformat(decision["expiration"].replace("Z", "+00:00"))
        assert before - timedelta(seconds=1) <= expiration <= datetime.now(UTC)

        active = (await client.get("/api/v1/decisions/active")).json()
        assert [d["id"] for d in active["items"]] == [21]

    @pytest.mark.asyncio
    async def test_nothing_deleted_upstream_is_404(self, client, seeded, mock_lapi_client):
        mock_lapi_client.delete_decision.return_value = 0

        response = await client.delete("/api/v1/decisions/20")

        assert response.status_code == 404
        mock_lapi_client.fetch_alerts.assert_not_awaited()
