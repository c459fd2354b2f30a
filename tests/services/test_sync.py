# tests/services/test_sync.py
"""Tests for the alert/decision reconciliation service."""
import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import LAPIConnectionError
from app.models.alert import Alert
from app.models.decision import Decision
from app.services.sync import SyncService


async def load_alerts(session_factory) -> list[Alert]:
    async with session_factory() as session:
        result = await session.execute(select(Alert).order_by(Alert.id))
        return list(result.scalars().all())


async def load_decisions(session_factory) -> list[Decision]:
    async with session_factory() as session:
        result = await session.execute(select(Decision).order_by(Decision.id))
        return list(result.scalars().all())


class TestSyncAlerts:
    """Tests for SyncService.sync_alerts."""

    @pytest.mark.asyncio
    async def test_creates_alert_and_decision(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(100, decisions=[make_decision(500, duration="4h")])
        ]

        result = await sync_service.sync_alerts()

        assert result.success is True
        assert (result.created, result.updated, result.decisions, result.errors) == (1, 0, 1, 0)

        alerts = await load_alerts(session_factory)
        assert [a.id for a in alerts] == [100]
        assert alerts[0].crowdsec_created_at == datetime(2024, 1, 1, tzinfo=UTC)

        decisions = await load_decisions(session_factory)
        assert len(decisions) == 1
        decision = decisions[0]
        assert decision.id == 500
        assert decision.alert_id == 100
        assert decision.duration == "4h"
        assert decision.expiration == datetime(2024, 1, 1, 4, tzinfo=UTC)
        assert decision.crowdsec_created_at == datetime(2024, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_normalizes_meta_and_source(self, sync_service, mock_lapi_client, session_factory, make_alert):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1)]

        await sync_service.sync_alerts()

        alert = (await load_alerts(session_factory))[0]
        assert alert.meta == [{"key": "target_user", "value": ["root", "admin"]}]
        assert alert.events[0]["meta"] == [{"key": "service", "value": ["ssh"]}]
        assert alert.source["as_number"] == "64500"
        assert alert.source["cn"] == "FR"

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(1, decisions=[make_decision(10), make_decision(11, value="5.6.7.8")]),
            make_alert(2, decisions=[make_decision(20, duration="1h")]),
        ]

        await sync_service.sync_alerts()
        alerts_before = [(a.id, a.updated_at, a.meta) for a in await load_alerts(session_factory)]
        decisions_before = [(d.id, d.expiration, d.updated_at) for d in await load_decisions(session_factory)]

        result = await sync_service.sync_alerts()

        assert (result.created, result.updated, result.errors) == (0, 2, 0)
        assert [(a.id, a.updated_at, a.meta) for a in await load_alerts(session_factory)] == alerts_before
        assert [(d.id, d.expiration, d.updated_at) for d in await load_decisions(session_factory)] == decisions_before

    @pytest.mark.asyncio
    async def test_changed_fields_are_overwritten(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10, duration="4h")])]
        await sync_service.sync_alerts()

        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(1, message="updated", decisions=[make_decision(10, duration="3h59m", type="captcha")])
        ]
        await sync_service.sync_alerts()

        alert = (await load_alerts(session_factory))[0]
        decision = (await load_decisions(session_factory))[0]
        assert alert.message == "updated"
        assert decision.type == "captcha"
        assert decision.expiration == datetime(2024, 1, 1, 3, 59, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_decisions_match_upstream_set(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(1, decisions=[make_decision(10), make_decision(11)]),
            make_alert(2, decisions=[make_decision(20)]),
        ]
        await sync_service.sync_alerts()

        # 10 expired upstream, 12 is new; alert 2 is unchanged
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(1, decisions=[make_decision(11), make_decision(12)]),
            make_alert(2, decisions=[make_decision(20)]),
        ]
        await sync_service.sync_alerts()

        decisions = await load_decisions(session_factory)
        assert {(d.alert_id, d.id) for d in decisions} == {(1, 11), (1, 12), (2, 20)}

    @pytest.mark.asyncio
    async def test_alert_without_decisions_loses_local_ones(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10)])]
        await sync_service.sync_alerts()

        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=None)]
        await sync_service.sync_alerts()

        assert await load_decisions(session_factory) == []
        assert [a.id for a in await load_alerts(session_factory)] == [1]

    @pytest.mark.asyncio
    async def test_alert_missing_upstream_is_kept(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10)])]
        await sync_service.sync_alerts()

        mock_lapi_client.fetch_alerts.return_value = []
        result = await sync_service.sync_alerts()

        assert result.success is True
        assert [a.id for a in await load_alerts(session_factory)] == [1]
        assert [d.id for d in await load_decisions(session_factory)] == [10]

    @pytest.mark.asyncio
    async def test_malformed_alert_is_skipped(self, sync_service, mock_lapi_client, session_factory, make_alert):
        broken = make_alert(2)
        del broken["source"]
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1), broken, make_alert(3)]

        result = await sync_service.sync_alerts()

        assert result.success is True
        assert (result.created, result.errors) == (2, 1)
        assert [a.id for a in await load_alerts(session_factory)] == [1, 3]
        assert sync_service.get_last_successful_sync() is not None

    @pytest.mark.asyncio
    async def test_unparseable_timestamp_only_skips_that_alert(
        self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision
    ):
        broken = make_alert(2, decisions=[make_decision(20)], created_at="not-a-timestamp")
        mock_lapi_client.fetch_alerts.return_value = [
            make_alert(1, decisions=[make_decision(10)]),
            broken,
            make_alert(3, decisions=[make_decision(30)]),
        ]

        result = await sync_service.sync_alerts()

        assert result.success is True
        assert (result.created, result.decisions, result.errors) == (2, 2, 1)
        assert [a.id for a in await load_alerts(session_factory)] == [1, 3]
        assert [d.id for d in await load_decisions(session_factory)] == [10, 30]
        assert sync_service.get_last_successful_sync() is not None

    @pytest.mark.asyncio
    async def test_malformed_decision_is_skipped(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        broken = make_decision(11)
        del broken["type"]
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10), broken])]

        result = await sync_service.sync_alerts()

        assert (result.created, result.decisions, result.errors) == (1, 1, 1)
        assert [d.id for d in await load_decisions(session_factory)] == [10]

    @pytest.mark.asyncio
    async def test_decision_failing_to_parse_is_not_deleted(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10), make_decision(11)])]
        await sync_service.sync_alerts()

        broken = make_decision(11)
        broken["duration"] = None
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10), broken])]
        await sync_service.sync_alerts()

        assert [d.id for d in await load_decisions(session_factory)] == [10, 11]

    @pytest.mark.asyncio
    async def test_fetch_failure_does_not_advance_last_sync(self, sync_service, mock_lapi_client, make_alert):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1)]
        await sync_service.sync_alerts()
        last_sync = sync_service.get_last_successful_sync()

        mock_lapi_client.fetch_alerts.side_effect = LAPIConnectionError("fetching alerts", "connection refused")
        result = await sync_service.sync_alerts()

        assert result.success is False
        assert result.errors == 1
        assert sync_service.get_last_successful_sync() == last_sync

    @pytest.mark.asyncio
    async def test_last_sync_is_none_before_first_pass(self, sync_service):
        assert sync_service.get_last_successful_sync() is None

    @pytest.mark.asyncio
    async def test_concurrent_passes_do_not_interleave(self, sync_service, mock_lapi_client, session_factory, make_alert, make_decision):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1, decisions=[make_decision(10)])]

        results = await asyncio.gather(sync_service.sync_alerts(), sync_service.sync_alerts())

        assert sorted(r.created for r in results) == [0, 1]
        assert [d.id for d in await load_decisions(session_factory)] == [10]

    @pytest.mark.asyncio
    async def test_sync_all_reports_alerts(self, sync_service, mock_lapi_client, make_alert):
        mock_lapi_client.fetch_alerts.return_value = [make_alert(1)]

        results = await sync_service.sync_all()

        assert results["alerts"].to_dict()["created"] == 1


class TestRetentionCleanup:
    """Tests for SyncService.cleanup_old_data."""

    async def _seed(self, session_factory, make_alert, created_at, alert_id=1, decision_id=10):
        async with session_factory() as session:
            alert = Alert(
                id=alert_id,
                scenario="crowdsecurity/ssh-bf",
                source=make_alert(1)["source"],
                crowdsec_created_at=created_at,
                start_at=created_at,
                stop_at=created_at,
                created_at=created_at,
                updated_at=created_at,
            )
            session.add(alert)
            await session.flush()
            session.add(
                Decision(
                    id=decision_id,
                    alert_id=alert_id,
                    origin="crowdsec",
                    type="ban",
                    scope="Ip",
                    value="1.2.3.4",
                    duration="4h",
                    scenario="crowdsecurity/ssh-bf",
                    expiration=created_at + timedelta(hours=4),
                    crowdsec_created_at=created_at,
                    created_at=created_at,
                    updated_at=created_at,
                )
            )
            await session.commit()

    @pytest.mark.asyncio
    async def test_deletes_decisions_then_alerts(self, mock_lapi_client, session_factory, make_alert):
        await self._seed(session_factory, make_alert, datetime.now(UTC) - timedelta(days=40))
        service = SyncService(mock_lapi_client, session_factory, retention="30d")

        result = await service.cleanup_old_data()

        # Decisions counted on their own, so they went before the cascade from alerts
        assert (result.decisions_deleted, result.alerts_deleted) == (1, 1)
        assert await load_alerts(session_factory) == []
        assert await load_decisions(session_factory) == []

    @pytest.mark.asyncio
    async def test_only_rows_older_than_cutoff_are_deleted(self, mock_lapi_client, session_factory, make_alert):
        now = datetime.now(UTC)
        await self._seed(session_factory, make_alert, now - timedelta(days=45), alert_id=1, decision_id=10)
        await self._seed(session_factory, make_alert, now - timedelta(days=31), alert_id=2, decision_id=20)
        await self._seed(session_factory, make_alert, now - timedelta(days=29), alert_id=3, decision_id=30)
        await self._seed(session_factory, make_alert, now - timedelta(hours=1), alert_id=4, decision_id=40)
        service = SyncService(mock_lapi_client, session_factory, retention="30d")

        result = await service.cleanup_old_data()

        assert (result.decisions_deleted, result.alerts_deleted) == (2, 2)
        assert [a.id for a in await load_alerts(session_factory)] == [3, 4]
        assert [d.id for d in await load_decisions(session_factory)] == [30, 40]

    @pytest.mark.asyncio
    async def test_keeps_recent_rows(self, mock_lapi_client, session_factory, make_alert):
        await self._seed(session_factory, make_alert, datetime.now(UTC) - timedelta(days=5))
        service = SyncService(mock_lapi_client, session_factory, retention="30d")

        result = await service.cleanup_old_data()

        assert (result.decisions_deleted, result.alerts_deleted) == (0, 0)
        assert len(await load_alerts(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_disabled_without_retention(self, sync_service, session_factory, make_alert):
        await self._seed(session_factory, make_alert, datetime.now(UTC) - timedelta(days=4000))

        result = await sync_service.cleanup_old_data()

        assert (result.decisions_deleted, result.alerts_deleted) == (0, 0)
        assert len(await load_decisions(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_invalid_retention_disables_cleanup(self, mock_lapi_client, session_factory, make_alert):
        await self._seed(session_factory, make_alert, datetime.now(UTC) - timedelta(days=400))
        service = SyncService(mock_lapi_client, session_factory, retention="forever")

        result = await service.cleanup_old_data()

        assert result.alerts_deleted == 0

    @pytest.mark.asyncio
    async def test_runs_after_each_pass(self, mock_lapi_client, session_factory, make_alert):
        await self._seed(session_factory, make_alert, datetime.now(UTC) - timedelta(days=40))
        service = SyncService(mock_lapi_client, session_factory, retention="30d")
        mock_lapi_client.fetch_alerts.return_value = []

        await service.sync_alerts()

        assert await load_alerts(session_factory) == []
