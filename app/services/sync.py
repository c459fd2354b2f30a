"""
Alert and decision synchronization service.

Pulls the complete Ip/Range alert set from the CrowdSec LAPI and converges
the local database onto it. The LAPI is authoritative: alerts are created or
overwritten, decisions are created, overwritten or removed so that each
alert holds exactly the decisions the LAPI reports for it. Alerts that
disappear upstream are kept as history.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.alert import Alert
from app.models.decision import Decision
from app.schemas.lapi import LAPIAlert, LAPIDecision
from app.services.duration import calculate_expiration, calculate_retention_cutoff
from app.services.lapi_client import LAPIClient

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Result of one reconciliation pass."""

    success: bool = True
    message: str = ""
    created: int = 0
    updated: int = 0
    decisions: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "created": self.created,
            "updated": self.updated,
            "decisions": self.decisions,
            "errors": self.errors,
        }


@dataclass
class RetentionResult:
    """Rows removed by retention cleanup."""

    alerts_deleted: int = 0
    decisions_deleted: int = 0


@dataclass
class _AlertOutcome:
    created: bool
    decisions: int
    errors: int


def _alert_fields(remote: LAPIAlert) -> dict[str, Any]:
    return {
        "uuid": remote.uuid,
        "scenario": remote.scenario,
        "scenario_version": remote.scenario_version,
        "scenario_hash": remote.scenario_hash,
        "message": remote.message,
        "capacity": remote.capacity,
        "leakspeed": remote.leakspeed,
        "simulated": remote.simulated,
        "remediation": remote.remediation,
        "events_count": remote.events_count,
        "machine_id": remote.machine_id,
        "source": remote.source.model_dump(mode="json", exclude_none=True),
        "labels": remote.labels,
        "meta": [meta.model_dump(mode="json") for meta in remote.meta],
        "events": [event.model_dump(mode="json") for event in remote.events],
        "crowdsec_created_at": remote.created_at,
        "start_at": remote.start_at,
        "stop_at": remote.stop_at,
    }


def _decision_fields(remote: LAPIDecision, alert: LAPIAlert) -> dict[str, Any]:
    return {
        "alert_id": alert.id,
        "origin": remote.origin,
        "type": remote.type,
        "scope": remote.scope,
        "value": remote.value,
        "duration": remote.duration,
        "scenario": remote.scenario,
        "simulated": remote.simulated,
        # Anchored on the alert's creation time so repeated syncs agree
        "expiration": calculate_expiration(remote.duration, alert.created_at),
        "crowdsec_created_at": alert.created_at,
    }


def _apply(instance: Alert | Decision, fields: dict[str, Any], now: datetime) -> bool:
    """Overwrite fields in place; bump updated_at only if something changed."""
    changed = False
    for key, value in fields.items():
        if getattr(instance, key) != value:
            setattr(instance, key, value)
            changed = True
    if changed:
        instance.updated_at = now
    return changed


class SyncService:
    """Reconciles the local store with the CrowdSec LAPI."""

    def __init__(
        self,
        client: LAPIClient,
        session_factory: async_sessionmaker[AsyncSession],
        retention: str | None = None,
    ):
        self.client = client
        self.session_factory = session_factory
        self.retention = retention
        self._last_successful_sync: datetime | None = None
        # Scheduled and user-triggered passes share the store; run one at a time
        self._lock = asyncio.Lock()

    def get_last_successful_sync(self) -> datetime | None:
        """When the last complete pass finished, or None if none has yet."""
        return self._last_successful_sync

    async def sync_all(self) -> dict[str, SyncResult]:
        """Sync every entity kind mirrored from the LAPI."""
        return {"alerts": await self.sync_alerts()}

    async def sync_alerts(self) -> SyncResult:
        """
        Run one reconciliation pass.

        A failing alert or decision is logged, counted and skipped. Only a
        failure to fetch the alert list aborts the pass, in which case the
        last successful sync time is left untouched.
        """
        async with self._lock:
            return await self._run_sync()

    async def _run_sync(self) -> SyncResult:
        logger.info("Starting alerts sync")
        try:
            remote_alerts = await self.client.fetch_alerts()
        except Exception as e:
            logger.error("Error syncing alerts: could not fetch alerts from LAPI: %s", e)
            return SyncResult(success=False, message="Failed to fetch alerts from LAPI", errors=1)

        result = SyncResult()
        async with self.session_factory() as session:
            for payload in remote_alerts:
                alert_id = payload.get("id") if isinstance(payload, dict) else None
                try:
                    outcome = await self._sync_alert(session, payload)
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    result.errors += 1
                    logger.error("Error processing alert %s: %s", alert_id, e)
                    continue

                if outcome.created:
                    result.created += 1
                else:
                    result.updated += 1
                result.decisions += outcome.decisions
                result.errors += outcome.errors

        await self.cleanup_old_data()

        self._last_successful_sync = datetime.now(UTC)
        result.message = (
            f"{result.created} new alerts, {result.updated} existing alerts, "
            f"{result.decisions} decisions synced, {result.errors} errors"
        )
        logger.info("Alerts sync completed: %s", result.message)
        return result

    async def _sync_alert(self, session: AsyncSession, payload: dict[str, Any]) -> _AlertOutcome:
        """Upsert one alert and reconcile its decisions. Caller commits."""
        remote = LAPIAlert.model_validate(payload)
        now = datetime.now(UTC)

        alert = await session.get(Alert, remote.id)
        created = alert is None
        if created:
            alert = Alert(id=remote.id, created_at=now, updated_at=now, **_alert_fields(remote))
            session.add(alert)
        else:
            _apply(alert, _alert_fields(remote), now)
        await session.flush()

        decisions, errors = await self._sync_decisions(session, remote, now)
        return _AlertOutcome(created=created, decisions=decisions, errors=errors)

    async def _sync_decisions(
        self,
        session: AsyncSession,
        remote: LAPIAlert,
        now: datetime,
    ) -> tuple[int, int]:
        """Make the alert's local decisions match the LAPI's. Returns (synced, errors)."""
        parsed: list[LAPIDecision] = []
        errors = 0
        for raw in remote.decisions:
            try:
                parsed.append(LAPIDecision.model_validate(raw))
            except ValidationError as e:
                errors += 1
                logger.error(
                    "Error processing decision %s of alert %s: %s",
                    raw.get("id") if isinstance(raw, dict) else None,
                    remote.id,
                    e,
                )

        # Decisions the LAPI no longer reports for this alert (expired or
        # deleted upstream). Every raw id counts as reported so a decision
        # that merely failed to parse is not dropped.
        reported_ids = {d.id for d in parsed} | {
            raw["id"] for raw in remote.decisions if isinstance(raw, dict) and isinstance(raw.get("id"), int)
        }
        stale = delete(Decision).where(Decision.alert_id == remote.id)
        if reported_ids:
            stale = stale.where(Decision.id.not_in(reported_ids))
        await session.execute(stale)

        synced = 0
        for decision in parsed:
            fields = _decision_fields(decision, remote)
            existing = await session.get(Decision, decision.id)
            if existing is None:
                session.add(Decision(id=decision.id, created_at=now, updated_at=now, **fields))
            else:
                _apply(existing, fields, now)
            synced += 1

        await session.flush()
        return synced, errors

    async def cleanup_old_data(self) -> RetentionResult:
        """
        Delete local rows older than the configured retention period.

        Does nothing when retention is not configured. Decisions go first,
        then alerts.
        """
        cutoff = calculate_retention_cutoff(self.retention)
        if cutoff is None:
            return RetentionResult()

        async with self.session_factory() as session:
            try:
                decisions_result = await session.execute(
                    delete(Decision).where(Decision.created_at < cutoff)
                )
                alerts_result = await session.execute(
                    delete(Alert).where(Alert.created_at < cutoff)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Retention cleanup failed: %s", e)
                return RetentionResult()

        result = RetentionResult(
            alerts_deleted=alerts_result.rowcount or 0,
            decisions_deleted=decisions_result.rowcount or 0,
        )
        if result.decisions_deleted:
            logger.info("Retention cleanup: deleted %s decisions older than %s", result.decisions_deleted, cutoff.isoformat())
        if result.alerts_deleted:
            logger.info("Retention cleanup: deleted %s alerts older than %s", result.alerts_deleted, cutoff.isoformat())
        return result
