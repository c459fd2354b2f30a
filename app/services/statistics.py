"""
Aggregate queries over the local alert and decision mirror.

Counts are grouped in SQL where the value lives in a column or a JSON path
of ``alerts.source``. Targets come from ``target_fqdn`` meta entries nested
inside each alert's events and are counted in Python, once per alert.
"""

from collections import Counter
from datetime import UTC, date, datetime, timedelta
from typing import Any

from sqlalchemy import ColumnElement, Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.alert import Alert
from app.models.decision import Decision

DEFAULT_TOP_ITEMS = 10
TARGET_META_KEY = "target_fqdn"

# JSON paths into Alert.source
COUNTRY_KEY = "cn"
IP_OWNER_KEY = "as_name"


def day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


def _as_day(value: Any) -> str:
    # SQLite returns date() as text, PostgreSQL as a date
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _source_value(key: str) -> ColumnElement[str]:
    return Alert.source[key].as_string()


def _since(stmt: Select, column, since: datetime | None) -> Select:
    if since is not None:
        stmt = stmt.where(column >= since)
    return stmt


async def _grouped_counts(db: AsyncSession, stmt: Select) -> list[tuple[str, int]]:
    result = await db.execute(stmt)
    return [(row.item, row.amount) for row in result]


async def count_alerts(db: AsyncSession, since: datetime | None = None, simulated: bool | None = None) -> int:
    stmt = _since(select(func.count(Alert.id)), Alert.crowdsec_created_at, since)
    if simulated is not None:
        stmt = stmt.where(Alert.simulated == simulated)
    return (await db.execute(stmt)).scalar() or 0


async def count_decisions(db: AsyncSession, since: datetime | None = None, active_only: bool = False) -> int:
    stmt = _since(select(func.count(Decision.id)), Decision.crowdsec_created_at, since)
    if active_only:
        stmt = stmt.where(Decision.expiration > datetime.now(UTC))
    return (await db.execute(stmt)).scalar() or 0


async def top_scenarios(
    db: AsyncSession, limit: int | None = None, since: datetime | None = None
) -> list[tuple[str, int]]:
    amount = func.count(Alert.id).label("amount")
    stmt = (
        select(Alert.scenario.label("item"), amount)
        .group_by(Alert.scenario)
        .order_by(amount.desc(), Alert.scenario)
    )
    stmt = _since(stmt, Alert.crowdsec_created_at, since)
    if limit is not None:
        stmt = stmt.limit(limit)
    return await _grouped_counts(db, stmt)


async def top_source_values(
    db: AsyncSession, key: str, limit: int | None = None, since: datetime | None = None
) -> list[tuple[str, int]]:
    """Count alerts per value of ``source[key]`` (country code, AS name), highest first."""
    value = _source_value(key)
    stmt = (
        select(value.label("item"), func.count(Alert.id).label("amount"))
        .where(value.is_not(None), value != "")
        # Grouped by label so both backends see one expression
        .group_by("item")
        .order_by(func.count(Alert.id).desc(), "item")
    )
    stmt = _since(stmt, Alert.crowdsec_created_at, since)
    if limit is not None:
        stmt = stmt.limit(limit)
    return await _grouped_counts(db, stmt)


async def count_by_decision_column(db: AsyncSession, column) -> list[tuple[str, int]]:
    amount = func.count(Decision.id).label("amount")
    stmt = select(column.label("item"), amount).group_by(column).order_by(amount.desc(), column)
    return await _grouped_counts(db, stmt)


def alert_targets(events: list[dict[str, Any]] | None) -> set[str]:
    """Distinct ``target_fqdn`` values found in an alert's event meta."""
    targets: set[str] = set()
    for event in events or []:
        for meta in event.get("meta") or []:
            if meta.get("key") != TARGET_META_KEY:
                continue
            values = meta.get("value") or []
            if isinstance(values, str):
                values = [values]
            targets.update(v for v in values if v)
    return targets


async def top_targets(
    db: AsyncSession, limit: int | None = None, since: datetime | None = None
) -> list[tuple[str, int]]:
    stmt = _since(select(Alert.events), Alert.crowdsec_created_at, since)
    counter: Counter[str] = Counter()
    for events in (await db.execute(stmt)).scalars():
        counter.update(alert_targets(events))
    ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:limit] if limit is not None else ranked


async def daily_counts(db: AsyncSession, column, *criteria, since: datetime | None = None) -> dict[str, int]:
    """Count rows per UTC day of ``column``, optionally filtered."""
    day = func.date(column).label("day")
    stmt = (
        select(day, func.count().label("amount"))
        .where(*criteria)
        .group_by("day")
        .order_by("day")
    )
    stmt = _since(stmt, column, since)
    result = await db.execute(stmt)
    return {_as_day(row.day): row.amount for row in result}


async def activity_history(db: AsyncSession, since: datetime | None = None) -> list[dict[str, Any]]:
    """Alerts and decisions per day, oldest first."""
    alerts = await daily_counts(db, Alert.crowdsec_created_at, since=since)
    decisions = await daily_counts(db, Decision.crowdsec_created_at, since=since)
    return [
        {
            "date": day,
            "amount_alerts": alerts.get(day, 0),
            "amount_decisions": decisions.get(day, 0),
        }
        for day in sorted(alerts.keys() | decisions.keys())
    ]


async def country_history(db: AsyncSession, country_code: str) -> dict[str, int]:
    return await daily_counts(
        db,
        Alert.crowdsec_created_at,
        func.upper(_source_value(COUNTRY_KEY)) == country_code.upper(),
    )


async def scenario_history(db: AsyncSession, scenario: str) -> dict[str, int]:
    return await daily_counts(db, Alert.crowdsec_created_at, Alert.scenario == scenario)


async def ip_owner_history(db: AsyncSession, ip_owner: str) -> dict[str, int]:
    return await daily_counts(db, Alert.crowdsec_created_at, _source_value(IP_OWNER_KEY) == ip_owner)


async def target_history(db: AsyncSession, target: str) -> dict[str, int]:
    result = await db.execute(select(Alert.crowdsec_created_at, Alert.events))
    days: Counter[str] = Counter()
    for created_at, events in result:
        if target in alert_targets(events):
            days[created_at.date().isoformat()] += 1
    return dict(sorted(days.items()))


def last_24_hours() -> datetime:
    return datetime.now(UTC) - timedelta(hours=24)
