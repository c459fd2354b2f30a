"""Dashboard statistics API."""

from datetime import UTC, date, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, require_api_password
from app.core.errors import validation_error
from app.schemas.statistics import (
    ActivityDay,
    CountryAmount,
    DayAmount,
    IpOwnerAmount,
    ScenarioAmount,
    StatisticsResponse,
    TargetAmount,
)
from app.services import statistics
from app.services.statistics import COUNTRY_KEY, DEFAULT_TOP_ITEMS, IP_OWNER_KEY

router = APIRouter(prefix="/statistics", tags=["statistics"], dependencies=[Depends(require_api_password)])


def _history(days: dict[str, int]) -> list[DayAmount]:
    return [DayAmount(date=day, amount=amount) for day, amount in days.items()]


@router.get("", response_model=StatisticsResponse)
async def get_statistics(
    db: Annotated[AsyncSession, Depends(get_db)],
    since: date | None = Query(None, description="First day to include (yyyy-mm-dd), must be before today"),
    amount: int = Query(DEFAULT_TOP_ITEMS, ge=1, description="Entries per top list"),
):
    """
    Dashboard overview.

    Returns:
    - Alerts created in the last 24 hours
    - Unexpired decisions
    - Alerts and decisions per day
    - Top countries, scenarios, IP owners and targets
    """
    if since is not None and since >= datetime.now(UTC).date():
        raise validation_error(
            "since date must be in the past (not today or future dates)",
            details={"since": since.isoformat()},
        )
    since_at = statistics.day_start(since) if since else None

    countries = await statistics.top_source_values(db, COUNTRY_KEY, limit=amount, since=since_at)
    ip_owners = await statistics.top_source_values(db, IP_OWNER_KEY, limit=amount, since=since_at)
    scenarios = await statistics.top_scenarios(db, limit=amount, since=since_at)
    targets = await statistics.top_targets(db, limit=amount, since=since_at)

    return StatisticsResponse(
        alerts_last_24_hours=await statistics.count_alerts(db, since=statistics.last_24_hours()),
        active_decisions=await statistics.count_decisions(db, since=since_at, active_only=True),
        activity_history=[ActivityDay(**day) for day in await statistics.activity_history(db, since=since_at)],
        top_countries=[CountryAmount(country_code=item, amount=n) for item, n in countries],
        top_scenarios=[ScenarioAmount(scenario=item, amount=n) for item, n in scenarios],
        top_ip_owners=[IpOwnerAmount(ip_owner=item, amount=n) for item, n in ip_owners],
        top_targets=[TargetAmount(target=item, amount=n) for item, n in targets],
    )


@router.get("/countries", response_model=list[CountryAmount])
async def list_countries(db: Annotated[AsyncSession, Depends(get_db)]):
    rows = await statistics.top_source_values(db, COUNTRY_KEY)
    return [CountryAmount(country_code=item, amount=n) for item, n in rows]


@router.get("/scenarios", response_model=list[ScenarioAmount])
async def list_scenarios(db: Annotated[AsyncSession, Depends(get_db)]):
    rows = await statistics.top_scenarios(db)
    return [ScenarioAmount(scenario=item, amount=n) for item, n in rows]


@router.get("/ip-owners", response_model=list[IpOwnerAmount])
async def list_ip_owners(db: Annotated[AsyncSession, Depends(get_db)]):
    rows = await statistics.top_source_values(db, IP_OWNER_KEY)
    return [IpOwnerAmount(ip_owner=item, amount=n) for item, n in rows]


@router.get("/targets", response_model=list[TargetAmount])
async def list_targets(db: Annotated[AsyncSession, Depends(get_db)]):
    rows = await statistics.top_targets(db)
    return [TargetAmount(target=item, amount=n) for item, n in rows]


@router.get("/countries/{item}", response_model=list[DayAmount])
async def get_country_history(item: str, db: Annotated[AsyncSession, Depends(get_db)]):
    """Alerts per day for one country code (case-insensitive)."""
    return _history(await statistics.country_history(db, item))


@router.get("/scenarios/{item:path}", response_model=list[DayAmount])
async def get_scenario_history(item: str, db: Annotated[AsyncSession, Depends(get_db)]):
    # Scenario names contain a slash, e.g. crowdsecurity/ssh-bf
    return _history(await statistics.scenario_history(db, item))


@router.get("/ip-owners/{item}", response_model=list[DayAmount])
async def get_ip_owner_history(item: str, db: Annotated[AsyncSession, Depends(get_db)]):
    return _history(await statistics.ip_owner_history(db, item))


@router.get("/targets/{item}", response_model=list[DayAmount])
async def get_target_history(item: str, db: Annotated[AsyncSession, Depends(get_db)]):
    return _history(await statistics.target_history(db, item))
