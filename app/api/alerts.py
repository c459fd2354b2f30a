"""Alerts API - browse the local alert mirror and delete alerts upstream."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import get_db, get_lapi_client, get_sync_service, require_api_password
from app.core.errors import not_found, upstream_error
from app.core.exceptions import LAPIError
from app.models.alert import Alert
from app.schemas.alert import AlertDeleteResponse, AlertDetailResponse, AlertListResponse, AlertResponse
from app.schemas.statistics import AlertStatsResponse, CountryCount, OrganizationCount, ScenarioCount
from app.services import statistics
from app.services.lapi_client import LAPIClient
from app.services.statistics import COUNTRY_KEY, DEFAULT_TOP_ITEMS, IP_OWNER_KEY
from app.services.sync import SyncService
from app.utils.crud import DEFAULT_PAGE_SIZE, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_api_password)])


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    unpaged: bool = Query(False, description="Return every matching alert"),
    scenario: list[str] | None = Query(None, description="Scenario substring, repeatable"),
    simulated: bool | None = Query(None),
    ip_address: list[str] | None = Query(None, description="Source IP, repeatable"),
    country: list[str] | None = Query(None, description="Source country code, repeatable"),
    ip_owner: list[str] | None = Query(None, description="Source AS name substring, repeatable"),
):
    """List alerts, newest first."""
    stmt = select(Alert).order_by(Alert.crowdsec_created_at.desc(), Alert.id.desc())

    if scenario:
        stmt = stmt.where(or_(*(Alert.scenario.like(f"%{s}%") for s in scenario)))
    if simulated is not None:
        stmt = stmt.where(Alert.simulated == simulated)
    if ip_address:
        stmt = stmt.where(Alert.source["ip"].as_string().in_(ip_address))
    if country:
        stmt = stmt.where(func.upper(Alert.source["cn"].as_string()).in_([c.upper() for c in country]))
    if ip_owner:
        stmt = stmt.where(or_(*(Alert.source["as_name"].as_string().ilike(f"%{o}%") for o in ip_owner)))

    alerts, pagination, total = await paginate(db, stmt, limit=limit, offset=offset, unpaged=unpaged)
    return AlertListResponse(
        items=[AlertResponse.model_validate(a) for a in alerts],
        pagination=pagination,
        total=total,
    )


@router.get("/stats", response_model=AlertStatsResponse)
async def get_alert_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Alert totals and the ten most frequent scenarios, countries and AS owners."""
    total = await statistics.count_alerts(db)
    simulated = await statistics.count_alerts(db, simulated=True)
    scenarios = await statistics.top_scenarios(db, limit=DEFAULT_TOP_ITEMS)
    countries = await statistics.top_source_values(db, COUNTRY_KEY, limit=DEFAULT_TOP_ITEMS)
    owners = await statistics.top_source_values(db, IP_OWNER_KEY, limit=DEFAULT_TOP_ITEMS)
    return AlertStatsResponse(
        total=total,
        simulated=simulated,
        real=total - simulated,
        top_scenarios=[ScenarioCount(scenario=item, count=n) for item, n in scenarios],
        top_countries=[CountryCount(country=item, count=n) for item, n in countries],
        top_organizations=[OrganizationCount(organization=item, count=n) for item, n in owners],
    )


@router.get("/{alert_id}", response_model=AlertDetailResponse)
async def get_alert(
    alert_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Get an alert with its decisions."""
    result = await db.execute(
        select(Alert).where(Alert.id == alert_id).options(selectinload(Alert.decisions))
    )
    alert = result.scalar_one_or_none()
    if alert is None:
        raise not_found("Alert", details={"id": alert_id})
    return AlertDetailResponse.model_validate(alert)


@router.delete("/{alert_id}", response_model=AlertDeleteResponse)
async def delete_alert(
    alert_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[LAPIClient, Depends(get_lapi_client)],
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
):
    """Delete an alert in the LAPI, drop it locally, then resync."""
    try:
        nb_deleted = await client.delete_alert(alert_id)
    except LAPIError as e:
        raise upstream_error("Alert", e) from e

    if nb_deleted == 0:
        raise not_found("Alert", details={"id": alert_id})

    # Decisions go with it through ON DELETE CASCADE
    await db.execute(delete(Alert).where(Alert.id == alert_id))
    await db.commit()

    await sync_service.sync_alerts()

    logger.info("Deleted alert %s", alert_id)
    return AlertDeleteResponse(message="Alert deleted successfully", nb_deleted=nb_deleted)
