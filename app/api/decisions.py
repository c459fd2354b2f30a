"""Decisions API - browse local decisions, create and delete them upstream."""

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_lapi_client, get_sync_service, require_api_password
from app.core.config import settings
from app.core.errors import not_found, upstream_error
from app.core.exceptions import LAPIError
from app.models.alert import Alert
from app.models.decision import Decision
from app.schemas.decision import (
    ActiveDecisionsResponse,
    DecisionCreate,
    DecisionCreatedResponse,
    DecisionDeleteResponse,
    DecisionListResponse,
    DecisionResponse,
)
from app.schemas.lapi import API_SCENARIO_NAME, LAPICreateAlert, LAPICreateDecision, LAPICreateSource
from app.schemas.statistics import DecisionStatsResponse, ScopeCount, TypeCount
from app.services import statistics
from app.services.lapi_client import LAPIClient
from app.services.sync import SyncService
from app.utils.crud import DEFAULT_PAGE_SIZE, get_or_404, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/decisions", tags=["decisions"], dependencies=[Depends(require_api_password)])

ACTIVE_DECISIONS_LIMIT = 100


def build_decision_alert(decision: DecisionCreate, origin: str, now: datetime | None = None) -> LAPICreateAlert:
    """Wrap a manual decision in the single-alert payload the LAPI expects."""
    timestamp = (now or datetime.now(UTC)).isoformat()
    return LAPICreateAlert(
        scenario=API_SCENARIO_NAME,
        campaign_name=API_SCENARIO_NAME,
        message=decision.reason,
        events_count=1,
        start_at=timestamp,
        stop_at=timestamp,
        capacity=0,
        leakspeed="0",
        simulated=False,
        events=[],
        scenario_hash="",
        scenario_version="",
        source=LAPICreateSource(scope="ip", value=decision.ip),
        decisions=[
            LAPICreateDecision(
                type=decision.type,
                duration=decision.duration,
                value=decision.ip,
                origin=origin,
                scenario=API_SCENARIO_NAME,
                scope="ip",
            )
        ],
    )


@router.get("", response_model=DecisionListResponse)
async def list_decisions(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    unpaged: bool = Query(False, description="Return every matching decision"),
    type: str | None = Query(None, description="Decision type, e.g. ban"),
    scope: str | None = Query(None, description="Decision scope, e.g. Ip"),
    value: str | None = Query(None, description="Value substring"),
    simulated: bool | None = Query(None),
    scenario: list[str] | None = Query(None, description="Scenario substring, repeatable"),
    ip_address: list[str] | None = Query(None, description="Exact value, repeatable"),
    country: list[str] | None = Query(None, description="Alert source country code, repeatable"),
    ip_owner: list[str] | None = Query(None, description="Alert source AS name substring, repeatable"),
    only_active: bool = Query(False, description="Only decisions that have not expired"),
):
    """List decisions, newest first."""
    stmt = select(Decision).order_by(Decision.crowdsec_created_at.desc(), Decision.id.desc())

    if type:
        stmt = stmt.where(Decision.type == type)
    if scope:
        stmt = stmt.where(Decision.scope == scope)
    if value:
        stmt = stmt.where(Decision.value.like(f"%{value}%"))
    if simulated is not None:
        stmt = stmt.where(Decision.simulated == simulated)
    if only_active:
        stmt = stmt.where(Decision.expiration > datetime.now(UTC))
    if scenario:
        stmt = stmt.where(or_(*(Decision.scenario.like(f"%{s}%") for s in scenario)))
    if ip_address:
        stmt = stmt.where(Decision.value.in_(ip_address))
    if country or ip_owner:
        stmt = stmt.join(Alert, Decision.alert_id == Alert.id)
        if country:
            stmt = stmt.where(func.upper(Alert.source["cn"].as_string()).in_([c.upper() for c in country]))
        if ip_owner:
            stmt = stmt.where(or_(*(Alert.source["as_name"].as_string().ilike(f"%{o}%") for o in ip_owner)))

    decisions, pagination, total = await paginate(db, stmt, limit=limit, offset=offset, unpaged=unpaged)
    return DecisionListResponse(
        items=[DecisionResponse.model_validate(d) for d in decisions],
        pagination=pagination,
        total=total,
    )


@router.get("/active", response_model=ActiveDecisionsResponse)
async def list_active_decisions(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Most recent unexpired decisions."""
    result = await db.execute(
        select(Decision)
        .where(Decision.expiration > datetime.now(UTC))
        .order_by(Decision.created_at.desc(), Decision.id.desc())
        .limit(ACTIVE_DECISIONS_LIMIT)
    )
    decisions = result.scalars().all()
    return ActiveDecisionsResponse(
        items=[DecisionResponse.model_validate(d) for d in decisions],
        count=len(decisions),
    )


@router.get("/stats", response_model=DecisionStatsResponse)
async def get_decision_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Decision totals grouped by type and by scope."""
    by_type = await statistics.count_by_decision_column(db, Decision.type)
    by_scope = await statistics.count_by_decision_column(db, Decision.scope)
    return DecisionStatsResponse(
        total=await statistics.count_decisions(db),
        by_type=[TypeCount(type=item, count=n) for item, n in by_type],
        by_scope=[ScopeCount(scope=item, count=n) for item, n in by_scope],
    )


@router.get("/{decision_id}", response_model=DecisionResponse)
async def get_decision(
    decision_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    decision = await get_or_404(db, Decision, decision_id, "Decision")
    return DecisionResponse.model_validate(decision)


@router.post("", response_model=DecisionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_decision(
    data: DecisionCreate,
    client: Annotated[LAPIClient, Depends(get_lapi_client)],
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
):
    """Create a manual decision in the LAPI, then resync."""
    payload = build_decision_alert(data, origin=settings.CROWDSEC_USER)
    try:
        alert_ids = await client.create_alerts([payload.model_dump(mode="json", exclude_none=True)])
    except LAPIError as e:
        raise upstream_error("Decision", e) from e

    await sync_service.sync_alerts()

    logger.info("Created %s decision for %s (%s)", data.type, data.ip, data.duration)
    return DecisionCreatedResponse(
        message="Decision created successfully",
        alert_ids=alert_ids,
        decision=data,
    )


@router.delete("/{decision_id}", response_model=DecisionDeleteResponse)
async def delete_decision(
    decision_id: int,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[LAPIClient, Depends(get_lapi_client)],
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
):
    """Delete a decision in the LAPI and expire it locally, then resync."""
    try:
        nb_deleted = await client.delete_decision(decision_id)
    except LAPIError as e:
        raise upstream_error("Decision", e) from e

    if nb_deleted == 0:
        raise not_found("Decision", details={"id": decision_id})

    # Expire locally right away; the following pass drops it once the LAPI stops reporting it
    now = datetime.now(UTC)
    await db.execute(
        update(Decision).where(Decision.id == decision_id).values(expiration=now, updated_at=now)
    )
    await db.commit()

    await sync_service.sync_alerts()

    logger.info("Deleted decision %s", decision_id)
    return DecisionDeleteResponse(message="Decision deleted successfully", nb_deleted=nb_deleted)
