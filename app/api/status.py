"""Health and status endpoints."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_lapi_client, get_sync_service, get_version_checker, require_api_password
from app.core.config import APP_VERSION
from app.services.lapi_client import LAPIClient
from app.services.sync import SyncService
from app.services.version_check import VersionChecker

router = APIRouter(tags=["status"])


class HealthResponse(BaseModel):
    message: str
    timestamp: datetime


class LAPIStatus(BaseModel):
    lapi_connected: bool
    last_successful_sync: datetime | None = None
    timestamp: datetime


class MonitorStatus(BaseModel):
    version: str
    # Latest release tag when it is newer than the running version
    new_version_available: str | None = None


class StatusResponse(BaseModel):
    crowdsec: LAPIStatus
    monitor: MonitorStatus


@router.get("/health", response_model=HealthResponse)
async def health():
    """Liveness probe. Does not touch the LAPI or the database."""
    return HealthResponse(message="API is running", timestamp=datetime.now(UTC))


@router.get("/status", response_model=StatusResponse, dependencies=[Depends(require_api_password)])
async def get_status(
    client: Annotated[LAPIClient, Depends(get_lapi_client)],
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
    version_checker: Annotated[VersionChecker | None, Depends(get_version_checker)],
):
    """LAPI reachability, the time of the last successful sync pass and release info."""
    return StatusResponse(
        crowdsec=LAPIStatus(
            lapi_connected=await client.check_status(),
            last_successful_sync=sync_service.get_last_successful_sync(),
            timestamp=datetime.now(UTC),
        ),
        monitor=MonitorStatus(
            version=APP_VERSION,
            new_version_available=version_checker.latest_version if version_checker else None,
        ),
    )
