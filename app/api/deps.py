import secrets
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.errors import unauthorized
from app.db.session import get_db
from app.services.lapi_client import LAPIClient
from app.services.sync import SyncService
from app.services.version_check import VersionChecker

__all__ = ["get_db", "get_lapi_client", "get_sync_service", "get_version_checker", "require_api_password"]

# auto_error=False: authentication is only enforced when API_PASSWORD is set
security = HTTPBearer(auto_error=False)


async def require_api_password(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> None:
    """
    Optional bearer authentication.

    When API_PASSWORD is configured, requests must carry
    ``Authorization: Bearer <API_PASSWORD>``. Otherwise every request passes.
    """
    if not settings.API_PASSWORD:
        return

    if credentials is None:
        raise unauthorized("Authorization header is required")

    if not secrets.compare_digest(credentials.credentials, settings.API_PASSWORD):
        raise unauthorized("Invalid credentials")


def get_lapi_client(request: Request) -> LAPIClient:
    return request.app.state.lapi_client


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_version_checker(request: Request) -> VersionChecker | None:
    return getattr(request.app.state, "version_checker", None)
