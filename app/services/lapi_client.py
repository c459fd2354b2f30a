"""CrowdSec Local API client."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from app.core.exceptions import (
    LAPIConnectionError,
    LAPIError,
    LAPIRequestError,
    LAPIResponseError,
)
from app.schemas.lapi import API_SCENARIO_NAME, LAPILoginResponse

logger = logging.getLogger(__name__)

# Tokens closer than this to expiry are renewed before use
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)

# Alerts with larger scopes (CAPI community blocklists) are huge and not
# relevant for a local monitor
ALERT_SCOPES = ("Ip", "Range")


@dataclass
class TokenState:
    """Bearer token issued by the LAPI and its expiry."""

    token: str | None = None
    expires_at: datetime | None = None

    def is_valid(self, now: datetime | None = None) -> bool:
        if not self.token or not self.expires_at:
            return False
        now = now or datetime.now(UTC)
        return self.expires_at > now + TOKEN_REFRESH_MARGIN

    def clear(self) -> None:
        self.token = None
        self.expires_at = None


class LAPIClient:
    """Client for the CrowdSec Local API, authenticated as a watcher machine."""

    def __init__(
        self,
        base_url: str,
        machine_id: str,
        password: str,
        timeout: float = 10.0,
        status_timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the LAPI client.

        Args:
            base_url: LAPI base URL, e.g. http://localhost:8080.
            machine_id: Watcher machine id used to log in.
            password: Watcher password.
            timeout: Default request timeout in seconds.
            status_timeout: Timeout for the lightweight status probe.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.machine_id = machine_id
        self.password = password
        self.timeout = timeout
        self.status_timeout = status_timeout
        self.token_state = TokenState()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    # Authentication

    async def login(self, log_errors: bool = True, timeout: float | None = None) -> bool:
        """Log in to the LAPI and store the bearer token.

        Args:
            log_errors: Log failures at error level instead of debug.
            timeout: Overrides the client timeout for this request.

        Returns:
            True when a token was obtained, False otherwise. Never raises.
        """
        action = "authenticating"
        try:
            logger.debug("Authenticating with CrowdSec LAPI as %s", self.machine_id)
            response = await self._client.post(
                "/v1/watchers/login",
                json={
                    "machine_id": self.machine_id,
                    "password": self.password,
                    "scenarios": [API_SCENARIO_NAME],
                },
                **_timeout_kwargs(timeout),
            )
            response.raise_for_status()
            login = LAPILoginResponse.model_validate(response.json())
        except ValidationError as e:
            self.token_state.clear()
            if log_errors:
                logger.error("Authentication failed: unexpected login response (%s)", e)
            return False
        except (httpx.HTTPError, ValueError) as e:
            self.token_state.clear()
            self._to_lapi_error(e, action, log_errors=log_errors)
            return False

        self.token_state.token = login.token
        self.token_state.expires_at = login.expire
        logger.info("Authenticated with CrowdSec LAPI, token expires at %s", login.expire.isoformat())
        return True

    async def ensure_authenticated(self, log_errors: bool = True, timeout: float | None = None) -> bool:
        """Make sure a token with more than five minutes left is available."""
        if self.token_state.is_valid():
            return True

        logger.debug("Token expired or not available, re-authenticating")
        return await self.login(log_errors=log_errors, timeout=timeout)

    async def _auth_headers(
        self, action: str, log_errors: bool = True, timeout: float | None = None
    ) -> dict[str, str]:
        await self.ensure_authenticated(log_errors=log_errors, timeout=timeout)
        if not self.token_state.token:
            raise LAPIRequestError(action, "Authentication failed: no token available")
        return {"Authorization": f"Bearer {self.token_state.token}"}

    # Requests

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        log_errors: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send an authenticated request and return the successful response.

        Raises:
            LAPIError: Any failure, classified and logged with ``action``.
        """
        try:
            headers = await self._auth_headers(action, log_errors=log_errors, timeout=kwargs.get("timeout"))
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
            return response
        except LAPIError as e:
            if log_errors:
                logger.error("Error setting up request when %s: %s", action, e.message)
            raise
        except httpx.HTTPError as e:
            raise self._to_lapi_error(e, action, log_errors=log_errors) from e

    def _to_lapi_error(self, exc: Exception, action: str, log_errors: bool = True) -> LAPIError:
        """Classify an httpx failure and log it with the attempted action."""
        log = logger.error if log_errors else logger.debug

        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            if response.status_code == 401:
                # Force a fresh login on the next call
                self.token_state.clear()
            log("Error %s: %s - %s", action, response.status_code, body)
            return LAPIResponseError(action, response.status_code, body)

        if isinstance(exc, httpx.TransportError):
            log("No response received when %s: %s", action, exc)
            return LAPIConnectionError(action, str(exc) or exc.__class__.__name__)

        log("Error setting up request when %s: %s", action, exc)
        return LAPIRequestError(action, str(exc))

    # Alerts

    def _alert_query(
        self,
        since: str | None = None,
        until: str | None = None,
        has_active_decision: bool | None = None,
    ) -> list[tuple[str, str]]:
        params = [("scope", scope) for scope in ALERT_SCOPES]
        if since:
            params.append(("since", since))
        if until:
            params.append(("until", until))
        if has_active_decision is not None:
            params.append(("has_active_decision", str(has_active_decision).lower()))
        return params

    async def fetch_alerts(
        self,
        since: str | None = None,
        until: str | None = None,
        has_active_decision: bool | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch Ip and Range scoped alerts, raising on failure.

        Args:
            since: Relative duration, e.g. "1h".
            until: Relative duration, e.g. "30m".
            has_active_decision: Only alerts with (or without) active decisions.

        Raises:
            LAPIError: The alerts could not be fetched.
        """
        action = "fetching alerts"
        response = await self._request(
            "GET",
            "/v1/alerts",
            action,
            params=self._alert_query(since, until, has_active_decision),
        )
        try:
            data = response.json()
        except ValueError as e:
            logger.error("Error %s: response is not JSON", action)
            raise LAPIRequestError(action, "response is not JSON") from e
        return data or []

    async def get_alerts(
        self,
        since: str | None = None,
        until: str | None = None,
        has_active_decision: bool | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch alerts, returning an empty list on any failure."""
        try:
            return await self.fetch_alerts(since, until, has_active_decision)
        except LAPIError:
            return []

    async def get_alert_by_id(self, alert_id: int) -> dict[str, Any] | None:
        """Fetch one alert, or None if it cannot be retrieved."""
        try:
            response = await self._request("GET", f"/v1/alerts/{alert_id}", f"fetching alert {alert_id}")
            return response.json()
        except (LAPIError, ValueError):
            return None

    async def get_decisions_from_alerts(
        self,
        since: str | None = None,
        until: str | None = None,
    ) -> list[dict[str, Any]]:
        """Collect decisions embedded in alerts that still have active decisions.

        The LAPI has no watcher-facing decisions listing; decisions only come
        embedded in alerts.
        """
        alerts = await self.get_alerts(since=since, until=until, has_active_decision=True)
        decisions: list[dict[str, Any]] = []
        for alert in alerts:
            decisions.extend(alert.get("decisions") or [])
        return decisions

    async def create_alerts(self, alerts: list[dict[str, Any]]) -> list[str]:
        """Create alerts (with their decisions) in the LAPI.

        Returns:
            Ids of the created alerts.

        Raises:
            LAPIError: Creation failed.
        """
        response = await self._request("POST", "/v1/alerts", "creating alerts", json=alerts)
        return [str(alert_id) for alert_id in response.json() or []]

    async def delete_alert(self, alert_id: int) -> int:
        """Delete an alert in the LAPI, returning the number of deleted alerts.

        Raises:
            LAPIError: Deletion failed.
        """
        response = await self._request("DELETE", f"/v1/alerts/{alert_id}", f"deleting alert {alert_id}")
        return _nb_deleted(response)

    async def delete_decision(self, decision_id: int) -> int:
        """Delete a decision in the LAPI, returning the number of deleted decisions.

        Raises:
            LAPIError: Deletion failed.
        """
        response = await self._request(
            "DELETE", f"/v1/decisions/{decision_id}", f"deleting decision {decision_id}"
        )
        return _nb_deleted(response)

    # Status

    async def check_status(self) -> bool:
        """Lightweight reachability probe for status endpoints.

        Reuses the current token when possible and only logs at debug level,
        since this is polled and failures are expected while the LAPI is down.
        """
        try:
            await self._request(
                "GET",
                "/v1/alerts",
                "checking LAPI status",
                log_errors=False,
                params=[("scope", ALERT_SCOPES[0]), ("limit", "1")],
                timeout=self.status_timeout,
            )
            return True
        except LAPIError:
            return False

    async def test_connection(self) -> bool:
        """Log in from scratch and run a query; used once at startup."""
        if not await self.login():
            return False
        try:
            await self.fetch_alerts()
            return True
        except LAPIError:
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _nb_deleted(response: httpx.Response) -> int:
    try:
        data = response.json()
    except ValueError:
        return 0
    if not isinstance(data, dict):
        return 0
    try:
        return int(data.get("nbDeleted", 0))
    except (TypeError, ValueError):
        return 0


def _timeout_kwargs(timeout: float | None) -> dict[str, Any]:
    # httpx reads an explicit None as "no timeout"; omit it to keep the client default
    return {} if timeout is None else {"timeout": timeout}
