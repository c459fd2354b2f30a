"""Release check against the project's latest GitHub release."""

import logging
from datetime import UTC, datetime

import httpx

logger = logging.getLogger(__name__)

GITHUB_RELEASES_URL = "https://api.github.com/repos/JGeek00/crowdsec-monitor-api/releases/latest"


def _version_parts(version: str) -> list[int]:
    parts = [int(x) for x in version.lstrip("v").split("-")[0].split(".")]
    while len(parts) < 3:
        parts.append(0)
    return parts


def is_newer(latest: str, current: str) -> bool:
    """True when ``latest`` is a higher release than ``current``.

    Falls back to plain inequality for tags that are not dotted numbers.
    """
    latest = latest.lstrip("v")
    current = current.lstrip("v")
    if not latest or latest == current:
        return False
    try:
        return _version_parts(latest) > _version_parts(current)
    except ValueError:
        return True


class VersionChecker:
    """Remembers the newest release tag when it is ahead of the running version."""

    def __init__(
        self,
        current_version: str,
        url: str = GITHUB_RELEASES_URL,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.current_version = current_version
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self.latest_version: str | None = None
        self.last_checked_at: datetime | None = None

    async def check(self) -> str | None:
        """Query the latest release. Failures are logged and keep the previous result."""
        logger.debug("Checking for a new release at %s", self.url)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.get(
                    self.url,
                    headers={
                        "Accept": "application/vnd.github.v3+json",
                        "User-Agent": "crowdsec-monitor",
                    },
                )
                response.raise_for_status()
                tag = str(response.json().get("tag_name", ""))
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Version check failed: %s", e)
            return self.latest_version

        self.last_checked_at = datetime.now(UTC)
        if is_newer(tag, self.current_version):
            self.latest_version = tag
            logger.info("New version available: %s (current: %s)", tag, self.current_version)
        else:
            self.latest_version = None
            logger.info("Version up to date: %s", self.current_version)
        return self.latest_version
