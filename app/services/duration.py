"""
Duration helpers for CrowdSec time strings.

CrowdSec serializes durations the Go way ("4h", "2h30m", "1.5h",
"3h59m58.123s"). Retention periods use a stricter, coarser grammar
("30d", "3w", "2m", "1y").
"""
import logging
import re
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)

_DURATION_TOKEN = re.compile(r"(-?[\d.]+)([a-zµμ]+)", re.IGNORECASE)
_RETENTION_PATTERN = re.compile(r"^(\d+)(d|w|m|y)$", re.IGNORECASE)

_MS_PER_SECOND = 1000
_MS_PER_MINUTE = 60 * _MS_PER_SECOND
_MS_PER_HOUR = 60 * _MS_PER_MINUTE
_MS_PER_DAY = 24 * _MS_PER_HOUR

# Milliseconds per unit
DURATION_UNITS = {
    "ns": 1 / 1_000_000,
    "us": 1 / 1000,
    "µs": 1 / 1000,  # micro sign
    "μs": 1 / 1000,  # greek mu
    "ms": 1,
    "s": _MS_PER_SECOND,
    "m": _MS_PER_MINUTE,
    "h": _MS_PER_HOUR,
    "d": _MS_PER_DAY,
    "w": 7 * _MS_PER_DAY,
}

# Months and years are approximated as 30 and 365 days
RETENTION_UNITS = {
    "d": _MS_PER_DAY,
    "w": 7 * _MS_PER_DAY,
    "m": 30 * _MS_PER_DAY,
    "y": 365 * _MS_PER_DAY,
}


def parse_duration(duration: str) -> int:
    """
    Convert a CrowdSec duration string to milliseconds.

    Every ``<number><unit>`` token is summed, so "2h30m" equals "150m".
    Numbers may be fractional or negative. Unknown units are logged and
    skipped. Empty or non-string input gives 0.
    """
    if not duration or not isinstance(duration, str):
        return 0

    total_ms = 0.0
    for match in _DURATION_TOKEN.finditer(duration):
        raw_value, unit = match.groups()
        unit = unit.lower()
        try:
            value = float(raw_value)
        except ValueError:
            logger.warning("Invalid duration number %r in %r", raw_value, duration)
            continue

        factor = DURATION_UNITS.get(unit)
        if factor is None:
            logger.warning("Unknown duration unit: %s", unit)
            continue
        total_ms += value * factor

    return round(total_ms)


def calculate_expiration(duration: str, base: datetime | None = None) -> datetime:
    """Return ``base`` (default: now) shifted by the given duration."""
    if base is None:
        base = datetime.now(UTC)
    return base + timedelta(milliseconds=parse_duration(duration))


def parse_retention_period(retention: str | None) -> int | None:
    """
    Convert a retention period ("1d", "3w", "2m", "1y") to milliseconds.

    Returns None when retention is unset or malformed; malformed values are
    logged so a typo disables cleanup instead of stopping the service.
    """
    if not retention or not isinstance(retention, str):
        return None

    match = _RETENTION_PATTERN.match(retention.strip())
    if not match:
        logger.warning(
            "Invalid retention period format: %s. Expected format: <number><unit> (e.g., 1d, 3w, 2m, 1y)",
            retention,
        )
        return None

    value, unit = match.groups()
    return int(value) * RETENTION_UNITS[unit.lower()]


def calculate_retention_cutoff(retention: str | None, now: datetime | None = None) -> datetime | None:
    """Return the instant before which local data should be deleted, if any."""
    retention_ms = parse_retention_period(retention)
    if retention_ms is None:
        return None

    if now is None:
        now = datetime.now(UTC)
    return now - timedelta(milliseconds=retention_ms)
