"""Schemas for the CrowdSec Local API wire format."""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Scenario name this monitor registers with when logging in and when
# creating manual decisions
API_SCENARIO_NAME = "manual/crowdsec-monitor"


def normalize_meta_value(value: Any) -> list[str]:
    """
    Normalize a meta value to a list of strings.

    The LAPI sends meta values either as a plain scalar, as a JSON-encoded
    array inside a string, or as an already decoded array.
    """
    if value is None:
        return []

    if isinstance(value, list):
        return [str(item) for item in value]

    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            try:
                decoded = json.loads(stripped)
            except ValueError:
                return [value]
            if isinstance(decoded, list):
                return [str(item) for item in decoded]
        return [value]

    return [str(value)]


class _LAPIModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LAPILoginResponse(_LAPIModel):
    code: int | None = None
    expire: datetime
    token: str

    @field_validator("expire")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=UTC)


class LAPIMeta(_LAPIModel):
    key: str
    value: list[str] = Field(default_factory=list)

    @field_validator("value", mode="before")
    @classmethod
    def normalize_value(cls, v: Any) -> list[str]:
        return normalize_meta_value(v)


class LAPIEvent(_LAPIModel):
    timestamp: str
    meta: list[LAPIMeta] = Field(default_factory=list)

    @field_validator("meta", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or []


class LAPISource(_LAPIModel):
    scope: str
    value: str
    ip: str | None = None
    range: str | None = None
    as_name: str | None = None
    as_number: str | None = None
    cn: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    @field_validator("as_number", mode="before")
    @classmethod
    def stringify_as_number(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class LAPIDecision(_LAPIModel):
    id: int
    origin: str
    type: str
    scope: str
    value: str
    duration: str
    scenario: str
    simulated: bool = False


class LAPIAlert(_LAPIModel):
    """An alert as returned by ``GET /v1/alerts``."""

    id: int
    uuid: str | None = None
    scenario: str
    scenario_version: str | None = None
    scenario_hash: str | None = None
    message: str = ""
    capacity: int = 0
    leakspeed: str = ""
    simulated: bool = False
    remediation: bool = False
    events_count: int = 0
    machine_id: str = ""
    source: LAPISource
    labels: list[str] | None = None
    meta: list[LAPIMeta] = Field(default_factory=list)
    events: list[LAPIEvent] = Field(default_factory=list)
    # Kept raw so one malformed decision does not reject the whole alert
    decisions: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    start_at: datetime
    stop_at: datetime

    @field_validator("meta", "events", "decisions", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return v or []

    @field_validator("created_at", "start_at", "stop_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=UTC)


# Types for creating alerts (POST /v1/alerts)


class LAPICreateDecision(_LAPIModel):
    type: str
    duration: str
    value: str
    origin: str
    scenario: str
    scope: str
    simulated: bool = False


class LAPICreateSource(_LAPIModel):
    scope: str
    value: str
    ip: str | None = None
    range: str | None = None


class LAPICreateAlert(_LAPIModel):
    scenario: str
    campaign_name: str | None = None
    message: str
    events_count: int
    start_at: str
    stop_at: str
    capacity: int
    leakspeed: str
    simulated: bool
    events: list[LAPIEvent] = Field(default_factory=list)
    scenario_hash: str
    scenario_version: str
    source: LAPICreateSource
    decisions: list[LAPICreateDecision] = Field(default_factory=list)
