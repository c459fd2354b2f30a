"""Decision schemas for API requests and responses."""

import ipaddress
import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DURATION_PATTERN = re.compile(r"^(-?\d+(\.\d+)?(d|h|m))+$")
REASON_PATTERN = re.compile(r"^[a-zA-Z0-9., ]+$")

DecisionType = Literal["ban", "captcha", "throttle", "allow"]


class DecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    alert_id: int
    origin: str
    type: str
    scope: str
    value: str
    duration: str
    scenario: str
    simulated: bool
    expiration: datetime
    crowdsec_created_at: datetime


class Pagination(BaseModel):
    page: int
    amount: int
    total: int


class DecisionListResponse(BaseModel):
    items: list[DecisionResponse]
    # Set when paginated
    pagination: Pagination | None = None
    total: int


class ActiveDecisionsResponse(BaseModel):
    items: list[DecisionResponse]
    count: int


class DecisionCreate(BaseModel):
    """A manual decision against a single IP."""

    ip: str = Field(..., description="IPv4 or IPv6 address")
    duration: str = Field(..., description="e.g. 15m, 4h, 1d, 1d4h15m")
    reason: str = Field(..., min_length=1, max_length=1000)
    type: DecisionType

    @field_validator("ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        try:
            return str(ipaddress.ip_address(v.strip()))
        except ValueError:
            raise ValueError("ip must be a valid IPv4 or IPv6 address")

    @field_validator("duration")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        if not DURATION_PATTERN.match(v):
            raise ValueError(
                "duration must be in format: days(d), hours(h), minutes(m) (e.g., 15m, 4h, 1d, 1d4h15m, 4h15m)"
            )
        return v

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        if not REASON_PATTERN.match(v):
            raise ValueError("reason must contain only letters, numbers, spaces, dots and commas")
        return v


class DecisionCreatedResponse(BaseModel):
    message: str
    alert_ids: list[str]
    decision: DecisionCreate


class DecisionDeleteResponse(BaseModel):
    message: str
    nb_deleted: int
