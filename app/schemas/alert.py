"""Alert schemas for API responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.schemas.decision import DecisionResponse, Pagination


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str | None = None
    scenario: str
    scenario_version: str | None = None
    scenario_hash: str | None = None
    message: str
    capacity: int
    leakspeed: str
    simulated: bool
    remediation: bool
    events_count: int
    machine_id: str
    source: dict[str, Any]
    labels: list[str] | None = None
    meta: list[dict[str, Any]]
    events: list[dict[str, Any]]
    crowdsec_created_at: datetime
    start_at: datetime
    stop_at: datetime


class AlertDetailResponse(AlertResponse):
    """Alert with its decisions and local bookkeeping timestamps."""

    decisions: list[DecisionResponse] = []
    created_at: datetime
    updated_at: datetime


class AlertListResponse(BaseModel):
    items: list[AlertResponse]
    # Set when paginated
    pagination: Pagination | None = None
    total: int


class AlertDeleteResponse(BaseModel):
    message: str
    nb_deleted: int
