"""Statistics schemas for API responses."""

from pydantic import BaseModel


class ActivityDay(BaseModel):
    date: str
    amount_alerts: int
    amount_decisions: int


class CountryAmount(BaseModel):
    country_code: str
    amount: int


class ScenarioAmount(BaseModel):
    scenario: str
    amount: int


class IpOwnerAmount(BaseModel):
    ip_owner: str
    amount: int


class TargetAmount(BaseModel):
    target: str
    amount: int


class DayAmount(BaseModel):
    date: str
    amount: int


class StatisticsResponse(BaseModel):
    """Dashboard overview."""

    alerts_last_24_hours: int
    active_decisions: int
    activity_history: list[ActivityDay]
    top_countries: list[CountryAmount]
    top_scenarios: list[ScenarioAmount]
    top_ip_owners: list[IpOwnerAmount]
    top_targets: list[TargetAmount]


# /alerts/stats and /decisions/stats


class ScenarioCount(BaseModel):
    scenario: str
    count: int


class CountryCount(BaseModel):
    country: str
    count: int


class OrganizationCount(BaseModel):
    organization: str
    count: int


class AlertStatsResponse(BaseModel):
    total: int
    simulated: int
    real: int
    top_scenarios: list[ScenarioCount]
    top_countries: list[CountryCount]
    top_organizations: list[OrganizationCount]


class TypeCount(BaseModel):
    type: str
    count: int


class ScopeCount(BaseModel):
    scope: str
    count: int


class DecisionStatsResponse(BaseModel):
    total: int
    by_type: list[TypeCount]
    by_scope: list[ScopeCount]
