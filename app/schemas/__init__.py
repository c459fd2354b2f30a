from app.schemas.alert import AlertDeleteResponse, AlertDetailResponse, AlertListResponse, AlertResponse
from app.schemas.decision import (
    ActiveDecisionsResponse,
    DecisionCreate,
    DecisionCreatedResponse,
    DecisionDeleteResponse,
    DecisionListResponse,
    DecisionResponse,
    Pagination,
)

__all__ = [
    "ActiveDecisionsResponse",
    "AlertDeleteResponse",
    "AlertDetailResponse",
    "AlertListResponse",
    "AlertResponse",
    "DecisionCreate",
    "DecisionCreatedResponse",
    "DecisionDeleteResponse",
    "DecisionListResponse",
    "DecisionResponse",
    "Pagination",
]
