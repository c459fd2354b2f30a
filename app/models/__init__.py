from app.models.alert import Alert
from app.models.decision import Decision

__all__ = [
    "Alert",
    "Decision",
]
