"""API schemas package."""

from app.api.schemas.escalation import (
    DispatchRequest,
    DispatchResponse,
    EscalationCreate,
    EscalationResponse,
    RoundCreate,
    RoundResponse,
)

__all__ = [
    "DispatchRequest",
    "DispatchResponse",
    "EscalationCreate",
    "EscalationResponse",
    "RoundCreate",
    "RoundResponse",
]
