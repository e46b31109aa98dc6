"""Database models."""

from app.persistence.models.audit_log import EscalationAuditEvent, EscalationAuditLog
from app.persistence.models.authority_focus import AuthorityFocus
from app.persistence.models.escalation import (
    Escalation,
    EscalationPriority,
    EscalationRound,
    EscalationState,
    ExecutionStatus,
    RoundType,
)
from app.persistence.models.tenant import Tenant, User

__all__ = [
    "Tenant",
    "User",
    "Escalation",
    "EscalationRound",
    "EscalationState",
    "EscalationPriority",
    "ExecutionStatus",
    "RoundType",
    "AuthorityFocus",
    "EscalationAuditLog",
    "EscalationAuditEvent",
]
