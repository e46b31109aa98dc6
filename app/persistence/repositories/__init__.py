"""Repository implementations."""

from app.persistence.repositories.audit_log_repository import AuditLogRepository
from app.persistence.repositories.base import BaseRepository
from app.persistence.repositories.escalation_repository import EscalationRepository
from app.persistence.repositories.focus_repository import FocusRepository

__all__ = [
    "BaseRepository",
    "EscalationRepository",
    "FocusRepository",
    "AuditLogRepository",
]
