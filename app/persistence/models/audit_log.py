"""Audit log model for escalation state transitions."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from app.persistence.database import Base


class EscalationAuditEvent(str, Enum):
    """Types of auditable escalation events."""

    # Lifecycle
    ESCALATION_CREATED = "ESCALATION_CREATED"
    AUTHORITY_NOTIFIED = "AUTHORITY_NOTIFIED"
    AUTHORITY_RESPONSE_RECORDED = "AUTHORITY_RESPONSE_RECORDED"
    DECISION_MADE = "DECISION_MADE"
    ESCALATION_FAILED = "ESCALATION_FAILED"
    ORIGIN_AGENT_RESUMED = "ORIGIN_AGENT_RESUMED"

    # Execution of the resolved decision
    ACTION_EXECUTED = "ACTION_EXECUTED"
    ACTION_FAILED = "ACTION_FAILED"
    ACTION_DENIED = "ACTION_DENIED"


class EscalationAuditLog(Base):
    """Audit trail row: one per escalation state transition.

    No foreign keys, so audit history survives escalation cleanup.
    """

    __tablename__ = "escalation_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    escalation_id = Column(String(64), nullable=False, index=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)

    actor_address = Column(String(255), nullable=True, index=True)
    origin_agent = Column(String(10), nullable=True)
    decision_summary = Column(Text, nullable=True)
    context_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return (
            f"<EscalationAuditLog(id={self.id}, escalation_id={self.escalation_id}, "
            f"event_type={self.event_type})>"
        )
