"""Escalation models: paused decisions awaiting a human authority."""

import uuid
from datetime import datetime
from enum import Enum
from time import time
from typing import TYPE_CHECKING

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.persistence.database import Base

if TYPE_CHECKING:
    from app.persistence.models.tenant import Tenant


class EscalationState(str, Enum):
    """Lifecycle states of an escalation."""

    PAUSED = "PAUSED"
    AWAITING_CLARIFICATION = "AWAITING_CLARIFICATION"
    IN_AUTHORITY = "IN_AUTHORITY"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (EscalationState.RESOLVED, EscalationState.FAILED)


# States shown to the authority as waiting for attention
PENDING_STATES = (EscalationState.PAUSED, EscalationState.AWAITING_CLARIFICATION)
TERMINAL_STATES = (EscalationState.RESOLVED, EscalationState.FAILED)


class EscalationPriority(str, Enum):
    """Ordered escalation priority (CRITICAL is most urgent)."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Sort rank; lower is served first."""
        return PRIORITY_RANK.get(self.value, DEFAULT_PRIORITY_RANK)

    @classmethod
    def normalize(cls, value: "str | EscalationPriority | None", default: str = "MEDIUM") -> "EscalationPriority":
        """Normalize a free-form priority string at ingestion.

        Raises:
            ValueError: If the value is not a known priority
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            value = default
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


PRIORITY_RANK = {"CRITICAL": 1, "HIGH": 2, "MEDIUM": 3}
DEFAULT_PRIORITY_RANK = 4


class RoundType(str, Enum):
    """Kind of authority exchange recorded in a round."""

    CLARIFICATION_REQUEST = "CLARIFICATION_REQUEST"
    NEEDS_DECISION = "NEEDS_DECISION"
    DECISION_MADE = "DECISION_MADE"

    @property
    def resulting_state(self) -> EscalationState:
        if self is RoundType.CLARIFICATION_REQUEST:
            return EscalationState.AWAITING_CLARIFICATION
        if self is RoundType.DECISION_MADE:
            return EscalationState.RESOLVED
        return EscalationState.IN_AUTHORITY


class ExecutionStatus(str, Enum):
    """Whether the resolved decision has been carried out."""

    NOT_EXECUTED = "NOT_EXECUTED"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"


def generate_escalation_id() -> str:
    """Generate a new escalation ID, e.g. ``ESC-1718000000000-1a2b3c4d``."""
    return f"ESC-{int(time() * 1000)}-{uuid.uuid4().hex[:8]}"


class Escalation(Base):
    """A paused decision awaiting a human authority."""

    __tablename__ = "escalations"

    id = Column(String(64), primary_key=True, default=generate_escalation_id)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)

    # Who asked and from where
    origin_agent = Column(String(10), nullable=False)  # PA, TA, GA
    escalation_type = Column(String(100), nullable=False, index=True)
    priority = Column(String(20), nullable=False, default=EscalationPriority.MEDIUM.value, index=True)
    from_address = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=False, index=True)
    pause_message_id = Column(String(255), nullable=False)
    user_name = Column(String(255), nullable=True)
    user_role = Column(String(50), nullable=True)

    # Why authority is needed
    reason = Column(Text, nullable=False)
    what_agent_needed = Column(Text, nullable=False)
    context = Column(JSON, nullable=False, default=dict)  # Canonical identifiers for resolution
    conversation_summary = Column(Text, nullable=True)

    # Optional class scoping
    class_level = Column(String(50), nullable=True)
    subject = Column(String(100), nullable=True)
    term_id = Column(String(50), nullable=True)

    # Lifecycle
    state = Column(String(30), nullable=False, default=EscalationState.PAUSED.value, index=True)
    round_number = Column(Integer, nullable=False, default=0)

    # Decision (populated on resolution only)
    decision = Column(String(50), nullable=True)
    instruction = Column(Text, nullable=True)
    resolved_by = Column(String(255), nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    # Resumption of the originating flow
    resumed_at = Column(DateTime, nullable=True)
    resume_marker = Column(String(255), nullable=True)

    failure_reason = Column(Text, nullable=True)

    # Execution of the resolved decision
    execution_status = Column(String(20), nullable=False, default=ExecutionStatus.NOT_EXECUTED.value)
    executed_action = Column(String(100), nullable=True)
    execution_summary = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="escalations")
    rounds = relationship(
        "EscalationRound",
        back_populates="escalation",
        order_by="EscalationRound.round_number",
        cascade="all, delete-orphan",
    )

    @property
    def is_terminal(self) -> bool:
        return EscalationState(self.state).is_terminal

    @property
    def is_pending(self) -> bool:
        return self.state in PENDING_STATES

    def __repr__(self) -> str:
        return (
            f"<Escalation(id={self.id}, tenant_id={self.tenant_id}, "
            f"type={self.escalation_type}, state={self.state}, priority={self.priority})>"
        )


class EscalationRound(Base):
    """One authority exchange within an escalation. Append-only."""

    __tablename__ = "escalation_rounds"
    __table_args__ = (
        UniqueConstraint("escalation_id", "round_number", name="uq_escalation_round_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    escalation_id = Column(String(64), ForeignKey("escalations.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    round_type = Column(String(30), nullable=False)

    authority_request = Column(Text, nullable=True)
    authority_response = Column(Text, nullable=True)
    decision = Column(String(50), nullable=True)  # APPROVE, REJECT, ... (DECISION_MADE only)
    instruction = Column(Text, nullable=True)  # Instruction for the resuming agent
    responder_address = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    escalation = relationship("Escalation", back_populates="rounds")

    def __repr__(self) -> str:
        return (
            f"<EscalationRound(escalation_id={self.escalation_id}, "
            f"round_number={self.round_number}, type={self.round_type})>"
        )
