"""Authority focus model: which escalation an authority is attending to."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.persistence.database import Base


class AuthorityFocus(Base):
    """Advisory pointer from an authority's contact address to one escalation.

    Rows are never deleted; unlocking clears ``locked_escalation_id``.
    """

    __tablename__ = "authority_focus"

    authority_address = Column(String(255), primary_key=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    locked_escalation_id = Column(
        String(64), ForeignKey("escalations.id"), nullable=True, index=True
    )
    last_interaction_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    escalation = relationship("Escalation", foreign_keys=[locked_escalation_id])

    def __repr__(self) -> str:
        return (
            f"<AuthorityFocus(authority_address={self.authority_address}, "
            f"locked_escalation_id={self.locked_escalation_id})>"
        )
