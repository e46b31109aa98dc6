"""Escalation audit log repository."""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.audit_log import EscalationAuditEvent, EscalationAuditLog


class AuditLogRepository:
    """Repository for escalation audit log operations.

    Note: This repository intentionally does NOT extend BaseRepository;
    the audit trail is read per escalation as well as per tenant.
    """

    def __init__(self, session: AsyncSession):
        """Initialize audit log repository."""
        self.session = session

    async def create(
        self,
        escalation_id: str,
        tenant_id: int,
        event_type: str | EscalationAuditEvent,
        actor_address: str | None = None,
        origin_agent: str | None = None,
        decision_summary: str | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> EscalationAuditLog:
        """Create a new audit log entry.

        Args:
            escalation_id: Escalation the event belongs to
            tenant_id: Owning tenant (school)
            event_type: EscalationAuditEvent or its string value
            actor_address: Contact address of whoever caused the event
            origin_agent: Agent that raised the escalation
            decision_summary: Short human-readable summary
            context_data: Additional event details as JSON

        Returns:
            The created EscalationAuditLog entry
        """
        event_str = event_type.value if isinstance(event_type, EscalationAuditEvent) else event_type

        audit_log = EscalationAuditLog(
            escalation_id=escalation_id,
            tenant_id=tenant_id,
            event_type=event_str,
            actor_address=actor_address,
            origin_agent=origin_agent,
            decision_summary=decision_summary,
            context_data=context_data,
        )

        self.session.add(audit_log)
        await self.session.commit()
        await self.session.refresh(audit_log)
        return audit_log

    async def list_for_escalation(self, escalation_id: str) -> list[EscalationAuditLog]:
        """Audit trail of one escalation, oldest first."""
        stmt = (
            select(EscalationAuditLog)
            .where(EscalationAuditLog.escalation_id == escalation_id)
            .order_by(EscalationAuditLog.created_at.asc(), EscalationAuditLog.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_tenant(
        self,
        tenant_id: int,
        skip: int = 0,
        limit: int = 100,
        event_type: str | None = None,
        start_date: datetime | None = None,
    ) -> list[EscalationAuditLog]:
        """List audit events for a tenant, newest first."""
        stmt = select(EscalationAuditLog).where(EscalationAuditLog.tenant_id == tenant_id)

        if event_type:
            stmt = stmt.where(EscalationAuditLog.event_type == event_type)
        if start_date:
            stmt = stmt.where(EscalationAuditLog.created_at >= start_date)

        stmt = stmt.order_by(EscalationAuditLog.created_at.desc()).offset(skip).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())
