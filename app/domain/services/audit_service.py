"""Audit logging service for escalation state transitions."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.audit_log import EscalationAuditEvent
from app.persistence.models.escalation import Escalation
from app.persistence.repositories.audit_log_repository import AuditLogRepository

logger = logging.getLogger(__name__)


class EscalationAuditService:
    """Service for creating escalation audit entries.

    Audit writes are fire-and-forget: a failure is logged and the session
    rolled back, but never raised into the state transition that caused it.

    Usage:
        audit = EscalationAuditService(db)
        await audit.log_created(escalation)
        await audit.log_decision(escalation, responder_address)
    """

    def __init__(self, session: AsyncSession):
        """Initialize audit service."""
        self.session = session
        self.repo = AuditLogRepository(session)

    async def log(
        self,
        event_type: EscalationAuditEvent,
        escalation_id: str,
        tenant_id: int,
        actor_address: str | None = None,
        origin_agent: str | None = None,
        decision_summary: str | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> None:
        """Create an audit log entry.

        Args:
            event_type: The transition being logged
            escalation_id: Escalation the event belongs to
            tenant_id: Owning tenant
            actor_address: Contact address of whoever caused the event
            origin_agent: Agent that raised the escalation
            decision_summary: Short human-readable summary
            context_data: Additional event details
        """
        try:
            await self.repo.create(
                escalation_id=escalation_id,
                tenant_id=tenant_id,
                event_type=event_type,
                actor_address=actor_address,
                origin_agent=origin_agent,
                decision_summary=decision_summary,
                context_data=context_data,
            )
        except Exception as e:
            # Don't let audit logging failures break the transition
            logger.error(
                f"Failed to create escalation audit log: {e}",
                extra={"escalation_id": escalation_id, "event_type": event_type.value},
            )
            await self.session.rollback()

    async def log_created(self, escalation: Escalation) -> None:
        await self.log(
            EscalationAuditEvent.ESCALATION_CREATED,
            escalation_id=escalation.id,
            tenant_id=escalation.tenant_id,
            actor_address=escalation.from_address,
            origin_agent=escalation.origin_agent,
            decision_summary=escalation.reason,
            context_data={
                "escalation_type": escalation.escalation_type,
                "priority": escalation.priority,
                "what_agent_needed": escalation.what_agent_needed,
            },
        )

    async def log_round(
        self,
        escalation: Escalation,
        round_number: int,
        round_type: str,
        responder_address: str | None,
    ) -> None:
        """Log a recorded round; a decision round is logged as DECISION_MADE."""
        event = (
            EscalationAuditEvent.DECISION_MADE
            if escalation.state == "RESOLVED"
            else EscalationAuditEvent.AUTHORITY_RESPONSE_RECORDED
        )
        await self.log(
            event,
            escalation_id=escalation.id,
            tenant_id=escalation.tenant_id,
            actor_address=responder_address,
            origin_agent=escalation.origin_agent,
            decision_summary=escalation.decision if event is EscalationAuditEvent.DECISION_MADE else None,
            context_data={
                "round_number": round_number,
                "round_type": round_type,
                "state": escalation.state,
            },
        )

    async def log_failed(self, escalation: Escalation, reason: str) -> None:
        await self.log(
            EscalationAuditEvent.ESCALATION_FAILED,
            escalation_id=escalation.id,
            tenant_id=escalation.tenant_id,
            origin_agent=escalation.origin_agent,
            decision_summary=reason,
        )

    async def log_resumed(self, escalation: Escalation) -> None:
        await self.log(
            EscalationAuditEvent.ORIGIN_AGENT_RESUMED,
            escalation_id=escalation.id,
            tenant_id=escalation.tenant_id,
            actor_address=escalation.from_address,
            origin_agent=escalation.origin_agent,
            context_data={"resume_marker": escalation.resume_marker},
        )

    async def log_notified(self, escalation_id: str, tenant_id: int, authority_address: str) -> None:
        await self.log(
            EscalationAuditEvent.AUTHORITY_NOTIFIED,
            escalation_id=escalation_id,
            tenant_id=tenant_id,
            actor_address=authority_address,
        )

    async def log_execution(
        self,
        event_type: EscalationAuditEvent,
        escalation: Escalation,
        authority_address: str | None,
        action: str | None,
        summary: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log the outcome of executing a resolved decision."""
        context_data = {"action": action}
        if details:
            context_data.update(details)
        await self.log(
            event_type,
            escalation_id=escalation.id,
            tenant_id=escalation.tenant_id,
            actor_address=authority_address,
            origin_agent=escalation.origin_agent,
            decision_summary=summary,
            context_data=context_data,
        )
