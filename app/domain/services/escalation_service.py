"""Escalation service: the pause / handoff / resume protocol.

An originating agent that lacks authority pauses its turn by creating an
escalation. The authority fetches it with a situational brief, answers in
one or more rounds, and a DECISION_MADE round resolves it. Resumption of the
originating flow is recorded separately, because the requester may be
offline when the authority decides.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidEscalationRequest
from app.domain.services.audit_service import EscalationAuditService
from app.domain.services.focus_service import FocusService
from app.infrastructure.notifications import Notifier, get_notifier, send_in_background
from app.persistence.models.escalation import (
    Escalation,
    EscalationPriority,
    EscalationRound,
    EscalationState,
    RoundType,
    generate_escalation_id,
)
from app.persistence.repositories.escalation_repository import EscalationRepository
from app.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class EscalationRequest:
    """What an originating agent supplies when it pauses."""

    tenant_id: int
    origin_agent: str
    escalation_type: str
    from_address: str
    session_id: str
    pause_message_id: str
    reason: str
    what_agent_needed: str
    priority: str | None = None
    user_name: str | None = None
    user_role: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    conversation_summary: str | None = None
    class_level: str | None = None
    subject: str | None = None
    term_id: str | None = None
    # When set, a summary is delivered to this authority in the background
    authority_address: str | None = None


@dataclass
class AuthorityResponse:
    """One authority exchange to be recorded as a round."""

    escalation_id: str
    round_type: RoundType | str
    authority_response: str | None = None
    authority_request: str | None = None
    decision: str | None = None
    instruction: str | None = None
    responder_address: str | None = None
    tenant_id: int | None = None


@dataclass
class AuthorityBrief:
    escalation: Escalation
    situation: str
    history: list[str]
    rounds: list[EscalationRound]

    @property
    def context(self) -> str:
        """Situation followed by the full conversation thread."""
        if not self.history:
            return self.situation
        return self.situation + "\n\nConversation history:\n" + "\n".join(self.history)


@dataclass
class RoundRecordResult:
    applied: bool
    escalation: Escalation | None = None
    round_number: int | None = None
    state: str | None = None
    reason: str | None = None


def build_situation(escalation: Escalation) -> str:
    return (
        f"Original agent ({escalation.origin_agent}) needs authority for:\n"
        f"{escalation.what_agent_needed}\n\n"
        f"Reason: {escalation.reason}\n"
        f"User: {escalation.user_name or 'Unknown'}\n"
        f"Priority: {escalation.priority}\n\n"
        f"Context: {escalation.conversation_summary or 'No summary available'}"
    )


class EscalationService:
    """Service for the escalation lifecycle.

    Transitions read the row (locking it where the database supports it),
    check its state, then write and commit once. Any transition on a
    RESOLVED or FAILED escalation is a no-op. Persistence errors propagate;
    audit failures never block a transition.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier | None = None,
        focus_service: FocusService | None = None,
        audit_service: EscalationAuditService | None = None,
    ) -> None:
        """Initialize escalation service."""
        self.session = session
        self.escalation_repo = EscalationRepository(session)
        self.notifier = notifier or get_notifier()
        self.focus_service = focus_service or FocusService(session)
        self.audit = audit_service or EscalationAuditService(session)

    async def pause(self, request: EscalationRequest) -> str:
        """Create an escalation and return its ID.

        Args:
            request: The originating agent's escalation request

        Returns:
            New escalation ID

        Raises:
            InvalidEscalationRequest: Missing reason or need, or unknown priority
            PersistenceError: If the escalation could not be stored
        """
        if not request.reason or not request.reason.strip():
            raise InvalidEscalationRequest("Escalation reason is required")
        if not request.what_agent_needed or not request.what_agent_needed.strip():
            raise InvalidEscalationRequest("Escalation must describe what the agent needs")

        try:
            priority = EscalationPriority.normalize(
                request.priority, default=settings.escalation_default_priority
            )
        except ValueError as e:
            raise InvalidEscalationRequest(str(e)) from e

        escalation = await self.escalation_repo.create(
            request.tenant_id,
            id=generate_escalation_id(),
            origin_agent=request.origin_agent,
            escalation_type=request.escalation_type,
            priority=priority.value,
            from_address=request.from_address,
            session_id=request.session_id,
            pause_message_id=request.pause_message_id,
            user_name=request.user_name,
            user_role=request.user_role,
            reason=request.reason.strip(),
            what_agent_needed=request.what_agent_needed.strip(),
            context=dict(request.context or {}),
            conversation_summary=request.conversation_summary,
            class_level=request.class_level,
            subject=request.subject,
            term_id=request.term_id,
            state=EscalationState.PAUSED.value,
            round_number=0,
        )
        escalation_id = escalation.id
        summary = build_situation(escalation)

        logger.info(
            f"Escalation {escalation_id} paused by {request.origin_agent} "
            f"({request.escalation_type}, {priority.value})"
        )
        await self.audit.log_created(escalation)

        if request.authority_address and settings.escalation_notify_on_pause:
            send_in_background(
                self.notifier,
                request.tenant_id,
                request.authority_address,
                f"Escalation {escalation_id}\n{summary}",
            )

        return escalation_id

    async def fetch_for_authority(
        self,
        escalation_id: str,
        tenant_id: int,
        conversation_history: list[str] | None = None,
        authority_address: str | None = None,
    ) -> AuthorityBrief | None:
        """Serve an escalation to the authority with its situational brief.

        Returns None when the escalation does not exist or belongs to another
        tenant; the two cases are indistinguishable to the caller.
        """
        escalation = await self.escalation_repo.get(escalation_id, tenant_id=tenant_id)
        if escalation is None:
            logger.info(f"Escalation {escalation_id} not found for tenant {tenant_id}")
            return None

        rounds = await self.escalation_repo.list_rounds(escalation.id)
        brief = AuthorityBrief(
            escalation=escalation,
            situation=build_situation(escalation),
            history=list(conversation_history or []),
            rounds=rounds,
        )

        if authority_address:
            await self.audit.log_notified(escalation.id, tenant_id, authority_address)
        return brief

    async def record_authority_response(self, response: AuthorityResponse) -> RoundRecordResult:
        """Append an authority round and move the escalation to the matching state.

        The round and the state change are committed together. Recording on a
        terminal escalation changes nothing.

        Raises:
            InvalidEscalationRequest: Unknown round type
            PersistenceError: If the round could not be stored
        """
        try:
            round_type = RoundType(response.round_type)
        except ValueError as e:
            raise InvalidEscalationRequest(f"Unknown round type: {response.round_type}") from e

        escalation = await self.escalation_repo.get(
            response.escalation_id, tenant_id=response.tenant_id, for_update=True
        )
        if escalation is None:
            return RoundRecordResult(applied=False, reason="not_found")

        if escalation.is_terminal:
            if round_type is RoundType.DECISION_MADE and escalation.state == EscalationState.RESOLVED.value:
                logger.warning(
                    f"Second decision for already resolved escalation {escalation.id} ignored"
                )
            else:
                logger.info(
                    f"Round {round_type.value} ignored, escalation {escalation.id} is {escalation.state}"
                )
            return RoundRecordResult(
                applied=False,
                escalation=escalation,
                round_number=escalation.round_number,
                state=escalation.state,
                reason="terminal",
            )

        decision = response.decision
        if decision:
            decision = decision.strip().upper()

        round_ = await self.escalation_repo.append_round(
            escalation,
            round_type,
            authority_request=response.authority_request,
            authority_response=response.authority_response,
            decision=decision,
            instruction=response.instruction,
            responder_address=response.responder_address,
        )
        round_number = round_.round_number
        state = escalation.state

        logger.info(
            f"Escalation {escalation.id} round {round_number} recorded ({round_type.value} -> {state})"
        )

        if round_type is RoundType.DECISION_MADE:
            await self.focus_service.release_escalation(escalation.id)

        await self.audit.log_round(escalation, round_number, round_type.value, response.responder_address)

        return RoundRecordResult(
            applied=True,
            escalation=escalation,
            round_number=round_number,
            state=state,
        )

    async def mark_for_resumption(
        self,
        escalation_id: str,
        resume_marker: str,
        tenant_id: int | None = None,
    ) -> bool:
        """Record that the originating flow has been given its chance to continue.

        Only terminal escalations can be resumed, and only once.

        Returns:
            True if the resumption was recorded
        """
        escalation = await self.escalation_repo.get(escalation_id, tenant_id=tenant_id, for_update=True)
        if escalation is None:
            return False
        if not escalation.is_terminal:
            logger.info(f"Escalation {escalation_id} not resumable while {escalation.state}")
            return False
        if escalation.resumed_at is not None:
            return False

        escalation.resumed_at = datetime.utcnow()
        escalation.resume_marker = resume_marker
        await self.escalation_repo.save(escalation, "mark escalation resumed")

        logger.info(f"Escalation {escalation_id} marked for resumption at {resume_marker}")
        await self.audit.log_resumed(escalation)
        return True

    async def get_pending_escalations(self, tenant_id: int, limit: int = 100) -> list[Escalation]:
        """PAUSED and AWAITING_CLARIFICATION escalations, most urgent and oldest first."""
        return await self.escalation_repo.list_by_states(tenant_id, limit=limit)

    async def mark_failed(
        self,
        escalation_id: str,
        reason: str,
        tenant_id: int | None = None,
    ) -> bool:
        """Close an escalation as FAILED. The record is kept.

        Returns:
            True if the escalation was failed, False if missing or already terminal
        """
        escalation = await self.escalation_repo.get(escalation_id, tenant_id=tenant_id, for_update=True)
        if escalation is None:
            return False
        if escalation.is_terminal:
            logger.info(f"Escalation {escalation_id} already {escalation.state}, not failing")
            return False

        escalation.state = EscalationState.FAILED.value
        escalation.failure_reason = reason
        await self.escalation_repo.save(escalation, "mark escalation failed")

        logger.warning(f"Escalation {escalation_id} failed: {reason}")
        await self.focus_service.release_escalation(escalation_id)
        await self.audit.log_failed(escalation, reason)
        return True

    async def get_escalation(self, escalation_id: str, tenant_id: int | None = None) -> Escalation | None:
        return await self.escalation_repo.get(escalation_id, tenant_id=tenant_id)

    async def get_authority_decision(self, escalation_id: str) -> str | None:
        """The authority's response text from the decision round, if any."""
        round_ = await self.escalation_repo.get_decision_round(escalation_id)
        return round_.authority_response if round_ else None

    async def get_escalation_history(self, escalation_id: str) -> list[EscalationRound]:
        return await self.escalation_repo.list_rounds(escalation_id)

    async def expire_stale(
        self,
        tenant_id: int | None = None,
        older_than: datetime | None = None,
    ) -> list[str]:
        """Fail PAUSED escalations that have had no authority response.

        Without an explicit cutoff, ``escalation_stale_after_minutes`` decides;
        when that is unset, nothing expires.

        Returns:
            IDs of the escalations that were failed
        """
        if older_than is None:
            if settings.escalation_stale_after_minutes is None:
                return []
            older_than = datetime.utcnow() - timedelta(minutes=settings.escalation_stale_after_minutes)

        stale_ids = [e.id for e in await self.escalation_repo.list_stale(older_than, tenant_id=tenant_id)]
        expired = []
        for escalation_id in stale_ids:
            if await self.mark_failed(
                escalation_id, f"Expired: no authority response before {older_than.isoformat()}"
            ):
                expired.append(escalation_id)

        if expired:
            logger.info(f"Expired {len(expired)} stale escalation(s)")
        return expired
