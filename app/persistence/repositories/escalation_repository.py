"""Escalation repository: durable store for escalations and their rounds."""

from datetime import datetime
from typing import Iterable

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.persistence.models.escalation import (
    DEFAULT_PRIORITY_RANK,
    PENDING_STATES,
    PRIORITY_RANK,
    Escalation,
    EscalationRound,
    EscalationState,
    RoundType,
)
from app.persistence.repositories.base import BaseRepository

# CRITICAL, HIGH, MEDIUM, then everything else
priority_rank = case(PRIORITY_RANK, value=Escalation.priority, else_=DEFAULT_PRIORITY_RANK)


def _state_values(states: Iterable[EscalationState | str]) -> list[str]:
    return [s.value if isinstance(s, EscalationState) else s for s in states]


class EscalationRepository(BaseRepository[Escalation]):
    """Repository for Escalation and EscalationRound entities.

    Every read that serves a tenant is tenant-scoped. Listing order is
    priority rank, then creation time, then ID, so repeated calls return
    the same order.
    """

    def __init__(self, session: AsyncSession):
        """Initialize escalation repository."""
        super().__init__(Escalation, session)

    async def get(
        self,
        escalation_id: str,
        tenant_id: int | None = None,
        for_update: bool = False,
    ) -> Escalation | None:
        """Fetch an escalation by ID.

        Args:
            escalation_id: Escalation ID
            tenant_id: When given, the escalation must belong to this tenant
            for_update: Lock the row (where supported) and refresh it from the
                database, for read-check-write transitions

        Returns:
            Escalation or None if missing or owned by another tenant
        """
        stmt = select(Escalation).where(Escalation.id == escalation_id)
        if tenant_id is not None:
            stmt = stmt.where(Escalation.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("get escalation", str(e)) from e
        return result.scalar_one_or_none()

    async def list_by_states(
        self,
        tenant_id: int,
        states: Iterable[EscalationState | str] = PENDING_STATES,
        limit: int = 100,
    ) -> list[Escalation]:
        """List a tenant's escalations in the given states, most urgent and oldest first."""
        stmt = (
            select(Escalation)
            .where(
                Escalation.tenant_id == tenant_id,
                Escalation.state.in_(_state_values(states)),
            )
            .order_by(priority_rank.asc(), Escalation.created_at.asc(), Escalation.id.asc())
            .limit(limit)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("list escalations", str(e)) from e
        return list(result.scalars().all())

    async def next_pending(
        self, tenant_id: int, exclude_id: str | None = None
    ) -> Escalation | None:
        """Get the single most urgent pending escalation, optionally skipping one."""
        stmt = select(Escalation).where(
            Escalation.tenant_id == tenant_id,
            Escalation.state.in_(_state_values(PENDING_STATES)),
        )
        if exclude_id:
            stmt = stmt.where(Escalation.id != exclude_id)
        stmt = stmt.order_by(
            priority_rank.asc(), Escalation.created_at.asc(), Escalation.id.asc()
        ).limit(1)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("next pending escalation", str(e)) from e
        return result.scalar_one_or_none()

    async def list_stale(
        self, older_than: datetime, tenant_id: int | None = None
    ) -> list[Escalation]:
        """List PAUSED escalations created before ``older_than``."""
        stmt = select(Escalation).where(
            Escalation.state == EscalationState.PAUSED.value,
            Escalation.created_at < older_than,
        )
        if tenant_id is not None:
            stmt = stmt.where(Escalation.tenant_id == tenant_id)
        stmt = stmt.order_by(Escalation.created_at.asc())
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("list stale escalations", str(e)) from e
        return list(result.scalars().all())

    async def list_rounds(self, escalation_id: str) -> list[EscalationRound]:
        """List an escalation's rounds in round order."""
        stmt = (
            select(EscalationRound)
            .where(EscalationRound.escalation_id == escalation_id)
            .order_by(EscalationRound.round_number.asc())
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("list escalation rounds", str(e)) from e
        return list(result.scalars().all())

    async def get_decision_round(self, escalation_id: str) -> EscalationRound | None:
        """Get the DECISION_MADE round of an escalation, if any."""
        stmt = (
            select(EscalationRound)
            .where(
                EscalationRound.escalation_id == escalation_id,
                EscalationRound.round_type == RoundType.DECISION_MADE.value,
            )
            .order_by(EscalationRound.round_number.desc())
            .limit(1)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("get decision round", str(e)) from e
        return result.scalar_one_or_none()

    async def append_round(
        self,
        escalation: Escalation,
        round_type: RoundType,
        authority_request: str | None,
        authority_response: str | None,
        decision: str | None = None,
        instruction: str | None = None,
        responder_address: str | None = None,
    ) -> EscalationRound:
        """Append a round and move the escalation to the matching state in one commit.

        The round number is assigned here from the stored maximum, never by
        the caller. The (escalation_id, round_number) unique constraint turns
        a racing duplicate into a PersistenceError.
        """
        try:
            max_stmt = select(func.max(EscalationRound.round_number)).where(
                EscalationRound.escalation_id == escalation.id
            )
            current_max = (await self.session.execute(max_stmt)).scalar_one_or_none() or 0
            next_number = current_max + 1

            now = datetime.utcnow()
            round_ = EscalationRound(
                escalation_id=escalation.id,
                round_number=next_number,
                round_type=round_type.value,
                authority_request=authority_request,
                authority_response=authority_response,
                decision=decision if round_type is RoundType.DECISION_MADE else None,
                instruction=instruction if round_type is RoundType.DECISION_MADE else None,
                responder_address=responder_address,
                created_at=now,
            )
            self.session.add(round_)

            escalation.state = round_type.resulting_state.value
            escalation.round_number = next_number
            if round_type is RoundType.DECISION_MADE:
                escalation.decision = decision
                escalation.instruction = instruction
                escalation.resolved_by = responder_address
                escalation.resolved_at = now

            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("record authority round", str(e)) from e

        await self.session.refresh(round_)
        return round_

    async def save(self, escalation: Escalation, operation: str) -> Escalation:
        """Commit field changes made to an escalation."""
        await self.commit(operation)
        await self.session.refresh(escalation)
        return escalation
