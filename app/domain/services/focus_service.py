"""Focus service: which escalation an authority is currently attending to."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.models.authority_focus import AuthorityFocus
from app.persistence.models.escalation import Escalation
from app.persistence.repositories.escalation_repository import EscalationRepository
from app.persistence.repositories.focus_repository import FocusRepository

logger = logging.getLogger(__name__)


class FocusService:
    """Advisory per-authority focus pointer.

    The pointer only disambiguates which escalation an authority's free-text
    reply refers to; the escalation record stays authoritative.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize focus service."""
        self.session = session
        self.focus_repo = FocusRepository(session)
        self.escalation_repo = EscalationRepository(session)

    async def lock(
        self,
        authority_address: str,
        escalation_id: str,
        tenant_id: int | None = None,
    ) -> AuthorityFocus | None:
        """Lock an authority's focus onto an escalation, replacing any prior lock.

        Args:
            authority_address: Authority contact address
            escalation_id: Escalation to focus on
            tenant_id: When given, the escalation must belong to this tenant

        Returns:
            The focus row, or None if the escalation is not visible or already closed
        """
        escalation = await self.escalation_repo.get(escalation_id, tenant_id=tenant_id)
        if escalation is None:
            logger.info(f"Focus lock skipped, escalation {escalation_id} not found")
            return None
        if escalation.is_terminal:
            logger.warning(f"Focus lock refused, escalation {escalation_id} is {escalation.state}")
            return None

        focus = await self.focus_repo.upsert_lock(
            authority_address, escalation.id, escalation.tenant_id
        )
        logger.info(f"Authority {authority_address} focused on escalation {escalation.id}")
        return focus

    async def unlock(self, authority_address: str) -> None:
        """Clear an authority's focus. Unlocking twice is a no-op."""
        if await self.focus_repo.clear_lock(authority_address):
            logger.info(f"Authority {authority_address} focus released")

    async def get_active(self, authority_address: str) -> Escalation | None:
        return await self.focus_repo.get_locked_escalation(authority_address)

    async def get_next_pending(
        self, tenant_id: int, exclude_id: str | None = None
    ) -> Escalation | None:
        """Most urgent pending escalation: CRITICAL, HIGH, MEDIUM, then the rest, oldest first."""
        return await self.escalation_repo.next_pending(tenant_id, exclude_id=exclude_id)

    async def release_escalation(self, escalation_id: str) -> int:
        """Clear every authority lock that points at an escalation."""
        cleared = await self.focus_repo.clear_locks_on(escalation_id)
        if cleared:
            logger.info(f"Released {cleared} focus lock(s) on escalation {escalation_id}")
        return cleared
