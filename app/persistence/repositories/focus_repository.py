"""Authority focus repository."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.persistence.models.authority_focus import AuthorityFocus
from app.persistence.models.escalation import Escalation


class FocusRepository:
    """Repository for authority focus pointers.

    Note: keyed by authority address rather than tenant, so this does not
    extend BaseRepository. Each row still records the owning tenant.
    """

    def __init__(self, session: AsyncSession):
        """Initialize focus repository."""
        self.session = session

    async def get(self, authority_address: str) -> AuthorityFocus | None:
        stmt = select(AuthorityFocus).where(
            AuthorityFocus.authority_address == authority_address
        ).execution_options(populate_existing=True)
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("get focus", str(e)) from e
        return result.scalar_one_or_none()

    async def upsert_lock(
        self, authority_address: str, escalation_id: str, tenant_id: int
    ) -> AuthorityFocus:
        """Point the authority's focus at an escalation; the last lock wins.

        A concurrent insert for the same address surfaces as an IntegrityError,
        which is retried once as an update.
        """
        now = datetime.utcnow()
        try:
            focus = await self.get(authority_address)
            if focus is None:
                focus = AuthorityFocus(
                    authority_address=authority_address,
                    tenant_id=tenant_id,
                    locked_escalation_id=escalation_id,
                    last_interaction_at=now,
                )
                self.session.add(focus)
            else:
                focus.locked_escalation_id = escalation_id
                focus.tenant_id = tenant_id
                focus.last_interaction_at = now
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return await self._overwrite_lock(authority_address, escalation_id, tenant_id, now)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("lock focus", str(e)) from e

        await self.session.refresh(focus)
        return focus

    async def _overwrite_lock(
        self,
        authority_address: str,
        escalation_id: str,
        tenant_id: int,
        now: datetime,
    ) -> AuthorityFocus:
        try:
            await self.session.execute(
                update(AuthorityFocus)
                .where(AuthorityFocus.authority_address == authority_address)
                .values(
                    locked_escalation_id=escalation_id,
                    tenant_id=tenant_id,
                    last_interaction_at=now,
                )
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("lock focus", str(e)) from e
        focus = await self.get(authority_address)
        if focus is None:
            raise PersistenceError("lock focus", f"focus row for {authority_address} vanished")
        return focus

    async def clear_lock(self, authority_address: str) -> bool:
        """Clear the authority's lock. Returns True if a lock was cleared."""
        try:
            result = await self.session.execute(
                update(AuthorityFocus)
                .where(
                    AuthorityFocus.authority_address == authority_address,
                    AuthorityFocus.locked_escalation_id.is_not(None),
                )
                .values(locked_escalation_id=None, last_interaction_at=datetime.utcnow())
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("unlock focus", str(e)) from e
        return (result.rowcount or 0) > 0

    async def clear_locks_on(self, escalation_id: str) -> int:
        """Clear every authority lock pointing at an escalation."""
        try:
            result = await self.session.execute(
                update(AuthorityFocus)
                .where(AuthorityFocus.locked_escalation_id == escalation_id)
                .values(locked_escalation_id=None)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("release focus", str(e)) from e
        return result.rowcount or 0

    async def get_locked_escalation(self, authority_address: str) -> Escalation | None:
        """Join the authority's lock to the escalation record it points at."""
        stmt = (
            select(Escalation)
            .join(AuthorityFocus, AuthorityFocus.locked_escalation_id == Escalation.id)
            .where(
                AuthorityFocus.authority_address == authority_address,
                AuthorityFocus.locked_escalation_id.is_not(None),
            )
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError("get active focus", str(e)) from e
        return result.scalar_one_or_none()
