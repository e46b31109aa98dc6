"""Stale escalation expiry.

Invoked periodically by the scheduler. Fails PAUSED escalations that have
waited longer than ESCALATION_STALE_AFTER_MINUTES without an authority
response. Does nothing while that setting is unset.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PersistenceError
from app.core.tenant_context import tenant_scope
from app.domain.services.escalation_service import EscalationService
from app.infrastructure.notifications import LoggingNotifier
from app.persistence.database import get_db
from app.persistence.models.tenant import Tenant
from app.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/expire-stale-escalations")
async def expire_stale_escalations_task(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, Any]:
    """Expire stale escalations for every active school."""
    if settings.escalation_stale_after_minutes is None:
        return {"enabled": False, "expired": 0, "errors": 0}

    tenant_result = await db.execute(select(Tenant.id).where(Tenant.is_active.is_(True)))
    tenant_ids = [r[0] for r in tenant_result.all()]

    # Expiry sends nothing; the notifier is never used here
    service = EscalationService(db, notifier=LoggingNotifier())
    expired = 0
    errors = 0

    for tenant_id in tenant_ids:
        with tenant_scope(tenant_id):
            try:
                expired += len(await service.expire_stale(tenant_id=tenant_id))
            except PersistenceError as e:
                logger.error(f"Escalation expiry failed for tenant {tenant_id}: {e}", exc_info=True)
                errors += 1

    logger.info(f"Escalation expiry complete: {expired} expired, {errors} errors")
    return {"enabled": True, "expired": expired, "errors": errors}
