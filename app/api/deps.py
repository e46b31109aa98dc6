"""FastAPI dependencies for auth, tenant resolution and escalation services."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.action_authorization import ActionAuthorizer, UserRole
from app.core.auth import decode_access_token
from app.core.tenant_context import set_authority_context, set_tenant_context
from app.domain.services.escalation_service import EscalationService
from app.domain.services.focus_service import FocusService
from app.domain.services.resolution_dispatcher import ResolutionDispatcher
from app.infrastructure.notifications import Notifier, get_notifier
from app.persistence.database import get_db
from app.persistence.models.tenant import User
from app.persistence.repositories.base import BaseRepository

security = HTTPBearer()


def is_global_admin(user: User) -> bool:
    """Check if user is a global admin.

    A global admin has no tenant_id and admin role.
    """
    return user.tenant_id is None and user.role == UserRole.ADMIN.value


def authority_address_for(user: User) -> str:
    """Contact address used as the user's focus key and notification target."""
    return user.phone_number or user.email


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get current authenticated user from JWT token.

    Raises:
        HTTPException: If authentication fails
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = await BaseRepository(User, db).get_by_id(None, user_id)  # No tenant scoping for user lookup
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    set_authority_context(authority_address_for(user))
    return user


async def get_current_tenant(
    current_user: Annotated[User, Depends(get_current_user)],
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-Id")] = None,
) -> int | None:
    """Get current tenant (school) from user context or header override.

    Global admins can pass X-Tenant-Id header to act for a school.
    """
    if is_global_admin(current_user) and x_tenant_id:
        try:
            tenant_id = int(x_tenant_id)
        except (ValueError, TypeError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid X-Tenant-Id header value",
            )
    else:
        tenant_id = current_user.tenant_id

    set_tenant_context(tenant_id)
    return tenant_id


async def require_tenant_context(
    tenant_id: Annotated[int | None, Depends(get_current_tenant)],
) -> int:
    """Require a tenant context to be present.

    Raises:
        HTTPException: If no tenant context is present
    """
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant context required",
        )
    return tenant_id


async def require_authority(
    current_user: Annotated[User, Depends(get_current_user)],
    tenant_id: Annotated[int, Depends(require_tenant_context)],
) -> tuple[User, int]:
    """Require a school authority (admin) acting within a tenant.

    Raises:
        HTTPException: If user is not an admin of the tenant
    """
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="School authority access required",
        )
    if current_user.tenant_id is not None and current_user.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="School authority access required",
        )
    return current_user, tenant_id


def get_app_notifier(request: Request) -> Notifier:
    notifier = getattr(request.app.state, "notifier", None)
    return notifier or get_notifier()


def get_action_authorizer(request: Request) -> ActionAuthorizer:
    authorizer = getattr(request.app.state, "action_authorizer", None)
    return authorizer or ActionAuthorizer()


async def get_escalation_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_app_notifier)],
) -> EscalationService:
    return EscalationService(db, notifier=notifier)


async def get_focus_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> FocusService:
    return FocusService(db)


async def get_resolution_dispatcher(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_app_notifier)],
    authorizer: Annotated[ActionAuthorizer, Depends(get_action_authorizer)],
) -> ResolutionDispatcher:
    executors = getattr(request.app.state, "action_executors", None) or {}
    return ResolutionDispatcher(db, authorizer, executors=executors, notifier=notifier)
