"""Middleware for request context."""

import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.tenant_context import (
    clear_tenant_context,
    set_authority_context,
    set_request_context,
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request ID for logging and clears tenant context afterwards."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Process request with a request ID.

        Args:
            request: FastAPI request
            call_next: Next middleware/handler

        Returns:
            Response carrying an X-Request-Id header
        """
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        set_request_context(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_tenant_context()
            set_authority_context(None)
            set_request_context(None)

        response.headers["X-Request-Id"] = request_id
        return response
