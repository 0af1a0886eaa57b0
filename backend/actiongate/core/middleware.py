"""Custom FastAPI middleware."""
from __future__ import annotations

from typing import Callable
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from actiongate.core.context import request_id_ctx_var, tenant_id_ctx_var


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Populate request.state.request_id and bind the tenant header for log records."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        tenant_header = request.headers.get("X-Tenant-Id") or request.query_params.get("tenant_id")
        request_token = request_id_ctx_var.set(request_id)
        tenant_token = tenant_id_ctx_var.set(tenant_header)

        try:
            response = await call_next(request)
        finally:
            tenant_id_ctx_var.reset(tenant_token)
            request_id_ctx_var.reset(request_token)

        response.headers["X-Request-Id"] = request_id
        return response
