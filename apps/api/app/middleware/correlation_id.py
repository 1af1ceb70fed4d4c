from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import reset_company_id, reset_correlation_id, set_company_id, set_correlation_id


def _header_company_id(request: Request) -> str | None:
    raw = request.headers.get("x-company-id")
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the correlation id and the header tenant to the request's log context.

    A tenant carried only in the bearer token is bound later, once the actor
    dependency has decoded it.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_token = set_correlation_id(correlation_id)
        company_token = set_company_id(_header_company_id(request))
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_company_id(company_token)
            reset_correlation_id(correlation_token)

        response.headers["x-correlation-id"] = correlation_id
        return response
