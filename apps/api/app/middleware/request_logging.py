from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.context import get_company_id, reset_company_id, set_company_id
from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


def _resolved_company_id(request: Request) -> str | None:
    # The actor dependency records the tenant on the shared request context,
    # including tenants that only arrive in the token.
    context = getattr(request.state, "context", None)
    return getattr(context, "company_id", None) or get_company_id()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        path = resolve_http_path_label(request)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            token = set_company_id(_resolved_company_id(request))
            try:
                logger.error(
                    "http.error",
                    exc_info=True,
                    extra={"method": method, "path": path, "status_code": 500, "duration_ms": duration_ms},
                )
            finally:
                reset_company_id(token)
            raise

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        observe_http_request(
            method=method,
            path=path,
            status=response.status_code,
            duration=duration_ms / 1000,
        )
        token = set_company_id(_resolved_company_id(request))
        try:
            logger.info(
                "http.request",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        finally:
            reset_company_id(token)
        return response
