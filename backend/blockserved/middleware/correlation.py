"""
Correlation ID middleware
=========================
Tags every request with an X-Correlation-ID so all log lines for one HTTP call
share an identifier, whether the call came from the server dashboard, the
recipient portal or the reconciliation worker.
"""
from __future__ import annotations

import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        logger.info(
            "request %s %s",
            request.method,
            request.url.path,
            extra={"correlation_id": correlation_id},
        )

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response
