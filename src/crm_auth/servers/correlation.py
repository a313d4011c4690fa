"""Per-request correlation ids.

An incoming ``X-Correlation-ID`` header is reused, otherwise a fresh
``uuid4().hex`` is minted.  Handlers read it from
``request.state.correlation_id`` and the same value is sent back on the
response so callers can match their logs against ours.
"""

from __future__ import annotations

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

HEADER = "X-Correlation-ID"
_logger = logging.getLogger("crm-auth.correlation")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, header: str = HEADER) -> None:
        super().__init__(app)
        self._header = header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cid = request.headers.get(self._header) or uuid.uuid4().hex
        request.state.correlation_id = cid
        _logger.debug("%s %s", request.method, request.url.path, extra={"correlation_id": cid})
        response = await call_next(request)
        response.headers[self._header] = cid
        return response
