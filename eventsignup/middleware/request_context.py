from __future__ import annotations
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from ..observability.logging import get_request_id
from ..config import get_settings

S = get_settings()
log = logging.getLogger("app.request")

class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request)
        request.state.request_id = rid
        start = time.perf_counter()
        # never log the query string; it can carry ids worth keeping out of logs
        ctx = {"request_id": rid, "path": request.url.path, "method": request.method}

        try:
            response = await call_next(request)
        except Exception:
            ctx["ms"] = int((time.perf_counter() - start) * 1000)
            log.exception("unhandled_error", extra=ctx)
            raise

        ctx["ms"] = int((time.perf_counter() - start) * 1000)
        ctx["status"] = response.status_code
        response.headers[S.REQUEST_ID_HEADER] = rid
        log.info("request", extra=ctx)
        return response
