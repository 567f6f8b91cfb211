"""
Request observability.

Every request gets a correlation id (taken from X-Correlation-ID when the
caller sends one) and one structured log line. Requests that touch a single
trust account carry its id in the log record so a ledger mutation can be
traced back to the HTTP call that made it.
"""

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("trust_ledger.http")

CORRELATION_HEADER = "X-Correlation-ID"
ACCOUNT_PATH = re.compile(r"/trust-accounts/(\d+)(?:/|$)")
MUTATING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _trust_account_id(path: str) -> Optional[int]:
    match = ACCOUNT_PATH.search(path)
    return int(match.group(1)) if match else None


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "trust_account_id": _trust_account_id(request.url.path),
            "mutation": request.method in MUTATING_METHODS,
        }

        if response.status_code >= 500:
            logger.error("Request failed", extra=log_data)
        elif response.status_code in (409, 423):
            # Conflicts and locked accounts are expected under contention
            logger.info("Request rejected by ledger state", extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request error", extra=log_data)
        else:
            logger.info("Request handled", extra=log_data)

        return response
