"""Request logging middleware: request id propagation and timing."""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its id, status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            logger.exception(
                "Request failed with unhandled exception",
                extra={"extra_fields": fields},
            )
            raise

        if request.url.path != "/health":
            fields["status_code"] = response.status_code
            fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            log = logger.warning if response.status_code >= 400 else logger.info
            log("Request completed", extra={"extra_fields": fields})

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def add_request_logging(app: FastAPI) -> None:
    app.add_middleware(RequestLoggingMiddleware)
