"""Request middleware: correlation ids, access logging and CORS."""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from admin_assistant.infra.config import config

logger = logging.getLogger("admin_assistant.request")

REQUEST_ID_HEADER = "X-Request-ID"

# Read by the log filter so service-level records carry the request id.
current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)


def _incoming_request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    # Client ids are echoed into logs; keep them short and printable.
    if supplied and len(supplied) <= 64 and supplied.isprintable():
        return supplied
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with a correlation id and log its outcome.

    The id is taken from ``X-Request-ID`` when the client sends a usable
    one, exposed on ``request.state.request_id`` and echoed in the response.
    Health and metrics probes are not access-logged.
    """

    QUIET_PATHS = ("/health", "/metrics")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _incoming_request_id(request)
        request.state.request_id = request_id
        token = current_request_id.set(request_id)
        quiet = request.url.path.startswith(self.QUIET_PATHS)
        started = time.monotonic()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
                exc_info=True,
            )
            raise
        finally:
            current_request_id.reset(token)

        duration_ms = int((time.monotonic() - started) * 1000)
        if not quiet:
            logger.info(
                "Request completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response


def setup_cors(app):
    """Allow the admin console origins; wildcard only in development."""
    origins = [origin for origin in config.CORS_ORIGINS if origin]
    if config.APP_ENV != "development":
        origins = [origin for origin in origins if origin != "*"]
    elif not origins:
        origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER, "X-Client-Info"],
        expose_headers=[REQUEST_ID_HEADER, "X-Response-Time-Ms", "Retry-After"],
    )
