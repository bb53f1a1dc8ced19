"""
Passport Portal - HTTP Middleware
Request/response logging, timing and context management
"""

import time
from typing import Callable, Set
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from passport_portal.core.logging_config import (
    logger,
    set_request_id,
    set_actor_id,
    set_application_id,
    generate_request_id,
)


SKIP_LOGGING_PATHS: Set[str] = {
    "/health",
    "/",
    "/favicon.ico",
    "/docs",
    "/redoc",
    "/openapi.json",
}


def should_skip_logging(path: str) -> bool:
    """Check if path should skip detailed logging"""
    return path in SKIP_LOGGING_PATHS


def extract_application_id(path: str) -> str:
    """Pull the application ID out of /applications/{id}/... paths"""
    if "/applications/" not in path:
        return ""
    return path.split("/applications/", 1)[1].split("/")[0]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs HTTP requests and responses.

    - Generates or propagates X-Request-ID for correlation
    - Sets context variables for downstream logging
    - Logs method, path, status and duration, warns on slow requests
    """

    def __init__(self, app: ASGIApp, slow_request_ms: float = 1000):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        path = request.url.path
        application_id = extract_application_id(path)
        if application_id:
            set_application_id(application_id)

        skip_logging = should_skip_logging(path)
        start_time = time.perf_counter()

        if not skip_logging:
            client_ip = request.client.host if request.client else "unknown"
            logger.info(
                f"→ {request.method} {path}",
                extra={
                    "event_type": "http_request_start",
                    "http_method": request.method,
                    "http_path": path,
                    "client_ip": client_ip,
                    "user_agent": request.headers.get("user-agent", ""),
                }
            )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            if not skip_logging:
                status_code = response.status_code
                if status_code < 400:
                    logger.log_request(request.method, path, status_code, duration_ms)
                else:
                    log_level = "error" if status_code >= 500 else "warning"
                    getattr(logger, log_level)(
                        f"← {request.method} {path} - {status_code} ({duration_ms:.2f}ms)",
                        extra={
                            "event_type": "http_request_complete",
                            "http_method": request.method,
                            "http_path": path,
                            "http_status": status_code,
                            "duration_ms": duration_ms,
                        }
                    )

                logger.log_performance(
                    f"{request.method} {path}", duration_ms, threshold_ms=self.slow_request_ms
                )

            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"✗ {request.method} {path} - Exception ({duration_ms:.2f}ms): {type(exc).__name__}",
                exc_info=True,
                extra={
                    "event_type": "http_request_error",
                    "http_method": request.method,
                    "http_path": path,
                    "duration_ms": duration_ms,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise

        finally:
            set_request_id("")
            set_actor_id("")
            set_application_id("")
