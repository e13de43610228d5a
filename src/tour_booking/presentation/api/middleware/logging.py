"""HTTP request/response logging middleware for FastAPI."""

import logging
import time
from typing import Callable, Optional, Set
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ....infrastructure.logging import (
    generate_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    get_logger,
    log_request,
)

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

DEFAULT_EXCLUDED_PATHS = {
    '/health',
    '/docs',
    '/redoc',
    '/openapi.json',
    '/favicon.ico'
}


class RequestResponseLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log HTTP requests and responses with correlation IDs.

    The correlation id comes from the ``X-Correlation-ID`` request header when
    present, is attached to every log record written while the request is
    handled, and is echoed back on the response.
    """

    def __init__(self, app: ASGIApp, exclude_paths: Optional[Set[str]] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths if exclude_paths is not None else DEFAULT_EXCLUDED_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process the request and response with logging."""
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        set_correlation_id(correlation_id)
        start_time = time.perf_counter()
        log_this = request.url.path not in self.exclude_paths

        try:
            if log_this:
                client_host = request.client.host if request.client else 'unknown'
                log_request(
                    logger,
                    request.method,
                    request.url.path,
                    request_query=str(request.query_params) if request.query_params else None,
                    client_host=client_host,
                    user_agent=request.headers.get('user-agent', 'unknown'),
                )

            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id

            if log_this:
                self._log_response(request, response, (time.perf_counter() - start_time) * 1000)
            return response

        except Exception as exc:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                extra={
                    "request_method": request.method,
                    "request_path": request.url.path,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "error_type": type(exc).__name__,
                },
                exc_info=True
            )
            raise

        finally:
            clear_correlation_id()

    def _log_response(self, request: Request, response: Response, duration_ms: float) -> None:
        # Lost booking races (409) are expected traffic, not warnings.
        if response.status_code >= 500:
            log_level = logging.ERROR
        elif response.status_code >= 400 and response.status_code != 409:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            f"HTTP Response: {request.method} {request.url.path} -> {response.status_code} ({duration_ms:.2f}ms)",
            extra={
                "request_method": request.method,
                "request_path": request.url.path,
                "response_status": response.status_code,
                "response_duration_ms": round(duration_ms, 2),
            }
        )
