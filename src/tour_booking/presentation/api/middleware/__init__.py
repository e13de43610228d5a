"""Middleware module for the tour booking API."""

from .logging import RequestResponseLoggingMiddleware, CORRELATION_HEADER

__all__ = [
    "RequestResponseLoggingMiddleware",
    "CORRELATION_HEADER",
]
