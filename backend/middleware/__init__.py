"""Middleware package for security and request processing."""

from middleware.trace import TRACE_HEADER, current_trace_id

__all__ = [
    "TRACE_HEADER",
    "current_trace_id",
]
