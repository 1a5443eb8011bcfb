"""
HTTP middleware for the FastAPI application.
"""

from .access_gate import AccessGateMiddleware
from .trace import make_trace_middleware

__all__ = [
    "AccessGateMiddleware",
    "make_trace_middleware",
]
