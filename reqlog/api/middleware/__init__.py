"""API middleware for request logging."""
from .request_logging import RequestLoggingMiddleware, install_request_logging

__all__ = [
    "RequestLoggingMiddleware",
    "install_request_logging",
]
