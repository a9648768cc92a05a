"""Structured logging facade for request/response lifecycles."""

from reqlog.core.config import GelfConfig, LoggerSettings
from reqlog.core.context import RequestContext
from reqlog.core.logging import LoggerFacade, Structured, Text

__version__ = "0.1.0"

__all__ = [
    "GelfConfig",
    "LoggerFacade",
    "LoggerSettings",
    "RequestContext",
    "Structured",
    "Text",
]
