"""Structured request logging: redaction, transforms, sinks and the facade."""

from .config import LogConfig, LogFormat, configure_logging, get_logger
from .facade import (
    EXCEPTION_RESPONSE_POSTFIX,
    INCOMING_REQUEST_POSTFIX,
    SUCCESSFUL_RESPONSE_POSTFIX,
    LoggerFacade,
    LogInput,
    Structured,
    Text,
)
from .filters import MASK, redact_error, redact_headers, redact_request
from .sinks import (
    BaseSink,
    ConsoleSink,
    NetworkSink,
    Sink,
    SinkBinding,
    TcpTransport,
    UdpTransport,
)
from .transforms import Mapper, TransformChain, Trim

__all__ = [
    "configure_logging",
    "get_logger",
    "LogConfig",
    "LogFormat",
    "LoggerFacade",
    "LogInput",
    "Text",
    "Structured",
    "INCOMING_REQUEST_POSTFIX",
    "SUCCESSFUL_RESPONSE_POSTFIX",
    "EXCEPTION_RESPONSE_POSTFIX",
    "MASK",
    "redact_headers",
    "redact_request",
    "redact_error",
    "Sink",
    "BaseSink",
    "ConsoleSink",
    "NetworkSink",
    "SinkBinding",
    "UdpTransport",
    "TcpTransport",
    "Mapper",
    "Trim",
    "TransformChain",
]
