"""Core context management for request-scoped data."""
from .request_context import (
    STATE_ATTRIBUTE,
    MetaStore,
    RequestContext,
    bind_request_context,
    create_request_id,
    get_request_context,
    request_state,
)

__all__ = [
    "RequestContext",
    "MetaStore",
    "STATE_ATTRIBUTE",
    "bind_request_context",
    "create_request_id",
    "get_request_context",
    "request_state",
]
