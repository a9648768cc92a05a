"""Request context management for correlation ids and request timing."""
import itertools
import time
import uuid
from collections.abc import Callable, MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

# Attribute on ``request.state`` holding the RequestContext.
STATE_ATTRIBUTE = "log_context"


@dataclass
class RequestContext:
    """
    Correlation metadata for one request.

    Created when the request enters the server and dropped when it
    completes. ``request_id`` never changes for the lifetime of the request
    and is attached to every record the request emits.
    """
    request_id: str
    start_time: float | None = None
    clock: Callable[[], float] = field(default=time.perf_counter, repr=False)

    @classmethod
    def create(
        cls,
        inbound_correlation_id: str | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> "RequestContext":
        """
        Create a context, reusing a non-empty inbound correlation id.

        Args:
            inbound_correlation_id: Value of the inbound correlation header
            clock: Monotonic clock returning seconds
        """
        request_id = inbound_correlation_id.strip() if isinstance(inbound_correlation_id, str) else ""
        return cls(
            request_id=request_id or create_request_id(),
            start_time=clock(),
            clock=clock,
        )

    @property
    def meta(self) -> dict[str, Any]:
        """Metadata merged into the records of this request."""
        return {"requestId": self.request_id}

    def elapsed_ms(self) -> float:
        """Milliseconds since the request started, on the monotonic clock."""
        if self.start_time is None:
            return 0.0
        return round((self.clock() - self.start_time) * 1000, 3)


def create_request_id() -> str:
    """Generate a unique request ID."""
    return str(uuid.uuid4())


def request_state(request: Any, create: bool = False) -> Any:
    """
    Return the per-request state namespace of ``request``.

    Framework requests carry ``state``. Plain mappings keep it under a
    ``"state"`` key. With ``create`` a missing namespace is added where the
    request allows it; None means the request cannot hold state.
    """
    state = getattr(request, "state", None)
    if state is not None:
        return state
    if isinstance(request, MutableMapping):
        state = request.get("state")
        if state is None and create:
            state = request["state"] = SimpleNamespace()
        return state
    if not create:
        return None
    try:
        request.state = SimpleNamespace()
    except (AttributeError, TypeError):
        return None
    return request.state


def get_request_context(request: Any) -> RequestContext | None:
    """Return the context bound to ``request``, if any."""
    context = getattr(request_state(request), STATE_ATTRIBUTE, None)
    if isinstance(context, RequestContext):
        return context
    return None


def bind_request_context(
    request: Any,
    inbound_correlation_id: str | None = None,
    clock: Callable[[], float] = time.perf_counter,
) -> RequestContext:
    """
    Return the context of ``request``, creating and attaching it on first call.

    Calling this twice for the same request returns the same context, so the
    request id is chosen exactly once. A request that cannot hold state gets
    a fresh, unattached context.
    """
    context = get_request_context(request)
    if context is not None:
        return context

    context = RequestContext.create(inbound_correlation_id, clock=clock)
    state = request_state(request, create=True)
    if state is None:
        logger.debug("Request cannot hold state, context not attached", request_type=type(request).__name__)
    else:
        setattr(state, STATE_ATTRIBUTE, context)
    return context


# Metadata of every MetaStore in the current context, keyed by store.
_meta_values: ContextVar[dict[str, dict[str, Any]] | None] = ContextVar("reqlog_meta", default=None)
_store_ids = itertools.count()


class MetaStore:
    """
    Metadata storage owned by one facade.

    Values live in a module-level ContextVar under the store's key, so each
    request task sees only the metadata it set itself. Unset keys read as an
    empty mapping.
    """

    def __init__(self, key: str | None = None):
        self.key = key or f"log_meta_{next(_store_ids)}"

    def _own(self) -> dict[str, Any]:
        return (_meta_values.get() or {}).get(self.key, {})

    def get(self, key: str) -> dict[str, Any]:
        return self._own().get(key, {})

    def set(self, key: str, value: dict[str, Any]) -> dict[str, Any]:
        values = dict(_meta_values.get() or {})
        values[self.key] = {**self._own(), key: value}
        _meta_values.set(values)
        return value

    def clear(self) -> None:
        values = dict(_meta_values.get() or {})
        if values.pop(self.key, None) is not None:
            _meta_values.set(values)
