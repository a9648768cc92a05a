"""Request logging facade.

``LoggerFacade`` owns the settings, the serializer registry and the sinks,
and wraps a structlog logger whose processor chain turns every call into a
finished record::

    facade = LoggerFacade({"isJSON": True, "isMapper": True, "level": "info"})

    context = facade.on_request_start(request, response)
    ...
    facade.on_success_response(request, response)

Records are plain dictionaries with the reserved fields ``name``, ``type``,
``hostname``, ``pid``, ``level`` (numeric), ``time`` and ``msg`` next to
their payload fields.
"""

import logging
import os
import socket
import time
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, NoReturn

import structlog

from reqlog.core.config import LEVEL_NUMBERS, NOTICE, LoggerSettings
from reqlog.core.context import (
    MetaStore,
    RequestContext,
    bind_request_context,
    get_request_context,
    request_state,
)

from .config import get_logger
from .filters import SerializerProcessor, build_serializers, error_message, error_name
from .sinks import ConsoleSink, NetworkSink, SinkBinding, SinkDispatcher
from .transforms import LOG_META_KEY, TransformChain

logger = get_logger(__name__)

INCOMING_REQUEST_POSTFIX = "INCOMING_REQUEST"
SUCCESSFUL_RESPONSE_POSTFIX = "SUCCESSFUL_RESPONSE"
EXCEPTION_RESPONSE_POSTFIX = "EXCEPTION_RESPONSE"

SERVER_CLASS_NAME = "server"
DEFAULT_ERROR_CODE = 400
SUCCESS_CODE = 200

# Attribute on ``request.state`` holding the request's child logger.
LOG_ATTRIBUTE = "log"


@dataclass(frozen=True)
class Text:
    """A plain message."""

    message: str


@dataclass(frozen=True)
class Structured:
    """A structured payload merged into the record."""

    fields: Mapping[str, Any] = field(default_factory=dict)


LogInput = Text | Structured


def as_log_input(payload: Any) -> LogInput:
    """Wrap a raw payload into a ``LogInput`` variant."""
    if isinstance(payload, (Text, Structured)):
        return payload
    if isinstance(payload, str):
        return Text(payload)
    if isinstance(payload, Mapping):
        return Structured(payload)
    if payload is None:
        return Structured()
    return Text(str(payload))


class _Absent:
    def __repr__(self) -> str:
        return "<absent>"


ABSENT = _Absent()


def is_stream(result: Any) -> bool:
    """Whether a handler result is a stream and must not be logged."""
    if isinstance(result, Mapping):
        return "stream" in result
    if isinstance(result, (str, bytes, bytearray, list, tuple, set, frozenset)):
        return False
    if isinstance(result, Iterator) or hasattr(result, "__aiter__"):
        return True
    return hasattr(result, "stream") or hasattr(result, "body_iterator")


def _add_record_fields(name: str, type_: str) -> Callable[..., dict[str, Any]]:
    hostname = socket.gethostname()

    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict["name"] = name
        event_dict["type"] = type_
        event_dict["hostname"] = hostname
        event_dict["pid"] = os.getpid()
        return event_dict

    return processor


def _add_numeric_level(_: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if method_name == "exception":
        event_dict["level"] = logging.ERROR
    else:
        event_dict["level"] = LEVEL_NUMBERS.get(method_name, logging.INFO)
    return event_dict


def _rename_event(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event = event_dict.pop("event", None)
    event_dict["msg"] = "" if event is None else str(event)
    return event_dict


def _to_dispatcher(_: Any, __: str, event_dict: dict[str, Any]) -> tuple[tuple[Any, ...], dict]:
    return (event_dict,), {}


def _header_value(request: Any, name: str) -> str | None:
    headers = getattr(request, "headers", None)
    if headers is None and isinstance(request, Mapping):
        headers = request.get("headers")
    if not isinstance(headers, Mapping):
        return None
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if isinstance(key, str) and key.lower() == name:
                value = candidate
                break
    return value if isinstance(value, str) else None


def _error_code(error: Any) -> int:
    for attribute in ("status_code", "statusCode"):
        code = getattr(error, attribute, None)
        if isinstance(code, int) and not isinstance(code, bool) and code:
            return code
    return DEFAULT_ERROR_CODE


class LoggerFacade:
    """
    Structured logging facade for request/response lifecycles.

    One instance per process. Settings, serializers and sinks are fixed at
    construction; request state lives on the request objects.
    """

    def __init__(
        self,
        settings: LoggerSettings | Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        if not isinstance(settings, LoggerSettings):
            settings = LoggerSettings.from_options(settings)

        self._settings = settings
        self._clock = clock
        # One facade per process, with its own MetaStore entry.
        self._meta = MetaStore()
        self.serializers = build_serializers(settings.serializers)
        self.bindings = self._create_bindings()
        self._dispatcher = SinkDispatcher(self.bindings)
        self._logger = structlog.wrap_logger(
            self._dispatcher,
            processors=self._create_processors(),
            wrapper_class=structlog.BoundLogger,
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    @property
    def settings(self) -> LoggerSettings:
        return self._settings

    @property
    def meta(self) -> MetaStore:
        return self._meta

    @property
    def logger(self) -> Any:
        """The underlying structlog logger, for leveled logging."""
        return self._logger

    def child(self, **fields: Any) -> Any:
        """Return a logger whose records all carry ``fields``."""
        return self._logger.bind(**fields)

    def _create_processors(self) -> list[Any]:
        return [
            _add_record_fields(self._settings.name, self._settings.type),
            _add_numeric_level,
            structlog.processors.TimeStamper(fmt="iso", key="time"),
            SerializerProcessor(self.serializers),
            _rename_event,
            _to_dispatcher,
        ]

    def _create_bindings(self) -> list[SinkBinding]:
        settings = self._settings

        if settings.streams:
            bindings = []
            for entry in settings.streams:
                binding = SinkBinding.from_entry(entry, settings.level)
                if binding is None:
                    logger.warning("Ignoring unusable stream entry", entry=repr(entry))
                    continue
                bindings.append(binding)
            if bindings:
                return bindings
            logger.warning("No usable streams configured, using the console sink")

        transforms = TransformChain.from_flags(
            settings.is_mapper,
            settings.is_trim,
            meta_store=self._meta,
            max_size=settings.max_field_size,
        )
        bindings = [SinkBinding(sink=ConsoleSink(transforms), level=settings.level)]
        if settings.gelf_config is not None:
            bindings.append(
                SinkBinding(
                    sink=NetworkSink(settings.gelf_config, transforms),
                    level=settings.level,
                    type="gelf",
                )
            )
        return bindings

    # Record emission

    def json_log(self, payload: Any, event: str | None = None, request: Any = None) -> None:
        """Emit a record at NOTICE severity.

        Dropped silently when JSON logging is disabled. ``payload`` is a
        ``Text`` or ``Structured`` value; raw strings and mappings are
        wrapped. With ``request`` the request's child logger is used.
        """
        if not self._settings.is_json:
            return
        target = self._logger
        if request is not None:
            target = self._request_logger(request) or target
        self._emit(target, as_log_input(payload), event)

    def log(self, event: str, **fields: Any) -> None:
        """Emit ``fields`` under ``stringData`` with ``event`` as message."""
        self.json_log(Structured({"stringData": fields}), event)

    def _emit(self, target: Any, entry: LogInput, event: str | None) -> None:
        try:
            if isinstance(entry, Text):
                message = entry.message if event is None else f"{entry.message} {event}"
                target.notice(message)
                return

            fields = {str(key): value for key, value in entry.fields.items()}
            inner_event = fields.pop("event", None)
            target.notice(event if event is not None else inner_event, **fields)
        except Exception as e:
            logger.debug("Failed to emit log record", error=str(e))

    # Request lifecycle hooks

    def on_request_start(self, request: Any, response: Any = None) -> RequestContext:
        """Bind a RequestContext to ``request`` and log the incoming request.

        The inbound correlation header is reused when present. When
        ``response`` is given, the chosen id is set on its correlation
        header.
        """
        header = self._settings.request_id_header
        context = bind_request_context(
            request, _header_value(request, header), clock=self._clock
        )
        self._meta.set(LOG_META_KEY, context.meta)

        state = request_state(request)
        if state is not None:
            setattr(state, LOG_ATTRIBUTE, self.child(meta=context.meta, className=SERVER_CLASS_NAME))
            state.request_id = context.request_id

        if response is not None:
            self.set_correlation_header(response, context)

        self.json_log(Structured({"req": request}), INCOMING_REQUEST_POSTFIX, request=request)
        return context

    def set_correlation_header(self, response: Any, context: RequestContext) -> None:
        headers = getattr(response, "headers", None)
        try:
            headers[self._settings.request_id_header] = context.request_id
        except (TypeError, KeyError, AttributeError) as e:
            logger.debug("Could not set correlation header", error=str(e))

    def on_success_response(self, request: Any, response: Any) -> None:
        """Log the outcome of a successful request.

        Does nothing without a RequestContext and start time, when the
        response carries no ``result`` or when the result is a stream. The
        request's metadata is cleared either way.
        """
        try:
            context = get_request_context(request)
            if context is None or context.start_time is None:
                return

            elapsed = context.elapsed_ms()
            result = getattr(response, "result", ABSENT)
            if result is ABSENT or is_stream(result):
                return

            self.json_log(
                Structured(
                    {
                        "code": SUCCESS_CODE,
                        "result": result,
                        "meta": {"requestId": context.request_id, "time": elapsed},
                    }
                ),
                SUCCESSFUL_RESPONSE_POSTFIX,
                request=request,
            )
        finally:
            self._meta.clear()

    def on_error_response(self, error: BaseException, request: Any, response: Any = None) -> NoReturn:
        """Log a failed request, clear its metadata, then re-raise ``error`` unchanged."""
        context = get_request_context(request)
        if context is not None and context.start_time is not None:
            elapsed = context.elapsed_ms()
            message = error_message(error)
            if isinstance(message, Mapping) and message.get("msg"):
                message = message["msg"]

            self.json_log(
                Structured(
                    {
                        "error": {
                            "code": _error_code(error),
                            "name": error_name(error),
                            "message": message,
                        },
                        "meta": {"requestId": context.request_id, "time": elapsed},
                    }
                ),
                EXCEPTION_RESPONSE_POSTFIX,
                request=request,
            )

        self._meta.clear()
        raise error

    def _request_logger(self, request: Any) -> Any:
        state = request_state(request)
        request_logger = getattr(state, LOG_ATTRIBUTE, None)
        if request_logger is not None:
            return request_logger
        context = get_request_context(request)
        if context is None:
            return None
        return self.child(meta=context.meta, className=SERVER_CLASS_NAME)

    # Lifecycle

    def can_send(self) -> bool:
        """Whether the facade supports proactive delivery; subclasses override."""
        return False

    def flush(self) -> None:
        for binding in self.bindings:
            flush = getattr(binding.sink, "flush", None)
            if callable(flush):
                flush()

    def close(self) -> None:
        """Release every sink's transport."""
        self._dispatcher.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
