"""Field redaction for request and error records.

These are pure functions: they never mutate their input and never raise.
Malformed input is treated as absent, except for credential-bearing fields,
which are masked whole when their shape is not understood.
"""

import json
import re
import traceback
from collections.abc import Callable, Mapping
from typing import Any

MASK = "***"

# Value of a cookie pair, up to the next ';' or the end of the string.
COOKIE_SID_PATTERN = re.compile(r"(?<![^;\s])(sid=)[^;]*")
COOKIE_RM_PATTERN = re.compile(r"(?<![^;\s])(rm=)[^;]*")
COOKIE_REPLACEMENT = r"\g<1>" + MASK

Serializer = Callable[[Any], Any]


def _redact_cookie(value: Any) -> str:
    if not isinstance(value, str):
        return MASK
    value = COOKIE_SID_PATTERN.sub(COOKIE_REPLACEMENT, value)
    return COOKIE_RM_PATTERN.sub(COOKIE_REPLACEMENT, value)


def redact_headers(headers: Any) -> dict[str, Any]:
    """Mask session cookies and the authorization header.

    In ``cookie`` the values bound to ``sid=`` and ``rm=`` are replaced with
    the mask, leaving every other cookie pair untouched. ``authorization``
    is replaced whole, whatever its scheme. Header names are matched
    case-insensitively; other headers pass through.

    Args:
    ----
        headers: Header mapping (anything else is treated as no headers)

    Returns:
    -------
        A new header dictionary

    """
    if not isinstance(headers, Mapping):
        return {}

    redacted: dict[str, Any] = {}
    for key, value in headers.items():
        lowered = key.lower() if isinstance(key, str) else key
        if lowered == "cookie":
            redacted[key] = _redact_cookie(value)
        elif lowered == "authorization":
            redacted[key] = MASK
        else:
            redacted[key] = value
    return redacted


def _get(source: Any, name: str) -> Any:
    # Attributes first: a Starlette Request is also a Mapping over its scope.
    if hasattr(source, name):
        return getattr(source, name)
    if isinstance(source, Mapping):
        return source.get(name)
    return None


def redact_request(request: Any) -> dict[str, Any]:
    """Project a request onto ``{url, method, headers}`` with redacted headers.

    Works for Starlette requests as well as plain mappings.
    """
    url = _get(request, "url")
    return {
        "url": str(url) if url is not None else None,
        "method": _get(request, "method"),
        "headers": redact_headers(_get(request, "headers")),
    }


def _error_stack(error: Any) -> str | None:
    stack = _get(error, "stack")
    if stack is not None:
        return str(stack)
    tb = getattr(error, "__traceback__", None)
    if isinstance(error, BaseException) and tb is not None:
        return "".join(traceback.format_exception(type(error), error, tb))
    return None


def error_name(error: Any) -> str:
    """Name of an error: its ``name`` field or else its class name."""
    name = _get(error, "name")
    if isinstance(name, str) and name:
        return name
    return type(error).__name__


def error_message(error: Any) -> Any:
    """Message of an error, as structured as the error carries it."""
    message = _get(error, "message")
    if message is None and isinstance(error, BaseException):
        detail = getattr(error, "detail", None)
        message = detail if detail is not None else str(error)
    return message


def redact_error(error: Any) -> dict[str, Any]:
    """Project an error onto ``{name, message, stack}``.

    ``message`` is always JSON-encoded, even when it is a plain string.
    """
    try:
        message = json.dumps(error_message(error), default=str)
    except (TypeError, ValueError):
        message = json.dumps(str(error_message(error)))
    return {
        "name": error_name(error),
        "message": message,
        "stack": _error_stack(error),
    }


def default_serializers() -> dict[str, Serializer]:
    """Built-in field serializers, keyed by record field name."""
    return {
        "header": redact_headers,
        "req": redact_request,
        "err": redact_error,
    }


# Serializers whose failure must not leak the raw value.
SENSITIVE_SERIALIZERS = frozenset({"header", "req"})


def build_serializers(overrides: Mapping[str, Serializer] | None = None) -> dict[str, Serializer]:
    """Merge caller serializers over the built-in ones; caller entries win."""
    serializers = default_serializers()
    if overrides:
        serializers.update(overrides)
    return serializers


class SerializerProcessor:
    """structlog processor applying a serializer registry to record fields.

    A failing serializer leaves the raw value in place, except for
    credential-bearing fields which are replaced by the mask.
    """

    def __init__(self, serializers: Mapping[str, Serializer]) -> None:
        self.serializers = dict(serializers)

    def __call__(self, _: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, serializer in self.serializers.items():
            if key not in event_dict:
                continue
            try:
                event_dict[key] = serializer(event_dict[key])
            except Exception:
                if key in SENSITIVE_SERIALIZERS:
                    event_dict[key] = MASK
        return event_dict
