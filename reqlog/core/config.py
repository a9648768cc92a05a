"""Settings for the request logging facade.

Settings are resolved once, when a facade is built, and are frozen
afterwards. Values come from keyword arguments, an options mapping
(see ``LoggerSettings.from_options``) or ``REQLOG_*`` environment variables.
"""

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

# Severity used by json_log records; above CRITICAL so no threshold filters it.
NOTICE = 70

DEFAULT_NAME_AND_TYPE = "example"
DEFAULT_REQUEST_ID_HEADER = "x-request-id"


class LogLevel(str, Enum):
    """Level names accepted in configuration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    NOTICE = "NOTICE"


LEVEL_NUMBERS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "notice": NOTICE,
}


def resolve_level(value: Any, default: int = logging.INFO) -> int:
    """Turn a level name, enum member or number into a numeric severity.

    Unknown values resolve to ``default``.
    """
    if isinstance(value, LogLevel):
        value = value.value
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return int(text)
        return LEVEL_NUMBERS.get(text.lower(), default)
    return default


class GelfConfig(BaseModel):
    """Endpoint of the remote log collector."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    host: str = Field(default="127.0.0.1", description="Collector host")
    port: int = Field(default=12201, ge=1, le=65535, description="Collector port")
    protocol: Literal["udp", "tcp"] = Field(default="udp", description="Transport")
    timeout: float = Field(default=1.0, gt=0, description="Socket timeout in seconds")
    max_message_size: int = Field(
        default=8192, gt=0, description="Largest UDP datagram sent, in bytes"
    )
    queue_size: int = Field(default=1000, gt=0, description="Pending records kept")

    @field_validator("protocol", mode="before")
    @classmethod
    def lower_protocol(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower()
        return v


class LoggerSettings(BaseSettings):
    """Configuration of a ``LoggerFacade``.

    Environment variables use the ``REQLOG_`` prefix, e.g. ``REQLOG_LEVEL=DEBUG``
    or ``REQLOG_IS_JSON=false``.

    Attributes
    ----------
        name: Logger name written on every record
        type: Logger type written on every record
        level: Minimum numeric severity for the default sinks
        is_json: Enables ``json_log``/``log`` and the request hook records;
            off unless set, so those calls are dropped by default
        is_mapper: Console sink with the Mapper stage
        is_trim: Console sink with the Trim stage
        streams: Explicit sink bindings; take precedence over everything else
        serializers: Field serializers, merged over the built-in ones
        gelf_config: Remote collector endpoint; adds a network sink
        max_field_size: Size bound used by the Trim stage
        request_id_header: Inbound/outbound correlation header

    """

    model_config = SettingsConfigDict(
        env_prefix="REQLOG_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        arbitrary_types_allowed=True,
    )

    name: str = DEFAULT_NAME_AND_TYPE
    type: str = DEFAULT_NAME_AND_TYPE
    level: int = logging.INFO
    is_json: bool = False
    is_mapper: bool = False
    is_trim: bool = False
    streams: list[Any] = Field(default_factory=list)
    serializers: dict[str, Callable[[Any], Any]] = Field(default_factory=dict)
    gelf_config: GelfConfig | None = None
    max_field_size: int = Field(default=1024, gt=0)
    request_id_header: str = DEFAULT_REQUEST_ID_HEADER

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> int:
        """Accept names like ``"info"``/``"WARN"`` and fall back to INFO."""
        level = resolve_level(v, default=-1)
        if level < 0:
            logger.warning("Unknown log level, using INFO", level=v)
            return logging.INFO
        return level

    @field_validator("name", "type", mode="before")
    @classmethod
    def default_blank_names(cls, v: Any) -> Any:
        if v is None or v == "":
            return DEFAULT_NAME_AND_TYPE
        return v

    @field_validator("request_id_header", mode="before")
    @classmethod
    def lower_header(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip():
            return v.strip().lower()
        return DEFAULT_REQUEST_ID_HEADER

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> "LoggerSettings":
        """Build settings from a loose options mapping.

        camelCase option names are accepted next to the snake_case field
        names. Options that fail validation are dropped and their defaults
        are used instead; this never raises for bad configuration.
        """
        values: dict[str, Any] = {}
        for key, value in (options or {}).items():
            field_name = _OPTION_ALIASES.get(key, key)
            if field_name in cls.model_fields:
                values[field_name] = value

        while True:
            try:
                return cls(**values)
            except ValidationError as e:
                invalid = {
                    str(error["loc"][0]) for error in e.errors() if error.get("loc")
                } & values.keys()
                if not invalid:
                    logger.warning("Invalid logger settings, using defaults", error=str(e))
                    return cls()
                logger.warning(
                    "Ignoring invalid logger options", options=sorted(invalid)
                )
                for key in invalid:
                    values.pop(key)


_OPTION_ALIASES = {
    "isJSON": "is_json",
    "isJson": "is_json",
    "isMapper": "is_mapper",
    "isTrim": "is_trim",
    "gelfConfig": "gelf_config",
    "maxFieldSize": "max_field_size",
    "requestIdHeader": "request_id_header",
}
