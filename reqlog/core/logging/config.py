"""Configuration of the library's own diagnostic logging.

Diagnostics (configuration fallbacks, dropped records, transport failures)
go through structlog and the standard library root logger, never through a
facade's sinks, so a broken sink cannot feed back into itself.

Applications that already configure structlog can skip
``configure_logging`` entirely.
"""

import logging
import sys
from enum import Enum
from typing import Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """Diagnostic output formats."""

    JSON = "json"
    CONSOLE = "console"


class LogConfig(BaseSettings):
    """Configuration for diagnostic logging.

    Read from environment variables with the prefix ``LOG_``, e.g.
    ``LOG_LEVEL=DEBUG`` or ``LOG_FORMAT=console``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        extra="ignore",
    )

    level: str = Field(default="WARNING", description="Minimum diagnostic level")
    format: LogFormat = Field(default=LogFormat.JSON, description="Output format")
    add_timestamp: bool = Field(default=True, description="Add timestamp to entries")

    @field_validator("level", mode="before")
    @classmethod
    def validate_level(cls, v: Any) -> str:
        """Validate and convert log level to uppercase."""
        if isinstance(v, str) and v.upper() in logging.getLevelNamesMapping():
            return v.upper()
        return "WARNING"


def _create_processor_chain(config: LogConfig) -> list:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
    ]
    if config.add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
    )
    return processors


def configure_logging(config: LogConfig | None = None) -> None:
    """Route diagnostics through structlog onto stderr.

    Args:
    ----
        config: Logging configuration. If None, reads from environment.

    """
    if config is None:
        config = LogConfig()

    pre_chain = _create_processor_chain(config)
    if config.format == LogFormat.CONSOLE:
        renderer: Any = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=pre_chain,
        )
    )

    diagnostics = logging.getLogger("reqlog")
    for existing in diagnostics.handlers[:]:
        diagnostics.removeHandler(existing)
    diagnostics.addHandler(handler)
    diagnostics.setLevel(config.level)
    diagnostics.propagate = False

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **kwargs: Any) -> Any:
    """Get a diagnostic logger, optionally with bound context.

    Args:
    ----
        name: Logger name. If None, uses calling module name.
        **kwargs: Additional context to bind to the logger

    """
    logger = structlog.get_logger(name)

    if kwargs:
        logger = logger.bind(**kwargs)

    return logger
