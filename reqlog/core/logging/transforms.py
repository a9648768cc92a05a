"""Record transform stages applied before a record reaches a sink.

A stage is a callable ``LogRecord -> LogRecord`` that never raises. Stages
are composed by ``TransformChain`` in a fixed order: Mapper, then Trim.
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from reqlog.core.context import MetaStore

from .config import get_logger

logger = get_logger(__name__)

LogRecord = dict[str, Any]

# Key the facade stores the current request metadata under in its MetaStore.
LOG_META_KEY = "log-meta"

RESERVED_FIELDS = frozenset({"name", "type", "hostname", "pid", "level", "time", "msg"})


class RecordTransform(Protocol):
    def __call__(self, record: LogRecord) -> LogRecord: ...


class Mapper:
    """Merge request metadata into the record's ``meta`` field.

    Metadata comes from the facade's MetaStore, which holds the current
    request's metadata until the request completes. Values already in
    ``meta`` win.
    """

    def __init__(self, meta_store: MetaStore | None = None) -> None:
        self.meta_store = meta_store

    def __call__(self, record: LogRecord) -> LogRecord:
        try:
            mapped = dict(record)
            if self.meta_store is None:
                return mapped
            request_meta = self.meta_store.get(LOG_META_KEY)
            if not request_meta:
                return mapped

            current = mapped.get("meta")
            if current is None:
                mapped["meta"] = dict(request_meta)
            elif isinstance(current, Mapping):
                mapped["meta"] = {**request_meta, **current}
            return mapped
        except Exception:
            return record


def _size(value: Any) -> int:
    if isinstance(value, str):
        return len(value)
    try:
        return len(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return len(str(value))


def truncation_marker(size: int) -> str:
    return f"[truncated, {size} chars total]"


class Trim:
    """Shorten oversized fields while keeping the record's shape.

    Strings longer than ``max_size`` are cut and suffixed with a marker.
    Mappings are trimmed field by field. Any other value whose encoded size
    exceeds ``max_size`` is replaced by the marker. Reserved fields are
    never touched.
    """

    def __init__(self, max_size: int = 1024) -> None:
        self.max_size = max_size

    def __call__(self, record: LogRecord) -> LogRecord:
        try:
            return {
                key: value if key in RESERVED_FIELDS else self._trim(value)
                for key, value in record.items()
            }
        except Exception:
            return record

    def _trim(self, value: Any) -> Any:
        if isinstance(value, str):
            if len(value) > self.max_size:
                return value[: self.max_size] + "..." + truncation_marker(len(value))
            return value
        if isinstance(value, Mapping):
            return {key: self._trim(item) for key, item in value.items()}
        if value is None or isinstance(value, (bool, int, float)):
            return value
        size = _size(value)
        if size > self.max_size:
            return truncation_marker(size)
        return value


class TransformChain:
    """Ordered composition of transform stages."""

    def __init__(self, stages: Iterable[RecordTransform] = ()) -> None:
        self.stages = list(stages)

    @classmethod
    def from_flags(
        cls,
        is_mapper: bool,
        is_trim: bool,
        meta_store: MetaStore | None = None,
        max_size: int = 1024,
    ) -> "TransformChain":
        stages: list[RecordTransform] = []
        if is_mapper:
            stages.append(Mapper(meta_store))
        if is_trim:
            stages.append(Trim(max_size))
        return cls(stages)

    def __call__(self, record: LogRecord) -> LogRecord:
        for stage in self.stages:
            try:
                record = stage(record)
            except Exception:
                logger.debug("Transform stage failed", stage=type(stage).__name__)
        return record

    def __len__(self) -> int:
        return len(self.stages)

    def __bool__(self) -> bool:
        return bool(self.stages)
