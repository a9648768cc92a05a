"""Sinks: destinations for finished log records.

Every sink exposes ``write(record)``. Writes never raise and never block on
the network: a failing sink drops the record and reports the failure on the
diagnostic logger.
"""

import io
import json
import queue
import socket
import sys
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import IO, Any, Protocol, runtime_checkable

from reqlog.core.config import GelfConfig, resolve_level

from .config import get_logger
from .console import RichConsoleRenderer
from .transforms import LogRecord, TransformChain

logger = get_logger(__name__)

DEFAULT_STREAM_TYPE = "raw"


def serialize_record(record: LogRecord) -> str:
    """Encode a record as one newline-terminated JSON document."""
    return json.dumps(record, default=str, ensure_ascii=False) + "\n"


@runtime_checkable
class Sink(Protocol):
    def write(self, record: LogRecord) -> None: ...


class BaseSink:
    """Common sink behaviour: transform, emit, swallow failures."""

    def __init__(self, transforms: TransformChain | None = None) -> None:
        self.transforms = transforms or TransformChain()

    def write(self, record: LogRecord) -> None:
        try:
            self.emit(self.transforms(record))
        except Exception as e:
            logger.debug("Dropped log record", sink=type(self).__name__, error=str(e))

    def emit(self, record: LogRecord) -> None:
        raise NotImplementedError

    def can_send(self) -> bool:
        return False

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ConsoleSink(BaseSink):
    """Write records to standard output, JSON per line or pretty with Rich."""

    def __init__(
        self,
        transforms: TransformChain | None = None,
        stream: IO[str] | None = None,
        pretty: bool = False,
    ) -> None:
        super().__init__(transforms)
        self._stream = stream
        self._renderer = RichConsoleRenderer() if pretty else None

    @property
    def stream(self) -> IO[str]:
        # Resolved on each write so a replaced sys.stdout is honoured.
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, record: LogRecord) -> None:
        if self._renderer is not None:
            self._renderer(record)
            return
        self.stream.write(serialize_record(record))

    def flush(self) -> None:
        try:
            self.stream.flush()
        except (OSError, ValueError):
            pass


class UdpTransport:
    """Send each message as one UDP datagram."""

    def __init__(self, host: str, port: int, timeout: float = 1.0, max_message_size: int = 8192):
        self._address = (host, port)
        self._timeout = timeout
        self._max_message_size = max_message_size
        self._sock: socket.socket | None = None

    def send(self, data: bytes) -> None:
        if len(data) > self._max_message_size:
            raise ValueError(f"datagram of {len(data)} bytes exceeds {self._max_message_size}")
        if self._sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.settimeout(self._timeout)
            self._sock = sock
        self._sock.sendto(data, self._address)

    def close(self) -> None:
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None


class TcpTransport:
    """Stream newline-delimited messages over one TCP connection.

    The connection is opened lazily. A failed send closes it; the next
    message opens a new one.
    """

    def __init__(self, host: str, port: int, timeout: float = 1.0):
        self._address = (host, port)
        self._timeout = timeout
        self._sock: socket.socket | None = None

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def send(self, data: bytes) -> None:
        if self._sock is None:
            self._sock = socket.create_connection(self._address, timeout=self._timeout)
        try:
            self._sock.sendall(data)
        except OSError:
            self.close()
            raise

    def close(self) -> None:
        if self._sock:
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None


def create_transport(config: GelfConfig) -> UdpTransport | TcpTransport:
    if config.protocol == "tcp":
        return TcpTransport(config.host, config.port, timeout=config.timeout)
    return UdpTransport(
        config.host,
        config.port,
        timeout=config.timeout,
        max_message_size=config.max_message_size,
    )


class NetworkSink(BaseSink):
    """Forward records to a remote log collector.

    ``write`` only encodes the record and enqueues it; a daemon worker
    thread performs the send. A full queue drops the record, a failed send
    drops the record, nothing is retried.
    """

    def __init__(
        self,
        config: GelfConfig | None = None,
        transforms: TransformChain | None = None,
        transport: Any = None,
    ) -> None:
        super().__init__(transforms)
        self.config = config or GelfConfig()
        self._transport = transport or create_transport(self.config)
        self._queue: queue.Queue[bytes | None] = queue.Queue(maxsize=self.config.queue_size)
        self._closed = False
        self.dropped = 0
        self._worker = threading.Thread(
            target=self._run, name="reqlog-network-sink", daemon=True
        )
        self._worker.start()

    def emit(self, record: LogRecord) -> None:
        if self._closed:
            self.dropped += 1
            return
        data = serialize_record(record).encode("utf-8")
        try:
            self._queue.put_nowait(data)
        except queue.Full:
            self.dropped += 1
            logger.debug("Network sink queue full, record dropped")

    def can_send(self) -> bool:
        return not self._closed and self._worker.is_alive()

    def flush(self, timeout: float = 1.0) -> bool:
        """Wait until queued records have been handed to the transport."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float = 2.0) -> None:
        """Drain pending records, stop the worker and release the transport."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Network sink queue still full on close")
        self._worker.join(timeout=timeout)
        self._transport.close()

    def _run(self) -> None:
        while True:
            data = self._queue.get()
            try:
                if data is None:
                    return
                self._transport.send(data)
            except Exception as e:
                self.dropped += 1
                logger.debug("Network sink send failed", error=str(e))
            finally:
                self._queue.task_done()


@dataclass(frozen=True)
class SinkBinding:
    """A sink together with its minimum severity."""

    sink: Sink
    level: int
    type: str = DEFAULT_STREAM_TYPE

    def accepts(self, record: Mapping[str, Any]) -> bool:
        level = record.get("level")
        if not isinstance(level, int):
            return True
        return level >= self.level

    @classmethod
    def from_entry(cls, entry: Any, default_level: int) -> "SinkBinding | None":
        """Coerce a ``streams`` entry into a binding.

        Accepts a binding, a sink, or a mapping ``{type, level, sink}``
        (``stream`` is accepted for ``sink``). Unusable entries give None.
        """
        if isinstance(entry, SinkBinding):
            return entry
        if isinstance(entry, Mapping):
            sink = _as_sink(entry.get("sink", entry.get("stream")))
            if sink is None:
                return None
            return cls(
                sink=sink,
                level=resolve_level(entry.get("level"), default=default_level),
                type=entry.get("type") or DEFAULT_STREAM_TYPE,
            )
        sink = _as_sink(entry)
        if sink is None:
            return None
        return cls(sink=sink, level=default_level)


def _as_sink(candidate: Any) -> Sink | None:
    # Plain text streams (sys.stdout, files) get wrapped in a console sink.
    if isinstance(candidate, io.IOBase):
        return ConsoleSink(stream=candidate)
    if isinstance(candidate, Sink):
        return candidate
    return None


class SinkDispatcher:
    """Final consumer of the structlog processor chain.

    Delivers each record to every binding whose level it reaches. All
    structlog method names map onto ``msg``.
    """

    def __init__(self, bindings: Iterable[SinkBinding]) -> None:
        self.bindings = list(bindings)

    def msg(self, record: LogRecord) -> None:
        for binding in self.bindings:
            if not binding.accepts(record):
                continue
            try:
                binding.sink.write(record)
            except Exception as e:
                logger.debug("Sink write failed", sink=type(binding.sink).__name__, error=str(e))

    debug = info = warning = warn = error = critical = fatal = notice = msg

    def close(self) -> None:
        for binding in self.bindings:
            close = getattr(binding.sink, "close", None)
            if callable(close):
                try:
                    close()
                except Exception as e:
                    logger.warning("Failed to close sink", sink=type(binding.sink).__name__, error=str(e))
