"""Tests for console and network sinks."""
import io
import json
import socket
import threading
from unittest.mock import MagicMock

import pytest

from reqlog.core.config import GelfConfig
from reqlog.core.logging.sinks import (
    ConsoleSink,
    NetworkSink,
    SinkBinding,
    SinkDispatcher,
    TcpTransport,
    UdpTransport,
    create_transport,
    serialize_record,
)
from reqlog.core.logging.transforms import TransformChain, Trim


class RecordingTransport:
    """Transport keeping sent payloads in memory."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail
        self.closed = False

    def send(self, data: bytes) -> None:
        if self.fail:
            raise OSError("collector unreachable")
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True


class TestConsoleSink:
    """Test console output."""

    def test_writes_json_line(self):
        """Each record becomes one JSON document per line."""
        stream = io.StringIO()
        ConsoleSink(stream=stream).write({"msg": "hello", "level": 20})

        line = stream.getvalue()
        assert line.endswith("\n")
        assert json.loads(line) == {"msg": "hello", "level": 20}

    def test_defaults_to_stdout(self, capsys):
        ConsoleSink().write({"msg": "to stdout"})
        assert json.loads(capsys.readouterr().out)["msg"] == "to stdout"

    def test_applies_transforms(self):
        """Output reflects the Trim stage's shaping."""
        stream = io.StringIO()
        ConsoleSink(TransformChain([Trim(max_size=3)]), stream=stream).write({"body": "abcdef"})
        assert json.loads(stream.getvalue())["body"].startswith("abc...")

    def test_write_errors_swallowed(self):
        """A broken stream never raises into the caller."""
        stream = io.StringIO()
        stream.close()
        ConsoleSink(stream=stream).write({"msg": "lost"})

    def test_pretty_output(self, capsys):
        """Pretty mode renders the message and request id."""
        ConsoleSink(pretty=True).write(
            {"msg": "INCOMING_REQUEST", "level": 70, "meta": {"requestId": "abcdef123456"}}
        )
        out = capsys.readouterr().out
        assert "INCOMING_REQUEST" in out
        assert "req=abcdef12" in out

    def test_unserializable_values_stringified(self):
        stream = io.StringIO()
        ConsoleSink(stream=stream).write({"value": object()})
        assert json.loads(stream.getvalue())["value"].startswith("<object object")


class TestNetworkSink:
    """Test forwarding to a remote collector."""

    def test_sends_newline_terminated_json(self):
        """One newline-terminated JSON message per record."""
        transport = RecordingTransport()
        sink = NetworkSink(GelfConfig(), transport=transport)

        sink.write({"msg": "one"})
        sink.write({"msg": "two"})
        assert sink.flush(timeout=2.0)
        sink.close()

        assert [json.loads(data) for data in transport.sent] == [{"msg": "one"}, {"msg": "two"}]
        assert all(data.endswith(b"\n") for data in transport.sent)
        assert transport.closed

    def test_transport_errors_swallowed(self):
        """Send failures drop the record without raising."""
        transport = RecordingTransport(fail=True)
        sink = NetworkSink(GelfConfig(), transport=transport)

        sink.write({"msg": "lost"})
        sink.flush(timeout=2.0)
        sink.close()

        assert sink.dropped == 1

    def test_full_queue_drops(self):
        """A full queue drops new records instead of blocking."""
        release = threading.Event()

        class BlockingTransport(RecordingTransport):
            def send(self, data):
                release.wait(2.0)
                super().send(data)

        transport = BlockingTransport()
        sink = NetworkSink(GelfConfig(queue_size=1), transport=transport)

        for i in range(3):
            sink.write({"msg": i})
        assert sink.dropped >= 1

        release.set()
        sink.close()
        assert 1 <= len(transport.sent) <= 2

    def test_writes_after_close_dropped(self):
        transport = RecordingTransport()
        sink = NetworkSink(GelfConfig(), transport=transport)
        sink.close()

        sink.write({"msg": "late"})
        assert transport.sent == []
        assert not sink.can_send()

    def test_can_send_while_running(self):
        with NetworkSink(GelfConfig(), transport=RecordingTransport()) as sink:
            assert sink.can_send()

    def test_create_transport_by_protocol(self):
        assert isinstance(create_transport(GelfConfig(protocol="udp")), UdpTransport)
        assert isinstance(create_transport(GelfConfig(protocol="TCP")), TcpTransport)


@pytest.mark.integration
class TestTransports:
    """Test socket transports."""

    def test_udp_round_trip(self):
        """A datagram reaches a local UDP listener."""
        receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        receiver.bind(("127.0.0.1", 0))
        receiver.settimeout(2.0)
        host, port = receiver.getsockname()

        transport = UdpTransport(host, port)
        try:
            transport.send(serialize_record({"msg": "udp"}).encode())
            data, _ = receiver.recvfrom(65536)
        finally:
            transport.close()
            receiver.close()

        assert json.loads(data) == {"msg": "udp"}

    def test_udp_oversized_datagram_rejected(self):
        transport = UdpTransport("127.0.0.1", 9, max_message_size=4)
        with pytest.raises(ValueError):
            transport.send(b"too large")

    def test_tcp_round_trip(self):
        """Messages are streamed over a lazily opened connection."""
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        server.settimeout(2.0)
        host, port = server.getsockname()

        transport = TcpTransport(host, port, timeout=2.0)
        try:
            transport.send(b'{"msg": "tcp"}\n')
            conn, _ = server.accept()
            conn.settimeout(2.0)
            data = conn.recv(4096)
            conn.close()
        finally:
            transport.close()
            server.close()

        assert data == b'{"msg": "tcp"}\n'
        assert not transport.connected

    def test_tcp_connection_refused_raises_for_sink(self):
        """Connection errors surface to the sink, which drops the record."""
        probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        probe.bind(("127.0.0.1", 0))
        host, port = probe.getsockname()
        probe.close()

        transport = TcpTransport(host, port, timeout=0.5)
        with pytest.raises(OSError):
            transport.send(b"x\n")
        assert not transport.connected


class TestSinkBinding:
    """Test severity thresholds and stream entry coercion."""

    def test_level_threshold(self, sink):
        binding = SinkBinding(sink=sink, level=30)
        assert binding.accepts({"level": 30})
        assert binding.accepts({"level": 70})
        assert not binding.accepts({"level": 20})

    def test_from_mapping_entry(self, sink):
        binding = SinkBinding.from_entry({"type": "raw", "level": "error", "sink": sink}, 20)
        assert binding == SinkBinding(sink=sink, level=40, type="raw")

    def test_from_sink_uses_default_level(self, sink):
        assert SinkBinding.from_entry(sink, 20) == SinkBinding(sink=sink, level=20)

    def test_text_stream_wrapped_in_console_sink(self):
        binding = SinkBinding.from_entry({"stream": io.StringIO(), "level": 10}, 20)
        assert isinstance(binding.sink, ConsoleSink)

    def test_unusable_entries(self):
        assert SinkBinding.from_entry("stdout", 20) is None
        assert SinkBinding.from_entry({"level": 10}, 20) is None


class TestSinkDispatcher:
    """Test delivery to bindings."""

    def test_delivers_by_level(self, sink_factory):
        low, high = sink_factory(), sink_factory()
        dispatcher = SinkDispatcher(
            [SinkBinding(sink=low, level=10), SinkBinding(sink=high, level=40)]
        )

        dispatcher.info({"msg": "info", "level": 20})
        dispatcher.notice({"msg": "notice", "level": 70})

        assert [r["msg"] for r in low.records] == ["info", "notice"]
        assert [r["msg"] for r in high.records] == ["notice"]

    def test_failing_sink_does_not_block_others(self, sink):
        broken = MagicMock()
        broken.write.side_effect = RuntimeError("boom")
        dispatcher = SinkDispatcher(
            [SinkBinding(sink=broken, level=0), SinkBinding(sink=sink, level=0)]
        )

        dispatcher.msg({"msg": "x", "level": 20})
        assert sink.records == [{"msg": "x", "level": 20}]

    def test_close_closes_sinks(self, sink):
        SinkDispatcher([SinkBinding(sink=sink, level=0)]).close()
        assert sink.closed
