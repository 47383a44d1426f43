"""Tests for the multicast transport and the receiver."""

import json
import logging
import socket

import pytest

from tracks.config import NetworkConfig
from tracks.exceptions import TransportError
from tracks.io.codec import EnvelopeCodec
from tracks.io.transport import MulticastTransport, default_gateway
from tracks.payloads import Beat, Envelope, Mfcc, TrackAbort, TrackEnd, TrackStart
from tracks.receiver import EventReceiver, format_envelope

ROUTE_HEADER = "Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT\n"


class RecordingSocket:
    """Socket stand-in that records sendto() calls and can fail on demand."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []
        self.closed = False

    def sendto(self, data, destination):
        if destination in self.fail_for:
            raise OSError("network is unreachable")
        self.sent.append((data, destination))

    def close(self):
        self.closed = True


class ScriptedSocket:
    """Socket stand-in whose recvfrom() replays a list of datagrams."""

    def __init__(self, datagrams):
        self.datagrams = list(datagrams)
        self.closed = False

    def recvfrom(self, size):
        return self.datagrams.pop(0), ("127.0.0.1", 5000)

    def close(self):
        self.closed = True


@pytest.fixture
def route_table(tmp_path):
    path = tmp_path / "route"
    path.write_text(
        ROUTE_HEADER
        + "eth0\t0010A8C0\t00000000\t0001\t0\t0\t0\t00FFFFFF\t0\t0\t0\n"
        + "eth0\t00000000\t0100A8C0\t0003\t0\t0\t100\t00000000\t0\t0\t0\n"
    )
    return path


def make_transport(network, sock=None, **kwargs):
    transport = MulticastTransport(network, **kwargs)
    transport._socket.close()
    transport._socket = sock or RecordingSocket()
    return transport


class TestDefaultGateway:
    """Tests for routing-table parsing."""

    def test_finds_gateway(self, route_table):
        """The default route's gateway is decoded from little-endian hex."""
        assert default_gateway(route_table) == "192.168.0.1"

    def test_no_default_route(self, tmp_path):
        """Without a default route there is no gateway."""
        path = tmp_path / "route"
        path.write_text(ROUTE_HEADER + "eth0\t0010A8C0\t00000000\t0001\t0\t0\t0\t00FFFFFF\t0\t0\t0\n")
        assert default_gateway(path) is None

    def test_unreadable_table(self, tmp_path):
        """A missing table is treated as no gateway."""
        assert default_gateway(tmp_path / "missing") is None

    def test_skips_garbage(self, tmp_path):
        """Unparseable lines are skipped."""
        path = tmp_path / "route"
        path.write_text(
            ROUTE_HEADER
            + "short line\n"
            + "eth0\t00000000\tZZZZ\t0003\n"
            + "eth1\t00000000\t0101A8C0\t0003\t0\t0\t0\t00000000\t0\t0\t0\n"
        )
        assert default_gateway(path) == "192.168.1.1"


class TestMulticastTransport:
    """Tests for MulticastTransport."""

    def test_sends_encoded_envelope(self):
        """Each envelope becomes one JSON datagram to the group."""
        sock = RecordingSocket()
        transport = make_transport(NetworkConfig(port=5005), sock)
        transport.send(Envelope(1.0, Beat(0.5)))

        assert len(sock.sent) == 1
        data, destination = sock.sent[0]
        assert destination == ("239.255.0.1", 5005)
        assert json.loads(data)["event"] == "beat"

    def test_unicast_duplicate(self):
        """An explicit unicast target receives a copy."""
        sock = RecordingSocket()
        network = NetworkConfig(unicast_target="10.0.0.7", unicast_port=6000)
        transport = make_transport(network, sock)
        transport.send(Envelope(0.0, TrackEnd()))

        assert [d for _, d in sock.sent] == [("239.255.0.1", 5000), ("10.0.0.7", 6000)]
        assert sock.sent[0][0] == sock.sent[1][0]

    def test_unicast_port_defaults_to_group_port(self):
        """Without a unicast port the multicast port is reused."""
        network = NetworkConfig(port=5100, unicast_target="10.0.0.7")
        transport = make_transport(network)
        assert transport.unicast_destination == ("10.0.0.7", 5100)

    def test_unicast_auto(self, route_table):
        """'auto' resolves to the default gateway."""
        network = NetworkConfig(unicast_target="auto")
        transport = make_transport(network, route_table=route_table)
        assert transport.unicast_destination == ("192.168.0.1", 5000)

    def test_unicast_auto_without_gateway(self, tmp_path, caplog):
        """'auto' without a gateway disables the duplicate with a warning."""
        network = NetworkConfig(unicast_target="auto")
        transport = make_transport(network, route_table=tmp_path / "missing")

        assert transport.unicast_destination is None
        assert "gateway" in caplog.text

    def test_send_failure_is_logged(self, caplog):
        """A failed send is logged and the other destination still gets it."""
        sock = RecordingSocket(fail_for={("239.255.0.1", 5000)})
        network = NetworkConfig(unicast_target="10.0.0.7")
        transport = make_transport(network, sock)

        with caplog.at_level(logging.WARNING):
            transport.send(Envelope(0.0, TrackEnd()))

        assert [d for _, d in sock.sent] == [("10.0.0.7", 5000)]
        assert "failed" in caplog.text

    def test_context_manager_closes(self):
        """Leaving the block closes the socket."""
        sock = RecordingSocket()
        with make_transport(NetworkConfig(), sock):
            pass
        assert sock.closed

    def test_setup_failure(self, monkeypatch):
        """Socket option errors surface as TransportError."""

        class BrokenSocket:
            def __init__(self, *args):
                pass

            def setsockopt(self, *args):
                raise OSError("no multicast here")

        monkeypatch.setattr(socket, "socket", BrokenSocket)
        with pytest.raises(TransportError):
            MulticastTransport(NetworkConfig())


class TestFormatEnvelope:
    """Tests for receiver output lines."""

    def test_beat_line(self):
        """Timestamp, padded name and fields."""
        line = format_envelope(Envelope(12.345, Beat(0.91)))
        assert line == "[  12.345] beat              confidence=0.910"

    def test_marker_line(self):
        """Events without fields print just the name."""
        assert format_envelope(Envelope(4.0, TrackEnd())) == "[   4.000] track.end"

    def test_long_vector_is_shortened(self):
        """Vectors show their first values and the total count."""
        line = format_envelope(Envelope(0.0, Mfcc(tuple(float(i) for i in range(13)))))
        assert "0.000,1.000,2.000,3.000,...13 total" in line

    def test_missing_value(self):
        """None prints as a dash."""
        assert format_envelope(Envelope(0.0, Beat())).endswith("confidence=-")

    def test_mixed_fields(self):
        """Strings and ints print as-is."""
        line = format_envelope(Envelope(0.0, TrackStart("a.wav", 2.0, 44100, 1)))
        assert "filename=a.wav" in line
        assert "sample_rate=44100" in line


class TestEventReceiver:
    """Tests for EventReceiver."""

    def test_handle_malformed(self, caplog):
        """Bad datagrams are skipped with a warning."""
        receiver = EventReceiver(sock=ScriptedSocket([]))
        assert receiver.handle(b"garbage") is None
        assert "malformed" in caplog.text

    def test_listen_until_end(self):
        """Listening stops at track.end and returns it."""
        codec = EnvelopeCodec()
        sock = ScriptedSocket([
            codec.encode(Envelope(0.0, TrackStart("a.wav", 1.0, 44100, 1))),
            b"{broken",
            codec.encode(Envelope(0.5, Beat(0.8))),
            codec.encode(Envelope(1.0, TrackEnd())),
            codec.encode(Envelope(2.0, Beat(0.8))),
        ])
        received = []
        terminal = EventReceiver(sock=sock).listen(received.append)

        assert [e.category.value for e in received] == ["track.start", "beat", "track.end"]
        assert terminal == Envelope(1.0, TrackEnd())
        assert len(sock.datagrams) == 1

    def test_listen_until_abort(self, capsys):
        """track.abort also ends listening; default output is printed."""
        codec = EnvelopeCodec()
        sock = ScriptedSocket([
            codec.encode(Envelope(0.5, Beat(0.8))),
            codec.encode(Envelope(0.7, TrackAbort())),
        ])
        terminal = EventReceiver(sock=sock).listen()

        assert terminal.payload.reason == "user_interrupt"
        output = capsys.readouterr().out.splitlines()
        assert output[0].startswith("[   0.500] beat")
        assert "reason=user_interrupt" in output[1]

    def test_badly_typed_fields_are_skipped(self, capsys, caplog):
        """Envelopes with wrongly typed fields never stop the listener."""
        codec = EnvelopeCodec()
        sock = ScriptedSocket([
            b'{"timestamp":0.1,"event":"mfcc","data":{"values":["a","b"]}}',
            b'{"timestamp":0.2,"event":"beat","data":{"confidence":[1,[2]]}}',
            codec.encode(Envelope(1.0, TrackEnd())),
        ])
        terminal = EventReceiver(sock=sock).listen()

        assert terminal == Envelope(1.0, TrackEnd())
        assert capsys.readouterr().out.splitlines() == ["[   1.000] track.end"]
        assert caplog.text.count("malformed") == 2

    def test_failing_handler_is_skipped(self, caplog):
        """A handler error is logged and listening continues."""
        codec = EnvelopeCodec()
        sock = ScriptedSocket([
            codec.encode(Envelope(0.5, Beat(0.8))),
            codec.encode(Envelope(1.0, TrackEnd())),
        ])
        handled = []

        def handler(envelope):
            if envelope.category.value == "beat":
                raise ValueError("display went away")
            handled.append(envelope)

        terminal = EventReceiver(sock=sock).listen(handler)

        assert terminal == Envelope(1.0, TrackEnd())
        assert handled == [terminal]
        assert "display went away" in caplog.text

    def test_close(self):
        """close() releases the socket."""
        sock = ScriptedSocket([])
        with EventReceiver(sock=sock):
            pass
        assert sock.closed
