"""
Event receiver.

Joins the multicast group, decodes incoming envelopes and prints one
line per event until the run ends with track.end or track.abort.
"""

import logging
import socket
import struct
from typing import Callable

from tracks.events import EventCategory
from tracks.exceptions import CodecError, TransportError
from tracks.io.codec import EnvelopeCodec
from tracks.payloads import Envelope

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({EventCategory.TRACK_END, EventCategory.TRACK_ABORT})

NAME_WIDTH = 18
MAX_VECTOR_SHOWN = 4


def _format_value(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, tuple):
        shown = ",".join(f"{v:.3f}" for v in value[:MAX_VECTOR_SHOWN])
        if len(value) > MAX_VECTOR_SHOWN:
            shown += f",...{len(value)} total"
        return f"[{shown}]"
    return str(value)


def format_envelope(envelope: Envelope) -> str:
    """
    One human-readable line for an envelope.

    Example:
        [  12.345] beat              confidence=0.910
    """
    fields = " ".join(
        f"{k}={_format_value(v)}" for k, v in envelope.payload.to_dict().items()
    )
    line = f"[{envelope.timestamp:8.3f}] {envelope.category.value:<{NAME_WIDTH}}{fields}"
    return line.rstrip()


class EventReceiver:
    """Multicast listener that stops at the end of a run."""

    def __init__(
        self,
        group: str = "239.255.0.1",
        port: int = 5000,
        interface: str = "0.0.0.0",
        codec: EnvelopeCodec | None = None,
        sock: socket.socket | None = None,
        buffer_size: int = 65536,
    ):
        """
        Initialize the receiver.

        Args:
            group: Multicast group to join.
            port: UDP port to bind.
            interface: Local interface address to bind and join on.
            codec: Wire decoder; defaults to EnvelopeCodec().
            sock: Already-bound socket to read from instead of opening one.
            buffer_size: Largest datagram accepted.
        """
        self.group = group
        self.port = port
        self.interface = interface
        self.codec = codec or EnvelopeCodec()
        self.buffer_size = buffer_size
        self._socket = sock

    def open(self) -> None:
        """
        Bind the port and join the multicast group.

        Raises:
            TransportError: If the socket cannot be set up.
        """
        if self._socket is not None:
            return
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.interface, self.port))
            membership = struct.pack(
                "4s4s",
                socket.inet_aton(self.group),
                socket.inet_aton(self.interface),
            )
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, membership)
        except OSError as e:
            raise TransportError(f"cannot join {self.group}:{self.port}: {e}") from e
        self._socket = sock
        logger.info("listening on %s:%d", self.group, self.port)

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def handle(self, datagram: bytes) -> Envelope | None:
        """Decode one datagram; malformed input is logged and yields None."""
        try:
            return self.codec.decode(datagram)
        except CodecError as e:
            logger.warning("skipping malformed datagram: %s", e)
            return None

    def listen(
        self,
        on_envelope: Callable[[Envelope], None] | None = None,
    ) -> Envelope | None:
        """
        Receive until a terminal event arrives.

        Args:
            on_envelope: Called for every decoded envelope; defaults to
                         printing format_envelope() lines.

        Returns:
            The terminal envelope (track.end or track.abort).
        """
        if on_envelope is None:
            def on_envelope(envelope):
                print(format_envelope(envelope), flush=True)

        self.open()
        while True:
            datagram, _ = self._socket.recvfrom(self.buffer_size)
            envelope = self.handle(datagram)
            if envelope is None:
                continue
            try:
                on_envelope(envelope)
            except Exception as e:
                logger.warning("skipping %s that could not be handled: %s", envelope.category.value, e)
            if envelope.category in TERMINAL_EVENTS:
                return envelope

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
