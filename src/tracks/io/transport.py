"""
Datagram transport for emitted envelopes.

Delivery is best effort: a failed send is logged and the caller moves on
to the next scheduled envelope.
"""

import abc
import logging
import socket
import struct
from pathlib import Path
from typing import Union

from tracks.config import NetworkConfig
from tracks.exceptions import TransportError
from tracks.io.codec import EnvelopeCodec
from tracks.payloads import Envelope

logger = logging.getLogger(__name__)

ROUTE_TABLE = Path("/proc/net/route")

# RTF_UP | RTF_GATEWAY
_ROUTE_FLAGS = 0x0003


def default_gateway(route_table: Union[str, Path] = ROUTE_TABLE) -> str | None:
    """
    Address of the IPv4 default-route gateway, if one is listed.

    Reads the kernel routing table in /proc/net/route format, where the
    destination and gateway columns are little-endian hex.
    """
    try:
        lines = Path(route_table).read_text().splitlines()
    except OSError as e:
        logger.debug("cannot read route table %s: %s", route_table, e)
        return None

    for line in lines[1:]:
        columns = line.split()
        if len(columns) < 4:
            continue
        destination, gateway, flags = columns[1], columns[2], columns[3]
        try:
            if destination != "00000000" or int(flags, 16) & _ROUTE_FLAGS != _ROUTE_FLAGS:
                continue
            return socket.inet_ntoa(struct.pack("<L", int(gateway, 16)))
        except ValueError:
            continue
    return None


class Transport(abc.ABC):
    """Accepts one envelope at a time and delivers it."""

    @abc.abstractmethod
    def send(self, envelope: Envelope) -> None:
        """Deliver an envelope; failures must not raise."""

    def close(self) -> None:
        """Release any resources held by the transport."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class MulticastTransport(Transport):
    """
    UDP multicast sender with an optional unicast duplicate.

    The duplicate goes to network.unicast_target, or to the default-route
    gateway when that is set to "auto".
    """

    def __init__(
        self,
        network: NetworkConfig | None = None,
        codec: EnvelopeCodec | None = None,
        route_table: Union[str, Path] = ROUTE_TABLE,
    ):
        """
        Open the sending socket.

        Args:
            network: Multicast group, port, TTL, loopback and interface.
            codec: Wire encoder; defaults to EnvelopeCodec().
            route_table: Routing table consulted for unicast "auto".

        Raises:
            TransportError: If the socket cannot be configured.
        """
        self.network = network or NetworkConfig()
        self.codec = codec or EnvelopeCodec()
        self.destination = (self.network.multicast_group, self.network.port)
        self.unicast_destination = self._resolve_unicast(route_table)

        try:
            self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            self._socket.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.network.ttl)
            self._socket.setsockopt(
                socket.IPPROTO_IP,
                socket.IP_MULTICAST_LOOP,
                1 if self.network.loopback else 0,
            )
            if self.network.interface != "0.0.0.0":
                self._socket.setsockopt(
                    socket.IPPROTO_IP,
                    socket.IP_MULTICAST_IF,
                    socket.inet_aton(self.network.interface),
                )
        except OSError as e:
            raise TransportError(f"cannot set up multicast socket: {e}") from e

        logger.info(
            "sending to %s:%d (ttl=%d, loopback=%s)",
            self.network.multicast_group,
            self.network.port,
            self.network.ttl,
            self.network.loopback,
        )
        if self.unicast_destination:
            logger.info("duplicating to %s:%d", *self.unicast_destination)

    def _resolve_unicast(self, route_table) -> tuple[str, int] | None:
        target = self.network.unicast_target
        if not target:
            return None
        port = self.network.unicast_port or self.network.port
        if target == "auto":
            gateway = default_gateway(route_table)
            if gateway is None:
                logger.warning("no default gateway found, unicast duplicate disabled")
                return None
            return gateway, port
        return target, port

    def send(self, envelope: Envelope) -> None:
        data = self.codec.encode(envelope)
        for destination in (self.destination, self.unicast_destination):
            if destination is None:
                continue
            try:
                self._socket.sendto(data, destination)
            except OSError as e:
                logger.warning("send to %s:%d failed: %s", destination[0], destination[1], e)

    def close(self) -> None:
        self._socket.close()
