"""Passes client requests to forwarders and sends the answers back."""

from __future__ import annotations

import socket
import struct
from collections import deque
from dataclasses import dataclass
from typing import Callable

from dote import log
from dote.config_parser import SocketAddress
from dote.dns_packet import DnsPacket
from dote.forwarder_config import ForwarderConfig
from dote.forwarder_connection import ForwarderConnection
from dote.loop import Loop
from dote.ssl_connection import SslFactory

__all__ = ["ClientForwarders", "ConnectionFactory"]

ConnectionFactory = Callable[[], ForwarderConnection]

_IPV6_PKTINFO = getattr(socket, "IPV6_PKTINFO", getattr(socket, "IPV6_RECVPKTINFO", None))
_IP_PKTINFO = getattr(socket, "IP_PKTINFO", None)
_IP_SENDSRCADDR = getattr(socket, "IP_SENDSRCADDR", None)


@dataclass
class _QueuedQuery:
    """A request waiting for a free connection."""

    sock: socket.socket
    client: SocketAddress | None
    server: SocketAddress | None
    interface: int
    request: bytes


def _source_address(
    server: SocketAddress | None, interface: int
) -> list[tuple[int, int, bytes]]:
    """Ancillary data that makes a reply leave from the given address."""
    if server is None:
        return []
    if server.family == socket.AF_INET6 and _IPV6_PKTINFO is not None:
        address = socket.inet_pton(socket.AF_INET6, server.host)
        return [(socket.IPPROTO_IPV6, _IPV6_PKTINFO,
                 struct.pack("=16sI", address, interface & 0xFFFFFFFF))]
    if server.family == socket.AF_INET:
        address = socket.inet_pton(socket.AF_INET, server.host)
        if _IP_SENDSRCADDR is not None:
            return [(socket.IPPROTO_IP, _IP_SENDSRCADDR, address)]
        if _IP_PKTINFO is not None:
            return [(socket.IPPROTO_IP, _IP_PKTINFO,
                     struct.pack("=i4s4s", interface, address, bytes(4)))]
    return []


def _socket_target(client: SocketAddress | None) -> tuple | None:
    if client is None:
        return None
    if client.family == socket.AF_INET6:
        return (client.host, client.port, 0, 0)
    if client.family == socket.AF_INET:
        return (client.host, client.port)
    return None


class ClientForwarders:
    """Opens one forwarder connection per request, up to a limit, queuing the rest."""

    def __init__(
        self,
        loop: Loop,
        config: ForwarderConfig,
        ssl_factory: SslFactory,
        max_connections: int,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._loop = loop
        self._config = config
        self._ssl = ssl_factory
        self._max_connections = max_connections
        self._connection_factory = connection_factory or self._new_connection
        self._forwarders: list[ForwarderConnection] = []
        self._queue: deque[_QueuedQuery] = deque()

    def _new_connection(self) -> ForwarderConnection:
        return ForwarderConnection(self._loop, self._config, self._ssl)

    def handle_request(
        self,
        sock: socket.socket,
        client: SocketAddress | None,
        server: SocketAddress | None,
        interface: int,
        request: bytes,
    ) -> None:
        """Forward a request, or queue it if every connection is in use.

        The reply goes to client over sock; server is the address to reply
        from (None if unknown) and interface its index, or -1 if unknown.
        """
        query = _QueuedQuery(sock, client, server, interface, bytes(request))
        if len(self._forwarders) < self._max_connections:
            self._send_request(query)
        else:
            log.debug(f"Queuing request, queue length is {len(self._queue)}")
            self._queue.append(query)

    def _send_request(self, query: _QueuedQuery) -> None:
        connection = self._connection_factory()
        if not connection.send(query.request):
            self._dequeue()
            return

        def on_incoming(conn: ForwarderConnection, buffer: bytes) -> None:
            self._handle_incoming(query, buffer)
            conn.shutdown()

        connection.set_incoming_callback(on_incoming)
        connection.set_shutdown_callback(self._handle_shutdown)
        self._forwarders.append(connection)

    def _dequeue(self) -> None:
        if self._queue:
            query = self._queue.popleft()
            self._send_request(query)
            log.debug(f"Sent request from queue, length now {len(self._queue)}")

    def _handle_shutdown(self, connection: ForwarderConnection) -> None:
        for index, forwarder in enumerate(self._forwarders):
            if forwarder is connection:
                del self._forwarders[index]
                break
        self._dequeue()

    def _handle_incoming(self, query: _QueuedQuery, buffer: bytes) -> None:
        packet = DnsPacket(buffer)
        if not packet.valid():
            log.warn("Discarding invalid response")
            return
        packet.remove_edns_padding()

        ancillary = (
            _source_address(query.server, query.interface)
            if query.interface != -1 else []
        )
        target = _socket_target(query.client)
        try:
            if target is None:
                query.sock.sendmsg([packet.payload()], ancillary, 0)
            else:
                query.sock.sendmsg([packet.payload()], ancillary, 0, target)
        except OSError:
            log.warn("Unable to send response to DNS request")