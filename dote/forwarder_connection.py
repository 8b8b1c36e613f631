"""A single request/response exchange with a DNS-over-TLS forwarder."""

from __future__ import annotations

import errno
import socket
import time
from enum import Enum, auto
from typing import Callable, Optional

from dote import log
from dote.config_parser import Forwarder, SocketAddress
from dote.forwarder_config import ForwarderConfig
from dote.loop import Loop, Registration
from dote.ssl_connection import Result, SslConnection, SslFactory, Verifier

__all__ = ["ForwarderConnection", "IncomingCallback", "ShutdownCallback"]

IncomingCallback = Callable[["ForwarderConnection", bytes], None]
ShutdownCallback = Callable[["ForwarderConnection"], None]
Connector = Callable[[SocketAddress], Optional[socket.socket]]
VerifierFactory = Callable[[Forwarder], Verifier]

_IN_PROGRESS = {0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EAGAIN}


def _open_socket(address: SocketAddress) -> socket.socket | None:
    """Start a non-blocking TCP connection, or None if it failed at once."""
    try:
        sock = socket.socket(address.family, socket.SOCK_STREAM)
    except OSError:
        return None
    try:
        sock.setblocking(False)
        if address.family == socket.AF_INET6:
            target: tuple = (address.host, address.port, 0, 0)
        else:
            target = (address.host, address.port)
        if sock.connect_ex(target) not in _IN_PROGRESS:
            sock.close()
            return None
    except OSError:
        sock.close()
        return None
    return sock


class _State(Enum):
    CONNECTING = auto()
    OPEN = auto()
    SHUTTING_DOWN = auto()
    CLOSED = auto()


class ForwarderConnection:
    """Connects to the preferred forwarder, sends one buffer and reports replies."""

    def __init__(
        self,
        loop: Loop,
        config: ForwarderConfig,
        ssl_factory: SslFactory,
        *,
        connector: Connector | None = None,
        verifier_factory: VerifierFactory | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._deadline = int(clock()) + config.timeout
        self._loop = loop
        self._config = config
        self._connection: SslConnection | None = ssl_factory.create()
        self._state = _State.CONNECTING
        self._socket: socket.socket | None = None
        self._handle = -1
        self._forwarder = Forwarder()
        self._buffer = b""
        self._incoming: IncomingCallback | None = None
        self._shutdown: ShutdownCallback | None = None
        self._read = Registration()
        self._write = Registration()
        self._exception = Registration()

        chosen = config.get()
        if self._connection is None or chosen is None or chosen.remote is None:
            self._state = _State.CLOSED
            return

        self._forwarder = chosen
        self._configure_verifier(verifier_factory)

        self._socket = (connector or _open_socket)(chosen.remote)
        if self._socket is None:
            config.set_bad(chosen)
            self._state = _State.CLOSED
            return

        self._handle = self._socket.fileno()
        self._connection.set_socket(self._handle)
        self._exception = loop.register_exception(self._handle, self._on_exception)
        self._connect(self._handle)

    def _configure_verifier(self, verifier_factory: VerifierFactory | None) -> None:
        if self._forwarder.disable_pki:
            self._connection.disable_verification()
        elif (self._forwarder.host or self._forwarder.pin) and verifier_factory:
            self._connection.set_verifier(verifier_factory(self._forwarder))

    def set_incoming_callback(self, incoming: IncomingCallback | None) -> None:
        """Call incoming with this connection and each buffer received."""
        self._incoming = incoming

    def set_shutdown_callback(self, shutdown: ShutdownCallback | None) -> None:
        """Call shutdown with this connection once it has closed."""
        self._shutdown = shutdown

    def closed(self) -> bool:
        """True once the connection is shutting down or closed."""
        return self._state in (_State.SHUTTING_DOWN, _State.CLOSED)

    def _register_read(self, callback: Callable[[int], None]) -> Registration:
        return self._loop.register_read(self._handle, callback, self._deadline)

    def _register_write(self, callback: Callable[[int], None]) -> Registration:
        return self._loop.register_write(self._handle, callback, self._deadline)

    def _fail(self, message: str) -> None:
        log.notice(message)
        self._config.set_bad(self._forwarder)
        self.close()

    def _connect(self, handle: int) -> None:
        result = self._connection.connect()
        if result is Result.NEED_READ:
            if not self._read:
                self._read = self._register_read(self._connect)
            self._write.reset()
        elif result is Result.NEED_WRITE:
            if not self._write:
                self._write = self._register_write(self._connect)
            self._read.reset()
        elif result is Result.SUCCESS:
            self._read.reset()
            self._write.reset()
            self._read = self._register_read(self._on_incoming)
            if self._buffer:
                self._write = self._register_write(self._on_outgoing)
            self._state = _State.OPEN
        elif result is Result.FATAL:
            self._fail("Error handshaking with forwarder")
        else:
            self.close()

    def _on_incoming(self, handle: int) -> None:
        result, buffer = self._connection.read()
        if result is Result.SUCCESS:
            if buffer and self._incoming is not None:
                self._incoming(self, buffer)
        elif result is Result.FATAL:
            self._fail("Error reading from forwarder")
        elif result is Result.CLOSED:
            self.close()

    def shutdown(self) -> None:
        """Begin closing the TLS session if it is connecting or open."""
        if self._state in (_State.CONNECTING, _State.OPEN):
            self._read.reset()
            self._write.reset()
            self._do_shutdown(self._handle)

    def _do_shutdown(self, handle: int) -> None:
        self._state = _State.SHUTTING_DOWN
        result = self._connection.shutdown()
        if result is Result.NEED_READ:
            if not self._read:
                self._read = self._register_read(self._do_shutdown)
            self._write.reset()
        elif result is Result.NEED_WRITE:
            if not self._write:
                self._write = self._register_write(self._do_shutdown)
            self._read.reset()
        else:
            self.close()

    def send(self, buffer: bytes) -> bool:
        """Queue a buffer for sending; False if closed or one is already queued."""
        if self._socket is None or self._state not in (_State.CONNECTING, _State.OPEN):
            return False
        if self._buffer:
            return False
        if self._state is _State.OPEN and not self._write:
            self._write = self._register_write(self._on_outgoing)
        self._buffer = bytes(buffer)
        return True

    def _on_outgoing(self, handle: int) -> None:
        result = self._connection.write(self._buffer)
        if result is Result.SUCCESS:
            self._buffer = b""
            self._write.reset()
        elif result is Result.FATAL:
            self._fail("Error writing to forwarder")
        elif result is Result.CLOSED:
            self.close()

    def _on_exception(self, handle: int) -> None:
        if self._state is _State.CONNECTING:
            log.notice("Issue connecting to forwarder")
            self._config.set_bad(self._forwarder)
        self.close()

    def close(self) -> None:
        """Drop the socket and its registrations, then report the shutdown."""
        if self._socket is None:
            return
        self._read.reset()
        self._write.reset()
        self._exception.reset()
        self._state = _State.CLOSED
        sock, self._socket = self._socket, None
        sock.close()
        if self._shutdown is not None:
            self._shutdown(self)