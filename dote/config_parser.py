"""Command line configuration for the DNS-over-TLS forwarder."""

from __future__ import annotations

import base64
import binascii
import getopt
import re
import socket
from dataclasses import dataclass
from typing import Sequence

__all__ = [
    "SocketAddress",
    "Forwarder",
    "Server",
    "ConfigParser",
    "parse_server",
]

DEFAULT_CIPHERS = "DEFAULT"
DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_TIMEOUT = 5
DNS_PORT = 53
DNS_OVER_TLS_PORT = 853

_DEFAULT_FORWARDER_HOSTNAME = "cloudflare-dns.com"
_DEFAULT_FORWARDERS = (
    "[2606:4700:4700::1111]",
    "[2606:4700:4700::1001]",
    "1.1.1.1",
    "1.0.0.1",
)
_DEFAULT_SERVERS = ("127.0.0.1", "[::1]")

_SHORT_OPTIONS = "s:f:h:p:ic:m:dP:l:t:"
_LONG_OPTIONS = {
    "server": "s",
    "forwarder": "f",
    "hostname": "h",
    "pin": "p",
    "insecure": "i",
    "ciphers": "c",
    "connections": "m",
    "daemonise": "d",
    "pid_file": "P",
    "ip_lookup": "l",
    "timeout": "t",
}
_LONG_WITH_ARGUMENT = {
    "server", "forwarder", "hostname", "pin", "ciphers",
    "connections", "pid_file", "ip_lookup", "timeout",
}

_INTEGER = re.compile(r"[ \t\n\v\f\r]*[+-]?\d+")


@dataclass(frozen=True)
class SocketAddress:
    """An IPv4 or IPv6 address with a port."""

    family: socket.AddressFamily
    host: str
    port: int

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass
class Forwarder:
    """A DNS-over-TLS server that requests are forwarded to."""

    remote: SocketAddress | None = None
    disable_pki: bool = False
    host: str = ""
    pin: bytes = b""


@dataclass(frozen=True)
class Server:
    """A local address to accept plain DNS requests on."""

    address: SocketAddress


def _parse_long(text: str) -> int | None:
    """Read a whole decimal integer the way strtol does, or None."""
    if text == "":
        return 0
    if _INTEGER.fullmatch(text):
        return int(text)
    return None


def parse_server(server: str, default_port: int) -> SocketAddress:
    """Parse "ip", "ip:port", "[ipv6]" or "[ipv6]:port".

    Raises ValueError if the address or the port is not valid.
    """
    if server.startswith("["):
        close = server.find("]", 1)
        if close == -1:
            raise ValueError(f"unterminated IPv6 address: {server!r}")
        family = socket.AF_INET6
        ip = server[1:close]
        rest = server[close + 1:]
    else:
        family = socket.AF_INET
        colon = server.find(":")
        if colon == -1:
            ip, rest = server, ""
        else:
            ip, rest = server[:colon], server[colon:]

    if rest.startswith(":"):
        port = _parse_long(rest[1:])
        if port is None or not 1 <= port <= 65535:
            raise ValueError(f"invalid port in {server!r}")
    else:
        port = default_port

    try:
        packed = socket.inet_pton(family, ip)
    except (OSError, ValueError) as error:
        raise ValueError(f"invalid address in {server!r}") from error
    return SocketAddress(family, socket.inet_ntop(family, packed), port)


def _decode_pin(pin: str) -> bytes:
    """Decode a base64 pin, giving empty bytes if it is not valid."""
    try:
        return base64.b64decode("".join(pin.split()), validate=True)
    except (binascii.Error, ValueError):
        return b""


class ConfigParser:
    """Collects the servers, forwarders and options given on the command line."""

    def __init__(self) -> None:
        self._valid = True
        self._forwarders: list[Forwarder] = []
        self._servers: list[Server] = []
        self._ciphers = ""
        self._max_connections = DEFAULT_MAX_CONNECTIONS
        self._daemonise = False
        self._pid_file = ""
        self._ip_lookup: SocketAddress | None = None
        self._timeout = DEFAULT_TIMEOUT
        self._partial = Forwarder()

    def parse_config(self, argv: Sequence[str]) -> None:
        """Parse the command line arguments, not including the program name."""
        self._partial = Forwarder()
        try:
            options, remaining = getopt.gnu_getopt(
                list(argv),
                _SHORT_OPTIONS,
                [name + "=" if name in _LONG_WITH_ARGUMENT else name
                 for name in _LONG_OPTIONS],
            )
        except getopt.GetoptError:
            self._valid = False
            options, remaining = [], []

        for option, value in options:
            if not self._valid:
                break
            if option.startswith("--"):
                letter = _LONG_OPTIONS[option[2:]]
            else:
                letter = option[1:]
            self._apply(letter, value)
        self._push_forwarder()

        if remaining:
            self._valid = False

    def _apply(self, letter: str, value: str) -> None:
        if letter == "s":
            self._add_server(value)
        elif letter == "f":
            self._push_forwarder()
            self._add_forwarder(value)
        elif letter == "h":
            self._add_hostname(value)
        elif letter == "i":
            self._partial.disable_pki = True
        elif letter == "p":
            self._add_pin(value)
        elif letter == "c":
            self._ciphers = value
        elif letter == "m":
            self._set_max_connections(value)
        elif letter == "d":
            self._daemonise = True
        elif letter == "P":
            self._pid_file = value
        elif letter == "l":
            try:
                self._ip_lookup = parse_server(value, DNS_OVER_TLS_PORT)
            except ValueError:
                self._valid = False
        elif letter == "t":
            self._set_timeout(value)
        else:
            self._valid = False

    def _add_server(self, server: str) -> None:
        try:
            self._servers.append(Server(parse_server(server, DNS_PORT)))
        except ValueError:
            self._valid = False

    def _add_forwarder(self, server: str) -> None:
        try:
            self._partial.remote = parse_server(server, DNS_OVER_TLS_PORT)
        except ValueError:
            self._valid = False

    def _push_forwarder(self) -> None:
        if self._partial.remote is not None:
            self._forwarders.append(self._partial)
        elif self._partial.host or self._partial.pin:
            # A hostname or pin was given with no forwarder to apply it to.
            self._valid = False
        self._partial = Forwarder()

    def _add_hostname(self, hostname: str) -> None:
        if self._partial.host:
            self._valid = False
        else:
            self._partial.host = hostname

    def _add_pin(self, pin: str) -> None:
        self._partial.pin = _decode_pin(pin)
        if pin and not self._partial.pin:
            self._valid = False

    def _set_max_connections(self, text: str) -> None:
        value = _parse_long(text)
        if value is None or not 1 <= value <= 6000:
            self._valid = False
        else:
            self._max_connections = value

    def _set_timeout(self, text: str) -> None:
        value = _parse_long(text)
        if value is None or not 1 <= value <= 0xFFFF:
            self._valid = False
        else:
            self._timeout = value

    def set_defaults(self) -> None:
        """Fill in the default forwarders, servers and ciphers where none were given."""
        if not self._forwarders:
            for address in _DEFAULT_FORWARDERS:
                self._forwarders.append(Forwarder(
                    remote=parse_server(address, DNS_OVER_TLS_PORT),
                    host=_DEFAULT_FORWARDER_HOSTNAME,
                ))
        if not self._servers:
            for address in _DEFAULT_SERVERS:
                self._servers.append(Server(parse_server(address, DNS_PORT)))
        if not self._ciphers:
            self._ciphers = DEFAULT_CIPHERS

    @property
    def valid(self) -> bool:
        """False if any argument could not be used."""
        return self._valid

    @property
    def forwarders(self) -> list[Forwarder]:
        return list(self._forwarders)

    @property
    def servers(self) -> list[Server]:
        return list(self._servers)

    @property
    def ciphers(self) -> str:
        return self._ciphers

    @property
    def max_connections(self) -> int:
        return self._max_connections

    @property
    def daemonise(self) -> bool:
        return self._daemonise

    @property
    def pid_file(self) -> str:
        return self._pid_file

    @property
    def ip_lookup(self) -> SocketAddress | None:
        """The forwarder to look up the hostname and pin of, if one was given."""
        return self._ip_lookup

    @property
    def timeout(self) -> int:
        """Seconds a forwarder has to answer a request."""
        return self._timeout