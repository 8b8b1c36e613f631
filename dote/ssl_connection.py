"""Non-blocking TLS client connections and a factory that creates them."""

from __future__ import annotations

import errno
import hashlib
import os
import socket
import ssl
from enum import Enum, auto
from typing import Callable, Iterator

__all__ = ["Result", "SslConnection", "SslFactory", "Verifier"]

DEFAULT_CIPHERS = "DEFAULT"
MAX_FRAME = 16 * 1024

# Called with the peer certificate in DER form after the handshake:
# 2 if pin and hostname pass, 1 if hostname only, 0 if not valid.
Verifier = Callable[[bytes], int]

_SEQUENCE = 0x30
_SET = 0x31
_OID = 0x06
_VERSION_TAG = 0xA0
_COMMON_NAME_OID = bytes([0x55, 0x04, 0x03])
_STRING_CODECS = {
    0x0C: "utf-8",
    0x13: "ascii",
    0x14: "latin-1",
    0x16: "ascii",
    0x1C: "utf-32-be",
    0x1E: "utf-16-be",
}


class Result(Enum):
    """The outcome of an operation on a connection."""

    NEED_READ = auto()
    NEED_WRITE = auto()
    SUCCESS = auto()
    CLOSED = auto()
    FATAL = auto()


def _client_context(ciphers: str, verify: bool) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    if verify:
        context.verify_mode = ssl.CERT_REQUIRED
        context.load_default_certs()
    else:
        context.verify_mode = ssl.CERT_NONE
    context.set_ciphers(ciphers)
    return context


def _der_element(data: bytes, pos: int, end: int) -> tuple[int, int, int]:
    """Read the header at pos; return tag, content start and content end."""
    if end - pos < 2:
        raise ValueError("truncated DER element")
    tag = data[pos]
    first = data[pos + 1]
    pos += 2
    if first < 0x80:
        length = first
    else:
        count = first & 0x7F
        if count == 0 or end - pos < count:
            raise ValueError("invalid DER length")
        length = int.from_bytes(data[pos:pos + count], "big")
        pos += count
    if end - pos < length:
        raise ValueError("truncated DER content")
    return tag, pos, pos + length


def _der_children(
    data: bytes, start: int, end: int
) -> Iterator[tuple[int, int, int, int]]:
    """Yield tag, element start, content start and content end of each child."""
    pos = start
    while pos < end:
        tag, content_start, content_end = _der_element(data, pos, end)
        yield tag, pos, content_start, content_end
        pos = content_end


def _tbs_fields(der: bytes) -> list[tuple[int, int, int, int]]:
    tag, start, end = _der_element(der, 0, len(der))
    if tag != _SEQUENCE:
        raise ValueError("certificate is not a sequence")
    children = list(_der_children(der, start, end))
    if not children or children[0][0] != _SEQUENCE:
        raise ValueError("missing certificate body")
    _, _, tbs_start, tbs_end = children[0]
    fields = list(_der_children(der, tbs_start, tbs_end))
    if fields and fields[0][0] == _VERSION_TAG:
        fields = fields[1:]
    if len(fields) < 6:
        raise ValueError("certificate body is incomplete")
    return fields


def _public_key_info(der: bytes) -> bytes:
    """The encoded SubjectPublicKeyInfo of a DER certificate."""
    tag, start, _, end = _tbs_fields(der)[5]
    if tag != _SEQUENCE:
        raise ValueError("public key info is not a sequence")
    return bytes(der[start:end])


def _common_name(der: bytes) -> str:
    """The first common name in the subject of a DER certificate, or ""."""
    tag, _, start, end = _tbs_fields(der)[4]
    if tag != _SEQUENCE:
        raise ValueError("subject is not a sequence")
    for set_tag, _, set_start, set_end in _der_children(der, start, end):
        if set_tag != _SET:
            continue
        for attr_tag, _, attr_start, attr_end in _der_children(der, set_start, set_end):
            if attr_tag != _SEQUENCE:
                continue
            parts = list(_der_children(der, attr_start, attr_end))
            if len(parts) < 2:
                continue
            oid_tag, _, oid_start, oid_end = parts[0]
            if oid_tag != _OID or der[oid_start:oid_end] != _COMMON_NAME_OID:
                continue
            value_tag, _, value_start, value_end = parts[1]
            codec = _STRING_CODECS.get(value_tag, "utf-8")
            return bytes(der[value_start:value_end]).decode(codec, errors="replace")
    return ""


class SslConnection:
    """A non-blocking TLS client over a connected stream socket."""

    def __init__(
        self,
        context: ssl.SSLContext | None = None,
        ciphers: str = DEFAULT_CIPHERS,
    ) -> None:
        self._ciphers = ciphers
        self._context = context if context is not None else _client_context(ciphers, True)
        self._verify = True
        self._verifier: Verifier | None = None
        self._raw: socket.socket | None = None
        self._ssl: ssl.SSLSocket | None = None
        self._sent = 0

    def set_socket(self, handle: socket.socket | int) -> None:
        """Use a socket, or a duplicate of a file descriptor, for the connection."""
        if isinstance(handle, socket.socket):
            raw = handle
        else:
            raw = socket.socket(fileno=os.dup(handle))
        raw.setblocking(False)
        self._raw = raw
        self._ssl = None
        self._sent = 0

    def disable_verification(self) -> None:
        """Accept any peer certificate."""
        self._verify = False

    def set_verifier(self, verifier: Verifier) -> None:
        """Check the peer certificate with verifier instead of the PKI chain."""
        self._verifier = verifier

    def _handshake_context(self) -> ssl.SSLContext:
        if self._verify and self._verifier is None:
            return self._context
        return _client_context(self._ciphers, verify=False)

    @staticmethod
    def _attempt(function: Callable[[], object]) -> tuple[Result, object]:
        try:
            value = function()
        except ssl.SSLWantReadError:
            return Result.NEED_READ, None
        except ssl.SSLWantWriteError:
            return Result.NEED_WRITE, None
        except (ssl.SSLZeroReturnError, ssl.SSLEOFError):
            return Result.CLOSED, None
        except (ssl.SSLError, OSError):
            return Result.FATAL, None
        return Result.SUCCESS, value

    def _wrap(self) -> Result:
        if self._raw is None:
            return Result.FATAL
        try:
            if self._raw.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR):
                return Result.FATAL
            self._raw.getpeername()
        except OSError as error:
            if error.errno == errno.ENOTCONN:
                return Result.NEED_WRITE
            return Result.FATAL
        try:
            self._ssl = self._handshake_context().wrap_socket(
                self._raw, do_handshake_on_connect=False
            )
        except (ssl.SSLError, OSError):
            return Result.FATAL
        return Result.SUCCESS

    def connect(self) -> Result:
        """Advance the handshake."""
        if self._ssl is None:
            result = self._wrap()
            if result is not Result.SUCCESS:
                return result
        result, _ = self._attempt(self._ssl.do_handshake)
        if result is Result.SUCCESS and self._verify and self._verifier is not None:
            if not self._verifier(self._peer_certificate()):
                return Result.FATAL
        return result

    def shutdown(self) -> Result:
        """Advance the closing of the TLS session."""
        if self._ssl is None:
            return Result.FATAL
        result, _ = self._attempt(self._ssl.unwrap)
        return result

    def write(self, buffer: bytes) -> Result:
        """Write the whole buffer; call again with it after NEED_READ or NEED_WRITE."""
        if self._ssl is None:
            return Result.FATAL
        view = memoryview(bytes(buffer))
        tls = self._ssl
        while self._sent < len(view):
            result, count = self._attempt(lambda: tls.send(view[self._sent:]))
            if result is not Result.SUCCESS:
                if result in (Result.CLOSED, Result.FATAL):
                    self._sent = 0
                return result
            self._sent += count
        self._sent = 0
        return Result.SUCCESS

    def read(self) -> tuple[Result, bytes]:
        """Read up to one TLS frame of data."""
        if self._ssl is None:
            return Result.FATAL, b""
        tls = self._ssl
        result, data = self._attempt(lambda: tls.recv(MAX_FRAME))
        if result is Result.SUCCESS and not data:
            return Result.CLOSED, b""
        return result, data or b""

    def _peer_certificate(self) -> bytes:
        if self._ssl is None:
            return b""
        try:
            return self._ssl.getpeercert(binary_form=True) or b""
        except (ValueError, OSError):
            return b""

    def peer_public_key_hash(self) -> bytes:
        """SHA-256 of the peer's public key info, or b"" if unavailable."""
        der = self._peer_certificate()
        if not der:
            return b""
        try:
            return hashlib.sha256(_public_key_info(der)).digest()
        except ValueError:
            return b""

    def common_name(self) -> str:
        """The common name of the peer certificate, or "" if unavailable."""
        der = self._peer_certificate()
        if not der:
            return ""
        try:
            return _common_name(der)
        except ValueError:
            return ""


class SslFactory:
    """Creates connections that share one verifying context."""

    def __init__(
        self,
        ciphers: str = DEFAULT_CIPHERS,
        context: ssl.SSLContext | None = None,
    ) -> None:
        self._ciphers = ciphers
        self._context = context if context is not None else _client_context(ciphers, True)

    def create(self) -> SslConnection:
        """A new, unconnected connection."""
        return SslConnection(self._context, self._ciphers)