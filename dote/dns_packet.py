"""Inspection and EDNS padding removal for length-prefixed (TCP) DNS packets."""

from __future__ import annotations

import struct

__all__ = ["DnsPacket"]

_HEADER = struct.Struct(">7H")
_SHORT = struct.Struct(">H")

# Record type of an EDNS pseudo-record.
_OPT = 41
# EDNS option code for padding.
_PADDING = 12
# Root name, type, class, TTL and data length of an OPT record.
_OPT_FIXED = 11


class DnsPacket:
    """A TCP DNS packet: a two byte length followed by the DNS message."""

    def __init__(self, packet: bytes | bytearray) -> None:
        self._packet = bytearray(packet)

    def _header(self) -> tuple[int, ...] | None:
        if len(self._packet) < _HEADER.size:
            return None
        header = _HEADER.unpack_from(self._packet)
        if header[0] != len(self._packet) - _SHORT.size:
            return None
        return header

    def _short(self, pos: int) -> int:
        return _SHORT.unpack_from(self._packet, pos)[0]

    def _skip_name(self, pos: int) -> int:
        end = len(self._packet)
        while pos < end:
            label = self._packet[pos]
            if label == 0:
                return pos + 1
            if label & 0xC0 == 0xC0:
                return min(pos + 2, end)
            if label < 0x80 and end - pos > label + 1:
                pos += label + 1
            else:
                pos = end
        return pos

    def _skip_fixed(self, pos: int, length: int) -> int:
        end = len(self._packet)
        return pos + length if end - pos > length else end

    def _skip_queries(self, count: int, pos: int) -> int:
        end = len(self._packet)
        for _ in range(count):
            if pos >= end:
                break
            pos = self._skip_name(pos)
            pos = self._skip_fixed(pos, 4)
        return pos

    def _skip_responses(self, count: int, pos: int) -> int:
        end = len(self._packet)
        for _ in range(count):
            if pos >= end:
                break
            pos = self._skip_name(pos)
            pos = self._skip_fixed(pos, 8)
            if end - pos >= _SHORT.size:
                length = self._short(pos)
                pos += _SHORT.size
                pos = pos + length if end - pos >= length else end
            else:
                pos = end
        return pos

    def _strip_padding(self, start: int, length: int) -> int:
        """Drop padding options from the option area; return its new length."""
        end = start + length
        kept = bytearray()
        pos = start
        while pos < end:
            if end - pos < 4:
                kept += self._packet[pos:end]
                break
            code, option_length = struct.unpack_from(">HH", self._packet, pos)
            full = 4 + option_length
            if pos + full > end:
                kept += self._packet[pos:end]
                break
            if code != _PADDING:
                kept += self._packet[pos:pos + full]
            pos += full
        self._packet[start:end] = kept
        return len(kept)

    def remove_edns_padding(self) -> bool:
        """Remove EDNS padding options; True if an OPT record was processed."""
        header = self._header()
        if header is None:
            return False
        _, _, _, queries, answers, authorities, additional = header
        pos = self._skip_queries(queries, _HEADER.size)
        pos = self._skip_responses(answers, pos)
        pos = self._skip_responses(authorities, pos)
        for _ in range(additional):
            end = len(self._packet)
            if pos >= end:
                break
            if (
                self._packet[pos] != 0
                or end - pos < _OPT_FIXED
                or self._short(pos + 1) != _OPT
            ):
                pos = self._skip_responses(1, pos)
                continue
            length_pos = pos + 9
            length = self._short(length_pos)
            if end - pos >= length + _OPT_FIXED:
                new_length = self._strip_padding(pos + _OPT_FIXED, length)
                _SHORT.pack_into(self._packet, length_pos, new_length)
                _SHORT.pack_into(
                    self._packet, 0, len(self._packet) - _SHORT.size
                )
                return True
        return False

    def packet(self) -> bytes:
        """The whole TCP packet, length prefix included."""
        return bytes(self._packet)

    def valid(self) -> bool:
        """True if the header is complete and the length prefix matches."""
        return self._header() is not None

    def payload(self) -> bytes:
        """The DNS message without the length prefix (UDP form)."""
        return bytes(self._packet[_SHORT.size:_SHORT.size + self.length()])

    def length(self) -> int:
        """Length of the DNS message, or 0 if the packet is not valid."""
        header = self._header()
        return 0 if header is None else header[0]