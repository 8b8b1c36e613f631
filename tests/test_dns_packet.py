import struct

from dote.dns_packet import DnsPacket

QUESTION = b"\x07example\x03com\x00" + struct.pack(">HH", 1, 1)
ANSWER = b"\xc0\x0c" + struct.pack(">HHIH", 1, 1, 300, 4) + bytes([192, 0, 2, 1])


def header(qd=1, an=0, ns=0, ar=1):
    return struct.pack(">6H", 0x1234, 0x8180, qd, an, ns, ar)


def option(code, data):
    return struct.pack(">HH", code, len(data)) + data


def opt_record(options=b""):
    return b"\x00" + struct.pack(">HHIH", 41, 4096, 0, len(options)) + options


def padding(size):
    return option(12, b"\x00" * size)


def tcp(message):
    return struct.pack(">H", len(message)) + message


def test_valid_packet():
    packet = DnsPacket(tcp(header() + QUESTION + opt_record()))
    assert packet.valid() is True


def test_too_short_is_invalid():
    packet = DnsPacket(b"\x00\x02\x12\x34")
    assert packet.valid() is False
    assert packet.length() == 0
    assert packet.payload() == b""


def test_length_mismatch_is_invalid():
    message = header(ar=0) + QUESTION
    packet = DnsPacket(struct.pack(">H", len(message) + 1) + message)
    assert packet.valid() is False
    assert packet.remove_edns_padding() is False


def test_length_and_payload():
    message = header(ar=0) + QUESTION
    packet = DnsPacket(tcp(message))
    assert packet.length() == len(message)
    assert packet.payload() == message
    assert packet.packet() == tcp(message)


def test_header_only_packet_pins_size():
    packet = DnsPacket(tcp(header(qd=0, ar=0)))
    assert packet.length() == 12
    assert packet.valid() is True


def test_removes_only_padding_option():
    padded = tcp(header() + QUESTION + opt_record(padding(20)))
    packet = DnsPacket(padded)
    assert packet.remove_edns_padding() is True
    assert packet.packet() == tcp(header() + QUESTION + opt_record())


def test_removes_padding_keeps_other_options():
    cookie = option(10, b"\x01\x02\x03\x04\x05\x06\x07\x08")
    padded = tcp(header() + QUESTION + opt_record(cookie + padding(16)))
    packet = DnsPacket(padded)
    assert packet.remove_edns_padding() is True
    assert packet.packet() == tcp(header() + QUESTION + opt_record(cookie))


def test_removes_padding_before_other_option():
    cookie = option(10, b"\xaa" * 8)
    packet = DnsPacket(tcp(header() + QUESTION + opt_record(padding(5) + cookie)))
    assert packet.remove_edns_padding() is True
    assert packet.packet() == tcp(header() + QUESTION + opt_record(cookie))


def test_skips_answer_with_compressed_name():
    message = header(an=1) + QUESTION + ANSWER
    packet = DnsPacket(tcp(message + opt_record(padding(30))))
    assert packet.remove_edns_padding() is True
    assert packet.packet() == tcp(message + opt_record())


def test_opt_without_padding_unchanged():
    original = tcp(header() + QUESTION + opt_record(option(10, b"\x11" * 8)))
    packet = DnsPacket(original)
    assert packet.remove_edns_padding() is True
    assert packet.packet() == original


def test_no_additional_records():
    original = tcp(header(ar=0) + QUESTION)
    packet = DnsPacket(original)
    assert packet.remove_edns_padding() is False
    assert packet.packet() == original


def test_truncated_opt_record_is_left_alone():
    truncated = b"\x00" + struct.pack(">HHIH", 41, 4096, 0, 10)
    original = tcp(header() + QUESTION + truncated)
    packet = DnsPacket(original)
    assert packet.remove_edns_padding() is False
    assert packet.packet() == original


def test_non_opt_additional_record_is_skipped():
    message = header(ar=2) + QUESTION + ANSWER
    packet = DnsPacket(tcp(message + opt_record(padding(8))))
    assert packet.remove_edns_padding() is True
    assert packet.packet() == tcp(message + opt_record())


def test_result_stays_consistent_after_removal():
    packet = DnsPacket(tcp(header(an=1) + QUESTION + ANSWER + opt_record(padding(64))))
    packet.remove_edns_padding()
    assert packet.valid() is True
    assert packet.length() == len(packet.packet()) - 2
    assert packet.payload() == packet.packet()[2:]


def test_input_is_not_modified():
    original = bytearray(tcp(header() + QUESTION + opt_record(padding(4))))
    snapshot = bytes(original)
    DnsPacket(original).remove_edns_padding()
    assert bytes(original) == snapshot