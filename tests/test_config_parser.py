import base64
import socket

import pytest

from dote.config_parser import (
    ConfigParser,
    Forwarder,
    Server,
    SocketAddress,
    parse_server,
)


def parsed(*argv):
    parser = ConfigParser()
    parser.parse_config(list(argv))
    return parser


def test_parse_ipv4_default_port():
    assert parse_server("1.1.1.1", 853) == SocketAddress(socket.AF_INET, "1.1.1.1", 853)


def test_parse_ipv4_with_port():
    assert parse_server("127.0.0.1:5353", 53) == SocketAddress(
        socket.AF_INET, "127.0.0.1", 5353
    )


def test_parse_ipv6_with_and_without_port():
    assert parse_server("[::1]", 53) == SocketAddress(socket.AF_INET6, "::1", 53)
    assert parse_server("[::1]:853", 53).port == 853


@pytest.mark.parametrize(
    "text",
    [
        "[::1",
        "127.0.0.1:0",
        "127.0.0.1:65536",
        "127.0.0.1:abc",
        "127.0.0.1:",
        "999.0.0.1",
        "[127.0.0.1]",
        "::1",
        "",
    ],
)
def test_parse_invalid(text):
    with pytest.raises(ValueError):
        parse_server(text, 53)


def test_port_bounds_accepted():
    assert parse_server("127.0.0.1:1", 53).port == 1
    assert parse_server("127.0.0.1:65535", 53).port == 65535


def test_empty_arguments_are_valid_with_initial_values():
    parser = parsed()
    assert parser.valid
    assert parser.forwarders == []
    assert parser.servers == []
    assert parser.ciphers == ""
    assert parser.max_connections == 5
    assert parser.timeout == 5
    assert parser.daemonise is False
    assert parser.pid_file == ""
    assert parser.ip_lookup is None


def test_set_defaults():
    parser = parsed()
    parser.set_defaults()
    hosts = [f.remote.host for f in parser.forwarders]
    assert hosts == ["2606:4700:4700::1111", "2606:4700:4700::1001", "1.1.1.1", "1.0.0.1"]
    assert all(f.host == "cloudflare-dns.com" for f in parser.forwarders)
    assert all(f.remote.port == 853 for f in parser.forwarders)
    assert parser.servers == [
        Server(SocketAddress(socket.AF_INET, "127.0.0.1", 53)),
        Server(SocketAddress(socket.AF_INET6, "::1", 53)),
    ]
    assert parser.ciphers == "DEFAULT"


def test_set_defaults_keeps_given_values():
    parser = parsed("-f", "9.9.9.9", "-s", "127.0.0.2", "-c", "HIGH")
    parser.set_defaults()
    assert [f.remote.host for f in parser.forwarders] == ["9.9.9.9"]
    assert [s.address.host for s in parser.servers] == ["127.0.0.2"]
    assert parser.ciphers == "HIGH"


def test_forwarder_with_hostname_and_pin():
    digest = bytes(range(32))
    pin = base64.b64encode(digest).decode()
    parser = parsed("-f", "9.9.9.9", "-h", "dns.example.com", "-p", pin)
    assert parser.valid
    assert parser.forwarders == [
        Forwarder(
            remote=SocketAddress(socket.AF_INET, "9.9.9.9", 853),
            host="dns.example.com",
            pin=digest,
        )
    ]


def test_options_apply_to_their_own_forwarder():
    parser = parsed("-f", "9.9.9.9", "-i", "-f", "[::1]:8853", "-h", "dns.example.com")
    assert parser.valid
    first, second = parser.forwarders
    assert first.disable_pki and first.host == ""
    assert not second.disable_pki and second.host == "dns.example.com"
    assert second.remote.port == 8853


def test_long_options():
    parser = parsed(
        "--server", "127.0.0.1:5353",
        "--forwarder", "9.9.9.9",
        "--insecure",
        "--daemonise",
        "--pid_file", "/tmp/dote.pid",
        "--connections", "10",
        "--timeout", "30",
        "--ip_lookup", "9.9.9.9",
    )
    assert parser.valid
    assert parser.servers[0].address.port == 5353
    assert parser.forwarders[0].disable_pki
    assert parser.daemonise
    assert parser.pid_file == "/tmp/dote.pid"
    assert parser.max_connections == 10
    assert parser.timeout == 30
    assert parser.ip_lookup == SocketAddress(socket.AF_INET, "9.9.9.9", 853)


def test_hostname_without_forwarder_is_invalid():
    parser = parsed("-h", "dns.example.com")
    assert parser.valid is False
    assert parser.forwarders == []


def test_pin_without_forwarder_is_invalid():
    pin = base64.b64encode(b"abc").decode()
    parser = parsed("-p", pin)
    assert parser.valid is False
    assert parser.forwarders == []


def test_duplicate_hostname_is_invalid():
    parser = parsed("-f", "9.9.9.9", "-h", "a.example.com", "-h", "b.example.com")
    assert parser.valid is False


def test_bad_pin_is_invalid():
    parser = parsed("-f", "9.9.9.9", "-p", "!!!")
    assert parser.valid is False


@pytest.mark.parametrize("value,ok", [("0", False), ("1", True), ("6000", True), ("6001", False), ("x", False)])
def test_connections_range(value, ok):
    parser = parsed("-m", value)
    assert parser.valid is ok
    if ok:
        assert parser.max_connections == int(value)


@pytest.mark.parametrize("value,ok", [("0", False), ("1", True), ("65535", True), ("65536", False), ("5s", False)])
def test_timeout_range(value, ok):
    parser = parsed("-t", value)
    assert parser.valid is ok
    assert parser.timeout == (int(value) if ok else 5)


def test_invalid_server_address():
    parser = parsed("-s", "not-an-ip")
    assert not parser.valid
    assert parser.servers == []


def test_invalid_ip_lookup():
    parser = parsed("-l", "[::1")
    assert parser.valid is False


def test_unknown_option_is_invalid():
    parser = parsed("-z")
    assert parser.valid is False


def test_extra_argument_is_invalid():
    parser = parsed("-d", "extra")
    assert parser.valid is False


def test_invalid_forwarder_is_not_added():
    parser = parsed("-f", "1.2.3")
    assert not parser.valid
    assert parser.forwarders == []