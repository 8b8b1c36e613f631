# dote

Components for a DNS over TLS forwarder. Plain DNS queries from local
clients are forwarded to upstream resolvers over TLS, and the answers are
relayed back to the clients with their EDNS padding removed.

The package uses only the standard library. The event loop is built on
`select.poll`, so it needs a POSIX system.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `dote.log`: a process-wide logger with syslog-style levels (`Level`).
  Nothing is logged until a sink is installed with `set_logger`, for
  example `set_logger(ConsoleLogger())`, which writes each message to
  standard error. Log with `debug`, `info`, `notice`, `warn`, `err`,
  `critical` or `log(level, value)`. Subclass `Logger` for other sinks.
- `dote.dns_packet`: `DnsPacket` wraps a TCP-framed DNS message (a two-byte
  length followed by the message). `valid()` checks the header and length
  prefix, `length()` and `payload()` give the message in UDP form,
  `packet()` gives the whole framed packet, and `remove_edns_padding()`
  strips padding options from the OPT record, fixing up both length fields.
- `dote.config_parser`: `ConfigParser.parse_config(argv)` reads the
  command line options, not including the program name:
  `-s/--server`, `-f/--forwarder`, `-h/--hostname`, `-p/--pin` (base64),
  `-i/--insecure`, `-c/--ciphers`, `-m/--connections` (1 to 6000),
  `-d/--daemonise`, `-P/--pid_file`, `-l/--ip_lookup` and
  `-t/--timeout` (1 to 65535 seconds). `--hostname`, `--pin` and
  `--insecure` apply to the most recent `--forwarder`. Problems do not
  raise; they make the `valid` property false. `set_defaults()` fills in
  the default forwarders (the `cloudflare-dns.com` resolvers on port 853),
  the listening addresses `127.0.0.1` and `::1` on port 53, and the
  `DEFAULT` cipher list. `parse_server(text, default_port)` turns
  `ip`, `ip:port`, `[ipv6]` or `[ipv6]:port` into a `SocketAddress` and
  raises `ValueError` when the text is not valid.
- `dote.forwarder_config`: `ForwarderConfig` keeps the ordered list of
  `Forwarder` entries and the `timeout` in seconds. `get()` returns the
  preferred forwarder and `set_bad()` moves a failing one to the back.
- `dote.loop`: `Loop` dispatches read, write and exception callbacks for
  file descriptors. Read and write registrations carry an absolute deadline
  in seconds (0 for none); when it passes, the handle's exception callback
  is called. Each `register_*` call returns a `Registration`, which is
  false if the handle was already registered and removes itself with
  `reset()` or when used as a context manager. `run()` returns once nothing
  is registered.
- `dote.ssl_connection`: `SslConnection` is a non-blocking TLS client over
  a connected socket. `connect()`, `shutdown()`, `write(buffer)` and
  `read()` report a `Result` (`NEED_READ`, `NEED_WRITE`, `SUCCESS`,
  `CLOSED`, `FATAL`). Certificates are checked against the system
  authorities unless `disable_verification()` is called or a custom
  verifier is set with `set_verifier()`; the verifier receives the peer
  certificate in DER form. `peer_public_key_hash()` and `common_name()`
  describe the peer certificate. `SslFactory.create()` makes connections
  that share one context.
- `dote.forwarder_connection`: `ForwarderConnection` opens a connection to
  the forwarder that `ForwarderConfig` prefers, sends one buffer with
  `send()`, passes replies to the incoming callback and calls the shutdown
  callback once closed. Failures mark the forwarder as bad.
- `dote.client_forwarders`: `ClientForwarders.handle_request()` opens one
  forwarder connection per request up to a limit and queues the rest. Each
  answer is checked, stripped of EDNS padding and sent to the client with
  `sendmsg`, from the given server address and interface when these are
  known.

## Example

```python
from dote.config_parser import ConfigParser
from dote.dns_packet import DnsPacket

config = ConfigParser()
config.parse_config(["--forwarder", "1.1.1.1", "--hostname", "cloudflare-dns.com"])
config.set_defaults()
assert config.valid
print(config.forwarders[0].remote)  # 1.1.1.1:853

# A framed reply with no records: length 12, then a 12-byte header.
packet = DnsPacket(bytes([0, 12]) + bytes(12))
if packet.valid():
    packet.remove_edns_padding()
    udp_payload = packet.payload()
```

## What this package does not do

- It has no command to run and no server that listens for client queries:
  something else must receive the UDP requests and pass them to
  `ClientForwarders.handle_request`.
- The `--daemonise`, `--pid_file` and `--ip_lookup` options are parsed and
  stored, but nothing in the package acts on them.
- It has no built-in checking of a forwarder's hostname or pin. Pass a
  `verifier_factory` to `ForwarderConnection` to check them; without one,
  forwarders are verified against the system certificate authorities.