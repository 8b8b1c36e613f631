"""Building blocks for a DNS over TLS forwarder: logging, DNS packets,
configuration, an event loop, TLS connections and forwarder management."""

__version__ = "0.1.0"