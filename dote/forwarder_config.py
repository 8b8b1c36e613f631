"""The forwarders in use, ordered so that failing ones are tried last."""

from __future__ import annotations

from dote import log
from dote.config_parser import DEFAULT_TIMEOUT, Forwarder

__all__ = ["ForwarderConfig"]


class ForwarderConfig:
    """An ordered set of forwarders and the time each has to answer."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT) -> None:
        self._timeout = timeout
        self._forwarders: list[Forwarder] = []

    def clear(self) -> None:
        """Remove every forwarder."""
        log.info("Removed all forwarders")
        self._forwarders.clear()

    def add_forwarder(self, config: Forwarder) -> None:
        """Add a forwarder after those already present."""
        ip = config.remote.host if config.remote is not None else ""
        log.info(f"Adding forwarder {ip}")
        self._forwarders.append(config)

    def set_bad(self, config: Forwarder) -> None:
        """Move the forwarder with the same remote address to the back."""
        for index, forwarder in enumerate(self._forwarders):
            if forwarder.remote == config.remote:
                self._forwarders.append(self._forwarders.pop(index))
                break

    def get(self) -> Forwarder | None:
        """The forwarder to use next, or None if there are none."""
        return self._forwarders[0] if self._forwarders else None

    @property
    def timeout(self) -> int:
        """Seconds to wait before giving up on a forwarder."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: int) -> None:
        self._timeout = value