"""An event loop that calls back when descriptors are ready or have timed out."""

from __future__ import annotations

import select
import time
from enum import Enum
from typing import Callable

from dote import log

__all__ = ["EventType", "Registration", "Loop", "Callback"]

Callback = Callable[[int], None]

_ERROR_EVENTS = select.POLLERR | select.POLLHUP | select.POLLNVAL


class EventType(Enum):
    """What a registration waits for."""

    NONE = "none"
    READ = "read"
    WRITE = "write"
    EXCEPTION = "exception"


class Registration:
    """A handle on a loop registration; reset() removes it from the loop."""

    def __init__(
        self,
        loop: Loop | None = None,
        handle: int = -1,
        kind: EventType = EventType.NONE,
    ) -> None:
        self._loop = loop
        self._handle = handle
        self._kind = kind if loop is not None else EventType.NONE

    def valid(self) -> bool:
        """True while the registration is held in the loop."""
        return self._kind is not EventType.NONE

    __bool__ = valid

    def reset(self) -> None:
        """Remove the registration from the loop; safe to call repeatedly."""
        kind, self._kind = self._kind, EventType.NONE
        if kind is not EventType.NONE and self._loop is not None:
            self._loop._remove(kind, self._handle)

    def __enter__(self) -> Registration:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.reset()


class Loop:
    """Polls registered descriptors and calls their callbacks.

    Read and write deadlines are absolute times in whole seconds, 0 for none.
    When a deadline passes, the exception callback of the handle is called.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._reads: dict[int, tuple[Callback, int]] = {}
        self._writes: dict[int, tuple[Callback, int]] = {}
        self._exceptions: dict[int, Callback] = {}

    def register_read(
        self, handle: int, callback: Callback, timeout: int
    ) -> Registration:
        """Call back when the handle is readable; invalid if already registered."""
        if handle in self._reads:
            return Registration()
        self._reads[handle] = (callback, timeout)
        return Registration(self, handle, EventType.READ)

    def register_write(
        self, handle: int, callback: Callback, timeout: int
    ) -> Registration:
        """Call back when the handle is writable; invalid if already registered."""
        if handle in self._writes:
            return Registration()
        self._writes[handle] = (callback, timeout)
        return Registration(self, handle, EventType.WRITE)

    def register_exception(self, handle: int, callback: Callback) -> Registration:
        """Call back on errors or timeouts; invalid if already registered."""
        if handle in self._exceptions:
            return Registration()
        self._exceptions[handle] = callback
        return Registration(self, handle, EventType.EXCEPTION)

    def _remove(self, kind: EventType, handle: int) -> None:
        table = {
            EventType.READ: self._reads,
            EventType.WRITE: self._writes,
            EventType.EXCEPTION: self._exceptions,
        }[kind]
        table.pop(handle, None)

    def _raise_exception(self, handle: int) -> bool:
        callback = self._exceptions.get(handle)
        if callback is None:
            return False
        callback(handle)
        return True

    def _expire(self, now: int, functions: dict[int, tuple[Callback, int]]) -> int:
        """Raise exceptions for passed deadlines; return the earliest left."""
        excepted: set[int] = set()
        while True:
            earliest = 0
            for handle, (_, deadline) in sorted(functions.items()):
                if (
                    deadline != 0
                    and deadline <= now
                    and handle not in excepted
                    and self._raise_exception(handle)
                ):
                    log.info("Timeout")
                    # The callbacks may have changed the table, so start again.
                    excepted.add(handle)
                    break
                if earliest == 0 or deadline < earliest:
                    earliest = deadline
            else:
                return earliest

    def next_timeout(self) -> int:
        """Handle passed deadlines and return milliseconds to wait, -1 for ever."""
        now = int(self._clock())
        earliest_read = self._expire(now, self._reads)
        earliest_write = self._expire(now, self._writes)
        # An empty table reports 0, which means no deadline is waited on.
        earliest = min(earliest_read, earliest_write)
        if earliest == 0:
            return -1
        if now >= earliest:
            return 0
        return (earliest - now) * 1000

    def _poll_events(self) -> dict[int, int]:
        events: dict[int, int] = {}
        for handle in self._reads:
            events[handle] = events.get(handle, 0) | select.POLLIN
        for handle in self._writes:
            events[handle] = events.get(handle, 0) | select.POLLOUT
        for handle in self._exceptions:
            # Errors are always reported, nothing needs requesting.
            events.setdefault(handle, 0)
        return events

    def _call(self, functions: dict[int, tuple[Callback, int]], handle: int) -> None:
        entry = functions.get(handle)
        if entry is not None:
            entry[0](handle)

    def run(self) -> None:
        """Dispatch events until nothing is registered or polling fails."""
        timeout = self.next_timeout()
        while True:
            events = self._poll_events()
            if not events:
                return
            poller = select.poll()
            for handle, mask in events.items():
                poller.register(handle, mask)
            try:
                ready = poller.poll(timeout)
            except OSError:
                return
            for handle, revents in ready:
                if revents & select.POLLIN:
                    self._call(self._reads, handle)
                if revents & select.POLLOUT:
                    self._call(self._writes, handle)
                if revents & _ERROR_EVENTS:
                    self._raise_exception(handle)
            timeout = self.next_timeout()