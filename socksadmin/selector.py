"""Single-threaded I/O multiplexer that dispatches readiness to handlers.

File descriptors are registered with a handler and an interest (read,
write or both). :meth:`Selector.select` waits for readiness and calls the
matching handler callbacks. Work done on other threads can report that it
finished through :meth:`Selector.notify_block`; the selector wakes up and
calls the ``handle_block`` callback of that descriptor from its own thread,
so handlers never have to deal with concurrency.
"""

from __future__ import annotations

import errno
import os
import select as _select
import socket
import sys
import threading
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Any, Callable, Optional, Union

#: Largest number of descriptors the selector can handle (select(2) limit).
ITEMS_MAX_SIZE = 1024

_DEFAULT_ERROR_MESSAGE = "something failed"


class SelectorStatus(IntEnum):
    """Outcome of a selector operation."""

    SUCCESS = 0
    ENOMEM = 1
    MAXFD = 2
    IARGS = 3
    FDINUSE = 4
    IO = 5


_MESSAGES = {
    SelectorStatus.SUCCESS: "Success",
    SelectorStatus.ENOMEM: "Not enough memory",
    SelectorStatus.MAXFD: "Can't handle any more file descriptors",
    SelectorStatus.IARGS: "Illegal argument",
    SelectorStatus.IO: "I/O error",
}


def selector_error(status: int) -> str:
    """Return a readable description of a selector status."""
    try:
        return _MESSAGES[SelectorStatus(status)]
    except (ValueError, KeyError):
        return _DEFAULT_ERROR_MESSAGE


class SelectorError(Exception):
    """Raised when a selector operation fails; ``status`` tells why."""

    def __init__(self, status: int, detail: Optional[str] = None) -> None:
        self.status = SelectorStatus(status)
        message = selector_error(self.status)
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class Interest(IntFlag):
    """What a registered descriptor is waiting for."""

    NOOP = 0
    READ = 1 << 0
    WRITE = 1 << 2


def interest_off(flag: int, mask: int) -> Interest:
    """Return ``flag`` with the interests in ``mask`` removed."""
    return Interest(int(flag) & ~int(mask))


FdLike = Union[int, Any]


def _fileno(fd: FdLike) -> int:
    if isinstance(fd, int):
        return fd
    fileno = getattr(fd, "fileno", None)
    if fileno is None:
        raise SelectorError(SelectorStatus.IARGS, f"not a file descriptor: {fd!r}")
    return fileno()


def _valid_fd(fd: FdLike) -> int:
    try:
        number = _fileno(fd)
    except OSError as exc:
        raise SelectorError(SelectorStatus.IARGS, str(exc)) from exc
    if number < 0 or number >= ITEMS_MAX_SIZE:
        raise SelectorError(SelectorStatus.IARGS, f"descriptor out of range: {number}")
    return number


def _fd_is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


def set_nonblocking(fd: FdLike) -> None:
    """Put a descriptor in non-blocking mode; raises OSError on failure."""
    os.set_blocking(_fileno(fd), False)


@dataclass
class SelectorKey:
    """Passed to every handler callback."""

    selector: Optional["Selector"]
    fd: int
    data: Any = None

    def set_interest(self, interest: int) -> None:
        """Change the interest of this key's descriptor."""
        if self.selector is None:
            raise SelectorError(SelectorStatus.IARGS, "key has no selector")
        self.selector.set_interest(self.fd, interest)


Callback = Callable[[SelectorKey], None]


@dataclass(frozen=True)
class FdHandler:
    """Callbacks for the events of a registered descriptor."""

    handle_read: Optional[Callback] = None
    handle_write: Optional[Callback] = None
    handle_block: Optional[Callback] = None
    handle_close: Optional[Callback] = None
    """Called when the descriptor is unregistered; should release ``data``."""


@dataclass
class _Item:
    fd: int
    handler: Optional[FdHandler]
    interest: Interest
    data: Any


class Selector:
    """Multiplexes registered descriptors and dispatches their events."""

    def __init__(self, timeout: Optional[float] = None, initial_elements: int = 0) -> None:
        if initial_elements < 0:
            raise SelectorError(SelectorStatus.IARGS, "initial_elements must not be negative")
        if initial_elements > ITEMS_MAX_SIZE:
            raise SelectorError(SelectorStatus.MAXFD)
        self.timeout = timeout
        self._items: dict[int, _Item] = {}
        self._lock = threading.Lock()
        self._jobs: list[int] = []
        self._wake_reader, self._wake_writer = socket.socketpair()
        self._wake_reader.setblocking(False)
        self._wake_writer.setblocking(False)
        self._closed = False

    def __enter__(self) -> "Selector":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __contains__(self, fd: FdLike) -> bool:
        try:
            return _fileno(fd) in self._items
        except (SelectorError, OSError):
            return False

    def __len__(self) -> int:
        return len(self._items)

    def _check_open(self) -> None:
        if self._closed:
            raise SelectorError(SelectorStatus.IARGS, "selector is closed")

    def register(
        self,
        fd: FdLike,
        handler: FdHandler,
        interest: int,
        data: Any = None,
    ) -> None:
        """Register ``fd`` with a handler, an initial interest and user data.

        A descriptor cannot be registered twice.
        """
        self._check_open()
        number = _valid_fd(fd)
        if handler is None:
            raise SelectorError(SelectorStatus.IARGS, "handler is required")
        if number in self._items:
            raise SelectorError(SelectorStatus.FDINUSE)
        self._items[number] = _Item(number, handler, Interest(interest), data)

    def unregister(self, fd: FdLike) -> None:
        """Remove ``fd``, calling its ``handle_close`` callback first."""
        self._check_open()
        number = _valid_fd(fd)
        item = self._items.get(number)
        if item is None:
            raise SelectorError(SelectorStatus.IARGS, f"descriptor not registered: {number}")
        handler = item.handler
        if handler is not None and handler.handle_close is not None:
            item.handler = None
            handler.handle_close(SelectorKey(self, item.fd, item.data))
        item.interest = Interest.NOOP
        if self._items.get(number) is item:
            del self._items[number]

    def set_interest(self, fd: FdLike, interest: int) -> None:
        """Change what a registered descriptor waits for."""
        self._check_open()
        number = _valid_fd(fd)
        item = self._items.get(number)
        if item is None:
            raise SelectorError(SelectorStatus.IARGS, f"descriptor not registered: {number}")
        item.interest = Interest(interest)

    def select(self) -> None:
        """Block until events are ready or the timeout passes, then dispatch them."""
        self._check_open()
        readers = [fd for fd, item in self._items.items() if item.interest & Interest.READ]
        writers = [fd for fd, item in self._items.items() if item.interest & Interest.WRITE]
        wake = self._wake_reader.fileno()
        try:
            readable, writable, _ = _select.select(readers + [wake], writers, [], self.timeout)
        except OSError as exc:
            if exc.errno == errno.EBADF:
                bad = [fd for fd in sorted(set(readers) | set(writers)) if not _fd_is_open(fd)]
                raise SelectorError(SelectorStatus.IO, f"bad descriptors: {bad}") from exc
            raise SelectorError(SelectorStatus.IO, str(exc)) from exc
        except ValueError as exc:
            raise SelectorError(SelectorStatus.IO, str(exc)) from exc

        if wake in readable:
            self._drain_wake()
        self._dispatch(set(readable), set(writable))
        self._handle_block_notifications()

    def _drain_wake(self) -> None:
        try:
            while self._wake_reader.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass

    def _dispatch(self, readable: set[int], writable: set[int]) -> None:
        for fd in sorted(self._items):
            item = self._items.get(fd)
            if item is None:
                continue
            key = SelectorKey(self, item.fd, item.data)
            if fd in readable and item.interest & Interest.READ:
                if item.handler is None:
                    print(f"handler missing for fd {fd}", file=sys.stderr)
                elif item.handler.handle_read is None:
                    print(f"handle_read missing for fd {fd}", file=sys.stderr)
                else:
                    item.handler.handle_read(key)
            if self._items.get(fd) is not item:
                continue
            if fd in writable and item.interest & Interest.WRITE:
                if item.handler is None or item.handler.handle_write is None:
                    raise RuntimeError(f"write readiness on fd {fd} but no write handler")
                item.handler.handle_write(key)

    def _handle_block_notifications(self) -> None:
        with self._lock:
            jobs, self._jobs = self._jobs, []
        # Most recently notified first.
        for fd in reversed(jobs):
            item = self._items.get(fd)
            if item is None or item.handler is None or item.handler.handle_block is None:
                continue
            item.handler.handle_block(SelectorKey(self, item.fd, item.data))

    def notify_block(self, fd: FdLike) -> None:
        """Report, from any thread, that blocking work for ``fd`` has finished."""
        self._check_open()
        number = _fileno(fd)
        with self._lock:
            self._jobs.append(number)
        try:
            self._wake_writer.send(b"\0")
        except (BlockingIOError, InterruptedError):
            pass

    def close(self) -> None:
        """Close every registered descriptor and release the selector."""
        if self._closed:
            return
        self._closed = True
        for fd in list(self._items):
            try:
                os.close(fd)
            except OSError:
                pass
        self._items.clear()
        with self._lock:
            self._jobs.clear()
        self._wake_reader.close()
        self._wake_writer.close()