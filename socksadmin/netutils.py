"""Socket helpers: readable addresses and blocking transfers."""

from __future__ import annotations

import socket
from typing import Any, Optional

from .buffer import Buffer

_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)
_COPY_CHUNK = 4096


def _format_host(family: int, host: Any) -> str:
    try:
        return socket.inet_ntop(family, socket.inet_pton(family, host))
    except (OSError, TypeError, ValueError):
        return "unknown ip"


def sockaddr_to_human(addr: Optional[Any]) -> str:
    """Describe a socket address as ``host:port``.

    IPv4 addresses are ``(host, port)`` pairs and IPv6 addresses are
    ``(host, port, flowinfo, scope_id)`` tuples. ``None`` gives ``"null"``
    and any other address gives ``"unknown:"``.
    """
    if addr is None:
        return "null"
    if isinstance(addr, tuple) and len(addr) == 2:
        family = socket.AF_INET
    elif isinstance(addr, tuple) and len(addr) == 4:
        family = socket.AF_INET6
    else:
        return "unknown:"
    host, port = addr[0], addr[1]
    return f"{_format_host(family, host)}:{int(port)}"


def sock_blocking_write(sock: socket.socket, buffer: Buffer) -> None:
    """Send everything readable in ``buffer`` over ``sock``, blocking.

    The buffer is consumed as data is sent. Socket errors propagate; a
    send that makes no progress raises ConnectionError.
    """
    while buffer.can_read():
        sent = sock.send(buffer.readable(), _SEND_FLAGS)
        if sent <= 0:
            raise ConnectionError("connection stopped accepting data")
        buffer.advance_read(sent)


def sock_blocking_copy(source: socket.socket, dest: socket.socket) -> int:
    """Copy everything from ``source`` to ``dest`` until end of stream.

    A receive error ends the copy; send errors propagate. Returns the
    number of bytes copied.
    """
    copied = 0
    while True:
        try:
            chunk = source.recv(_COPY_CHUNK)
        except OSError:
            break
        if not chunk:
            break
        dest.sendall(chunk, _SEND_FLAGS)
        copied += len(chunk)
    return copied