"""Administration protocol: wire format and the server side of a session.

Every message starts with the protocol version byte. The client first
authenticates with ``VER ALEN TOKEN``; the server answers ``VER CODE``.
Commands are ``VER CMD [LEN(2) DATA]`` and replies ``VER CODE [LEN(2) DATA]``,
lengths being big-endian.
"""

from __future__ import annotations

import logging
import socket
import struct
import time
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Iterable, Optional

from .admin_config import AdminConfig, get_config
from .buffer import Buffer
from .netutils import sockaddr_to_human
from .selector import FdHandler, SelectorKey

logger = logging.getLogger(__name__)
_package_logger = logging.getLogger(__name__.rpartition(".")[0] or __name__)

ADMIN_VERSION = 0x01
ADMIN_TOKEN = "token"
ADMIN_PORT = 8080
MAX_CONNECTIONS_LIMIT = 500

_BUFFER_SIZE = 2048
_USER_LIST_LIMIT = 1024 - 256
_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)
_METRICS = struct.Struct(">5Q")
_UINT64_MASK = (1 << 64) - 1
_TEXT_ENCODING = "utf-8"
_TEXT_ERRORS = "replace"


def _decode_text(raw: bytes) -> str:
    return bytes(raw).decode(_TEXT_ENCODING, _TEXT_ERRORS)


class AdminCommand(IntEnum):
    LIST_USERS = 0x01
    ADD_USER = 0x02
    DEL_USER = 0x03
    GET_METRICS = 0x04
    SET_LOG_LEVEL = 0x05
    SET_MAX_CONNECTIONS = 0x06
    SET_BUFFER_SIZE = 0x07
    SET_TIMEOUT = 0x08
    QUIT = 0xFF


_COMMANDS_WITH_DATA = frozenset(
    {
        AdminCommand.ADD_USER,
        AdminCommand.DEL_USER,
        AdminCommand.SET_LOG_LEVEL,
        AdminCommand.SET_MAX_CONNECTIONS,
        AdminCommand.SET_BUFFER_SIZE,
        AdminCommand.SET_TIMEOUT,
    }
)


class AdminReply(IntEnum):
    SUCCESS = 0x00
    GENERAL_FAILURE = 0x01
    AUTH_FAILURE = 0x02
    COMMAND_NOT_SUPPORTED = 0x03
    INVALID_ARGS = 0x04


class LogLevel(IntEnum):
    DEBUG = 0
    INFO = 1
    ERROR = 2
    FATAL = 3


_LOGGING_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


class _AdminState(Enum):
    AUTH = "auth"
    COMMAND = "command"
    DONE = "done"


@dataclass(frozen=True)
class UserEntry:
    """A proxy user as reported by the administration interface."""

    username: str
    active: bool = True


@dataclass(frozen=True)
class MetricsSnapshot:
    """Proxy counters at one moment."""

    total_connections: int = 0
    current_connections: int = 0
    total_bytes_transferred: int = 0
    successful_connections: int = 0
    failed_connections: int = 0

    def encode(self) -> bytes:
        """Encode as five big-endian 64-bit counters."""
        return _METRICS.pack(
            self.total_connections & _UINT64_MASK,
            self.current_connections & _UINT64_MASK,
            self.total_bytes_transferred & _UINT64_MASK,
            self.successful_connections & _UINT64_MASK,
            self.failed_connections & _UINT64_MASK,
        )

    @classmethod
    def decode(cls, data: bytes) -> "MetricsSnapshot":
        """Decode counters written by :meth:`encode`; raises ValueError if short."""
        if len(data) < _METRICS.size:
            raise ValueError(f"metrics data too short: {len(data)} bytes")
        return cls(*_METRICS.unpack_from(data))


def _frame(code: int, data: bytes) -> bytes:
    data = bytes(data)
    if len(data) > 0xFFFF:
        raise ValueError(f"payload too long: {len(data)} bytes")
    head = bytes([ADMIN_VERSION, int(code)])
    if data:
        return head + struct.pack(">H", len(data)) + data
    return head


def encode_auth(token: str) -> bytes:
    """Build the authentication message for ``token``."""
    raw = token.encode()
    if len(raw) > 0xFF:
        raise ValueError("token longer than 255 bytes")
    return bytes([ADMIN_VERSION, len(raw)]) + raw


def encode_command(command: int, data: bytes = b"") -> bytes:
    """Build a command message; the length field is present only with data."""
    return _frame(command, data)


def encode_response(code: int, data: bytes = b"") -> bytes:
    """Build a reply message; the length field is present only with data."""
    return _frame(code, data)


def encode_user_list(users: Iterable[UserEntry]) -> bytes:
    """Encode a user count followed by ``LEN NAME ACTIVE`` entries.

    Entries stop being added once the payload nears the reply size limit;
    the count still reports every user.
    """
    entries = list(users)
    out = bytearray(struct.pack(">H", len(entries) & 0xFFFF))
    for user in entries:
        if len(out) >= _USER_LIST_LIMIT:
            break
        name = user.username.encode()
        if len(name) > 0xFF:
            raise ValueError(f"username longer than 255 bytes: {user.username!r}")
        out.append(len(name))
        out += name
        out.append(1 if user.active else 0)
    return bytes(out)


def decode_user_list(data: bytes) -> list[UserEntry]:
    """Decode a user list; incomplete trailing entries are dropped."""
    if len(data) < 2:
        return []
    count = struct.unpack_from(">H", data)[0]
    offset = 2
    users: list[UserEntry] = []
    while len(users) < count and offset < len(data):
        name_len = data[offset]
        offset += 1
        if offset + name_len >= len(data):
            break
        name = _decode_text(data[offset:offset + name_len])
        offset += name_len
        active = data[offset] != 0
        offset += 1
        users.append(UserEntry(name, active))
    return users


class AdminConnection:
    """Server side of one administration session.

    ``users`` must provide ``list_users()`` returning :class:`UserEntry`
    items, ``add_user(username, password)`` and ``remove_user(username)``
    returning whether they succeeded. ``metrics`` is a callable returning a
    :class:`MetricsSnapshot`.
    """

    def __init__(
        self,
        sock: socket.socket,
        users: Any,
        metrics: Callable[[], MetricsSnapshot],
        config: Optional[AdminConfig] = None,
    ) -> None:
        self.sock = sock
        self.users = users
        self.metrics = metrics
        self.config = config if config is not None else get_config()
        self.read_buf = Buffer(_BUFFER_SIZE)
        self.authenticated = False
        self.closed = False
        self.state = _AdminState.AUTH
        self.start_time = time.time()
        try:
            self.client_address = sockaddr_to_human(sock.getpeername())
        except OSError:
            self.client_address = "unknown"
        logger.info("admin connection created (fd=%s)", sock.fileno())

    def process_auth(self) -> bool:
        """Check the buffered authentication message.

        Returns False while the message is incomplete and True once the
        client is authenticated. A bad version or token is answered with
        AUTH_FAILURE and raises PermissionError.
        """
        pending = self.read_buf.readable()
        if len(pending) < 2:
            return False
        version, token_len = pending[0], pending[1]
        if version != ADMIN_VERSION:
            logger.error("invalid admin version: %d", version)
            self.send_response(AdminReply.AUTH_FAILURE)
            raise PermissionError(f"unsupported admin protocol version {version}")
        if len(pending) < 2 + token_len:
            return False
        token = pending[2:2 + token_len]
        if token != ADMIN_TOKEN.encode():
            logger.error("invalid admin token")
            self.send_response(AdminReply.AUTH_FAILURE)
            raise PermissionError("invalid admin token")
        self.read_buf.advance_read(2 + token_len)
        self.authenticated = True
        self.send_response(AdminReply.SUCCESS)
        logger.info("admin client authenticated from %s", self.client_address)
        return True

    def process_command(self) -> Optional[bool]:
        """Run one buffered command.

        Returns None while the command is incomplete, True when it ran and
        the session continues, and False when the session should end.
        """
        if not self.authenticated:
            logger.error("unauthenticated admin client sent a command")
            self.send_response(AdminReply.AUTH_FAILURE)
            raise PermissionError("admin client is not authenticated")
        pending = self.read_buf.readable()
        if len(pending) < 2:
            return None
        version, command = pending[0], pending[1]
        if version != ADMIN_VERSION:
            logger.error("invalid admin version in command: %d", version)
            self.send_response(AdminReply.GENERAL_FAILURE)
            raise ValueError(f"unsupported admin protocol version {version}")

        data = b""
        consumed = 2
        if command in _COMMANDS_WITH_DATA:
            if len(pending) < 4:
                return None
            data_len = struct.unpack_from(">H", pending, 2)[0]
            if len(pending) < 4 + data_len:
                return None
            data = pending[4:4 + data_len]
            consumed = 4 + data_len
        self.read_buf.advance_read(consumed)

        match command:
            case AdminCommand.LIST_USERS:
                self.handle_list_users()
            case AdminCommand.ADD_USER:
                self.handle_add_user(data)
            case AdminCommand.DEL_USER:
                self.handle_del_user(data)
            case AdminCommand.GET_METRICS:
                self.handle_get_metrics()
            case AdminCommand.SET_LOG_LEVEL:
                self.handle_set_log_level(data)
            case AdminCommand.SET_MAX_CONNECTIONS:
                self.handle_set_max_connections(data)
            case AdminCommand.QUIT:
                logger.info("admin client requested disconnection")
                self.send_response(AdminReply.SUCCESS)
                return False
            case _:
                logger.error("unsupported admin command: %d", command)
                self.send_response(AdminReply.COMMAND_NOT_SUPPORTED)
                return False
        return True

    def send_response(self, code: int, data: bytes = b"") -> None:
        """Send a reply to the client; socket errors propagate."""
        frame = encode_response(code, data)
        self.sock.sendall(frame, _SEND_FLAGS)
        logger.debug("admin reply sent: code=%d, data_len=%d", int(code), len(data))

    def handle_list_users(self) -> None:
        logger.info("running LIST_USERS")
        payload = encode_user_list(self.users.list_users())
        self.send_response(AdminReply.SUCCESS, payload)

    def handle_add_user(self, data: bytes) -> None:
        logger.info("running ADD_USER")
        if len(data) < 2:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        name_len = data[0]
        if len(data) < 1 + name_len + 1:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        secret_len = data[1 + name_len]
        if len(data) < 2 + name_len + secret_len:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        username = _decode_text(data[1:1 + name_len])
        start = 2 + name_len
        secret = _decode_text(data[start:start + secret_len])
        if self.users.add_user(username, secret):
            logger.info("user %r added by admin", username)
            self.send_response(AdminReply.SUCCESS)
        else:
            logger.error("could not add user %r", username)
            self.send_response(AdminReply.GENERAL_FAILURE)

    def handle_del_user(self, data: bytes) -> None:
        logger.info("running DEL_USER")
        if len(data) < 1 or len(data) < 1 + data[0]:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        username = _decode_text(data[1:1 + data[0]])
        if self.users.remove_user(username):
            logger.info("user %r removed by admin", username)
            self.send_response(AdminReply.SUCCESS)
        else:
            logger.error("could not remove user %r", username)
            self.send_response(AdminReply.GENERAL_FAILURE)

    def handle_get_metrics(self) -> None:
        logger.info("running GET_METRICS")
        self.send_response(AdminReply.SUCCESS, self.metrics().encode())

    def handle_set_log_level(self, data: bytes) -> None:
        logger.info("running SET_LOG_LEVEL")
        if len(data) < 1 or data[0] > LogLevel.FATAL:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        level = LogLevel(data[0])
        _package_logger.setLevel(_LOGGING_LEVELS[level])
        logger.info("log level changed to %s by admin", level.name)
        self.send_response(AdminReply.SUCCESS)

    def handle_set_max_connections(self, data: bytes) -> None:
        logger.info("running SET_MAX_CONNECTIONS")
        if len(data) < 4:
            self.send_response(AdminReply.INVALID_ARGS)
            return
        value = struct.unpack_from(">I", data)[0]
        if not 1 <= value <= MAX_CONNECTIONS_LIMIT:
            logger.error("invalid max connections: %d", value)
            self.send_response(AdminReply.INVALID_ARGS)
            return
        self.config.set_max_connections(value)
        self.send_response(AdminReply.SUCCESS)

    def _process(self) -> bool:
        try:
            if self.state is _AdminState.AUTH:
                if not self.process_auth():
                    return True
                self.state = _AdminState.COMMAND
            while True:
                outcome = self.process_command()
                if outcome is None:
                    return True
                if not outcome:
                    return False
        except (OSError, ValueError) as exc:
            logger.error("admin session ended: %s", exc)
            return False

    def handle_read(self, key: SelectorKey) -> None:
        """Selector callback: receive data and run what is complete."""
        if self.closed:
            return
        with self.read_buf.writable_view() as view:
            try:
                received = self.sock.recv_into(view)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as exc:
                logger.error("admin recv failed: %s", exc)
                received = 0
        if received == 0:
            logger.info("admin connection closed by client")
            self._finish(key)
            return
        self.read_buf.advance_write(received)
        if not self._process():
            self._finish(key)

    def _finish(self, key: SelectorKey) -> None:
        self.state = _AdminState.DONE
        selector = key.selector
        if selector is not None and key.fd in selector:
            selector.unregister(key.fd)
        self.close()

    def handle_close(self, key: SelectorKey) -> None:
        """Selector callback run when the descriptor is unregistered."""
        self.close()
        key.data = None

    def handler(self) -> FdHandler:
        """Return the selector callbacks for this session."""
        return FdHandler(handle_read=self.handle_read, handle_close=self.handle_close)

    def close(self) -> None:
        """Close the session's socket; safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.state = _AdminState.DONE
        logger.info("closing admin connection")
        self.sock.close()