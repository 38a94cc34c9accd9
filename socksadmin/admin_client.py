"""Interactive client for the administration protocol."""

from __future__ import annotations

import re
import select
import socket
import struct
import sys
from typing import IO, Callable, Iterable, Optional, Sequence

from .admin_protocol import (
    ADMIN_TOKEN,
    ADMIN_VERSION,
    MAX_CONNECTIONS_LIMIT,
    AdminCommand,
    AdminReply,
    LogLevel,
    MetricsSnapshot,
    UserEntry,
    decode_user_list,
    encode_auth,
    encode_command,
)

_METRICS_SIZE = 40
_WORD_LIMIT = 63
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")

MENU = """
=== AVAILABLE COMMANDS ===
help / menu               - Show this menu
list-users                - List users
add <user> <pass>         - Add a user
del <user>                - Delete a user
metrics                   - Show server metrics
set-log <level>           - Change the log level [0-DEBUG 1-INFO 2-ERROR 3-FATAL]
set-max <num>             - Change the maximum number of connections
clear                     - Clear the screen
quit / exit               - Leave
"""


class AdminClientError(Exception):
    """Raised when the server cannot be reached or rejects a request.

    ``code`` holds the server's reply code when there was one.
    """

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class AdminClient:
    """Client side of an administration session over a connected socket."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def __enter__(self) -> "AdminClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @classmethod
    def connect(cls, host: str, port: int) -> "AdminClient":
        """Connect to an IPv4 ``host`` and ``port``."""
        try:
            socket.inet_pton(socket.AF_INET, host)
        except (OSError, TypeError) as exc:
            raise AdminClientError(f"invalid IP address: {host}") from exc
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.connect((host, port))
        except (OSError, OverflowError) as exc:
            sock.close()
            raise AdminClientError(f"could not connect: {exc}") from exc
        return cls(sock)

    def _send(self, data: bytes) -> None:
        try:
            self.sock.sendall(data)
        except OSError as exc:
            raise AdminClientError(f"could not send: {exc}") from exc

    def _recv_exact(self, count: int) -> bytes:
        received = bytearray()
        while len(received) < count:
            try:
                part = self.sock.recv(count - len(received))
            except OSError as exc:
                raise AdminClientError(f"could not receive: {exc}") from exc
            if not part:
                raise AdminClientError("connection closed by the server")
            received += part
        return bytes(received)

    def _data_ready(self) -> bool:
        try:
            readable, _, _ = select.select([self.sock], [], [], 0)
        except (OSError, ValueError):
            return False
        return bool(readable)

    def authenticate(self, token: str) -> None:
        """Send ``token``; raises AdminClientError if the server refuses it."""
        self._send(encode_auth(token))
        version, code = self._recv_exact(2)
        if version != ADMIN_VERSION or code != AdminReply.SUCCESS:
            raise AdminClientError(f"authentication failed: code {code}", code)

    def send_command(self, command: int, data: bytes = b"") -> None:
        """Send one command with its optional payload."""
        self._send(encode_command(command, data))

    def receive_response(self) -> tuple[int, bytes]:
        """Read one reply and return its code and payload.

        A payload is only looked for after a successful reply, and only if
        it is already waiting on the socket.
        """
        version, code = self._recv_exact(2)
        if version != ADMIN_VERSION:
            raise AdminClientError(f"invalid response version: {version}")
        data = b""
        if code == AdminReply.SUCCESS and self._data_ready():
            try:
                head = self.sock.recv(2)
            except OSError:
                head = b""
            if head:
                if len(head) == 1:
                    head += self._recv_exact(1)
                (length,) = struct.unpack(">H", head)
                if length:
                    data = self._recv_exact(length)
        return code, data

    def _call(self, command: AdminCommand, data: bytes = b"") -> bytes:
        self.send_command(command, data)
        code, payload = self.receive_response()
        if code != AdminReply.SUCCESS:
            raise AdminClientError(
                f"{command.name.lower().replace('_', ' ')} failed: code {code}", code
            )
        return payload

    def list_users(self) -> list[UserEntry]:
        """Return the users known to the server."""
        return decode_user_list(self._call(AdminCommand.LIST_USERS))

    def add_user(self, username: str, password: str) -> None:
        """Create a user."""
        name = username.encode()
        secret = password.encode()
        if not 0 < len(name) <= 0xFF or not 0 < len(secret) <= 0xFF:
            raise ValueError("username and password must be 1 to 255 bytes long")
        payload = bytes([len(name)]) + name + bytes([len(secret)]) + secret
        self._call(AdminCommand.ADD_USER, payload)

    def del_user(self, username: str) -> None:
        """Delete a user."""
        name = username.encode()
        if not 0 < len(name) <= 0xFF:
            raise ValueError("username must be 1 to 255 bytes long")
        self._call(AdminCommand.DEL_USER, bytes([len(name)]) + name)

    def get_metrics(self) -> MetricsSnapshot:
        """Return the server's counters."""
        payload = self._call(AdminCommand.GET_METRICS)
        if len(payload) < _METRICS_SIZE:
            raise AdminClientError("insufficient metrics data")
        return MetricsSnapshot.decode(payload)

    def set_log_level(self, level: int) -> None:
        """Change the server log level (0 DEBUG to 3 FATAL)."""
        if not LogLevel.DEBUG <= level <= LogLevel.FATAL:
            raise ValueError(
                "invalid level; allowed values: 0 (DEBUG), 1 (INFO), 2 (ERROR), 3 (FATAL)"
            )
        self._call(AdminCommand.SET_LOG_LEVEL, bytes([level]))

    def set_max_connections(self, max_connections: int) -> None:
        """Change the server's connection limit (1 to 500)."""
        if not 1 <= max_connections <= MAX_CONNECTIONS_LIMIT:
            raise ValueError(f"invalid amount; must be between 1 and {MAX_CONNECTIONS_LIMIT}")
        self._call(AdminCommand.SET_MAX_CONNECTIONS, struct.pack(">I", max_connections))

    def quit(self) -> None:
        """Tell the server the session is over; errors are ignored."""
        try:
            self.send_command(AdminCommand.QUIT)
        except AdminClientError:
            pass

    def close(self) -> None:
        """Close the connection."""
        self.sock.close()


def _parse_int(text: str) -> Optional[int]:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else None


def _cmd_help(client: AdminClient, args: str, out: IO[str]) -> bool:
    print(MENU, file=out)
    return True


def _cmd_quit(client: AdminClient, args: str, out: IO[str]) -> bool:
    print("\nExiting...\n", file=out)
    client.quit()
    client.close()
    return False


def _cmd_clear(client: AdminClient, args: str, out: IO[str]) -> bool:
    out.write("\033[2J\033[H")
    return True


def _cmd_list_users(client: AdminClient, args: str, out: IO[str]) -> bool:
    print("\n--- Listing users ---", file=out)
    users = client.list_users()
    if not users:
        print("No users", file=out)
        return True
    print(f"Users found: {len(users)}", file=out)
    for user in users:
        print(f"- {user.username} ({'active' if user.active else 'inactive'})", file=out)
    print(file=out)
    return True


def _cmd_add_user(client: AdminClient, args: str, out: IO[str]) -> bool:
    words = args.split()
    if len(words) < 2:
        print("\nUsage: add <user> <password>\n", file=out)
        return True
    username, secret = words[0][:_WORD_LIMIT], words[1][:_WORD_LIMIT]
    client.add_user(username, secret)
    print(f"\nUser '{username}' added\n", file=out)
    return True


def _cmd_del_user(client: AdminClient, args: str, out: IO[str]) -> bool:
    words = args.split()
    if not words:
        print("\nUsage: del <user>\n", file=out)
        return True
    username = words[0][:_WORD_LIMIT]
    client.del_user(username)
    print(f"\nUser '{username}' deleted\n", file=out)
    return True


def _cmd_set_log(client: AdminClient, args: str, out: IO[str]) -> bool:
    level = _parse_int(args)
    if level is None or not LogLevel.DEBUG <= level <= LogLevel.FATAL:
        print("\nUsage: set-log <level> (0-3)\n", file=out)
        return True
    client.set_log_level(level)
    print(f"\nLog level changed to {level}\n", file=out)
    return True


def _cmd_set_max(client: AdminClient, args: str, out: IO[str]) -> bool:
    value = _parse_int(args)
    if value is None or value <= 0:
        print("\nUsage: set-max <num>\n", file=out)
        return True
    client.set_max_connections(value)
    print(f"\nMaximum connections set to {value}\n", file=out)
    return True


def _cmd_metrics(client: AdminClient, args: str, out: IO[str]) -> bool:
    print("\n--- Fetching metrics ---", file=out)
    metrics = client.get_metrics()
    print(f"Total connections: {metrics.total_connections}", file=out)
    print(f"Current connections: {metrics.current_connections}", file=out)
    print(f"Bytes transferred: {metrics.total_bytes_transferred}", file=out)
    print(f"Successful connections: {metrics.successful_connections}", file=out)
    print(f"Failed connections: {metrics.failed_connections}", file=out)
    print(file=out)
    return True


_COMMANDS: dict[str, Callable[[AdminClient, str, IO[str]], bool]] = {
    "help": _cmd_help,
    "menu": _cmd_help,
    "quit": _cmd_quit,
    "exit": _cmd_quit,
    "clear": _cmd_clear,
    "list-users": _cmd_list_users,
    "add": _cmd_add_user,
    "del": _cmd_del_user,
    "set-log": _cmd_set_log,
    "set-max": _cmd_set_max,
    "metrics": _cmd_metrics,
}


def run_shell(client: AdminClient, lines: Iterable[str], out: IO[str]) -> int:
    """Run shell commands from ``lines`` against ``client``, writing to ``out``.

    Ends at ``quit``/``exit`` or at the end of input; either way the server
    is told the session is over and the connection is closed.
    """
    for raw in lines:
        out.write("> ")
        line = raw.split("\n", 1)[0]
        parts = line.split(None, 1)
        if not parts:
            continue
        name = parts[0][:_WORD_LIMIT]
        args = parts[1] if len(parts) > 1 else ""
        command = _COMMANDS.get(name)
        if command is None:
            print("Invalid command. Type 'help' or 'menu' to see the options.", file=out)
            continue
        try:
            if not command(client, args, out):
                return 0
        except (AdminClientError, ValueError) as exc:
            print(f"\nError: {exc}\n", file=out)
    print("\nEnd of input. Exiting...", file=out)
    client.quit()
    client.close()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Connect to an administration server and run the interactive shell."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 2:
        print("Usage: socksadmin-client <host> <port>")
        print("Example: socksadmin-client 127.0.0.1 8080")
        return 1
    host = args[0]
    port = _parse_int(args[1]) or 0
    if not 0 < port <= 65535:
        print(f"Invalid port: {port}")
        return 1

    print(f"Connecting to {host}:{port}...")
    try:
        client = AdminClient.connect(host, port)
    except AdminClientError as exc:
        print(exc)
        return 1
    print("Connected")

    try:
        client.authenticate(ADMIN_TOKEN)
    except AdminClientError as exc:
        print(exc)
        client.close()
        return 1
    print("Authenticated")
    print("\nWelcome to the administration client. Type 'menu' to see the commands.")
    return run_shell(client, sys.stdin, sys.stdout)