# socksadmin

This package contains pieces for running and managing a SOCKS5 proxy from Python. It uses only the
standard library.

- `socksadmin.buffer`: `Buffer` is a fixed-size byte buffer with separate read and write
  positions. `writable_view()` and `advance_write()` fill it, and `readable()` and
  `advance_read()` drain it. It compacts itself once everything written has been read.
- `socksadmin.parser`: a small byte-driven state-machine engine. It provides `Parser`,
  `ParserDefinition`, `Transition`, `ParserEvent`, the `ANY` condition and `no_classes()`.
  `Parser.feed(byte)` returns the event of the transition that matched, or `None` when no
  transition matched.
- `socksadmin.parser_utils`: `strcmpi(text)` builds a parser definition that matches `text`
  while ignoring ASCII case. It emits `StringCmpEvent.MAYEQ`, `EQ` or `NEQ`.
  `strcmpi_event_name()` returns a readable name for an event.
- `socksadmin.netutils`: `sockaddr_to_human(addr)` turns an address tuple into `host:port`.
  `sock_blocking_write(sock, buffer)` sends a buffer's content. `sock_blocking_copy(source, dest)`
  copies from one socket to another until the end of the stream.
- `socksadmin.selector`: `Selector` is a single-threaded multiplexer built on `select()`.
  - You register file descriptors (or objects with `fileno()`) with an `FdHandler` and an
    `Interest` (`READ`, `WRITE`, or both).
  - `Selector.select()` waits for the timeout given to the constructor (or forever when it is
    `None`) and calls `handle_read` or `handle_write`.
  - Another thread can call `Selector.notify_block(fd)`. This wakes the selector, which then calls
    `handle_block` from its own thread.
  - Failures raise `SelectorError`, which carries a `SelectorStatus`.
- `socksadmin.admin_config`: `AdminConfig` is a thread-safe holder for the connection limit
  (default 500), with a pending-change flag. `get_config()` returns the shared instance.
- `socksadmin.admin_protocol`: the binary admin protocol.
  - `AdminConnection` runs the server side of one session: token authentication, then commands.
  - The module also has message encoders (`encode_auth`, `encode_command`, `encode_response`) and
    user-list helpers (`encode_user_list`, `decode_user_list`).
  - `MetricsSnapshot.encode` and `MetricsSnapshot.decode` convert the counters to and from the
    wire format.
- `socksadmin.admin_client`: `AdminClient` sends the commands and decodes the replies.
  `run_shell` drives it from lines of text. `main` is the `socksadmin-client` command.

## Installing

```
pip install .
```

## The admin client

Connect to an admin server by giving its IPv4 address and port:

```
socksadmin-client 127.0.0.1 8080
```

The client authenticates with the token in `admin_protocol.ADMIN_TOKEN`. It then reads commands
from standard input:

| command             | effect                                        |
|---------------------|-----------------------------------------------|
| `help` / `menu`     | show the command list                         |
| `list-users`        | list users and whether each is active         |
| `add <user> <pass>` | add a user                                    |
| `del <user>`        | remove a user                                 |
| `metrics`           | show connection and transfer counters         |
| `set-log <level>`   | 0 DEBUG, 1 INFO, 2 ERROR, 3 FATAL             |
| `set-max <num>`     | set the connection limit (1 to 500)           |
| `clear`             | clear the screen                              |
| `quit` / `exit`     | send the quit command to the server and leave |

When input ends (Ctrl+D), the client also sends the quit command before it exits. If the server
rejects a command, the shell prints the error and keeps going.

## Using the client from code

```python
from socksadmin.admin_client import AdminClient

token = "token"
password = "password"

with AdminClient.connect("127.0.0.1", 8080) as client:
    client.authenticate(token)
    client.add_user("alice", password)
    print(client.list_users())
    print(client.get_metrics())
    client.set_max_connections(200)
    client.quit()
```

A refused request raises `AdminClientError`, and the server's reply code is in its `code`
attribute. Arguments that are out of range raise `ValueError` before anything is sent.

## Serving admin sessions

`AdminConnection` needs three things from you:

- a connected socket;
- a user store with `list_users()`, `add_user(username, password)` and `remove_user(username)`;
- a callable that returns a `MetricsSnapshot`.

The example below wires it to a `Selector`:

```python
import socket

from socksadmin.admin_protocol import ADMIN_PORT, AdminConnection, MetricsSnapshot, UserEntry
from socksadmin.selector import FdHandler, Interest, Selector


class Users:
    def __init__(self):
        self._users = {}

    def list_users(self):
        return [UserEntry(name) for name in self._users]

    def add_user(self, username, password):
        if username in self._users:
            return False
        self._users[username] = password
        return True

    def remove_user(self, username):
        return self._users.pop(username, None) is not None


users = Users()
listener = socket.create_server(("127.0.0.1", ADMIN_PORT))
listener.setblocking(False)


def accept(key):
    conn, _ = listener.accept()
    conn.setblocking(False)
    session = AdminConnection(conn, users, MetricsSnapshot)
    key.selector.register(conn, session.handler(), Interest.READ, session)


with Selector(timeout=1.0) as selector:
    selector.register(listener, FdHandler(handle_read=accept), Interest.READ)
    while True:
        selector.select()
```

When a session ends, `AdminConnection` unregisters its socket from the selector and closes it. A
session ends on any of these:

- the quit command;
- an unsupported command;
- a bad version or token;
- a closed connection.

`SET_MAX_CONNECTIONS` updates the `AdminConfig` passed to the connection, or `get_config()` when
none was passed. `SET_LOG_LEVEL` sets the level of the `socksadmin` logger.

## What this package does not do

- It has no SOCKS5 proxy server and no ready-to-run admin server. The listener shown above is
  code you write yourself.
- It does not store users and does not collect metrics. `AdminConnection` only reports what the
  user store and the metrics callable you give it return.
- Nothing reads `AdminConfig.max_connections` to limit connections; that is for the code using
  the package.
- The command codes `SET_BUFFER_SIZE` and `SET_TIMEOUT` are defined in `AdminCommand`, but the
  server answers them with `COMMAND_NOT_SUPPORTED`.

## Wire format

Every message starts with the protocol version byte `0x01`.

- Authentication: `VER TLEN TOKEN`. The reply is `VER CODE`.
- Command: `VER CMD`. When there is a payload, a big-endian 16-bit length and the payload follow.
  The server expects the length field for `ADD_USER`, `DEL_USER`, `SET_LOG_LEVEL`,
  `SET_MAX_CONNECTIONS`, `SET_BUFFER_SIZE` and `SET_TIMEOUT`.
- Response: `VER CODE`. When there is a payload, a big-endian 16-bit length and the payload
  follow.

Payloads:

- User list: a 16-bit user count, then one `LEN NAME ACTIVE` entry per user.
- Metrics: five big-endian 64-bit counters, in this order: total connections, current
  connections, bytes transferred, successful connections and failed connections.

Reply codes are listed in `AdminReply` and command codes in `AdminCommand`.

## Running the tests

```
pip install .[test]
pytest
```