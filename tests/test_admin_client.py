import io
import socket
import struct
import threading

import pytest

from socksadmin.admin_client import AdminClient, AdminClientError, main, run_shell
from socksadmin.admin_config import AdminConfig
from socksadmin.admin_protocol import (
    ADMIN_TOKEN,
    AdminCommand,
    AdminConnection,
    AdminReply,
    MetricsSnapshot,
    UserEntry,
    encode_auth,
    encode_command,
    encode_response,
    encode_user_list,
)
from socksadmin.selector import SelectorKey


@pytest.fixture
def pair():
    client_sock, server_sock = socket.socketpair()
    client_sock.settimeout(5)
    server_sock.settimeout(5)
    yield AdminClient(client_sock), server_sock
    client_sock.close()
    server_sock.close()


def drain(sock):
    sock.settimeout(0.2)
    received = b""
    try:
        while True:
            part = sock.recv(4096)
            if not part:
                break
            received += part
    except TimeoutError:
        pass
    return received


class FakeUsers:
    def __init__(self):
        self.users = {}

    def list_users(self):
        return [UserEntry(name) for name in self.users]

    def add_user(self, username, secret):
        if username in self.users:
            return False
        self.users[username] = secret
        return True

    def remove_user(self, username):
        return self.users.pop(username, None) is not None


def test_authenticate_sends_token_and_accepts_success(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS))
    client.authenticate("token")
    assert drain(server) == encode_auth("token")


def test_authenticate_rejected(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.AUTH_FAILURE))
    with pytest.raises(AdminClientError) as info:
        client.authenticate("token")
    assert info.value.code == AdminReply.AUTH_FAILURE


def test_authenticate_wrong_version(pair):
    client, server = pair
    server.sendall(b"\x05\x00")
    with pytest.raises(AdminClientError):
        client.authenticate("token")


def test_receive_response_with_payload(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS, b"abc"))
    assert client.receive_response() == (AdminReply.SUCCESS, b"abc")


def test_receive_response_failure_without_payload(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.INVALID_ARGS))
    assert client.receive_response() == (AdminReply.INVALID_ARGS, b"")


def test_receive_response_peer_closed(pair):
    client, server = pair
    server.close()
    with pytest.raises(AdminClientError):
        client.receive_response()


def test_list_users(pair):
    client, server = pair
    entries = [UserEntry("alice", True), UserEntry("bob", False)]
    server.sendall(encode_response(AdminReply.SUCCESS, encode_user_list(entries)))
    assert client.list_users() == entries
    assert drain(server) == encode_command(AdminCommand.LIST_USERS)


def test_add_user_wire_format(pair):
    client, server = pair
    password = "password"
    server.sendall(encode_response(AdminReply.SUCCESS))
    client.add_user("alice", password)
    payload = b"\x05alice" + bytes([len(password)]) + password.encode()
    assert drain(server) == encode_command(AdminCommand.ADD_USER, payload)


def test_add_user_rejects_empty_values(pair):
    client, _ = pair
    with pytest.raises(ValueError):
        client.add_user("", "secret")
    with pytest.raises(ValueError):
        client.add_user("alice", "")


def test_del_user_failure_reports_code(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.GENERAL_FAILURE))
    with pytest.raises(AdminClientError) as info:
        client.del_user("alice")
    assert info.value.code == AdminReply.GENERAL_FAILURE
    assert drain(server) == encode_command(AdminCommand.DEL_USER, b"\x05alice")


def test_get_metrics_round_trip(pair):
    client, server = pair
    snapshot = MetricsSnapshot(10, 2, 4096, 8, 2)
    server.sendall(encode_response(AdminReply.SUCCESS, snapshot.encode()))
    assert client.get_metrics() == snapshot


def test_get_metrics_short_payload(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS, b"\x00" * 8))
    with pytest.raises(AdminClientError):
        client.get_metrics()


def test_set_max_connections_wire_format(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS))
    client.set_max_connections(300)
    expected = encode_command(AdminCommand.SET_MAX_CONNECTIONS, struct.pack(">I", 300))
    assert drain(server) == expected


@pytest.mark.parametrize("value", [0, 501])
def test_set_max_connections_out_of_range(pair, value):
    client, _ = pair
    with pytest.raises(ValueError):
        client.set_max_connections(value)


@pytest.mark.parametrize("level", [-1, 4])
def test_set_log_level_out_of_range(pair, level):
    client, _ = pair
    with pytest.raises(ValueError):
        client.set_log_level(level)


def test_set_log_level_wire_format(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS))
    client.set_log_level(2)
    assert drain(server) == encode_command(AdminCommand.SET_LOG_LEVEL, b"\x02")


def test_connect_invalid_address():
    with pytest.raises(AdminClientError):
        AdminClient.connect("not-an-ip", 8080)


def test_connect_to_listening_server():
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]
    try:
        with AdminClient.connect("127.0.0.1", port) as client:
            assert client.sock.getpeername() == ("127.0.0.1", port)
    finally:
        server.close()


def test_shell_end_of_input_sends_quit(pair):
    client, server = pair
    out = io.StringIO()
    assert run_shell(client, ["help\n"], out) == 0
    assert "list-users" in out.getvalue()
    assert drain(server) == encode_command(AdminCommand.QUIT)
    assert client.sock.fileno() == -1


def test_shell_quit_stops_processing(pair):
    client, server = pair
    out = io.StringIO()
    assert run_shell(client, ["quit\n", "help\n"], out) == 0
    assert "COMMANDS" not in out.getvalue()
    assert drain(server) == encode_command(AdminCommand.QUIT)


def test_shell_invalid_command_and_usage(pair):
    client, server = pair
    out = io.StringIO()
    run_shell(client, ["bogus\n", "set-log 9\n", "add alice\n", "\n"], out)
    text = out.getvalue()
    assert "Invalid command" in text
    assert "Usage: set-log" in text
    assert "Usage: add" in text
    assert drain(server) == encode_command(AdminCommand.QUIT)


def test_shell_list_users(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.SUCCESS, encode_user_list([UserEntry("alice")])))
    out = io.StringIO()
    run_shell(client, ["list-users\n"], out)
    assert "- alice (active)" in out.getvalue()


def test_shell_reports_server_error(pair):
    client, server = pair
    server.sendall(encode_response(AdminReply.GENERAL_FAILURE))
    out = io.StringIO()
    run_shell(client, ["del alice\n"], out)
    assert "Error:" in out.getvalue()


def test_end_to_end_session():
    client_sock, server_sock = socket.socketpair()
    client_sock.settimeout(5)
    store = FakeUsers()
    snapshot = MetricsSnapshot(7, 1, 900, 6, 1)
    conn = AdminConnection(server_sock, store, lambda: snapshot, AdminConfig())
    key = SelectorKey(None, server_sock.fileno(), conn)

    def serve():
        while not conn.closed:
            conn.handle_read(key)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    password = "password"
    with AdminClient(client_sock) as client:
        client.authenticate(ADMIN_TOKEN)
        client.add_user("alice", password)
        assert client.list_users() == [UserEntry("alice", True)]
        assert client.get_metrics() == snapshot
        client.quit()
        thread.join(5)
    assert conn.closed
    assert store.users == {"alice": password}


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().out


def test_main_invalid_port(capsys):
    assert main(["127.0.0.1", "0"]) == 1
    assert "Invalid port" in capsys.readouterr().out


def test_main_invalid_host():
    assert main(["not-an-ip", "8080"]) == 1


def test_main_authentication_rejected(capsys):
    server = socket.create_server(("127.0.0.1", 0))
    port = server.getsockname()[1]

    def answer():
        peer, _ = server.accept()
        with peer:
            peer.recv(256)
            peer.sendall(encode_response(AdminReply.AUTH_FAILURE))

    thread = threading.Thread(target=answer, daemon=True)
    thread.start()
    try:
        assert main(["127.0.0.1", str(port)]) == 1
    finally:
        thread.join(5)
        server.close()
    assert f"code {int(AdminReply.AUTH_FAILURE)}" in capsys.readouterr().out