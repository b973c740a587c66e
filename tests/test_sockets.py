import socket
from unittest import mock

import pytest

from lightstream.sockets import (
    RCV_BUFFER_SIZE_MIN,
    TCP_PORT_FLAG_ALWAYS_TEST,
    TCPV4_MSS,
    QosType,
    bind_udp_socket,
    connect_tcp_socket,
    create_socket,
    enable_no_delay,
    get_local_address_by_udp_connect,
    is_socket_readable,
    recv_udp_socket,
    resolve_host_name,
    send_mtu_safe,
    set_non_fatal_recv_timeout_ms,
    set_socket_non_blocking,
    shutdown_tcp_socket,
)


@pytest.fixture
def listener():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(4)
    yield srv
    srv.close()


@pytest.fixture
def closed_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_create_socket_non_blocking():
    with create_socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, True) as s:
        assert s.getblocking() is False
        set_socket_non_blocking(s, False)
        assert s.getblocking() is True


def test_connect_tcp_socket_succeeds(listener):
    port = listener.getsockname()[1]
    sock = connect_tcp_socket("127.0.0.1", port, 3)
    try:
        assert sock.getpeername() == ("127.0.0.1", port)
        assert sock.getblocking() is True
    finally:
        sock.close()


def test_connect_tcp_socket_ignores_tuple_port(listener):
    port = listener.getsockname()[1]
    sock = connect_tcp_socket(("127.0.0.1", 1), port, 3)
    try:
        assert sock.getpeername()[1] == port
    finally:
        sock.close()


def test_connect_tcp_socket_refused(closed_port):
    with pytest.raises(OSError):
        connect_tcp_socket("127.0.0.1", closed_port, 3)


def test_bind_udp_socket_wildcard():
    with bind_udp_socket(socket.AF_INET) as s:
        host, port = s.getsockname()
        assert host == "0.0.0.0"
        assert port > 0


def test_bind_udp_socket_local_address_gets_ephemeral_port():
    with bind_udp_socket(socket.AF_INET, ("127.0.0.1", 1), 0, QosType.AUDIO) as s:
        host, port = s.getsockname()
        assert host == "127.0.0.1"
        assert port != 1


def test_bind_udp_socket_buffer_size():
    with bind_udp_socket(socket.AF_INET, None, 65536) as s:
        assert s.getsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF) >= RCV_BUFFER_SIZE_MIN


def test_bind_udp_socket_bad_family():
    with pytest.raises(ValueError):
        bind_udp_socket(socket.AF_UNIX if hasattr(socket, "AF_UNIX") else 12345)


def test_recv_udp_socket_with_select():
    with bind_udp_socket(socket.AF_INET, "127.0.0.1") as rx, socket.socket(
        socket.AF_INET, socket.SOCK_DGRAM
    ) as tx:
        assert recv_udp_socket(rx, 2048, True) is None
        tx.sendto(b"datagram", rx.getsockname())
        assert recv_udp_socket(rx, 2048, True) == b"datagram"


def test_recv_udp_socket_with_socket_timeout():
    with bind_udp_socket(socket.AF_INET, "127.0.0.1") as rx, socket.socket(
        socket.AF_INET, socket.SOCK_DGRAM
    ) as tx:
        set_non_fatal_recv_timeout_ms(rx, 50)
        assert recv_udp_socket(rx, 2048, False) is None
        tx.sendto(b"payload", rx.getsockname())
        assert recv_udp_socket(rx, 2048, False) == b"payload"


def test_is_socket_readable():
    with bind_udp_socket(socket.AF_INET, "127.0.0.1") as rx, socket.socket(
        socket.AF_INET, socket.SOCK_DGRAM
    ) as tx:
        assert is_socket_readable(rx) is False
        tx.sendto(b"x", rx.getsockname())
        assert recv_udp_socket(rx, 16, True) == b"x"
        tx.sendto(b"y", rx.getsockname())
        for _ in range(100):
            if is_socket_readable(rx):
                break
            socket.socket  # keep polling
        assert recv_udp_socket(rx, 16, True) == b"y"


class _RecordingSocket:
    def __init__(self):
        self.chunks = []

    def sendall(self, data):
        self.chunks.append(bytes(data))


def test_send_mtu_safe_splits_into_mss_chunks():
    data = bytes(range(256)) * 8
    fake = _RecordingSocket()
    assert send_mtu_safe(fake, data) == len(data)
    assert b"".join(fake.chunks) == data
    assert len(fake.chunks[0]) == 536
    assert all(len(c) <= TCPV4_MSS for c in fake.chunks)


def test_send_mtu_safe_empty():
    fake = _RecordingSocket()
    assert send_mtu_safe(fake, b"") == 0
    assert fake.chunks == []


def test_send_mtu_safe_over_socket(listener):
    port = listener.getsockname()[1]
    client = connect_tcp_socket("127.0.0.1", port, 3)
    server, _ = listener.accept()
    try:
        enable_no_delay(client)
        assert client.getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY) != 0
        data = b"abc" * 700
        assert send_mtu_safe(client, data) == len(data)
        received = b""
        while len(received) < len(data):
            received += server.recv(4096)
        assert received == data
    finally:
        client.close()
        server.close()


def test_shutdown_tcp_socket_wakes_peer(listener):
    port = listener.getsockname()[1]
    client = connect_tcp_socket("127.0.0.1", port, 3)
    server, _ = listener.accept()
    try:
        shutdown_tcp_socket(client)
        assert server.recv(16) == b""
        shutdown_tcp_socket(client)  # a second shutdown is harmless
        assert client.fileno() >= 0
    finally:
        client.close()
        server.close()


def test_get_local_address_by_udp_connect():
    host, port = get_local_address_by_udp_connect("127.0.0.1", 9)
    assert host == "127.0.0.1"
    assert port > 0


def test_get_local_address_by_udp_connect_zero_port():
    with pytest.raises(ValueError):
        get_local_address_by_udp_connect("127.0.0.1", 0)


def _v4_result(host, port=0):
    return (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (host, port))


def _v6_result(host, port=0):
    return (socket.AF_INET6, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (host, port, 0, 0))


def test_resolve_single_address_without_test():
    with mock.patch("socket.getaddrinfo", return_value=[_v4_result("127.0.0.1")]):
        family, addr = resolve_host_name("somehost", socket.AF_UNSPEC, 0)
    assert family == socket.AF_INET
    assert addr == ("127.0.0.1", 0)


def test_resolve_always_test_succeeds(listener):
    port = listener.getsockname()[1]
    with mock.patch("socket.getaddrinfo", return_value=[_v4_result("127.0.0.1")]):
        family, addr = resolve_host_name("somehost", socket.AF_INET, port | TCP_PORT_FLAG_ALWAYS_TEST)
    assert addr[0] == "127.0.0.1"


def test_resolve_always_test_fails(closed_port):
    with mock.patch("socket.getaddrinfo", return_value=[_v4_result("127.0.0.1")]):
        with pytest.raises(OSError):
            resolve_host_name("somehost", socket.AF_INET, closed_port | TCP_PORT_FLAG_ALWAYS_TEST)


def test_resolve_empty_result():
    with mock.patch("socket.getaddrinfo", return_value=[]):
        with pytest.raises(OSError):
            resolve_host_name("somehost", socket.AF_UNSPEC, 0)


def test_resolve_falls_back_to_ipv4_for_private_literal(closed_port):
    responses = [[_v6_result("::1")], [_v4_result("127.0.0.1")]]
    with mock.patch("socket.getaddrinfo", side_effect=responses) as gai:
        family, addr = resolve_host_name("10.0.0.5", socket.AF_UNSPEC, closed_port)
    assert family == socket.AF_INET
    assert addr == ("127.0.0.1", 0)
    assert gai.call_count == 2
    assert gai.call_args_list[1].args[2] == socket.AF_INET


def test_resolve_no_fallback_for_public_literal(closed_port):
    with mock.patch("socket.getaddrinfo", return_value=[_v6_result("::1")]) as gai:
        family, addr = resolve_host_name("8.8.8.8", socket.AF_UNSPEC, closed_port)
    assert family == socket.AF_INET6
    assert gai.call_count == 1