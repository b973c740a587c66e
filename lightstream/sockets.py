"""Socket helpers: creation, TCP connect with timeout, UDP bind and receive,
MTU-safe sends and host name resolution."""

from __future__ import annotations

import enum
import errno
import ipaddress
import logging
import select
import socket
import struct
import sys
from typing import Any

from lightstream.addresses import is_private_network_address_v4

logger = logging.getLogger(__name__)

TEST_PORT_TIMEOUT_SEC = 3

RCV_BUFFER_SIZE_MIN = 32767
RCV_BUFFER_SIZE_STEP = 16384

TCPV4_MSS = 536
TCPV6_MSS = 1220

UDP_RECV_POLL_TIMEOUT_MS = 100

TCP_PORT_MASK = 0xFFFF
TCP_PORT_FLAG_ALWAYS_TEST = 0x10000

_CONNECT_PENDING = {
    code
    for code in (
        errno.EWOULDBLOCK,
        errno.EAGAIN,
        errno.EINPROGRESS,
        getattr(errno, "WSAEWOULDBLOCK", None),
    )
    if code is not None
}

_RECV_TIMEOUT_ERRORS = {
    code
    for code in (
        errno.EWOULDBLOCK,
        errno.EAGAIN,
        errno.EINTR,
        errno.ETIMEDOUT,
        getattr(errno, "WSAEWOULDBLOCK", None),
        getattr(errno, "WSAETIMEDOUT", None),
        997 if sys.platform == "win32" else None,  # WSA_IO_PENDING
    )
    if code is not None
}


class QosType(enum.IntEnum):
    BEST_EFFORT = 0
    AUDIO = 1
    VIDEO = 2


_SO_PRIORITY_VALUES = {
    QosType.BEST_EFFORT: 0,
    QosType.AUDIO: 6,
    QosType.VIDEO: 5,
}


def _family_of(host: str) -> int:
    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.AF_INET6 if ip.version == 6 else socket.AF_INET


def _sockaddr_with_port(address: Any, port: int) -> tuple[int, tuple]:
    """Return ``(family, sockaddr)`` for ``address`` with its port replaced."""
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        address = str(address)
    if isinstance(address, str):
        family = _family_of(address)
        if family == socket.AF_INET6:
            return family, (address, port, 0, 0)
        return family, (address, port)
    if isinstance(address, tuple) and address:
        host = str(address[0])
        family = socket.AF_INET6 if len(address) == 4 else _family_of(host)
        if family == socket.AF_INET6:
            flow = address[2] if len(address) > 2 else 0
            scope = address[3] if len(address) > 3 else 0
            return family, (host, port, flow, scope)
        return family, (host, port)
    raise TypeError(f"unsupported address: {address!r}")


def create_socket(family: int, socket_type: int, protocol: int, non_blocking: bool = False) -> socket.socket:
    """Create a socket, optionally in non-blocking mode."""
    try:
        sock = socket.socket(family, socket_type, protocol)
    except OSError as exc:
        logger.error("socket() failed: %s", exc)
        raise

    no_sigpipe = getattr(socket, "SO_NOSIGPIPE", None)
    if no_sigpipe is not None:
        try:
            sock.setsockopt(socket.SOL_SOCKET, no_sigpipe, 1)
        except OSError:
            pass

    if non_blocking:
        set_socket_non_blocking(sock, True)
    return sock


def set_socket_non_blocking(sock: socket.socket, enabled: bool) -> None:
    """Switch the socket between blocking and non-blocking mode."""
    sock.setblocking(not enabled)


def _limit_mss(sock: socket.socket, family: int) -> None:
    maxseg = getattr(socket, "TCP_MAXSEG", None)
    if maxseg is None:
        return
    value = TCPV4_MSS if family == socket.AF_INET else TCPV6_MSS
    try:
        sock.setsockopt(socket.IPPROTO_TCP, maxseg, value)
    except OSError as exc:
        logger.debug("setsockopt(TCP_MAXSEG, %d) failed: %s", value, exc)


def connect_tcp_socket(address: Any, port: int, timeout_sec: float) -> socket.socket:
    """Connect a TCP socket to ``address`` on ``port`` within ``timeout_sec``.

    ``address`` is an IP address (text or ipaddress object) or a socket
    address tuple whose port is ignored. The returned socket is blocking.
    Raises TimeoutError when the connection does not complete in time and
    OSError for any other failure.
    """
    family, sockaddr = _sockaddr_with_port(address, port)
    sock = create_socket(family, socket.SOCK_STREAM, socket.IPPROTO_TCP, True)
    try:
        _limit_mss(sock, family)

        err = sock.connect_ex(sockaddr)
        if err != 0 and err not in _CONNECT_PENDING:
            raise OSError(err, f"connect() failed: {_strerror(err)}")

        try:
            _, writable, errored = select.select([], [sock], [sock], timeout_sec)
        except OSError as exc:
            logger.error("pollSockets() failed: %s", exc)
            raise

        if not writable and not errored:
            logger.error("Connection timed out after %s seconds (TCP port %d)", timeout_sec, port)
            raise TimeoutError(errno.ETIMEDOUT, f"connection to TCP port {port} timed out")

        err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err == 0 and errored and not writable:
            err = errno.ECONNREFUSED
        if err != 0:
            logger.error("connect() failed: %d", err)
            raise OSError(err, f"connect() failed: {_strerror(err)}")

        set_socket_non_blocking(sock, False)
        return sock
    except BaseException:
        sock.close()
        raise


def _strerror(err: int) -> str:
    try:
        import os

        return os.strerror(err)
    except ValueError:
        return str(err)


def _set_socket_qos(sock: socket.socket, qos_type: QosType) -> None:
    priority = getattr(socket, "SO_PRIORITY", None)
    if priority is None:
        return
    value = _SO_PRIORITY_VALUES[qos_type]
    try:
        sock.setsockopt(socket.SOL_SOCKET, priority, value)
    except OSError as exc:
        logger.warning("setsockopt(SO_PRIORITY, %d) failed: %s", value, exc)


def _set_receive_buffer(sock: socket.socket, buffer_size: int) -> None:
    # Step down from the requested size until the OS accepts one.
    while True:
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, buffer_size)
            logger.debug("Selected receive buffer size: %d", buffer_size)
            return
        except OSError as exc:
            if buffer_size <= RCV_BUFFER_SIZE_MIN:
                logger.warning("Set rcv buffer size failed: %s", exc)
                return
            if buffer_size - RCV_BUFFER_SIZE_STEP <= RCV_BUFFER_SIZE_MIN:
                buffer_size = RCV_BUFFER_SIZE_MIN
            else:
                buffer_size -= RCV_BUFFER_SIZE_STEP


def bind_udp_socket(
    family: int,
    local_address: Any = None,
    buffer_size: int = 0,
    qos_type: QosType | int = QosType.BEST_EFFORT,
) -> socket.socket:
    """Create a UDP socket bound to an ephemeral port.

    It is bound to ``local_address`` when one is given, otherwise to the
    wildcard address of ``family``. A non-zero ``buffer_size`` asks for that
    receive buffer, stepping down until the OS accepts a size.
    """
    qos_type = QosType(qos_type)
    if local_address is not None:
        bind_family, bind_addr = _sockaddr_with_port(local_address, 0)
    else:
        if family not in (socket.AF_INET, socket.AF_INET6):
            raise ValueError("address family must be AF_INET or AF_INET6")
        bind_family = family
        bind_addr = ("0.0.0.0", 0) if family == socket.AF_INET else ("::", 0, 0, 0)

    sock = create_socket(bind_family, socket.SOCK_DGRAM, socket.IPPROTO_UDP, False)
    try:
        try:
            sock.bind(bind_addr)
        except OSError as exc:
            logger.error("bind() failed: %s", exc)
            raise

        if sys.platform == "win32" and hasattr(sock, "ioctl"):
            sio_udp_connreset = getattr(socket, "SIO_UDP_CONNRESET", None)
            if sio_udp_connreset is not None:
                try:
                    sock.ioctl(sio_udp_connreset, False)
                except OSError as exc:
                    logger.warning("WSAIoctl(SIO_UDP_CONNRESET) failed: %s", exc)

        if qos_type != QosType.BEST_EFFORT:
            _set_socket_qos(sock, qos_type)

        if buffer_size:
            _set_receive_buffer(sock, buffer_size)
        return sock
    except BaseException:
        sock.close()
        raise


def _is_retryable_recv_error(exc: OSError) -> bool:
    # Errors left behind by earlier ICMP port-unreachable replies.
    if sys.platform == "win32":
        return isinstance(exc, ConnectionResetError)
    return isinstance(exc, ConnectionRefusedError)


def recv_udp_socket(sock: socket.socket, size: int, use_select: bool) -> bytes | None:
    """Receive one datagram of at most ``size`` bytes.

    Returns None on timeout: after up to 100 ms of waiting when
    ``use_select`` is true, otherwise when the socket's own receive timeout
    elapses.
    """
    while True:
        if use_select:
            readable, _, _ = select.select([sock], [], [], UDP_RECV_POLL_TIMEOUT_MS / 1000)
            if not readable:
                return None
            try:
                data, _ = sock.recvfrom(size)
            except OSError as exc:
                if _is_retryable_recv_error(exc):
                    continue
                raise
            return data

        try:
            data, _ = sock.recvfrom(size)
        except OSError as exc:
            if _is_retryable_recv_error(exc):
                continue
            if isinstance(exc, (BlockingIOError, InterruptedError, TimeoutError)):
                return None
            if exc.errno in _RECV_TIMEOUT_ERRORS or getattr(exc, "winerror", None) in _RECV_TIMEOUT_ERRORS:
                return None
            raise
        return data


def is_socket_readable(sock: socket.socket) -> bool:
    """Whether the socket has data to read right now."""
    try:
        readable, _, _ = select.select([sock], [], [], 0)
    except (OSError, ValueError):
        return False
    return bool(readable)


def set_non_fatal_recv_timeout_ms(sock: socket.socket, timeout_ms: int) -> None:
    """Make blocking receives on ``sock`` give up after ``timeout_ms``."""
    if sys.platform == "win32":
        value = struct.pack("I", timeout_ms)
    else:
        seconds, millis = divmod(timeout_ms, 1000)
        value = struct.pack("ll", seconds, millis * 1000)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, value)


def enable_no_delay(sock: socket.socket) -> None:
    """Turn off Nagle's algorithm on a TCP socket."""
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)


def send_mtu_safe(sock: Any, data: bytes) -> int:
    """Send ``data`` in pieces no larger than the minimum IPv4 TCP MSS.

    TCP_NODELAY must be enabled on the socket for the pieces to go out
    separately. Returns the number of bytes sent.
    """
    view = memoryview(bytes(data))
    sent = 0
    while sent < len(view):
        chunk = view[sent : sent + TCPV4_MSS]
        sock.sendall(chunk)
        sent += len(chunk)
    return sent


def shutdown_tcp_socket(sock: socket.socket) -> None:
    """Shut down both directions, waking any thread blocked on the socket."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def get_local_address_by_udp_connect(target_address: Any, port: int) -> tuple:
    """Return the local socket address the OS would use to reach the target."""
    if port == 0:
        raise ValueError("target port must not be zero")
    family, sockaddr = _sockaddr_with_port(target_address, port)
    with create_socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP, False) as sock:
        try:
            sock.connect(sockaddr)
        except OSError as exc:
            logger.error("UDP connect() failed: %s", exc)
            raise
        try:
            return sock.getsockname()
        except OSError as exc:
            logger.error("getsockname() failed: %s", exc)
            raise


def _needs_fallback_v4(host: str, family: int, results: list) -> bool:
    if family != socket.AF_UNSPEC or len(results) != 1 or results[0][0] != socket.AF_INET6:
        return False
    try:
        ip = ipaddress.IPv4Address(host)
    except ValueError:
        return False
    return is_private_network_address_v4(ip, True)


def resolve_host_name(host: str, family: int = socket.AF_UNSPEC, tcp_test_port: int = 0) -> tuple[int, tuple]:
    """Resolve ``host`` to a working address and return ``(family, sockaddr)``.

    When there are several candidates, when TCP_PORT_FLAG_ALWAYS_TEST is set
    in ``tcp_test_port``, or when a private IPv4 literal came back as a lone
    IPv6 address, each candidate is checked with a TCP connection to the
    port in the low 16 bits of ``tcp_test_port``. Raises OSError when no
    address works.
    """
    try:
        results = socket.getaddrinfo(
            host, None, family, socket.SOCK_STREAM, socket.IPPROTO_TCP, socket.AI_ADDRCONFIG
        )
    except socket.gaierror as exc:
        logger.error("getaddrinfo(%s) failed: %s", host, exc)
        raise
    if not results:
        logger.error("getaddrinfo(%s) returned success without addresses", host)
        raise OSError(f"no addresses returned for {host}")

    needs_fallback = _needs_fallback_v4(host, family, results)

    for result_family, _type, _proto, _canon, sockaddr in results:
        if tcp_test_port and (
            len(results) > 1 or tcp_test_port & TCP_PORT_FLAG_ALWAYS_TEST or needs_fallback
        ):
            try:
                test_sock = connect_tcp_socket(sockaddr, tcp_test_port & TCP_PORT_MASK, TEST_PORT_TIMEOUT_SEC)
            except OSError:
                continue
            test_sock.close()
        return result_family, sockaddr

    if needs_fallback:
        return resolve_host_name(host, socket.AF_INET, tcp_test_port)

    logger.error("No working addresses found for host: %s", host)
    raise OSError(f"no working addresses found for host: {host}")