"""Classification and formatting of IPv4 and IPv6 host addresses."""

from __future__ import annotations

import ipaddress
import logging
import socket
from typing import Any, Union

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_LINK_LOCAL_PREFIX = bytes([0xFE, 0x80])
_SITE_LOCAL_PREFIX = bytes([0xFE, 0xC0])
_UNIQUE_LOCAL_PREFIX = bytes([0xFC, 0x00])

# 192.0.0.170 and 192.0.0.171, the addresses that ipv4only.arpa resolves to.
_WELL_KNOWN_NAT64_V4 = (
    bytes([0xC0, 0x00, 0x00, 0xAA]),
    bytes([0xC0, 0x00, 0x00, 0xAB]),
)

_NAT64_PROBE_HOST = "ipv4only.arpa."


def _to_ip(address: Any) -> IPAddress:
    """Turn an address in any accepted form into an ipaddress object.

    Accepted: ipaddress objects, text, packed 4- or 16-byte values, and
    socket address tuples whose first element is the host.
    """
    if isinstance(address, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return address
    if isinstance(address, tuple):
        if not address:
            raise ValueError("empty socket address")
        return _to_ip(address[0])
    if isinstance(address, (bytes, bytearray, memoryview)):
        return ipaddress.ip_address(bytes(address))
    if isinstance(address, str):
        return ipaddress.ip_address(address)
    raise TypeError(f"unsupported address type: {type(address).__name__}")


def _to_v6(address: Any) -> ipaddress.IPv6Address:
    ip = _to_ip(address)
    if not isinstance(ip, ipaddress.IPv6Address):
        raise ValueError(f"{ip} is not an IPv6 address")
    return ip


def _to_v4(address: Any) -> ipaddress.IPv4Address:
    ip = _to_ip(address)
    if not isinstance(ip, ipaddress.IPv4Address):
        raise ValueError(f"{ip} is not an IPv4 address")
    return ip


def addr_to_url_safe_string(address: Any) -> str:
    """Format an address for use as a URL host.

    IPv6 addresses are enclosed in brackets (without any scope id);
    IPv4 addresses are returned as they are.
    """
    ip = _to_ip(address)
    if isinstance(ip, ipaddress.IPv6Address):
        return f"[{ipaddress.IPv6Address(ip.packed)}]"
    return str(ip)


def is_in_subnet_v6(address: Any, subnet: Any, prefix_length: int) -> bool:
    """Whether the first ``prefix_length`` bits of ``address`` equal ``subnet``'s.

    ``subnet`` is given as packed bytes (at least enough to cover the
    prefix) or as an IPv6 address. Within each byte, bits are compared
    starting from the least significant one.
    """
    addr = _to_v6(address).packed
    if isinstance(subnet, (bytes, bytearray, memoryview)):
        net = bytes(subnet)
    else:
        net = _to_v6(subnet).packed
    if not 0 <= prefix_length <= 128:
        raise ValueError("prefix length must be between 0 and 128")
    if len(net) * 8 < prefix_length:
        raise ValueError("subnet is shorter than the prefix length")

    return all(
        (addr[bit // 8] & (1 << (bit % 8))) == (net[bit // 8] & (1 << (bit % 8)))
        for bit in range(prefix_length)
    )


def is_private_network_address_v4(address: Any, match_cgn: bool) -> bool:
    """Whether an IPv4 address is in a private or link-local range.

    The carrier-grade NAT range 100.64.0.0/10 counts only when
    ``match_cgn`` is true.
    """
    value = int(_to_v4(address))
    if (value & 0xFF000000) == 0x0A000000:  # 10.0.0.0/8
        return True
    if (value & 0xFFF00000) == 0xAC100000:  # 172.16.0.0/12
        return True
    if (value & 0xFFFF0000) == 0xC0A80000:  # 192.168.0.0/16
        return True
    if (value & 0xFFFF0000) == 0xA9FE0000:  # 169.254.0.0/16
        return True
    if match_cgn and (value & 0xFFC00000) == 0x64400000:  # 100.64.0.0/10
        return True
    return False


def is_private_network_address(address: Any) -> bool:
    """Whether an IPv4 or IPv6 address is on a private or local network."""
    ip = _to_ip(address)
    if isinstance(ip, ipaddress.IPv4Address):
        return is_private_network_address_v4(ip, False)
    return (
        is_in_subnet_v6(ip, _LINK_LOCAL_PREFIX, 10)  # fe80::/10
        or is_in_subnet_v6(ip, _SITE_LOCAL_PREFIX, 10)  # fec0::/10
        or is_in_subnet_v6(ip, _UNIQUE_LOCAL_PREFIX, 7)  # fc00::/7
    )


def _locate_well_known(candidate: bytes, well_known: bytes) -> list[tuple[int, int]]:
    """Every (prefix length, suffix start) layout in which ``well_known`` appears."""
    c, w = candidate, well_known
    found = []
    if c[4:8] == w:
        found.append((4, 9))
    if c[5:8] == w[0:3] and c[9:10] == w[3:4]:
        found.append((5, 10))
    if c[6:8] == w[0:2] and c[9:11] == w[2:4]:
        found.append((6, 11))
    if c[7:8] == w[0:1] and c[9:12] == w[1:4]:
        found.append((7, 12))
    if c[9:13] == w:
        found.append((8, 13))
    if c[12:16] == w:
        found.append((12, 16))
    return found


def nat64_address_matches(address: Any, candidate: Any) -> bool:
    """Whether ``address`` lies in the NAT64 range that ``candidate`` reveals.

    ``candidate`` is an IPv6 address synthesised for a well-known IPv4
    address (192.0.0.170 or 192.0.0.171). The well-known address must
    appear exactly once in it; ``address`` then matches when it shares the
    candidate's prefix and suffix around the embedded IPv4 address.
    """
    addr = _to_v6(address).packed
    cand = _to_v6(candidate).packed

    for well_known in _WELL_KNOWN_NAT64_V4:
        layouts = _locate_well_known(cand, well_known)
        if len(layouts) != 1:
            continue
        prefix_len, suffix_start = layouts[0]
        return addr[:prefix_len] == cand[:prefix_len] and (
            suffix_start == 16 or addr[suffix_start:] == cand[suffix_start:]
        )
    return False


def is_nat64_synthesized_address(address: Any) -> bool:
    """Whether an IPv6 address was synthesised by this network's NAT64.

    The NAT64 prefix is discovered by resolving ipv4only.arpa. IPv4
    addresses always give False.
    """
    ip = _to_ip(address)
    if not isinstance(ip, ipaddress.IPv6Address):
        return False

    try:
        results = socket.getaddrinfo(
            _NAT64_PROBE_HOST,
            None,
            socket.AF_INET6,
            socket.SOCK_STREAM,
            socket.IPPROTO_TCP,
            socket.AI_ADDRCONFIG,
        )
    except (socket.gaierror, OSError) as exc:
        logger.info("Client is not running in NAT64 environment (%s)", exc)
        return False

    if not results:
        logger.info("getaddrinfo(%s) returned success without addresses", _NAT64_PROBE_HOST)
        return False

    for family, _type, _proto, _canon, sockaddr in results:
        if family != socket.AF_INET6:
            continue
        try:
            candidate = _to_v6(sockaddr)
        except ValueError:
            continue
        if nat64_address_matches(ip, candidate):
            return True
    return False