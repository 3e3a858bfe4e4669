"""Field offsets into ``struct socket_fdinfo`` as filled by
``proc_pidfdinfo(pid, fd, PROC_PIDFDSOCKETINFO, ...)``.

    struct socket_fdinfo {
        struct proc_fileinfo pfi;    24 bytes
        struct socket_info   psi;    768 bytes
    };

Inside ``socket_info`` the ``vinfo_stat`` block takes 136 bytes, the two
``sockbuf_info`` blocks 24 bytes each, and the ``soi_proto`` union starts at
240. For TCP the union holds ``tcp_sockinfo`` whose first member is the
80-byte ``in_sockinfo``; ``tcpsi_state`` follows it.
"""
from __future__ import annotations
import ipaddress, struct
from typing import NamedTuple, Optional

from ..errors import DecodeFailed
from ..models import Protocol
from ..utils.net import ipv4_from_bytes, ipv6_from_bytes, port_from_be

SOCKET_FDINFO_SIZE = 792

_PSI = 24
SOI_PROTOCOL = _PSI + 156
SOI_FAMILY = _PSI + 160
SOI_KIND = _PSI + 232
SOI_PROTO = _PSI + 240

INSI_LPORT = SOI_PROTO + 4
INSI_LADDR = SOI_PROTO + 48
TCPSI_STATE = SOI_PROTO + 80

AF_INET = 2
AF_INET6 = 30
IPPROTO_UDP = 17
SOCKINFO_IN = 1
SOCKINFO_TCP = 2
TSI_S_LISTEN = 1

_INT = struct.Struct('=i')


class LocalSocket(NamedTuple):
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int
    protocol: Protocol


def decode_socket_fdinfo(buf: bytes) -> Optional[LocalSocket]:
    """Local endpoint of a listening TCP socket or a bound UDP socket.

    Returns None for any other kind of socket (unix domain, connected TCP,
    unbound UDP, ...). A buffer that is not exactly one ``socket_fdinfo``
    raises DecodeFailed.
    """
    if len(buf) != SOCKET_FDINFO_SIZE:
        raise DecodeFailed(
            f"socket_fdinfo: got {len(buf)} bytes, expected {SOCKET_FDINFO_SIZE}")

    family = _INT.unpack_from(buf, SOI_FAMILY)[0]
    if family not in (AF_INET, AF_INET6):
        return None

    kind = _INT.unpack_from(buf, SOI_KIND)[0]
    if kind == SOCKINFO_TCP:
        if _INT.unpack_from(buf, TCPSI_STATE)[0] != TSI_S_LISTEN:
            return None
        protocol = Protocol.TCP
    elif kind == SOCKINFO_IN and _INT.unpack_from(buf, SOI_PROTOCOL)[0] == IPPROTO_UDP:
        protocol = Protocol.UDP
    else:
        return None

    port = port_from_be(buf, INSI_LPORT)
    if protocol is Protocol.UDP and port == 0:
        return None
    if family == AF_INET:
        # in4in6_addr: three pad words, then the IPv4 address
        ip = ipv4_from_bytes(buf, INSI_LADDR + 12)
    else:
        ip = ipv6_from_bytes(buf, INSI_LADDR)
    return LocalSocket(ip, port, protocol)
