from __future__ import annotations
import ipaddress, logging, os
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, NamedTuple, Set

from ..config import PROC_ROOT
from ..errors import DecodeFailed, HandleAcquisitionFailed
from ..models import Listener, Protocol
from ..utils.net import decode_name, ipv4_from_hex_word, ipv6_from_hex_words

logger = logging.getLogger(__name__)

TCP_LISTEN = "0A"
SOCKET_LINK_PREFIX = "socket:["

# /proc/net file -> (protocol, ipv6)
NET_TABLES = {
    "tcp": (Protocol.TCP, False),
    "tcp6": (Protocol.TCP, True),
    "udp": (Protocol.UDP, False),
    "udp6": (Protocol.UDP, True),
}


class LocalSocket(NamedTuple):
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int
    protocol: Protocol


def parse_net_table(lines: Iterable[str], protocol: Protocol, ipv6: bool,
                    label: str = "") -> Dict[int, LocalSocket]:
    """
    inode -> local endpoint for the listening rows of one /proc/net table.

    Row format (header line first):
      sl  local_address rem_address   st tx_queue:rx_queue tr:tm->when retrnsmt   uid  timeout inode
      0: 0100007F:0CEA 00000000:0000 0A 00000000:00000000 00:00000000 00000000  1000        0 28990 ...
    """
    sockets: Dict[int, LocalSocket] = {}
    it = iter(lines)
    next(it, None)
    for n, line in enumerate(it, start=2):
        parts = line.split()
        if not parts:
            continue
        try:
            addr_hex, port_hex = parts[1].split(":")
            state = parts[3]
            inode = int(parts[9])
            port = int(port_hex, 16)
            ip = ipv6_from_hex_words(addr_hex) if ipv6 else ipv4_from_hex_word(addr_hex)
        except (IndexError, ValueError) as e:
            raise DecodeFailed(f"/proc/net/{label} line {n}: cannot parse {line.strip()!r}") from e
        if inode == 0:
            continue
        if protocol is Protocol.TCP and state != TCP_LISTEN:
            continue
        sockets[inode] = LocalSocket(ip, port, protocol)
    return sockets


def read_socket_tables(root: Path) -> Mapping[int, LocalSocket]:
    sockets: Dict[int, LocalSocket] = {}
    for fname, (protocol, ipv6) in NET_TABLES.items():
        path = root / "net" / fname
        try:
            with path.open("r", encoding="ascii") as f:
                sockets.update(parse_net_table(f, protocol, ipv6, fname))
        except FileNotFoundError:
            logger.debug("%s not present; skipping", path)
    return MappingProxyType(sockets)


def process_table(root: Path) -> Mapping[int, str]:
    try:
        entries = [e for e in os.listdir(root) if e.isdigit()]
    except OSError as e:
        raise HandleAcquisitionFailed(f"cannot list processes in {root}: {e}") from e
    names: Dict[int, str] = {}
    for entry in entries:
        try:
            raw = (root / entry / "comm").read_bytes()
        except OSError:
            logger.debug("pid %s exited before its name was read", entry)
            continue
        try:
            names[int(entry)] = decode_name(raw.rstrip(b"\n"))
        except DecodeFailed as e:
            logger.debug("pid %s: %s; dropping", entry, e)
    return MappingProxyType(names)


def _socket_inodes(fd_dir: Path) -> Set[int]:
    inodes: Set[int] = set()
    with os.scandir(fd_dir) as it:
        for fd in it:
            try:
                link = os.readlink(fd.path)
            except OSError:
                continue
            if link.startswith(SOCKET_LINK_PREFIX) and link.endswith("]"):
                inode = link[len(SOCKET_LINK_PREFIX):-1]
                if inode.isdigit():
                    inodes.add(int(inode))
    return inodes


def socket_listeners(root: Path, procs: Mapping[int, str],
                     sockets: Mapping[int, LocalSocket]) -> Set[Listener]:
    listeners: Set[Listener] = set()
    for pid, name in procs.items():
        try:
            inodes = _socket_inodes(root / str(pid) / "fd")
        except OSError as e:
            logger.debug("skipping pid %d (%s): %s", pid, name, e)
            continue
        for inode in inodes:
            s = sockets.get(inode)
            if s is None:
                continue
            listeners.add(Listener.build(pid, name, s.ip, s.port, s.protocol))
    return listeners


def enumerate_listeners(root: Path = PROC_ROOT) -> Set[Listener]:
    procs = process_table(root)
    sockets = read_socket_tables(root)
    return socket_listeners(root, procs, sockets)
