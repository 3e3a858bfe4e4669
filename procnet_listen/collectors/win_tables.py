"""Decoding of the iphlpapi owner-pid socket tables.

Every table buffer is a ``DWORD`` row count followed by a contiguous array of
fixed-size rows starting at offset 4. Addresses are stored in network byte
order, ports occupy the first two bytes of a ``DWORD`` in network byte order,
everything else is a little-endian ``DWORD``.

Nothing in here touches the OS: the native query is passed in as a callable so
buffer negotiation and row decoding can be exercised anywhere.
"""
from __future__ import annotations
import ctypes, ipaddress, logging, struct
from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, NamedTuple, Optional, Set

from ..config import MAX_TABLE_ATTEMPTS
from ..errors import AllocationExhausted, HandleAcquisitionFailed
from ..models import Listener, Protocol
from ..utils.net import port_from_be, require_length

logger = logging.getLogger(__name__)

NO_ERROR = 0
ERROR_INSUFFICIENT_BUFFER = 122
MIB_TCP_STATE_LISTEN = 2
AF_INET = 2
AF_INET6 = 23

HEADER = struct.Struct('<I')

# (buffer or None, in/out size) -> win32 error code
TableQuery = Callable[[Optional[ctypes.Array], ctypes.c_ulong], int]


@dataclass(frozen=True)
class TableKind:
    label: str
    protocol: Protocol
    family: int
    row: struct.Struct
    addr_field: int
    port_field: int
    pid_field: int
    state_field: Optional[int] = None


# MIB_TCPROW_OWNER_PID: state, local_addr, local_port, remote_addr, remote_port, owning_pid
TCP4 = TableKind("tcp4", Protocol.TCP, AF_INET, struct.Struct('<I4s4s4s4sI'),
                 addr_field=1, port_field=2, pid_field=5, state_field=0)
# MIB_TCP6ROW_OWNER_PID: local_addr, local_scope_id, local_port, remote_addr,
# remote_scope_id, remote_port, state, owning_pid
TCP6 = TableKind("tcp6", Protocol.TCP, AF_INET6, struct.Struct('<16sI4s16sI4sII'),
                 addr_field=0, port_field=2, pid_field=7, state_field=6)
# MIB_UDPROW_OWNER_PID: local_addr, local_port, owning_pid
UDP4 = TableKind("udp4", Protocol.UDP, AF_INET, struct.Struct('<4s4sI'),
                 addr_field=0, port_field=1, pid_field=2)
# MIB_UDP6ROW_OWNER_PID: local_addr, local_scope_id, local_port, owning_pid
UDP6 = TableKind("udp6", Protocol.UDP, AF_INET6, struct.Struct('<16sI4sI'),
                 addr_field=0, port_field=2, pid_field=3)

TABLE_KINDS = (TCP4, TCP6, UDP4, UDP6)


class TableRow(NamedTuple):
    pid: int
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int
    protocol: Protocol


def fetch_table(query: TableQuery, label: str = "table",
                max_attempts: int = MAX_TABLE_ATTEMPTS) -> bytes:
    """Run the size-query/allocate/retry negotiation against ``query``.

    The table may grow between the sizing call and the real call, so the call
    is repeated while it keeps answering ``ERROR_INSUFFICIENT_BUFFER``, at
    most ``max_attempts`` times.
    """
    size = ctypes.c_ulong(0)
    code = query(None, size)
    buf = None
    attempts = 0
    while code == ERROR_INSUFFICIENT_BUFFER:
        attempts += 1
        if attempts > max_attempts:
            raise AllocationExhausted(
                f"{label}: buffer still too small after {max_attempts} attempts "
                f"(last requested {size.value} bytes)")
        buf = ctypes.create_string_buffer(size.value)
        code = query(buf, size)
    if code != NO_ERROR:
        raise HandleAcquisitionFailed(f"{label}: table query failed with error {code}")
    if buf is None:
        return HEADER.pack(0)
    return buf.raw


def decode_table(kind: TableKind, buf: bytes) -> List[TableRow]:
    require_length(buf, HEADER.size, f"{kind.label} header")
    (count,) = HEADER.unpack_from(buf, 0)
    require_length(buf, HEADER.size + count * kind.row.size, f"{kind.label} rows")

    rows: List[TableRow] = []
    for i in range(count):
        vals = kind.row.unpack_from(buf, HEADER.size + i * kind.row.size)
        if kind.state_field is not None and vals[kind.state_field] != MIB_TCP_STATE_LISTEN:
            continue
        rows.append(TableRow(
            pid=vals[kind.pid_field],
            ip=ipaddress.ip_address(vals[kind.addr_field]),
            port=port_from_be(vals[kind.port_field], 0),
            protocol=kind.protocol,
        ))
    return rows


def resolve_rows(rows: Iterable[TableRow], names: Mapping[int, str]) -> Set[Listener]:
    listeners: Set[Listener] = set()
    for r in rows:
        name = names.get(r.pid)
        if name is None:
            logger.debug("pid %d exited before its name was resolved; dropping %s/%s:%d",
                         r.pid, r.protocol, r.ip, r.port)
            continue
        listeners.add(Listener.build(r.pid, name, r.ip, r.port, r.protocol))
    return listeners
