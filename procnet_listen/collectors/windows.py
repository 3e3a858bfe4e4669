from __future__ import annotations
from types import MappingProxyType
from typing import Dict, List, Mapping, Set
import ctypes, logging
import ctypes.wintypes as wt

from ..errors import HandleAcquisitionFailed
from ..models import Listener, Protocol
from .win_tables import (TABLE_KINDS, TableKind, TableRow, decode_table, fetch_table,
                         resolve_rows)

logger = logging.getLogger(__name__)

TCP_TABLE_OWNER_PID_ALL = 5
UDP_TABLE_OWNER_PID = 1
TH32CS_SNAPPROCESS = 0x00000002
MAX_PATH = 260
INVALID_HANDLE_VALUE = ctypes.c_void_p(-1).value


class PROCESSENTRY32W(ctypes.Structure):
    _fields_ = [("dwSize", wt.DWORD), ("cntUsage", wt.DWORD), ("th32ProcessID", wt.DWORD),
                ("th32DefaultHeapID", ctypes.c_size_t), ("th32ModuleID", wt.DWORD),
                ("cntThreads", wt.DWORD), ("th32ParentProcessID", wt.DWORD),
                ("pcPriClassBase", wt.LONG), ("dwFlags", wt.DWORD),
                ("szExeFile", wt.WCHAR * MAX_PATH)]


def _iphlpapi():
    lib = ctypes.WinDLL('Iphlpapi.dll')
    for fn in (lib.GetExtendedTcpTable, lib.GetExtendedUdpTable):
        fn.argtypes = [ctypes.c_void_p, ctypes.POINTER(wt.ULONG), wt.BOOL, wt.ULONG,
                       ctypes.c_int, wt.ULONG]
        fn.restype = wt.DWORD
    return lib


def _kernel32():
    k32 = ctypes.WinDLL('kernel32.dll', use_last_error=True)
    k32.CreateToolhelp32Snapshot.argtypes = [wt.DWORD, wt.DWORD]
    k32.CreateToolhelp32Snapshot.restype = wt.HANDLE
    for fn in (k32.Process32FirstW, k32.Process32NextW):
        fn.argtypes = [wt.HANDLE, ctypes.POINTER(PROCESSENTRY32W)]
        fn.restype = wt.BOOL
    k32.CloseHandle.argtypes = [wt.HANDLE]
    k32.CloseHandle.restype = wt.BOOL
    return k32


def _read_table(iphlpapi, kind: TableKind) -> List[TableRow]:
    if kind.protocol is Protocol.TCP:
        fn, table_class = iphlpapi.GetExtendedTcpTable, TCP_TABLE_OWNER_PID_ALL
    else:
        fn, table_class = iphlpapi.GetExtendedUdpTable, UDP_TABLE_OWNER_PID

    def query(buf, size):
        return fn(buf, ctypes.byref(size), False, kind.family, table_class, 0)

    return decode_table(kind, fetch_table(query, kind.label))


def process_names() -> Mapping[int, str]:
    """pid -> executable name from one toolhelp process snapshot."""
    k32 = _kernel32()
    h = k32.CreateToolhelp32Snapshot(TH32CS_SNAPPROCESS, 0)
    if h is None or h == INVALID_HANDLE_VALUE:
        raise HandleAcquisitionFailed(
            f"CreateToolhelp32Snapshot failed (error {ctypes.get_last_error()})")
    names: Dict[int, str] = {}
    try:
        entry = PROCESSENTRY32W()
        entry.dwSize = ctypes.sizeof(PROCESSENTRY32W)
        ok = k32.Process32FirstW(h, ctypes.byref(entry))
        while ok:
            names[int(entry.th32ProcessID)] = entry.szExeFile
            ok = k32.Process32NextW(h, ctypes.byref(entry))
    finally:
        k32.CloseHandle(h)
    return MappingProxyType(names)


def enumerate_listeners() -> Set[Listener]:
    iphlpapi = _iphlpapi()
    rows: List[TableRow] = []
    for kind in TABLE_KINDS:
        rows.extend(_read_table(iphlpapi, kind))
    return resolve_rows(rows, process_names())
