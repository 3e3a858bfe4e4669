"""macOS backend: process table first, then a per-process descriptor scan.

Phase 1 produces a read-only pid -> name mapping. Phase 2 walks each pid's
descriptor table, keeps sockets, and asks the kernel for their
``socket_fdinfo``. Descriptors and processes that disappear or deny access
during phase 2 are skipped.
"""
from __future__ import annotations
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set
import ctypes, logging, struct

from ..config import MAX_TABLE_ATTEMPTS
from ..errors import AllocationExhausted, DecodeFailed, FdInfoFailed, HandleAcquisitionFailed
from ..models import Listener
from ..utils.net import decode_name
from .darwin_sockinfo import SOCKET_FDINFO_SIZE, decode_socket_fdinfo

logger = logging.getLogger(__name__)

LIBPROC_PATH = "/usr/lib/libproc.dylib"

PROC_ALL_PIDS = 1
PROC_PIDLISTFDS = 1
PROC_PIDFDSOCKETINFO = 3
PROX_FDTYPE_SOCKET = 2
PROC_NAME_BUFSIZE = 256

PROC_FDINFO = struct.Struct('=iI')  # proc_fd, proc_fdtype
PID = struct.Struct('=i')


class LibProc:
    """Thin wrapper over the libproc calls used by the scan."""

    def __init__(self, lib=None):
        if lib is None:
            try:
                lib = ctypes.CDLL(LIBPROC_PATH, use_errno=True)
            except OSError as e:
                raise HandleAcquisitionFailed(f"cannot load {LIBPROC_PATH}: {e}") from e
        lib.proc_listpids.argtypes = [ctypes.c_uint32, ctypes.c_uint32, ctypes.c_void_p, ctypes.c_int]
        lib.proc_listpids.restype = ctypes.c_int
        lib.proc_name.argtypes = [ctypes.c_int, ctypes.c_void_p, ctypes.c_uint32]
        lib.proc_name.restype = ctypes.c_int
        lib.proc_pidinfo.argtypes = [ctypes.c_int, ctypes.c_int, ctypes.c_uint64, ctypes.c_void_p, ctypes.c_int]
        lib.proc_pidinfo.restype = ctypes.c_int
        lib.proc_pidfdinfo.argtypes = [ctypes.c_int, ctypes.c_int, ctypes.c_int, ctypes.c_void_p, ctypes.c_int]
        lib.proc_pidfdinfo.restype = ctypes.c_int
        self._lib = lib

    def list_pids(self) -> List[int]:
        needed = self._lib.proc_listpids(PROC_ALL_PIDS, 0, None, 0)
        if needed <= 0:
            raise HandleAcquisitionFailed(f"proc_listpids failed (errno {ctypes.get_errno()})")
        for _ in range(MAX_TABLE_ATTEMPTS):
            # headroom for processes spawned between the sizing call and the real call
            size = needed + 64 * PID.size
            buf = ctypes.create_string_buffer(size)
            got = self._lib.proc_listpids(PROC_ALL_PIDS, 0, buf, size)
            if got <= 0:
                raise HandleAcquisitionFailed(f"proc_listpids failed (errno {ctypes.get_errno()})")
            if got < size:
                return [PID.unpack_from(buf.raw, off)[0] for off in range(0, got - got % PID.size, PID.size)]
            needed = got
        raise AllocationExhausted(f"proc_listpids: pid list kept growing after {MAX_TABLE_ATTEMPTS} attempts")

    def name(self, pid: int) -> Optional[str]:
        buf = ctypes.create_string_buffer(PROC_NAME_BUFSIZE)
        n = self._lib.proc_name(pid, buf, PROC_NAME_BUFSIZE)
        if n <= 0:
            return None
        return decode_name(buf.raw[:n])

    def socket_fds(self, pid: int) -> List[int]:
        needed = self._lib.proc_pidinfo(pid, PROC_PIDLISTFDS, 0, None, 0)
        if needed <= 0:
            raise FdInfoFailed(f"pid {pid}: cannot size descriptor table (errno {ctypes.get_errno()})")
        size = needed + 32 * PROC_FDINFO.size
        buf = ctypes.create_string_buffer(size)
        got = self._lib.proc_pidinfo(pid, PROC_PIDLISTFDS, 0, buf, size)
        if got <= 0:
            raise FdInfoFailed(f"pid {pid}: cannot list descriptors (errno {ctypes.get_errno()})")
        raw = buf.raw
        fds = []
        for off in range(0, got - got % PROC_FDINFO.size, PROC_FDINFO.size):
            fd, fdtype = PROC_FDINFO.unpack_from(raw, off)
            if fdtype == PROX_FDTYPE_SOCKET:
                fds.append(fd)
        return fds

    def socket_fdinfo(self, pid: int, fd: int) -> bytes:
        buf = ctypes.create_string_buffer(SOCKET_FDINFO_SIZE)
        rc = self._lib.proc_pidfdinfo(pid, fd, PROC_PIDFDSOCKETINFO, buf, SOCKET_FDINFO_SIZE)
        if rc <= 0:
            raise FdInfoFailed(f"pid {pid} fd {fd}: proc_pidfdinfo returned {rc} (errno {ctypes.get_errno()})")
        return buf.raw[:rc]


def process_table(lib: LibProc) -> Mapping[int, str]:
    names: Dict[int, str] = {}
    for pid in lib.list_pids():
        try:
            name = lib.name(pid)
        except DecodeFailed as e:
            logger.debug("pid %d: %s; dropping", pid, e)
            continue
        if name is None:
            logger.debug("pid %d: no name (exited or not visible)", pid)
            continue
        names[pid] = name
    return MappingProxyType(names)


def socket_listeners(lib: LibProc, procs: Mapping[int, str]) -> Set[Listener]:
    listeners: Set[Listener] = set()
    for pid, name in procs.items():
        try:
            fds = lib.socket_fds(pid)
        except FdInfoFailed as e:
            logger.debug("skipping %s: %s", name, e)
            continue
        for fd in fds:
            try:
                info = lib.socket_fdinfo(pid, fd)
            except FdInfoFailed as e:
                logger.debug("skipping descriptor: %s", e)
                continue
            local = decode_socket_fdinfo(info)
            if local is None:
                continue
            listeners.add(Listener.build(pid, name, local.ip, local.port, local.protocol))
    return listeners


def enumerate_listeners() -> Set[Listener]:
    lib = LibProc()
    return socket_listeners(lib, process_table(lib))
