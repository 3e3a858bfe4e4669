"""Which processes are listening on which TCP/UDP sockets on this machine."""
from .errors import (AllocationExhausted, BackendError, DecodeFailed, FdInfoFailed,
                     HandleAcquisitionFailed)
from .models import Listener, Process, Protocol, SocketAddress
from .query import (get_all, get_ports_by_pid, get_ports_by_process_name,
                    get_processes_by_port)

__version__ = "0.2.1"

__all__ = [
    "AllocationExhausted", "BackendError", "DecodeFailed", "FdInfoFailed",
    "HandleAcquisitionFailed", "Listener", "Process", "Protocol", "SocketAddress",
    "get_all", "get_ports_by_pid", "get_ports_by_process_name", "get_processes_by_port",
]
