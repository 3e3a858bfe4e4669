from __future__ import annotations
from typing import Set

from . import collectors
from .models import Listener, Process


def get_all() -> Set[Listener]:
    """Every listening TCP/UDP socket on this machine with its owning process.

    Raises BackendError if the platform tables cannot be read.
    """
    return set(collectors.enumerate_listeners())


def get_processes_by_port(port: int) -> Set[Process]:
    return {lst.process for lst in get_all() if lst.socket.port == port}


def get_ports_by_pid(pid: int) -> Set[int]:
    return {lst.socket.port for lst in get_all() if lst.process.pid == pid}


def get_ports_by_process_name(name: str) -> Set[int]:
    return {lst.socket.port for lst in get_all() if lst.process.name == name}
