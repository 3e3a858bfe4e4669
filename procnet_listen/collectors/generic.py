from __future__ import annotations
import logging
import socket
from typing import Dict, Optional, Set

import psutil

from ..errors import HandleAcquisitionFailed
from ..models import Listener, Protocol

logger = logging.getLogger(__name__)


def _name(pid: int, cache: Dict[int, Optional[str]]) -> Optional[str]:
    if pid not in cache:
        try:
            cache[pid] = psutil.Process(pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            cache[pid] = None
    return cache[pid]


def enumerate_listeners() -> Set[Listener]:
    try:
        conns = psutil.net_connections(kind='inet')
    except psutil.AccessDenied as e:
        raise HandleAcquisitionFailed(f"socket table not readable: {e}") from e

    names: Dict[int, Optional[str]] = {}
    listeners: Set[Listener] = set()
    for c in conns:
        if not c.pid or not c.laddr:
            continue
        if c.type == socket.SOCK_STREAM:
            if c.status != psutil.CONN_LISTEN:
                continue
            protocol = Protocol.TCP
        elif c.type == socket.SOCK_DGRAM:
            protocol = Protocol.UDP
        else:
            continue
        name = _name(c.pid, names)
        if name is None:
            logger.debug("pid %d exited before its name was resolved", c.pid)
            continue
        ip = c.laddr.ip.split('%', 1)[0]
        listeners.add(Listener.build(c.pid, name, ip, c.laddr.port, protocol))
    return listeners
