from __future__ import annotations
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Optional, Set

from .models import Protocol

# upper bound on size-query/allocate/retry rounds for one native table query
MAX_TABLE_ATTEMPTS = 100

PROC_ROOT = Path(os.environ.get("PROCNET_LISTEN_PROC_ROOT") or "/proc").expanduser().resolve()

ALL_PROTOCOLS = frozenset(Protocol)


@dataclass
class CFG:
    port: Optional[int] = None
    pid: Optional[int] = None
    name: Optional[str] = None
    protocols: Set[Protocol] = field(default_factory=lambda: set(ALL_PROTOCOLS))
    as_json: bool = False
    verbose: bool = False


def init_cfg_from_args(args) -> CFG:
    cfg = CFG()
    cfg.port = args.port
    cfg.pid = args.pid
    cfg.name = args.name or None
    cfg.as_json = bool(args.json)
    cfg.verbose = bool(args.verbose)
    wanted = set()
    if getattr(args, "tcp", False):
        wanted.add(Protocol.TCP)
    if getattr(args, "udp", False):
        wanted.add(Protocol.UDP)
    if wanted:
        cfg.protocols = wanted
    return cfg
