from __future__ import annotations
import argparse, logging, sys
from typing import Iterable, List, Optional

import orjson

from . import query
from .config import CFG, init_cfg_from_args
from .errors import BackendError
from .models import Listener

def parse_args(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description='Show which processes listen on which TCP/UDP sockets')
    sel = ap.add_mutually_exclusive_group()
    sel.add_argument('--port', type=int, default=None, help='only sockets bound to this port')
    sel.add_argument('--pid', type=int, default=None, help='only sockets owned by this process id')
    sel.add_argument('--name', type=str, default=None, help='only sockets owned by processes with this name')
    ap.add_argument('--tcp', action='store_true', help='only TCP listeners')
    ap.add_argument('--udp', action='store_true', help='only UDP sockets')
    ap.add_argument('--json', action='store_true', help='print a JSON array instead of a table')
    ap.add_argument('-v', '--verbose', action='store_true', help='debug logging (dropped entries, skipped descriptors)')
    return ap.parse_args(argv)

def select(cfg: CFG, listeners: Iterable[Listener]) -> List[Listener]:
    out = []
    for l in listeners:
        if l.protocol not in cfg.protocols:
            continue
        if cfg.port is not None and l.socket.port != cfg.port:
            continue
        if cfg.pid is not None and l.process.pid != cfg.pid:
            continue
        if cfg.name is not None and l.process.name != cfg.name:
            continue
        out.append(l)
    return sorted(out, key=Listener.sort_key)

def render(cfg: CFG, listeners: List[Listener]) -> str:
    if cfg.as_json:
        return orjson.dumps([l.to_dict() for l in listeners], option=orjson.OPT_INDENT_2).decode()
    return "\n".join(str(l) for l in listeners)

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = init_cfg_from_args(args)
    logging.basicConfig(level=logging.DEBUG if cfg.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    try:
        listeners = select(cfg, query.get_all())
    except BackendError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    if listeners or cfg.as_json:
        print(render(cfg, listeners))
    else:
        print("[*] no matching listeners", file=sys.stderr)
    return 0

if __name__ == '__main__':
    sys.exit(main())
