"""Platform backend selection.

Exactly one backend is bound when this package is imported; every call to
``enumerate_listeners`` goes to it.
"""
from __future__ import annotations
import platform

BACKENDS = {
    "Windows": "windows",
    "Darwin": "macos",
    "Linux": "linux",
}

SYSTEM = platform.system()
BACKEND = BACKENDS.get(SYSTEM, "generic")

if BACKEND == "windows":
    from .windows import enumerate_listeners
elif BACKEND == "macos":
    from .macos import enumerate_listeners
elif BACKEND == "linux":
    from .linux import enumerate_listeners
else:
    from .generic import enumerate_listeners

__all__ = ["BACKEND", "enumerate_listeners"]
