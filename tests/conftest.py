"""Pytest fixtures shared by the procnet-listen tests."""

from __future__ import annotations

from typing import Callable, Iterable

import pytest

from procnet_listen import collectors
from procnet_listen.models import Listener, Protocol


@pytest.fixture
def sample_listeners() -> set[Listener]:
    """A small snapshot with shared ports, shared names and both protocols."""
    return {
        Listener.build(100, "nginx", "0.0.0.0", 80, Protocol.TCP),
        Listener.build(100, "nginx", "::", 80, Protocol.TCP),
        Listener.build(101, "nginx", "0.0.0.0", 443, Protocol.TCP),
        Listener.build(200, "dnsmasq", "127.0.0.1", 53, Protocol.UDP),
        Listener.build(200, "dnsmasq", "127.0.0.1", 53, Protocol.TCP),
        Listener.build(300, "postgres", "127.0.0.1", 5432, Protocol.TCP),
    }


@pytest.fixture
def fake_backend(monkeypatch) -> Callable[[Iterable[Listener]], None]:
    """Replace the active backend with one returning a fixed snapshot."""

    def install(listeners: Iterable[Listener]) -> None:
        snapshot = set(listeners)
        monkeypatch.setattr(collectors, "enumerate_listeners", lambda: set(snapshot))

    return install
