"""Tests for the procnet-listen command line."""

from __future__ import annotations

import orjson
import pytest

from procnet_listen import collectors
from procnet_listen.errors import AllocationExhausted
from procnet_listen.main import main, parse_args
from procnet_listen.config import PROC_ROOT, init_cfg_from_args
from procnet_listen.models import Protocol


class TestConfig:
    """Tests for CLI argument -> CFG mapping."""

    def test_defaults(self) -> None:
        cfg = init_cfg_from_args(parse_args([]))
        assert cfg.port is None and cfg.pid is None and cfg.name is None
        assert cfg.protocols == {Protocol.TCP, Protocol.UDP}
        assert not cfg.as_json

    def test_protocol_flags(self) -> None:
        assert init_cfg_from_args(parse_args(["--udp"])).protocols == {Protocol.UDP}
        assert init_cfg_from_args(parse_args(["--tcp", "--udp"])).protocols == {Protocol.TCP, Protocol.UDP}

    def test_proc_root_is_absolute(self) -> None:
        assert PROC_ROOT.is_absolute()

    def test_filters_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--port", "80", "--pid", "1"])


class TestMain:
    """Tests for main()."""

    def test_lists_everything_sorted(self, fake_backend, sample_listeners, capsys) -> None:
        fake_backend(sample_listeners)
        assert main([]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == len(sample_listeners)
        assert lines[0].startswith("PID: 100 ")
        assert lines[-1].startswith("PID: 300 ")

    def test_port_filter(self, fake_backend, sample_listeners, capsys) -> None:
        fake_backend(sample_listeners)
        main(["--port", "53", "--udp"])
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 1
        assert "dnsmasq" in lines[0] and lines[0].endswith("UDP")

    def test_json(self, fake_backend, sample_listeners, capsys) -> None:
        fake_backend(sample_listeners)
        main(["--name", "nginx", "--json"])
        data = orjson.loads(capsys.readouterr().out)
        assert {(d["pid"], d["port"]) for d in data} == {(100, 80), (101, 443)}
        assert len(data) == 3

    def test_no_match(self, fake_backend, sample_listeners, capsys) -> None:
        fake_backend(sample_listeners)
        assert main(["--pid", "4242"]) == 0
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "no matching listeners" in captured.err

    def test_backend_error(self, monkeypatch, capsys) -> None:
        def exhausted():
            raise AllocationExhausted("tcp4: buffer still too small")

        monkeypatch.setattr(collectors, "enumerate_listeners", exhausted)
        assert main([]) == 1
        assert "[error] tcp4: buffer still too small" in capsys.readouterr().err
