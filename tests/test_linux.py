"""Tests for the procfs backend against a fake /proc tree."""

from __future__ import annotations

import ipaddress
import os
from pathlib import Path

import pytest

from procnet_listen.collectors.linux import (
    LocalSocket,
    enumerate_listeners,
    parse_net_table,
    process_table,
    read_socket_tables,
    socket_listeners,
)
from procnet_listen.errors import DecodeFailed, HandleAcquisitionFailed
from procnet_listen.models import Listener, Protocol

pytestmark = pytest.mark.skipif(os.name != "posix", reason="fake proc tree uses symlinks")

TCP_HEADER = ("  sl  local_address rem_address   st tx_queue rx_queue tr tm->when "
              "retrnsmt   uid  timeout inode")
UDP_HEADER = ("  sl  local_address rem_address   st tx_queue rx_queue tr tm->when "
              "retrnsmt   uid  timeout inode ref pointer drops")


def row(sl: int, local: str, remote: str, state: str, inode: int) -> str:
    return (f"{sl:4d}: {local} {remote} {state} 00000000:00000000 00:00000000 "
            f"00000000  1000        0 {inode} 1 0000000000000000 100 0 0 10 0")


TCP = "\n".join([
    TCP_HEADER,
    row(0, "0100007F:1F90", "00000000:0000", "0A", 1001),   # 127.0.0.1:8080 LISTEN
    row(1, "0100007F:1F90", "0100007F:D431", "01", 1002),   # established
    row(2, "00000000:0016", "00000000:0000", "0A", 1003),   # 0.0.0.0:22 LISTEN
    row(3, "0100007F:C350", "0100007F:1F90", "06", 0),      # time-wait, no inode
]) + "\n"

TCP6 = "\n".join([
    TCP_HEADER,
    # [::1]:5432 LISTEN
    row(0, "00000000000000000000000001000000:1538", "00000000000000000000000000000000:0000", "0A", 2001),
    # [::]:22 LISTEN
    row(1, "00000000000000000000000000000000:0016", "00000000000000000000000000000000:0000", "0A", 2002),
]) + "\n"

UDP = "\n".join([
    UDP_HEADER,
    row(0, "3500007F:0035", "00000000:0000", "07", 3001),   # 127.0.0.53:53
    row(1, "0100007F:D000", "0100007F:0035", "01", 3002),   # connected udp
]) + "\n"


def make_proc(root: Path, tables: dict[str, str], procs: dict[int, tuple[str, list[int]]]) -> Path:
    net = root / "net"
    net.mkdir(parents=True)
    for name, text in tables.items():
        (net / name).write_text(text)
    for pid, (comm, inodes) in procs.items():
        fd = root / str(pid) / "fd"
        fd.mkdir(parents=True)
        (root / str(pid) / "comm").write_bytes(comm.encode() + b"\n")
        os.symlink("/dev/null", fd / "0")
        os.symlink("pipe:[77]", fd / "1")
        for i, inode in enumerate(inodes, start=3):
            os.symlink(f"socket:[{inode}]", fd / str(i))
    return root


class TestParseNetTable:
    """Tests for /proc/net row decoding."""

    def test_tcp_keeps_listening_rows(self) -> None:
        sockets = parse_net_table(TCP.splitlines(), Protocol.TCP, False, "tcp")
        assert sockets == {
            1001: LocalSocket(ipaddress.IPv4Address("127.0.0.1"), 8080, Protocol.TCP),
            1003: LocalSocket(ipaddress.IPv4Address("0.0.0.0"), 22, Protocol.TCP),
        }

    def test_tcp6_word_order(self) -> None:
        """Test that IPv6 addresses are four little-endian words."""
        sockets = parse_net_table(TCP6.splitlines(), Protocol.TCP, True, "tcp6")
        assert sockets[2001] == LocalSocket(ipaddress.IPv6Address("::1"), 5432, Protocol.TCP)
        assert sockets[2002].ip == ipaddress.IPv6Address("::")

    def test_udp_keeps_every_row(self) -> None:
        sockets = parse_net_table(UDP.splitlines(), Protocol.UDP, False, "udp")
        assert set(sockets) == {3001, 3002}
        assert sockets[3001] == LocalSocket(ipaddress.IPv4Address("127.0.0.53"), 53, Protocol.UDP)

    def test_header_only(self) -> None:
        assert parse_net_table([TCP_HEADER], Protocol.TCP, False) == {}

    @pytest.mark.parametrize("line", [
        "   0: 0100007F:1F90",
        "   0: 0100007F 00000000:0000 0A 0 0 0 0 0 1",
        "   0: 7F:1F90 00000000:0000 0A 0 0 0 0 0 1",
        "   0: 0100007F:1F90 00000000:0000 0A 0 0 0 0 0 x",
    ])
    def test_malformed_row(self, line: str) -> None:
        with pytest.raises(DecodeFailed):
            parse_net_table([TCP_HEADER, line], Protocol.TCP, False, "tcp")


class TestProcfsBackend:
    """Tests for the two-phase procfs scan."""

    def test_enumerate(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {"tcp": TCP, "tcp6": TCP6, "udp": UDP}, {
            10: ("nginx", [1001, 1002]),
            20: ("sshd", [1003, 2002]),
            30: ("postgres", [2001]),
            40: ("systemd-resolve", [3001]),
            50: ("bash", []),
        })
        assert enumerate_listeners(root) == {
            Listener.build(10, "nginx", "127.0.0.1", 8080, Protocol.TCP),
            Listener.build(20, "sshd", "0.0.0.0", 22, Protocol.TCP),
            Listener.build(20, "sshd", "::", 22, Protocol.TCP),
            Listener.build(30, "postgres", "::1", 5432, Protocol.TCP),
            Listener.build(40, "systemd-resolve", "127.0.0.53", 53, Protocol.UDP),
        }

    def test_missing_tables_contribute_nothing(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {"tcp": TCP}, {10: ("nginx", [1001])})
        sockets = read_socket_tables(root)
        assert set(sockets) == {1001, 1003}

    def test_shared_socket_reported_per_process(self, tmp_path: Path) -> None:
        """Test that a socket inherited across fork shows up for both owners."""
        root = make_proc(tmp_path, {"tcp": TCP}, {
            10: ("gunicorn", [1003]),
            11: ("gunicorn", [1003]),
        })
        assert {l.process.pid for l in enumerate_listeners(root)} == {10, 11}

    def test_process_table_is_read_only(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {}, {10: ("nginx", [])})
        procs = process_table(root)
        assert dict(procs) == {10: "nginx"}
        with pytest.raises(TypeError):
            procs[11] = "x"

    def test_process_exiting_between_phases_is_dropped(self, tmp_path: Path) -> None:
        """Test that a pid known in phase 1 but gone in phase 2 is skipped."""
        root = make_proc(tmp_path, {"tcp": TCP}, {10: ("nginx", [1001])})
        procs = {10: "nginx", 99: "vanished"}
        sockets = read_socket_tables(root)
        assert socket_listeners(root, procs, sockets) == {
            Listener.build(10, "nginx", "127.0.0.1", 8080, Protocol.TCP)
        }

    def test_process_without_comm_is_skipped(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {"tcp": TCP}, {10: ("nginx", [1001])})
        (root / "11").mkdir()
        assert dict(process_table(root)) == {10: "nginx"}

    def test_invalid_name_encoding_drops_pid(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {}, {10: ("nginx", [])})
        (root / "12").mkdir()
        (root / "12" / "comm").write_bytes(b"\xff\xfe\n")
        assert dict(process_table(root)) == {10: "nginx"}

    def test_comm_cut_mid_character(self, tmp_path: Path) -> None:
        """Test that a comm truncated inside a multibyte character keeps its whole prefix."""
        root = make_proc(tmp_path, {}, {})
        (root / "12").mkdir()
        (root / "12" / "comm").write_bytes("aaaaaaaaaaaaaaé".encode()[:15] + b"\n")
        assert dict(process_table(root)) == {12: "aaaaaaaaaaaaaa"}

    def test_undecodable_neighbour_keeps_other_listeners(self, tmp_path: Path) -> None:
        root = make_proc(tmp_path, {"tcp": TCP}, {10: ("nginx", [1001])})
        fd = root / "12" / "fd"
        fd.mkdir(parents=True)
        (root / "12" / "comm").write_bytes(b"\xc3(bad\n")
        os.symlink("socket:[1003]", fd / "3")
        assert enumerate_listeners(root) == {
            Listener.build(10, "nginx", "127.0.0.1", 8080, Protocol.TCP)
        }

    def test_unreadable_proc_root(self, tmp_path: Path) -> None:
        with pytest.raises(HandleAcquisitionFailed):
            enumerate_listeners(tmp_path / "does-not-exist")
