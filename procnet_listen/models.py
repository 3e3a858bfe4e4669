from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import ipaddress
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

MAX_PID = 0xFFFFFFFF
MAX_PORT = 0xFFFF


class Protocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Process:
    pid: int
    name: str

    def __post_init__(self):
        if not 0 <= self.pid <= MAX_PID:
            raise ValueError(f"pid out of range: {self.pid}")


@dataclass(frozen=True)
class SocketAddress:
    ip: IPAddress
    port: int

    def __post_init__(self):
        if not isinstance(self.ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            object.__setattr__(self, "ip", ipaddress.ip_address(self.ip))
        if not 0 <= self.port <= MAX_PORT:
            raise ValueError(f"port out of range: {self.port}")

    def __str__(self) -> str:
        if self.ip.version == 6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


@dataclass(frozen=True)
class Listener:
    process: Process
    socket: SocketAddress
    protocol: Protocol

    @classmethod
    def build(cls, pid: int, name: str, ip, port: int, protocol: Protocol) -> Listener:
        return cls(Process(pid, name), SocketAddress(ip, port), protocol)

    def sort_key(self) -> tuple:
        return (self.process.pid, self.socket.port, self.protocol.value,
                self.socket.ip.version, int(self.socket.ip))

    def to_dict(self) -> dict:
        return {
            "pid": self.process.pid,
            "name": self.process.name,
            "ip": str(self.socket.ip),
            "port": self.socket.port,
            "protocol": self.protocol.value,
        }

    def __str__(self) -> str:
        return (f"PID: {self.process.pid:<10} Process name: {self.process.name:<25} "
                f"Socket: {str(self.socket):<25} Protocol: {self.protocol}")
