from __future__ import annotations
import ipaddress, struct

from ..errors import DecodeFailed

def port_from_be(buf: bytes, offset: int) -> int:
    """Port stored in network byte order in the first two bytes at offset."""
    return struct.unpack_from('>H', buf, offset)[0]

def ipv4_from_bytes(buf: bytes, offset: int = 0) -> ipaddress.IPv4Address:
    return ipaddress.IPv4Address(bytes(buf[offset:offset + 4]))

def ipv6_from_bytes(buf: bytes, offset: int = 0) -> ipaddress.IPv6Address:
    return ipaddress.IPv6Address(bytes(buf[offset:offset + 16]))

def ipv4_from_hex_word(hexstr: str) -> ipaddress.IPv4Address:
    """IPv4 address printed as one host-order (little-endian) 32-bit hex word."""
    if len(hexstr) != 8:
        raise ValueError(f"bad IPv4 hex word: {hexstr!r}")
    return ipaddress.IPv4Address(struct.pack('<I', int(hexstr, 16)))

def ipv6_from_hex_words(hexstr: str) -> ipaddress.IPv6Address:
    """IPv6 address printed as four host-order (little-endian) 32-bit hex words."""
    if len(hexstr) != 32:
        raise ValueError(f"bad IPv6 hex words: {hexstr!r}")
    words = [int(hexstr[i:i + 8], 16) for i in range(0, 32, 8)]
    return ipaddress.IPv6Address(struct.pack('<4I', *words))

def decode_name(raw: bytes, encoding: str = 'utf-8') -> str:
    """Decode a NUL-terminated name field."""
    raw = bytes(raw).split(b'\x00', 1)[0]
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as e:
        # kernel name fields are cut at a byte count, possibly mid-character
        if e.reason == "unexpected end of data":
            return decode_name(raw[:e.start], encoding)
        raise DecodeFailed(f"invalid {encoding} in process name {raw!r}") from e

def require_length(buf: bytes, expected: int, what: str) -> None:
    if len(buf) < expected:
        raise DecodeFailed(f"{what}: buffer holds {len(buf)} bytes, need {expected}")
