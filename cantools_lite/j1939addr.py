"""SAE J1939 socket addresses: parsing and printing of address specs."""

from __future__ import annotations

import dataclasses
import socket
from dataclasses import dataclass
from typing import Tuple

AF_CAN = 29
CAN_J1939 = 7
SOL_CAN_J1939 = 107

SO_J1939_FILTER = 1
SO_J1939_PROMISC = 2
SO_J1939_SEND_PRIO = 3
SO_J1939_ERRQUEUE = 4

J1939_NO_ADDR = 0xFF
J1939_IDLE_ADDR = 0xFE
J1939_NO_NAME = 0
J1939_NO_PGN = 0x40000
J1939_PGN_MAX = 0x3FFFF
J1939_PGN_PDU1_MAX = 0x3FF00
J1939_PGN_REQUEST = 0x0EA00
J1939_PGN_ADDRESS_CLAIMED = 0x0EE00
J1939_PGN_ADDRESS_COMMANDED = 0x0FED8

IFNAMSIZ = 16

_NAME_MASK = (1 << 64) - 1
_HEX = "0123456789abcdefABCDEF"
_SPACE = " \t\n\r\v\f"


def _strtoul(text: str, base: int = 0) -> Tuple[int, int]:
    """Parse an unsigned integer prefix like the C library does.

    Returns the value and the index just past the parsed digits; the index
    is 0 when no digits could be parsed.
    """
    i, n = 0, len(text)
    while i < n and text[i] in _SPACE:
        i += 1
    negative = False
    if i < n and text[i] in "+-":
        negative = text[i] == "-"
        i += 1
    if base in (0, 16) and text[i:i + 2].lower() == "0x" and i + 2 < n and text[i + 2] in _HEX:
        i += 2
        base = 16
    elif base == 0:
        base = 8 if text[i:i + 1] == "0" else 10
    start = i
    value = 0
    while i < n and text[i] in _HEX:
        digit = int(text[i], 16)
        if digit >= base:
            break
        value = value * base + digit
        i += 1
    if i == start:
        return 0, 0
    return (-value if negative else value), i


def _interface_index(text: str) -> int:
    """Interface index for a number or an interface name; 0 if unknown."""
    value, end = _strtoul(text, 0)
    if end == len(text):
        return value
    for index, name in socket.if_nameindex():
        if name == text:
            return index
    return 0


def _interface_name(ifindex: int) -> str | None:
    try:
        return socket.if_indextoname(ifindex)
    except OSError:
        return None


@dataclass
class J1939Addr:
    """A J1939 socket address: interface index, NAME, source address and PGN."""

    ifindex: int = 0
    name: int = J1939_NO_NAME
    addr: int = J1939_NO_ADDR
    pgn: int = J1939_NO_PGN

    def sockaddr(self) -> Tuple[str, int, int, int]:
        """Address tuple as taken by a J1939 socket."""
        interface = socket.if_indextoname(self.ifindex) if self.ifindex else ""
        return (interface, self.name, self.pgn, self.addr)

    @classmethod
    def from_sockaddr(cls, sockaddr: Tuple[str, int, int, int]) -> "J1939Addr":
        """Build from the tuple a J1939 socket reports."""
        interface, name, pgn, addr = sockaddr
        ifindex = socket.if_nametoindex(interface) if interface else 0
        return cls(ifindex=ifindex, name=name, addr=addr, pgn=pgn)


def parse_canaddr(spec: str, addr: J1939Addr) -> J1939Addr:
    """Apply ``[IFACE][:[SA][,[PGN][,NAME]]]`` to ``addr``; returns the result.

    Fields left empty keep the value they have in ``addr``.
    """
    changes = {}
    interface, _, rest = spec.partition(":")
    if interface:
        try:
            changes["ifindex"] = socket.if_nametoindex(interface)
        except OSError:
            changes["ifindex"] = 0
    fields = rest.split(",", 2) if _ else []
    if len(fields) > 0 and fields[0]:
        changes["addr"] = _strtoul(fields[0], 0)[0] & 0xFF
    if len(fields) > 1 and fields[1]:
        changes["pgn"] = _strtoul(fields[1], 0)[0] & 0xFFFFFFFF
    if len(fields) > 2 and fields[2]:
        changes["name"] = _strtoul(fields[2], 0)[0] & _NAME_MASK
    return dataclasses.replace(addr, **changes)


def str2addr(text: str) -> J1939Addr:
    """Parse ``[IFACE:][NAME|SA][,PGN]``.

    Two hex digits give a source address, other lengths a NAME.
    Raises ValueError when the interface part is too long.
    """
    result = J1939Addr()
    colon = text.find(":")
    if colon >= 0:
        if colon >= IFNAMSIZ:
            raise ValueError(f"interface name too long in {text!r}")
        result.ifindex = _interface_index(text[:colon])
        rest = text[colon + 1:]
    else:
        result.ifindex = _interface_index(text)
        if result.ifindex:
            return result
        rest = text

    value, end = _strtoul(rest, 16)
    if end == 0:
        return result
    if end == 2:
        result.addr = value & 0xFF
    else:
        result.name = value & _NAME_MASK
    if end == len(rest):
        return result

    pgn, pgn_end = _strtoul(rest[end + 1:], 16)
    if pgn_end > 0:
        result.pgn = pgn & 0xFFFFFFFF
    return result


def addr2str(addr: J1939Addr) -> str:
    """Readable form of ``addr``, the inverse of :func:`str2addr`."""
    parts = []
    if addr.ifindex:
        ifname = _interface_name(addr.ifindex)
        parts.append(f"#{addr.ifindex}:" if ifname is None else f"{ifname}:")
    if addr.name:
        parts.append(f"{addr.name:016x}")
        if addr.pgn == J1939_PGN_ADDRESS_CLAIMED:
            parts.append(f".{addr.addr:02x}")
    elif addr.addr <= 0xFE:
        parts.append(f"{addr.addr:02x}")
    else:
        parts.append("-")
    if addr.pgn <= J1939_PGN_MAX:
        parts.append(f",{addr.pgn:05x}")
    return "".join(parts)