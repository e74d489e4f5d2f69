"""CAN frame model with the compact and the long ASCII representations."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, TextIO

CAN_EFF_FLAG = 0x80000000
CAN_RTR_FLAG = 0x40000000
CAN_ERR_FLAG = 0x20000000

CAN_SFF_MASK = 0x000007FF
CAN_EFF_MASK = 0x1FFFFFFF
CAN_ERR_MASK = 0x1FFFFFFF

CAN_MAX_DLEN = 8
CANFD_MAX_DLEN = 64
CAN_MAX_RAW_DLC = 15

CAN_MTU = 16
CANFD_MTU = 72

CANFD_BRS = 0x01
CANFD_ESI = 0x02

CANID_DELIM = "#"
CC_DLC_DELIM = "_"
DATA_SEPARATOR = "."
SWAP_DELIMITER = "`"

HEX_UPPER = "0123456789ABCDEF"

_DLC2LEN = (0, 1, 2, 3, 4, 5, 6, 7, 8, 12, 16, 20, 24, 32, 48, 64)
_LEN2DLC = (
    tuple(range(9))
    + (9,) * 4
    + (10,) * 4
    + (11,) * 4
    + (12,) * 4
    + (13,) * 8
    + (14,) * 16
    + (15,) * 16
)


class View(enum.IntFlag):
    """Options for the long (user readable) frame representation."""

    NONE = 0
    ASCII = 0x1
    BINARY = 0x2
    SWAP = 0x4
    ERROR = 0x8
    INDENT_SFF = 0x10
    LEN8_DLC = 0x20


@dataclass
class CanFrame:
    """A Classical CAN or CAN FD frame.

    ``length`` defaults to the size of ``data``; it may be larger for
    remote request frames that carry no payload.
    """

    can_id: int = 0
    data: bytes = b""
    length: Optional[int] = None
    flags: int = 0
    len8_dlc: int = 0
    is_fd: bool = False

    def __post_init__(self) -> None:
        self.data = bytes(self.data)
        if self.length is None:
            self.length = len(self.data)

    @property
    def mtu(self) -> int:
        return CANFD_MTU if self.is_fd else CAN_MTU

    @property
    def maxdlen(self) -> int:
        return CANFD_MAX_DLEN if self.is_fd else CAN_MAX_DLEN

    def payload(self, count: int) -> bytes:
        """The first ``count`` data bytes, zero filled where none are stored."""
        return self.data[:count].ljust(count, b"\0")


def can_fd_dlc2len(dlc: int) -> int:
    """Data length for a raw data length code."""
    return _DLC2LEN[dlc & 0x0F]


def can_fd_len2dlc(length: int) -> int:
    """Data length code that covers ``length`` bytes."""
    if length < 0:
        raise ValueError(f"negative data length {length}")
    if length > CANFD_MAX_DLEN:
        return 0xF
    return _LEN2DLC[length]


def _nibble(c: str) -> int:
    if "0" <= c <= "9":
        return ord(c) - ord("0")
    if "A" <= c <= "F":
        return ord(c) - ord("A") + 10
    if "a" <= c <= "f":
        return ord(c) - ord("a") + 10
    return 16


def asc2nibble(c: str) -> int:
    """Value of one ASCII hex character."""
    value = _nibble(c)
    if value > 0x0F:
        raise ValueError(f"not a hex character: {c!r}")
    return value


def hexstring2data(arg: str, maxdlen: int) -> bytes:
    """Convert an even-length hex string into ``maxdlen`` bytes, zero padded."""
    if not arg or len(arg) % 2 or len(arg) > maxdlen * 2:
        raise ValueError(f"invalid hex string length in {arg!r}")
    out = bytearray(maxdlen)
    for pos in range(0, len(arg), 2):
        out[pos // 2] = asc2nibble(arg[pos]) << 4 | asc2nibble(arg[pos + 1])
    return bytes(out)


def parse_canframe(cs: str) -> CanFrame:
    """Parse the compact ASCII form ``<can_id>#...`` into a frame."""
    size = len(cs)

    def at(i: int) -> str:
        return cs[i] if i < size else "\0"

    if size < 4:
        raise ValueError(f"CAN frame string too short: {cs!r}")

    if at(3) == CANID_DELIM:
        idx, digits = 4, 3
    elif at(8) == CANID_DELIM:
        idx, digits = 9, 8
    else:
        raise ValueError(f"no CAN id delimiter in {cs!r}")

    can_id = 0
    for c in cs[:digits]:
        value = _nibble(c)
        if value > 0x0F:
            raise ValueError(f"invalid CAN id in {cs!r}")
        can_id = can_id << 4 | value
    if digits == 8 and not can_id & CAN_ERR_FLAG:
        can_id |= CAN_EFF_FLAG

    frame = CanFrame(can_id=can_id)

    if at(idx) in ("R", "r"):
        frame.can_id |= CAN_RTR_FLAG
        idx += 1
        if at(idx) != "\0":
            value = _nibble(at(idx))
            idx += 1
            if value <= CAN_MAX_DLEN:
                frame.length = value
                if value == CAN_MAX_DLEN:
                    delim = at(idx)
                    idx += 1
                    if delim == CC_DLC_DELIM:
                        dlc = _nibble(at(idx))
                        if CAN_MAX_DLEN < dlc <= CAN_MAX_RAW_DLC:
                            frame.len8_dlc = dlc
        return frame

    maxdlen = CAN_MAX_DLEN
    if at(idx) == CANID_DELIM:
        flags = _nibble(at(idx + 1))
        if flags > 0x0F:
            raise ValueError(f"invalid CAN FD flags in {cs!r}")
        frame.is_fd = True
        frame.flags = flags
        maxdlen = CANFD_MAX_DLEN
        idx += 2

    data = bytearray()
    while len(data) < maxdlen:
        if at(idx) == DATA_SEPARATOR:
            idx += 1
        if idx >= size:
            break
        hi, lo = _nibble(at(idx)), _nibble(at(idx + 1))
        idx += 2
        if hi > 0x0F or lo > 0x0F:
            raise ValueError(f"invalid data byte in {cs!r}")
        data.append(hi << 4 | lo)

    frame.data = bytes(data)
    frame.length = len(data)

    if maxdlen == CAN_MAX_DLEN and len(data) == CAN_MAX_DLEN and at(idx) == CC_DLC_DELIM:
        dlc = _nibble(at(idx + 1))
        if CAN_MAX_DLEN < dlc <= CAN_MAX_RAW_DLC:
            frame.len8_dlc = dlc

    return frame


def _id_text(can_id: int, indent_sff: bool = False) -> str:
    if can_id & CAN_ERR_FLAG:
        return f"{can_id & (CAN_ERR_MASK | CAN_ERR_FLAG):08X}"
    if can_id & CAN_EFF_FLAG:
        return f"{can_id & CAN_EFF_MASK:08X}"
    text = f"{can_id & CAN_SFF_MASK:03X}"
    return "     " + text if indent_sff else text


def _valid_raw_dlc(dlc: int) -> bool:
    return CAN_MAX_DLEN < dlc <= CAN_MAX_RAW_DLC


def sprint_canframe(frame: CanFrame, sep: bool = False, maxdlen: Optional[int] = None) -> str:
    """Compact ASCII form of ``frame``; data bytes joined by '.' if ``sep``."""
    if maxdlen is None:
        maxdlen = frame.maxdlen
    length = min(frame.length, maxdlen)
    parts = [_id_text(frame.can_id), CANID_DELIM]

    if maxdlen == CAN_MAX_DLEN and frame.can_id & CAN_RTR_FLAG:
        parts.append("R")
        if 0 < frame.length <= CAN_MAX_DLEN:
            parts.append(HEX_UPPER[frame.length & 0x0F])
            if frame.length == CAN_MAX_DLEN and _valid_raw_dlc(frame.len8_dlc):
                parts.append(CC_DLC_DELIM + HEX_UPPER[frame.len8_dlc & 0x0F])
        return "".join(parts)

    if maxdlen == CANFD_MAX_DLEN:
        parts.append(CANID_DELIM + HEX_UPPER[frame.flags & 0x0F])
        if sep and length:
            parts.append(DATA_SEPARATOR)

    joiner = DATA_SEPARATOR if sep else ""
    parts.append(joiner.join(f"{b:02X}" for b in frame.payload(length)))

    if maxdlen == CAN_MAX_DLEN and length == CAN_MAX_DLEN and _valid_raw_dlc(frame.len8_dlc):
        parts.append(CC_DLC_DELIM + HEX_UPPER[frame.len8_dlc & 0x0F])

    return "".join(parts)


def fprint_canframe(
    stream: TextIO,
    frame: CanFrame,
    eol: Optional[str] = None,
    sep: bool = False,
    maxdlen: Optional[int] = None,
) -> None:
    """Write the compact form of ``frame`` to ``stream``, then ``eol`` if given."""
    stream.write(sprint_canframe(frame, sep, maxdlen))
    if eol:
        stream.write(eol)


def _printable(b: int) -> str:
    return chr(b) if 0x1F < b < 0x7F else "."


def sprint_long_canframe(frame: CanFrame, view: int = View.NONE, maxdlen: Optional[int] = None) -> str:
    """User readable form of ``frame`` as selected by the ``view`` flags."""
    if maxdlen is None:
        maxdlen = frame.maxdlen
    view = int(view)
    length = min(frame.length, maxdlen)
    plain_sff = not frame.can_id & (CAN_ERR_FLAG | CAN_EFF_FLAG)
    head = _id_text(frame.can_id, bool(view & View.INDENT_SFF)) + "  "

    if maxdlen == CAN_MAX_DLEN:
        if view & View.LEN8_DLC:
            dlc = frame.len8_dlc
            if not (length == CAN_MAX_DLEN and _valid_raw_dlc(dlc)):
                dlc = length
            head += f" {{{HEX_UPPER[dlc]}}} "
        else:
            head += f" [{length}] "
        if frame.can_id & CAN_RTR_FLAG:
            return head + " remote request"
    else:
        head += f"[{length:02d}] "
    del plain_sff

    payload = frame.payload(length)
    swap = bool(view & View.SWAP)
    ordered = payload[::-1] if swap else payload

    if view & View.BINARY:
        dlen = 9
        cells = [f"{b:08b}" for b in ordered]
    else:
        dlen = 3
        cells = [f"{b:02X}" for b in ordered]

    if swap:
        body = (" " + SWAP_DELIMITER.join(cells)) if cells else ""
    else:
        body = "".join(" " + cell for cell in cells)

    text = head + body
    if length > CAN_MAX_DLEN:
        return text

    if frame.can_id & CAN_ERR_FLAG:
        return text + "ERRORFRAME".rjust(dlen * (8 - length) + 13)

    if view & View.ASCII:
        width = dlen * (8 - length) + 4
        quote = SWAP_DELIMITER if swap else "'"
        chars = "".join(_printable(b) for b in ordered)
        return text + quote.rjust(width) + chars + quote

    return text