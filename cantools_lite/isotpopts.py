"""ISO 15765-2 (ISO-TP) socket options and their command line forms."""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import socket
import struct
from dataclasses import dataclass
from typing import List, Optional

from .canframe import CAN_EFF_FLAG
from .j1939addr import AF_CAN, _strtoul

CAN_ISOTP = 6
SOL_CAN_ISOTP = 106

CAN_ISOTP_OPTS = 1
CAN_ISOTP_RECV_FC = 2
CAN_ISOTP_TX_STMIN = 3
CAN_ISOTP_RX_STMIN = 4
CAN_ISOTP_LL_OPTS = 5

NO_CAN_ID = 0xFFFFFFFF

_OPTS = struct.Struct("=IIBBBB")
_FC = struct.Struct("=BBB")
_LL = struct.Struct("=BBB")
_U32 = struct.Struct("=I")


class IsotpFlag(enum.IntFlag):
    """Flags of the ISO-TP socket options."""

    LISTEN_MODE = 0x0001
    EXTEND_ADDR = 0x0002
    TX_PADDING = 0x0004
    RX_PADDING = 0x0008
    CHK_PAD_LEN = 0x0010
    CHK_PAD_DATA = 0x0020
    HALF_DUPLEX = 0x0040
    FORCE_TXSTMIN = 0x0080
    FORCE_RXSTMIN = 0x0100
    RX_EXT_ADDR = 0x0200
    WAIT_TX_DONE = 0x0400
    SF_BROADCAST = 0x0800
    CF_BROADCAST = 0x1000


@dataclass
class IsotpOptions:
    """General ISO-TP socket options."""

    flags: IsotpFlag = IsotpFlag(0)
    frame_txtime: int = 0
    ext_address: int = 0
    txpad_content: int = 0
    rxpad_content: int = 0
    rx_ext_address: int = 0

    def pack(self) -> bytes:
        """Binary layout taken by the socket option."""
        return _OPTS.pack(
            int(self.flags),
            self.frame_txtime & 0xFFFFFFFF,
            self.ext_address,
            self.txpad_content,
            self.rxpad_content,
            self.rx_ext_address,
        )


@dataclass
class FcOptions:
    """Flow control settings sent to the data source."""

    bs: int = 0
    stmin: int = 0
    wftmax: int = 0

    def pack(self) -> bytes:
        """Binary layout taken by the socket option."""
        return _FC.pack(self.bs, self.stmin, self.wftmax)


@dataclass
class LinkLayerOptions:
    """Link layer settings for CAN FD."""

    mtu: int = 0
    tx_dl: int = 0
    tx_flags: int = 0

    def pack(self) -> bytes:
        """Binary layout taken by the socket option."""
        return _LL.pack(self.mtu, self.tx_dl, self.tx_flags)


def _scan(text: str, base: int, count: int) -> List[int]:
    """Read up to ``count`` colon separated byte values like sscanf does."""
    values: List[int] = []
    pos = 0
    while len(values) < count:
        if values:
            if text[pos:pos + 1] != ":":
                break
            pos += 1
        value, end = _strtoul(text[pos:], base)
        if end == 0:
            break
        values.append(value & 0xFF)
        pos += end
    return values


def parse_can_id(text: str) -> int:
    """Hex CAN id; more than seven digits mark an extended id."""
    can_id = _strtoul(text, 16)[0] & 0xFFFFFFFF
    if len(text) > 7:
        can_id |= CAN_EFF_FLAG
    return can_id


def parse_ext_addr(text: str, opts: IsotpOptions) -> IsotpOptions:
    """Apply ``<addr>[:<rxaddr>]`` extended addressing to ``opts``."""
    values = _scan(text, 16, 2)
    if len(values) == 1:
        return dataclasses.replace(opts, ext_address=values[0], flags=opts.flags | IsotpFlag.EXTEND_ADDR)
    if len(values) == 2:
        return dataclasses.replace(
            opts,
            ext_address=values[0],
            rx_ext_address=values[1],
            flags=opts.flags | IsotpFlag.EXTEND_ADDR | IsotpFlag.RX_EXT_ADDR,
        )
    raise ValueError(f"incorrect extended addr values '{text}'.")


def parse_padding(text: str, opts: IsotpOptions) -> IsotpOptions:
    """Apply ``[tx]:[rx]`` padding bytes to ``opts``."""
    values = _scan(text, 16, 2)
    if len(values) == 1:
        return dataclasses.replace(opts, txpad_content=values[0], flags=opts.flags | IsotpFlag.TX_PADDING)
    if len(values) == 2:
        return dataclasses.replace(
            opts,
            txpad_content=values[0],
            rxpad_content=values[1],
            flags=opts.flags | IsotpFlag.TX_PADDING | IsotpFlag.RX_PADDING,
        )
    if text.startswith(":"):
        rx = _scan(text[1:], 16, 1)
        if rx:
            return dataclasses.replace(opts, rxpad_content=rx[0], flags=opts.flags | IsotpFlag.RX_PADDING)
    raise ValueError(f"incorrect padding values '{text}'.")


def parse_pad_check(text: str, opts: IsotpOptions) -> IsotpOptions:
    """Apply the rx padding check mode (l)ength, (c)ontent or (a)ll."""
    modes = {
        "l": IsotpFlag.CHK_PAD_LEN,
        "c": IsotpFlag.CHK_PAD_DATA,
        "a": IsotpFlag.CHK_PAD_LEN | IsotpFlag.CHK_PAD_DATA,
    }
    mode = text[:1]
    if mode not in modes or not mode:
        raise ValueError(f"unknown padding check option '{mode}'.")
    return dataclasses.replace(opts, flags=opts.flags | modes[mode])


def parse_link_layer(text: str) -> LinkLayerOptions:
    """Parse ``<mtu>:<tx_dl>:<tx_flags>`` in decimal."""
    values = _scan(text, 10, 3)
    if len(values) != 3:
        raise ValueError(f"unknown link layer options '{text}'.")
    return LinkLayerOptions(*values)


def open_isotp_socket(
    interface: str,
    tx_id: int,
    rx_id: int,
    opts: IsotpOptions,
    fcopts: Optional[FcOptions] = None,
    llopts: Optional[LinkLayerOptions] = None,
    tx_stmin: Optional[int] = None,
) -> socket.socket:
    """Open an ISO-TP socket with the given options, bound to ``interface``.

    Raises OSError when the socket cannot be created, the link layer
    options are refused or binding fails.
    """
    try:
        sock = socket.socket(AF_CAN, socket.SOCK_DGRAM, CAN_ISOTP)
    except OSError as exc:
        raise OSError(exc.errno, f"socket: {exc.strerror}") from exc
    try:
        with contextlib.suppress(OSError):
            sock.setsockopt(SOL_CAN_ISOTP, CAN_ISOTP_OPTS, opts.pack())
        if fcopts is not None:
            with contextlib.suppress(OSError):
                sock.setsockopt(SOL_CAN_ISOTP, CAN_ISOTP_RECV_FC, fcopts.pack())
        if llopts is not None and llopts.tx_dl:
            try:
                sock.setsockopt(SOL_CAN_ISOTP, CAN_ISOTP_LL_OPTS, llopts.pack())
            except OSError as exc:
                raise OSError(exc.errno, f"link layer sockopt: {exc.strerror}") from exc
        if tx_stmin is not None and opts.flags & IsotpFlag.FORCE_TXSTMIN:
            with contextlib.suppress(OSError):
                sock.setsockopt(SOL_CAN_ISOTP, CAN_ISOTP_TX_STMIN, _U32.pack(tx_stmin & 0xFFFFFFFF))
        try:
            sock.bind((interface, rx_id & 0xFFFFFFFF, tx_id & 0xFFFFFFFF))
        except OSError as exc:
            raise OSError(exc.errno, f"bind: {exc.strerror}") from exc
    except BaseException:
        sock.close()
        raise
    return sock