"""Dump ISO 15765-2 datagrams seen between two CAN ids."""

from __future__ import annotations

import contextlib
import dataclasses
import fcntl
import getopt
import select
import struct
import sys
import time
from typing import Optional, Sequence, Tuple

from .canframe import CAN_EFF_MASK
from .isotpopts import (
    IsotpFlag,
    IsotpOptions,
    LinkLayerOptions,
    open_isotp_socket,
    parse_can_id,
    parse_link_layer,
)
from .j1939addr import IFNAMSIZ, _strtoul

FORMAT_HEX = 1
FORMAT_ASCII = 2
FORMAT_DEFAULT = FORMAT_ASCII | FORMAT_HEX

FGRED = "\x1b[31m"
FGBLUE = "\x1b[34m"
ATTRESET = "\x1b[0m"

TIMESTAMP_MODES = ("a", "A", "d", "z")

SIOCGSTAMP = 0x8906
_TIMEVAL = struct.Struct("@ll")

USAGE = (
    "\nUsage: {prg} [options] <CAN interface>\n"
    "Options:\n"
    "         -s <can_id>  (source can_id. Use 8 digits for extended IDs)\n"
    "         -d <can_id>  (destination can_id. Use 8 digits for extended IDs)\n"
    "         -x <addr>    (extended addressing mode)\n"
    "         -X <addr>    (extended addressing mode - rx addr)\n"
    "         -c           (color mode)\n"
    "         -t <type>    (timestamp: (a)bsolute/(d)elta/(z)ero/(A)bsolute w date)\n"
    "         -f <format>  (1 = HEX, 2 = ASCII, 3 = HEX & ASCII - default: {default})\n"
    "         -L <mtu>:<tx_dl>:<tx_flags>  (link layer options for CAN FD)\n"
    "         -h <len>    (head: print only first <len> bytes)\n"
    "\nCAN IDs and addresses are given and expected in hexadecimal values.\n"
    "\n"
)


class TimestampFormatter:
    """Timestamp prefix: (a)bsolute, (A)bsolute with date, (d)elta or (z)ero."""

    def __init__(self, mode: Optional[str] = None) -> None:
        if mode and mode not in TIMESTAMP_MODES:
            raise ValueError(f"unknown timestamp mode '{mode[0]}'")
        self.mode = mode or None
        self._last = (0, 0)

    def format(self, seconds: int, microseconds: int) -> str:
        """Prefix text for a datagram received at the given time."""
        if self.mode is None:
            return ""
        if self.mode == "a":
            return f"({seconds}.{microseconds:06d}) "
        if self.mode == "A":
            text = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(seconds))
            return f"({text}.{microseconds:06d}) "

        if self._last[0] == 0:
            self._last = (seconds, microseconds)
        diff_sec = seconds - self._last[0]
        diff_usec = microseconds - self._last[1]
        if diff_usec < 0:
            diff_sec -= 1
            diff_usec += 1000000
        if diff_sec < 0:
            diff_sec = diff_usec = 0
        if self.mode == "d":
            self._last = (seconds, microseconds)
        return f"({diff_sec}.{diff_usec:06d}) "


def format_pdu(
    buffer: bytes,
    color: int = 0,
    stamp: str = "",
    fmt: int = FORMAT_DEFAULT,
    device: str = "",
    src: int = 0,
    head: int = 0,
) -> str:
    """One output line for a PDU; color 1 is red, 2 is blue, 0 none."""
    parts = []
    if color == 1:
        parts.append(FGRED)
    elif color == 2:
        parts.append(FGBLUE)
    parts.append(stamp)
    parts.append(f" {device}  {src & CAN_EFF_MASK:03X}  [{len(buffer)}]  ")

    if fmt & FORMAT_HEX:
        for i, byte in enumerate(buffer):
            parts.append(f"{byte:02X} ")
            if head and i + 1 >= head:
                parts.append("... ")
                break
        if fmt & FORMAT_ASCII:
            parts.append(" - ")

    if fmt & FORMAT_ASCII:
        parts.append("'")
        count = 0
        for byte in buffer:
            parts.append(chr(byte) if 0x20 <= byte < 0x7F else ".")
            if head and count + 1 >= head:
                break
            count += 1
        parts.append("'")
        if head and count + 1 >= head:
            parts.append(" ... ")

    if color:
        parts.append(ATTRESET)
    return "".join(parts)


def _socket_stamp(sock) -> Tuple[int, int]:
    try:
        raw = fcntl.ioctl(sock.fileno(), SIOCGSTAMP, bytes(_TIMEVAL.size))
        return _TIMEVAL.unpack(raw)
    except OSError:
        now = time.time()
        return int(now), int((now % 1) * 1000000)


def _usage(prg: str = "isotpsniffer") -> None:
    sys.stderr.write(USAGE.format(prg=prg, default=FORMAT_DEFAULT))


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    prg = "isotpsniffer"
    try:
        options, args = getopt.gnu_getopt(list(argv), "s:d:x:X:h:ct:f:L:?")
    except getopt.GetoptError as exc:
        print(f"{prg}: {exc}", file=sys.stderr)
        _usage(prg)
        return 0

    src: Optional[int] = None
    dst: Optional[int] = None
    opts = IsotpOptions()
    llopts = LinkLayerOptions()
    color = False
    head = 0
    mode: Optional[str] = None
    fmt = FORMAT_DEFAULT

    for opt, val in options:
        if opt == "-s":
            src = parse_can_id(val)
        elif opt == "-d":
            dst = parse_can_id(val)
        elif opt == "-x":
            opts.flags |= IsotpFlag.EXTEND_ADDR
            opts.ext_address = _strtoul(val, 16)[0] & 0xFF
        elif opt == "-X":
            opts.flags |= IsotpFlag.RX_EXT_ADDR
            opts.rx_ext_address = _strtoul(val, 16)[0] & 0xFF
        elif opt == "-f":
            fmt = _strtoul(val, 10)[0] & (FORMAT_ASCII | FORMAT_HEX)
        elif opt == "-L":
            try:
                llopts = parse_link_layer(val)
            except ValueError as exc:
                print(exc)
                _usage(prg)
                return 1
        elif opt == "-h":
            head = _strtoul(val, 10)[0]
        elif opt == "-c":
            color = True
        elif opt == "-t":
            choice = val[:1]
            if choice in TIMESTAMP_MODES:
                mode = choice
            else:
                print(f"{prg}: unknown timestamp mode '{choice}' - ignored")
                mode = None
        else:
            _usage(prg)
            return 0

    if len(args) != 1 or src is None or dst is None:
        _usage(prg)
        return 1
    if opts.flags & IsotpFlag.RX_EXT_ADDR and not opts.flags & IsotpFlag.EXTEND_ADDR:
        _usage(prg)
        return 1

    if_name = args[0][:IFNAMSIZ - 1]
    listen_opts = dataclasses.replace(opts, flags=opts.flags | IsotpFlag.LISTEN_MODE)
    other_opts = listen_opts
    if listen_opts.flags & IsotpFlag.RX_EXT_ADDR:
        # the second socket sees the extended addresses the other way round
        other_opts = dataclasses.replace(
            listen_opts,
            ext_address=listen_opts.rx_ext_address,
            rx_ext_address=listen_opts.ext_address,
        )

    formatter = TimestampFormatter(mode)

    with contextlib.ExitStack() as stack:
        try:
            s = stack.enter_context(open_isotp_socket(if_name, src, dst, listen_opts))
            t = stack.enter_context(
                open_isotp_socket(if_name, dst, src, other_opts, None, llopts if llopts.mtu else None)
            )
        except OSError as exc:
            print(exc.strerror or exc, file=sys.stderr)
            return 1

        try:
            while True:
                try:
                    readable, _, _ = select.select([s, t, sys.stdin], [], [])
                except OSError as exc:
                    print(f"select: {exc.strerror}", file=sys.stderr)
                    continue

                quit_now = False
                if sys.stdin in readable:
                    sys.stdin.readline()
                    quit_now = True
                    print("quit due to keyboard input.")

                for sock, code, peer, label in ((s, 2, dst, "s"), (t, 1, src, "t")):
                    if sock not in readable:
                        continue
                    try:
                        data = sock.recv(4096)
                    except OSError as exc:
                        print(f"read socket {label}: {exc.strerror}", file=sys.stderr)
                        return 1
                    if len(data) > 4095:
                        return 1
                    stamp = formatter.format(*_socket_stamp(sock)) if formatter.mode else ""
                    print(
                        format_pdu(data, code if color else 0, stamp, fmt, if_name, peer, head),
                        flush=True,
                    )

                if quit_now:
                    break
        except KeyboardInterrupt:
            return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())