"""Convert a compact CAN frame logfile into an ASC logfile."""

from __future__ import annotations

import argparse
import re
import sys
import time
from typing import Iterable, Iterator, Optional, Sequence

from .canframe import (
    CAN_EFF_FLAG,
    CAN_EFF_MASK,
    CAN_ERR_FLAG,
    CAN_MAX_DLEN,
    CAN_MAX_RAW_DLC,
    CAN_MTU,
    CAN_RTR_FLAG,
    CANFD_BRS,
    CANFD_ESI,
    CANFD_MTU,
    CanFrame,
    can_fd_len2dlc,
    parse_canframe,
)

ASC_F_RTR = 0x00000010
ASC_F_FDF = 0x00001000
ASC_F_BRS = 0x00002000
ASC_F_ESI = 0x00004000

BUFSZ = 400

_LINE = re.compile(r"\((\d+)\.(\d+)\)\s*(\S+)\s+(\S+)(?:\s+(\S+))?")


def _direction(extra_info: str) -> str:
    return "Tx" if extra_info.startswith("T") else "Rx"


def _id_field(frame: CanFrame) -> str:
    marker = "x" if frame.can_id & CAN_EFF_FLAG else " "
    return f"{frame.can_id & CAN_EFF_MASK:X}{marker}"


def can_asc(frame: CanFrame, devno: int, nortrdlc: bool = False, extra_info: str = "") -> str:
    """ASC text (without timestamp) for a Classical CAN frame."""
    out = f"{devno:<2d} "
    if frame.can_id & CAN_ERR_FLAG:
        return out + "ErrorFrame"
    out += f"{_id_field(frame):<15s} {_direction(extra_info)}   "
    if frame.can_id & CAN_RTR_FLAG:
        return out + ("r" if nortrdlc else f"r {frame.length}")
    out += f"d {frame.length}"
    return out + "".join(f" {b:02X}" for b in frame.payload(frame.length))


def canfd_asc(frame: CanFrame, devno: int, mtu: int, extra_info: str = "") -> str:
    """ASC text (without timestamp) in CAN FD layout."""
    dlen = frame.length
    dlc = can_fd_len2dlc(dlen)
    flags = 0

    out = f"CANFD {devno:3d} {_direction(extra_info)} "
    out += f"{_id_field(frame):>11s}" + " " * 34
    out += ("1" if frame.flags & CANFD_BRS else "0") + " "
    out += ("1" if frame.flags & CANFD_ESI else "0") + " "

    if mtu == CAN_MTU and dlen == CAN_MAX_DLEN and CAN_MAX_DLEN < frame.len8_dlc <= CAN_MAX_RAW_DLC:
        dlc = frame.len8_dlc
    out += f"{dlc:x} "

    if mtu == CAN_MTU:
        if frame.can_id & CAN_RTR_FLAG:
            dlen = 0
            flags = ASC_F_RTR
    else:
        flags = ASC_F_FDF
        if frame.flags & CANFD_BRS:
            flags |= ASC_F_BRS
        if frame.flags & CANFD_ESI:
            flags |= ASC_F_ESI

    out += f"{dlen:2d}"
    out += "".join(f" {b:02X}" for b in frame.payload(dlen))
    out += f" {130000:8d} {130:4d} {flags:8X} 0 0 0 0 0"
    return out


def convert(
    lines: Iterable[str],
    devices: Sequence[str],
    crlf: bool = False,
    fdfmt: bool = False,
    nortrdlc: bool = False,
    d4: bool = False,
) -> Iterator[str]:
    """Yield ASC output text for log lines of the selected devices.

    Raises ValueError on over-long lines, bad line format or bad frames.
    """
    if not devices:
        raise ValueError("no CAN interfaces defined!")
    newline = "\r\n" if crlf else "\n"
    start_sec, start_usec = 0, 0

    for line in lines:
        if len(line) >= BUFSZ - 2:
            raise ValueError("line too long for input buffer")
        if not line.startswith("("):
            continue
        match = _LINE.match(line)
        if not match:
            raise ValueError("incorrect line format in logfile")
        sec, usec = int(match.group(1)), int(match.group(2))
        device, ascframe = match.group(3), match.group(4)
        extra_info = match.group(5) or ""

        if not start_sec:
            start_sec, start_usec = sec, usec
            yield (
                f"date {time.ctime(start_sec)}\n"
                f"base hex  timestamps absolute{newline}"
                f"no internal events logged{newline}"
            )

        if device not in devices:
            continue
        devno = list(devices).index(device) + 1

        frame = parse_canframe(ascframe)
        mtu = frame.mtu
        if mtu == CANFD_MTU and frame.can_id & CAN_ERR_FLAG:
            continue

        sec -= start_sec
        usec -= start_usec
        if usec < 0:
            sec -= 1
            usec += 1000000
        if sec < 0:
            sec = usec = 0

        stamp = f"{sec:4d}.{usec // 100:04d} " if d4 else f"{sec:4d}.{usec:06d} "
        if mtu == CAN_MTU and not fdfmt:
            body = can_asc(frame, devno, nortrdlc, extra_info)
        else:
            body = canfd_asc(frame, devno, mtu, extra_info)
        yield stamp + body + ("\r" if crlf else "") + "\n"


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="log2asc", description="convert compact CAN frame logfile to ASC logfile."
    )
    parser.add_argument("-I", dest="infile", help="input file (default stdin)")
    parser.add_argument("-O", dest="outfile", help="output file (default stdout)")
    parser.add_argument("-4", dest="d4", action="store_true", help="reduce decimal place to 4 digits")
    parser.add_argument("-n", dest="crlf", action="store_true", help="set newline to cr/lf - default lf")
    parser.add_argument("-f", dest="fdfmt", action="store_true", help="use CANFD format also for Classic CAN")
    parser.add_argument("-r", dest="nortrdlc", action="store_true", help="suppress dlc for RTR frames")
    parser.add_argument("devices", nargs="*", help="CAN interfaces")
    args = parser.parse_args(argv)

    if not args.devices:
        print("no CAN interfaces defined!", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    try:
        infile = open(args.infile, "r") if args.infile else sys.stdin
    except OSError as exc:
        print(f"infile: {exc}", file=sys.stderr)
        return 1
    try:
        try:
            outfile = open(args.outfile, "w", newline="") if args.outfile else sys.stdout
        except OSError as exc:
            print(f"outfile: {exc}", file=sys.stderr)
            return 1
        try:
            for chunk in convert(infile, args.devices, args.crlf, args.fdfmt, args.nortrdlc, args.d4):
                outfile.write(chunk)
        except ValueError as exc:
            print(exc, file=sys.stderr)
            return 1
        finally:
            outfile.flush()
            if outfile is not sys.stdout:
                outfile.close()
    finally:
        if infile is not sys.stdin:
            infile.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())