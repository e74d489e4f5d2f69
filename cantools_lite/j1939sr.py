"""SAE J1939 send/receive tool: stdin to the bus, the bus to stdout."""

from __future__ import annotations

import errno
import getopt
import os
import select
import socket
import sys
from dataclasses import dataclass
from typing import Optional, Sequence

from .j1939addr import (
    AF_CAN,
    CAN_J1939,
    SO_J1939_SEND_PRIO,
    SOL_CAN_J1939,
    J1939Addr,
    _strtoul,
    addr2str,
    str2addr,
)

MSG_SYN = getattr(socket, "MSG_SYN", 0x400)

HELP = (
    "j1939sr: An SAE J1939 send/recv utility\n"
    "Usage: j1939sr [OPTION...] SOURCE [DEST]\n"
    "Options:\n"
    "  -v, --verbose\t\tIncrease verbosity\n"
    "  -p, --priority=VAL\tJ1939 priority (0..7, default 6)\n"
    "  -S, --serialize\tStrictly serialize outgoing packets\n"
    "  -s, --size\t\tPacket size, default autodetected\n"
    "\n"
    "  SOURCE\t[IFACE:][NAME|SA][,PGN]\n"
    "  DEST\t\t\t[NAME|SA]\n"
)

_SHORT = "vp:s:S?"
_LONG = ["help", "verbose", "priority=", "size=", "serialize"]


@dataclass
class _Options:
    verbose: int = 0
    sendflags: int = 0
    pkt_len: int = 0
    priority: int = 6
    prio_defined: bool = False
    src: Optional[J1939Addr] = None
    dst: Optional[J1939Addr] = None


class _Fatal(Exception):
    pass


def parse_args(argv: Sequence[str]) -> _Options:
    """Parse the command line; raises ValueError with the message to show."""
    try:
        opts, args = getopt.gnu_getopt(list(argv), _SHORT, _LONG)
    except getopt.GetoptError as exc:
        raise ValueError(HELP) from exc

    result = _Options()
    for opt, val in opts:
        if opt in ("-v", "--verbose"):
            result.verbose += 1
        elif opt in ("-s", "--size"):
            result.pkt_len = _strtoul(val, 0)[0] & 0xFFFFFFFF
            if not result.pkt_len:
                raise ValueError(f"packet size of {val}")
        elif opt in ("-p", "--priority"):
            result.priority = _strtoul(val, 0)[0]
            result.prio_defined = True
        elif opt in ("-S", "--serialize"):
            result.sendflags |= MSG_SYN
        else:
            raise ValueError(HELP)

    for position, text in enumerate(args[:2]):
        try:
            addr = str2addr(text)
        except ValueError as exc:
            raise ValueError(f"bad address spec [{text}]") from exc
        if position == 0:
            result.src = addr
        else:
            result.dst = addr
    return result


def _packet_length(opts: _Options) -> int:
    if opts.pkt_len:
        return opts.pkt_len
    try:
        st = os.fstat(sys.stdin.fileno())
    except (OSError, ValueError) as exc:
        raise _Fatal("stat stdin, could not determine buffer size") from exc
    return st.st_size or 1024


def _run(opts: _Options) -> None:
    pkt_len = _packet_length(opts)
    src_text = addr2str(opts.src or J1939Addr())
    dst_text = addr2str(opts.dst or J1939Addr())

    try:
        sock = socket.socket(AF_CAN, socket.SOCK_DGRAM, CAN_J1939)
    except OSError as exc:
        raise _Fatal(f"socket(can, dgram, j1939): {exc.strerror}") from exc

    with sock:
        if opts.prio_defined:
            try:
                sock.setsockopt(SOL_CAN_J1939, SO_J1939_SEND_PRIO, opts.priority)
            except OSError as exc:
                raise _Fatal(f"setsockopt priority: {exc.strerror}") from exc
        if opts.src is not None:
            try:
                sock.bind(opts.src.sockaddr())
            except OSError as exc:
                raise _Fatal(f"bind({src_text}), {-exc.errno}: {exc.strerror}") from exc
        if opts.dst is not None:
            try:
                sock.connect(opts.dst.sockaddr())
            except OSError as exc:
                raise _Fatal(f"connect({dst_text}), {-exc.errno}: {exc.strerror}") from exc

        stdin_fd = sys.stdin.fileno()
        stdout_fd = sys.stdout.fileno()
        sock_fd = sock.fileno()
        poller = select.poll()
        poller.register(stdin_fd, select.POLLIN)
        poller.register(sock_fd, select.POLLIN)

        while True:
            events = dict(poller.poll())
            if events.get(stdin_fd):
                try:
                    data = os.read(stdin_fd, pkt_len)
                except OSError as exc:
                    raise _Fatal(f"read(stdin): {exc.strerror}") from exc
                if not data:
                    break
                while True:
                    try:
                        sock.send(data, opts.sendflags)
                        break
                    except OSError as exc:
                        if exc.errno != errno.ENOBUFS:
                            raise _Fatal(f"write({src_text}): {exc.strerror}") from exc
            if events.get(sock_fd):
                try:
                    data = sock.recv(pkt_len)
                except OSError as exc:
                    print(f"j1939sr: read({dst_text}): {exc.strerror}", file=sys.stderr)
                    if exc.errno != errno.EHOSTDOWN:
                        raise _Fatal(f"read({dst_text}): {exc.strerror}") from exc
                else:
                    try:
                        os.write(stdout_fd, data)
                    except OSError as exc:
                        raise _Fatal(f"write(stdout): {exc.strerror}") from exc


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    try:
        opts = parse_args(argv)
    except ValueError as exc:
        text = str(exc)
        sys.stderr.write(text if text == HELP else f"j1939sr: {text}\n")
        return 1
    try:
        _run(opts)
    except _Fatal as exc:
        print(f"j1939sr: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())