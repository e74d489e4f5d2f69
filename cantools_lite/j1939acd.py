"""SAE J1939 address claiming daemon."""

from __future__ import annotations

import argparse
import enum
import errno
import re
import select
import signal
import socket
import struct
import sys
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .j1939addr import (
    AF_CAN,
    CAN_J1939,
    J1939_IDLE_ADDR,
    J1939_NO_ADDR,
    J1939_NO_PGN,
    J1939_PGN_ADDRESS_CLAIMED,
    J1939_PGN_ADDRESS_COMMANDED,
    J1939_PGN_MAX,
    J1939_PGN_PDU1_MAX,
    J1939_PGN_REQUEST,
    SO_J1939_FILTER,
    SOL_CAN_J1939,
    J1939Addr,
    _strtoul,
    addr2str,
)

DEFAULT_RANGE = "0x80-0xfd"
DEFAULT_INTERFACE = "can0"

_FILTER = struct.Struct("@QQBBII0Q")
_FILTERS = (
    (J1939_PGN_ADDRESS_CLAIMED, J1939_PGN_PDU1_MAX),
    (J1939_PGN_REQUEST, J1939_PGN_PDU1_MAX),
    (J1939_PGN_ADDRESS_COMMANDED, J1939_PGN_MAX),
)

HELP = (
    "j1939acd: An SAE J1939 address claiming daemon\n"
    "Usage: j1939acd [options] NAME [INTF]\n"
    "Options:\n"
    "  -v, --verbose\t\tIncrease verbosity\n"
    "  -r, --range=RANGE\tRanges of source addresses\n"
    "\t\t\te.g. 80,50-100,200-210 (defaults to 0-253)\n"
    "  -c, --cache=FILE\tCache file to save/restore the source address\n"
    "  -a, --address=ADDRESS\tStart with Source Address ADDRESS\n"
    "  -p, --prefix=STR\tPrefix to use when logging\n"
    "\n"
    "NAME is the 64bit nodename\n"
    "\n"
    "Examples:\n"
    "j1939acd -r 100,80-120 -c /tmp/1122334455667788.jacd 1122334455667788\n"
    "j1939acd -r 100,80-120 -c /tmp/1122334455667788.jacd 1122334455667788 vcan0\n"
)


@dataclass
class _Slot:
    name: int = 0
    used: bool = False
    seen: bool = False


class AddressTable:
    """Known NAMEs per source address and the addresses we may use."""

    def __init__(self) -> None:
        self.slots: List[_Slot] = [_Slot() for _ in range(J1939_IDLE_ADDR)]

    def parse_range(self, text: str) -> int:
        """Mark ranges like ``80,50-100`` usable; returns the number marked.

        Raises ValueError on a malformed range.
        """
        count = 0
        for token in filter(None, re.split(r"[,;]", text)):
            first, end = _strtoul(token, 0)
            if end == 0:
                raise ValueError(f"parsing range '{token}'")
            last = first
            if token[end:end + 1] == "-":
                tail = token[end + 1:]
                last, tail_end = _strtoul(tail, 0)
                if tail_end == 0:
                    raise ValueError(f"parsing addr '{tail}'")
                last = max(last, first)
            for sa in range(first, last + 1):
                if sa >= J1939_IDLE_ADDR:
                    break
                self.slots[sa].used = True
                count += 1
        return count

    def lookup_name(self, name: int) -> int:
        """Source address that holds ``name``, or the idle address."""
        for sa, slot in enumerate(self.slots):
            if slot.name == name:
                return sa
        return J1939_IDLE_ADDR

    def choose_new_sa(self, name: int, sa: int) -> int:
        """Pick a source address for ``name``, preferring ``sa``."""
        if sa < J1939_IDLE_ADDR and self.slots[sa].used:
            owner = self.slots[sa].name
            if not owner or owner == name or owner > name:
                return sa
        for candidate, slot in enumerate(self.slots):
            if slot.used and (not slot.name or slot.name == name):
                return candidate
        candidate = sa + 1
        for _ in range(J1939_IDLE_ADDR):
            if candidate >= J1939_IDLE_ADDR:
                candidate = 0
            slot = self.slots[candidate]
            if slot.used and name < slot.name:
                return candidate
            candidate += 1
        return J1939_IDLE_ADDR

    def dump_status(self, current_sa: int) -> str:
        """One line per address that is usable or has a known owner."""
        lines = []
        for sa, slot in enumerate(self.slots):
            if not slot.used and not slot.seen and not slot.name:
                continue
            mark = "*" if sa == current_sa else "+" if slot.used else "-"
            owner = f"{slot.name:016x}" if slot.name else "-"
            lines.append(f"{sa:02x}: {mark} {owner}\n")
        return "".join(lines)


def read_cache(path: str) -> Optional[int]:
    """Source address saved in the cache file, or None if there is none."""
    try:
        with open(path, "r") as fp:
            for line in fp:
                if line.startswith("#"):
                    continue
                value, end = _strtoul(line, 0)
                if end > 0 and 0 <= value <= J1939_IDLE_ADDR:
                    return value
    except FileNotFoundError:
        return None
    return None


def write_cache(path: str, sa: int) -> None:
    """Save ``sa`` to the cache file."""
    with open(path, "w") as fp:
        fp.write(f"# saved on {time.ctime()}\n\n\n")
        fp.write(f"0x{sa:02x}\n")


class _Fatal(Exception):
    pass


class _State(enum.Enum):
    INITIAL = 0
    REQ_SENT = 1
    REQ_PENDING = 2
    OPERATIONAL = 3


def _must_warn(exc: OSError) -> bool:
    return exc.errno not in (errno.EINTR, errno.ENOBUFS)


class _Claimer:
    def __init__(self, table: AddressTable, name: int, intf: str, current_sa: int, verbose: int) -> None:
        self.table = table
        self.name = name
        self.intf = intf
        self.current_sa = current_sa
        self.last_sa = J1939_NO_ADDR
        self.verbose = verbose
        self.state = _State.INITIAL
        self.sig_term = False
        self.sig_usr1 = False
        self.sig_alrm = False
        self._alarm_at: Optional[float] = None
        self.sock: Optional[socket.socket] = None
        self.sock_rx: Optional[socket.socket] = None

    def _log(self, text: str) -> None:
        if self.verbose:
            print(text, file=sys.stderr)

    def open_socket(self) -> socket.socket:
        self._log("- socket(PF_CAN, SOCK_DGRAM, CAN_J1939);")
        try:
            sock = socket.socket(AF_CAN, socket.SOCK_DGRAM, CAN_J1939)
        except OSError as exc:
            raise _Fatal(f"socket(j1939): {exc.strerror}") from exc
        try:
            filters = b"".join(_FILTER.pack(0, 0, 0, 0, pgn, mask) for pgn, mask in _FILTERS)
            sock.setsockopt(SOL_CAN_J1939, SO_J1939_FILTER, filters)
        except OSError as exc:
            sock.close()
            raise _Fatal(f"setsockopt filter: {exc.strerror}") from exc
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except OSError as exc:
            sock.close()
            raise _Fatal(f"setsockopt set broadcast: {exc.strerror}") from exc
        self._log(f"- bind(, {addr2str(J1939Addr(name=self.name, addr=J1939_IDLE_ADDR))});")
        try:
            sock.bind((self.intf, self.name, J1939_NO_PGN, J1939_IDLE_ADDR))
        except OSError as exc:
            sock.close()
            raise _Fatal(f"bind(): {exc.strerror}") from exc
        return sock

    def schedule(self, msec: int) -> None:
        self.sig_alrm = False
        self._alarm_at = time.monotonic() + msec / 1000

    def _check_alarm(self) -> None:
        if self._alarm_at is not None and time.monotonic() >= self._alarm_at:
            self._alarm_at = None
            self.sig_alrm = True

    def repeat_address(self) -> bool:
        self._log(f"- send(, {self.name}, 8, 0);")
        try:
            self.sock.sendto(self.name.to_bytes(8, "little"),
                             ("", 0, J1939_PGN_ADDRESS_CLAIMED, J1939_NO_ADDR))
        except OSError as exc:
            if _must_warn(exc):
                print(f"send address claim for 0x{self.last_sa:02x}", file=sys.stderr)
            return False
        return True

    def claim_address(self, sa: int) -> bool:
        self._log(f"- bind(, {addr2str(J1939Addr(name=self.name, addr=sa))});")
        try:
            self.sock.bind((self.intf, self.name, J1939_NO_PGN, sa))
        except OSError as exc:
            raise _Fatal(f"rebind with sa 0x{sa:02x}: {exc.strerror}") from exc
        self.last_sa = sa
        return self.repeat_address()

    def request_addresses(self) -> bool:
        self._log("- sendto(, { 0, 0xee, 0, }, 3, 0, -,0ea00);")
        try:
            self.sock.sendto(bytes((0, 0xEE, 0)), ("", 0, J1939_PGN_REQUEST, J1939_NO_ADDR))
        except OSError as exc:
            if _must_warn(exc):
                print("send request for address claims", end="")
            return False
        return True

    def _claim_or_retry(self, sa: int) -> None:
        if not self.claim_address(sa):
            self.schedule(50)

    def step(self) -> None:
        if self.state is _State.INITIAL:
            if not self.request_addresses():
                raise _Fatal("could not sent initial request")
            self.state = _State.REQ_SENT
        elif self.state is _State.REQ_PENDING:
            if self.sig_alrm:
                self.sig_alrm = False
                sa = self.table.choose_new_sa(self.name, self.current_sa)
                if sa == J1939_IDLE_ADDR:
                    raise _Fatal("no free address to use")
                self._claim_or_retry(sa)
                self.state = _State.OPERATIONAL
        elif self.state is _State.OPERATIONAL:
            if self.sig_alrm:
                self.sig_alrm = False
                if not self.repeat_address():
                    self.schedule(50)

    def handle(self, data: bytes, source) -> bool:
        """Process one received message; False when no address is left."""
        _, src_name, pgn, src_addr = source
        slots = self.table.slots
        if pgn == J1939_PGN_REQUEST:
            if len(data) < 3:
                return True
            requested = data[0] | data[1] << 8 | (data[2] & 0x03) << 16
            if requested != J1939_PGN_ADDRESS_CLAIMED:
                return True
            if self.state is _State.REQ_SENT:
                self._log("- request sent, pending for 1250 ms")
                self.schedule(1250)
                self.state = _State.REQ_PENDING
            elif self.state is _State.OPERATIONAL:
                self._claim_or_retry(self.current_sa)
        elif pgn == J1939_PGN_ADDRESS_CLAIMED:
            known = self.table.lookup_name(src_name)
            if src_addr >= J1939_IDLE_ADDR:
                if known < J1939_IDLE_ADDR:
                    slots[known].name = 0
                return True
            if known != src_addr and known < J1939_IDLE_ADDR:
                slots[known].name = 0
            sa = src_addr
            slots[sa].name = src_name
            slots[sa].seen = True
            if self.name == src_name:
                self.current_sa = sa
                self._log(f"- claimed 0x{sa:02x}")
            elif sa == self.current_sa:
                self._log(f"- address collision for 0x{sa:02x}")
                if self.name > src_name:
                    sa = self.table.choose_new_sa(self.name, sa)
                    if sa == J1939_IDLE_ADDR:
                        print("no address left", end="")
                        self.current_sa = sa
                        return False
                self._claim_or_retry(sa)
        elif pgn == J1939_PGN_ADDRESS_COMMANDED:
            if len(data) >= 9 and int.from_bytes(data[:8], "little") == self.name:
                self._claim_or_retry(data[8])
        return True

    def run(self) -> None:
        self.sock = self.open_socket()
        self.sock_rx = self.open_socket()
        try:
            while not self.sig_term:
                if self.sig_usr1:
                    self.sig_usr1 = False
                    sys.stdout.write(self.table.dump_status(self.current_sa))
                    sys.stdout.flush()
                self._check_alarm()
                self.step()

                timeout = 0.2
                if self._alarm_at is not None:
                    timeout = max(0.0, min(timeout, self._alarm_at - time.monotonic()))
                readable, _, _ = select.select([self.sock_rx], [], [], timeout)
                if not readable:
                    continue
                try:
                    data, source = self.sock_rx.recvfrom(9)
                except InterruptedError:
                    continue
                except OSError as exc:
                    raise _Fatal(f"recvfrom(): {exc.strerror}") from exc
                if not self.handle(data, source):
                    break
            self._log("- shutdown")
            self.claim_address(J1939_IDLE_ADDR)
        finally:
            self.sock.close()
            self.sock_rx.close()


def _signal_handlers(claimer: _Claimer):
    def on_term(signum, frame):
        claimer.sig_term = True

    def on_usr1(signum, frame):
        claimer.sig_usr1 = True

    def ignore(signum, frame):
        pass

    return {
        signal.SIGTERM: on_term,
        signal.SIGINT: on_term,
        signal.SIGUSR1: on_usr1,
        signal.SIGUSR2: ignore,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="j1939acd", add_help=False)
    parser.add_argument("-?", "--help", dest="help", action="store_true")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument("-r", "--range", default=DEFAULT_RANGE)
    parser.add_argument("-c", "--cache")
    parser.add_argument("-a", "--address")
    parser.add_argument("-p", "--prefix")
    parser.add_argument("name", nargs="?")
    parser.add_argument("intf", nargs="?", default=DEFAULT_INTERFACE)
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        sys.stderr.write(HELP)
        return 1
    if args.help:
        sys.stderr.write(HELP)
        return 1

    prog = f"j1939acd.{args.prefix}" if args.prefix else "j1939acd"
    name = _strtoul(args.name, 16)[0] & ((1 << 64) - 1) if args.name else 0
    current_sa = _strtoul(args.address, 0)[0] & 0xFF if args.address else J1939_IDLE_ADDR

    try:
        if args.cache:
            cached = read_cache(args.cache)
            if cached is not None:
                current_sa = cached

        table = AddressTable()
        if not table.parse_range(args.range):
            raise _Fatal("no addresses in range")

        if current_sa < J1939_IDLE_ADDR and not table.slots[current_sa].used:
            if args.verbose:
                print(f"- forget saved address 0x{current_sa:02x}", file=sys.stderr)
            current_sa = J1939_IDLE_ADDR

        if args.verbose:
            print(f"- ready for {args.intf}:{name:016x}", file=sys.stderr)
        if not args.intf or not name:
            raise _Fatal("bad arguments")

        claimer = _Claimer(table, name, args.intf, current_sa, args.verbose)
        previous = {sig: signal.signal(sig, handler) for sig, handler in _signal_handlers(claimer).items()}
        try:
            claimer.run()
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        if args.cache:
            write_cache(args.cache, claimer.current_sa)
    except (_Fatal, ValueError, OSError) as exc:
        print(f"{prog}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())