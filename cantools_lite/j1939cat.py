"""Netcat-like transfer tool for SAE J1939."""

from __future__ import annotations

import errno
import getopt
import os
import select
import socket
import struct
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Sequence

from .j1939addr import (
    AF_CAN,
    CAN_J1939,
    SO_J1939_ERRQUEUE,
    SO_J1939_SEND_PRIO,
    SOL_CAN_J1939,
    J1939Addr,
    _strtoul,
    parse_canaddr,
)

J1939_MAX_ETP_PACKET_SIZE = 7 * 0x00FFFFFF

SO_TIMESTAMPING = 37
SCM_TIMESTAMPING = SO_TIMESTAMPING
SCM_TIMESTAMPING_OPT_STATS = 54
SCM_J1939_ERRQUEUE = 4

SOF_TIMESTAMPING_OPT_ID = 1 << 7
SOF_TIMESTAMPING_SOFTWARE = 1 << 4
SOF_TIMESTAMPING_TX_SCHED = 1 << 8
SOF_TIMESTAMPING_TX_ACK = 1 << 9
SOF_TIMESTAMPING_OPT_CMSG = 1 << 10
SOF_TIMESTAMPING_OPT_TSONLY = 1 << 11
SOF_TIMESTAMPING_OPT_STATS = 1 << 12

SCM_TSTAMP_SND = 0
SCM_TSTAMP_SCHED = 1
SCM_TSTAMP_ACK = 2

SO_EE_ORIGIN_LOCAL = 1
SO_EE_ORIGIN_TIMESTAMPING = 4
J1939_EE_INFO_TX_ABORT = 1

J1939_NLA_BYTES_ACKED = 1
NLA_HDRLEN = 4

MSG_ERRQUEUE = getattr(socket, "MSG_ERRQUEUE", 0x2000)

_ULONG_MASK = (1 << 64) - 1
_NLA = struct.Struct("=HH")
_U32 = struct.Struct("=I")
_SERR = struct.Struct("=IBBBBII")
_TIMESPEC = struct.Struct("@ll")

OPTSTRING = "?hi:vs:rp:P:R:B"

HELP = (
    "j1939cat: netcat-like tool for j1939\n"
    "Usage: j1939cat [options] FROM TO\n"
    " FROM / TO\t- or [IFACE][:[SA][,[PGN][,NAME]]]\n"
    "Options:\n"
    " -i <infile>\t(default stdin)\n"
    " -s <size>\tSet maximal transfer size. Default: 117440505 byte\n"
    " -r\t\tReceive data\n"
    " -P <timeout>  poll timeout in milliseconds before sending data.\n"
    "\t\tWith this option send() will be used with MSG_DONTWAIT flag.\n"
    " -R <count>\tSet send repeat count. Default: 1\n"
    " -B\t\tAllow to send and receive broadcast packets.\n"
    "\n"
    "Example:\n"
    "j1939cat -i some_file_to_send  can0:0x80 :0x90,0x12300\n"
    "j1939cat can0:0x90 -r > /tmp/some_file_to_receive\n"
    "\n"
)


def _warn(text: str) -> None:
    print(f"j1939cat: {text}", file=sys.stderr)


def tstype_to_str(tstype: int) -> str:
    """Short label for a transmit timestamp type."""
    return {
        SCM_TSTAMP_SCHED: "  ENQ",
        SCM_TSTAMP_SND: "  SND",
        SCM_TSTAMP_ACK: "  ACK",
    }.get(tstype, "  unk")


def parse_opt_stats(data: bytes) -> Optional[int]:
    """Bytes acknowledged according to the netlink attributes in ``data``.

    Returns None when no such attribute is present; raises ValueError on
    malformed attributes.
    """
    acked = None
    offset = 0
    while offset < len(data):
        if len(data) - offset < NLA_HDRLEN:
            raise ValueError("truncated netlink attribute")
        nla_len, nla_type = _NLA.unpack_from(data, offset)
        if nla_len < NLA_HDRLEN:
            raise ValueError(f"bad netlink attribute length {nla_len}")
        if nla_type == J1939_NLA_BYTES_ACKED:
            if len(data) - offset < NLA_HDRLEN + _U32.size:
                raise ValueError("truncated netlink attribute")
            acked = _U32.unpack_from(data, offset + NLA_HDRLEN)[0]
        else:
            _warn("not supported J1939_NLA field")
        offset += (nla_len + 3) & ~3
    return acked


@dataclass
class J1939CatConfig:
    """Settings taken from the command line."""

    infile: Optional[str] = None
    max_transfer: int = J1939_MAX_ETP_PACKET_SIZE
    repeat: int = 1
    todo_recv: bool = False
    todo_prio: int = -1
    polltimeout: int = 100000
    todo_connect: bool = False
    todo_broadcast: bool = False
    sockname: J1939Addr = field(default_factory=J1939Addr)
    peername: J1939Addr = field(default_factory=J1939Addr)
    valid_peername: bool = False


def parse_args(argv: Sequence[str]) -> J1939CatConfig:
    """Build the configuration; raises ValueError with the message to show."""
    try:
        opts, args = getopt.gnu_getopt(list(argv), OPTSTRING)
    except getopt.GetoptError as exc:
        raise ValueError(HELP) from exc

    cfg = J1939CatConfig()
    for opt, val in opts:
        if opt == "-i":
            cfg.infile = val
        elif opt == "-s":
            cfg.max_transfer = _strtoul(val, 0)[0] & _ULONG_MASK
            if cfg.max_transfer > J1939_MAX_ETP_PACKET_SIZE:
                raise ValueError(
                    f"used value ({cfg.max_transfer}) is bigger then allowed maximal size: "
                    f"{J1939_MAX_ETP_PACKET_SIZE}."
                )
        elif opt == "-r":
            cfg.todo_recv = True
        elif opt == "-p":
            cfg.todo_prio = _strtoul(val, 0)[0]
        elif opt == "-P":
            cfg.polltimeout = _strtoul(val, 0)[0] & _ULONG_MASK
        elif opt == "-R":
            cfg.repeat = _strtoul(val, 0)[0] & _ULONG_MASK
            if cfg.repeat < 1:
                raise ValueError("send/repeat count can't be less then 1")
        elif opt == "-B":
            cfg.todo_broadcast = True
        else:
            raise ValueError(HELP)

    if len(args) > 0 and args[0] != "-":
        cfg.sockname = parse_canaddr(args[0], cfg.sockname)
    if len(args) > 1 and args[1] != "-":
        cfg.peername = parse_canaddr(args[1], cfg.peername)
        cfg.valid_peername = True
    return cfg


class J1939Cat:
    """Sends a file over a J1939 socket or copies received data to a stream.

    A socket and streams may be handed in; otherwise they are opened from
    the configuration.
    """

    def __init__(
        self,
        config: J1939CatConfig,
        sock=None,
        infile: Optional[BinaryIO] = None,
        outfile: Optional[BinaryIO] = None,
    ) -> None:
        self.config = config
        self.round = 0
        self.tskey = 0
        self.acked = 0
        self._owned: List = []
        self._sized = infile is not None or config.infile is not None
        if infile is None:
            if config.infile is not None:
                try:
                    infile = open(config.infile, "rb")
                except OSError as exc:
                    raise OSError(exc.errno, f"can't open input file: {exc.strerror}") from exc
                self._owned.append(infile)
            else:
                infile = sys.stdin.buffer
        self.infile = infile
        self.outfile = outfile if outfile is not None else sys.stdout.buffer
        if sock is None:
            try:
                sock = self._prepare_socket()
            except BaseException:
                self.close()
                raise
            self._owned.append(sock)
        self.sock = sock

    def __enter__(self) -> "J1939Cat":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the socket and files this object opened itself."""
        for item in self._owned:
            item.close()
        self._owned.clear()

    def _prepare_socket(self) -> socket.socket:
        cfg = self.config
        try:
            sock = socket.socket(AF_CAN, socket.SOCK_DGRAM, CAN_J1939)
        except OSError as exc:
            raise OSError(exc.errno, f"socket(j1939): {exc.strerror}") from exc
        try:
            steps = []
            if cfg.todo_prio >= 0:
                steps.append((f"set priority {cfg.todo_prio}",
                               lambda: sock.setsockopt(SOL_CAN_J1939, SO_J1939_SEND_PRIO, cfg.todo_prio)))
            steps.append(("set recverr", lambda: sock.setsockopt(SOL_CAN_J1939, SO_J1939_ERRQUEUE, 1)))
            stamping = (
                SOF_TIMESTAMPING_SOFTWARE
                | SOF_TIMESTAMPING_OPT_CMSG
                | SOF_TIMESTAMPING_TX_ACK
                | SOF_TIMESTAMPING_TX_SCHED
                | SOF_TIMESTAMPING_OPT_STATS
                | SOF_TIMESTAMPING_OPT_TSONLY
                | SOF_TIMESTAMPING_OPT_ID
            )
            steps.append(("setsockopt timestamping",
                          lambda: sock.setsockopt(socket.SOL_SOCKET, SO_TIMESTAMPING, stamping)))
            if cfg.todo_broadcast:
                steps.append(("setsockopt: filed to set broadcast",
                              lambda: sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)))
            steps.append(("bind()", lambda: sock.bind(cfg.sockname.sockaddr())))
            for description, action in steps:
                try:
                    action()
                except OSError as exc:
                    raise OSError(exc.errno, f"{description}: {exc.strerror}") from exc
            if cfg.todo_connect:
                if not cfg.valid_peername:
                    raise ValueError("no peername supplied")
                try:
                    sock.connect(cfg.peername.sockaddr())
                except OSError as exc:
                    raise OSError(exc.errno, f"connect(): {exc.strerror}") from exc
        except BaseException:
            sock.close()
            raise
        return sock

    def _send_one(self, data) -> int:
        cfg = self.config
        flags = socket.MSG_DONTWAIT if cfg.polltimeout else 0
        if cfg.valid_peername and not cfg.todo_connect:
            sent = self.sock.sendto(data, flags, cfg.peername.sockaddr())
        else:
            sent = self.sock.send(data, flags)
        if sent == 0:
            raise OSError(errno.EINVAL, "transferred 0 bytes")
        if sent > len(data):
            raise OSError(errno.EINVAL, "send more then read")
        return sent

    def _print_timestamp(self, label: str, sec: int, nsec: int) -> None:
        if not (sec | nsec):
            return
        print(f"  {label}: {sec} s {nsec // 1000} us (seq={self.tskey}, send={self.acked})",
              file=sys.stderr)

    def _extract_serr(self, serr: bytes, tss: bytes) -> bool:
        """Handle one error queue notification; True means poll again."""
        ee_errno, ee_origin, _, _, _, ee_info, ee_data = _SERR.unpack_from(serr)
        sec, nsec = _TIMESPEC.unpack_from(tss) if len(tss) >= _TIMESPEC.size else (0, 0)

        if ee_origin == SO_EE_ORIGIN_TIMESTAMPING:
            if ee_errno != errno.ENOMSG:
                _warn(f"serr: expected ENOMSG, got: {ee_errno}")
            self.tskey = ee_data
            self._print_timestamp(tstype_to_str(ee_info), sec, nsec)
            return ee_info == SCM_TSTAMP_SCHED
        if ee_origin == SO_EE_ORIGIN_LOCAL:
            if ee_info != J1939_EE_INFO_TX_ABORT:
                _warn(f"serr: unknown ee_info: {ee_info}")
            self._print_timestamp("  ABT", sec, nsec)
            raise OSError(ee_errno, f"serr: tx error: {ee_errno}, {os.strerror(ee_errno)}")
        _warn(f"serr: wrong origin: {ee_origin}")
        return False

    def _recv_err(self) -> bool:
        _, ancdata, flags, _ = self.sock.recvmsg(0, 100, MSG_ERRQUEUE)
        if flags & socket.MSG_CTRUNC:
            raise OSError(errno.EMSGSIZE, "recvmsg error notification: truncated")
        serr = tss = None
        for level, ctype, data in ancdata:
            if level == socket.SOL_SOCKET and ctype == SCM_TIMESTAMPING:
                tss = data
            elif level == socket.SOL_SOCKET and ctype == SCM_TIMESTAMPING_OPT_STATS:
                acked = parse_opt_stats(data)
                if acked is not None:
                    self.acked = acked
            elif level == SOL_CAN_J1939 and ctype == SCM_J1939_ERRQUEUE:
                serr = data
            else:
                _warn(f"serr: not supported type: {level}.{ctype}")
            if serr is not None and tss is not None:
                return self._extract_serr(serr, tss)
        return False

    def _send_loop(self, buf: bytes) -> None:
        cfg = self.config
        view = memoryview(buf)
        offset, count = 0, len(buf)
        events = select.POLLOUT | select.POLLERR
        tx_done = False

        while not tx_done:
            sent = 0
            if cfg.polltimeout:
                poller = select.poll()
                poller.register(self.sock, events)
                ready = poller.poll(cfg.polltimeout)
                if not ready:
                    raise OSError(errno.ETIME, os.strerror(errno.ETIME))
                revents = ready[0][1]
                if not revents & events:
                    raise OSError(errno.EIO, "something else is wrong")
                if revents & select.POLLERR:
                    if self._recv_err():
                        continue
                    if cfg.repeat - 1 == self.tskey:
                        tx_done = True
                if revents & select.POLLOUT:
                    sent = self._send_one(view[offset:offset + count])
            else:
                sent = self._send_one(view[offset:offset + count])

            count -= sent
            offset += sent
            if not count:
                if cfg.repeat == self.round:
                    events = select.POLLERR
                else:
                    tx_done = True

    def _sendfile(self, count: int) -> None:
        buf_size = min(self.config.max_transfer, count)
        while count > 0:
            chunk = self.infile.read(min(buf_size, count))
            if not chunk:
                break
            self._send_loop(chunk)
            count -= len(chunk)

    def _file_size(self) -> int:
        size = self.infile.seek(0, os.SEEK_END)
        self.infile.seek(0, os.SEEK_SET)
        return size

    def send(self) -> None:
        """Send the input file ``repeat`` times; raises OSError on failure."""
        size = self._file_size() if self._sized else 0
        if not size:
            raise ValueError("nothing to send")
        for _ in range(self.config.repeat):
            self.round += 1
            self._sendfile(size)
            self.infile.seek(0, os.SEEK_SET)

    def recv(self) -> None:
        """Copy received packets to the output until an error occurs."""
        while self.config.todo_recv:
            data = self.sock.recv(self.config.max_transfer)
            self.outfile.write(data)
            self.outfile.flush()


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    try:
        config = parse_args(argv)
    except ValueError as exc:
        sys.stderr.write(f"{exc}\n" if not str(exc).endswith("\n") else str(exc))
        return 1
    try:
        with J1939Cat(config) as cat:
            if config.todo_recv:
                cat.recv()
            else:
                cat.send()
    except (OSError, ValueError) as exc:
        _warn(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())