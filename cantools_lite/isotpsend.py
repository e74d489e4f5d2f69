"""Send one ISO 15765-2 PDU read as hex bytes from stdin."""

from __future__ import annotations

import getopt
import sys
from typing import Optional, Sequence, TextIO

from .isotpopts import (
    NO_CAN_ID,
    IsotpFlag,
    IsotpOptions,
    LinkLayerOptions,
    open_isotp_socket,
    parse_can_id,
    parse_ext_addr,
    parse_link_layer,
    parse_pad_check,
    parse_padding,
)
from .j1939addr import _strtoul

BUFSIZE = 5000

USAGE = (
    "\nUsage: {prg} [options] <CAN interface>\n"
    "Options:\n"
    "         -s <can_id>  (source can_id. Use 8 digits for extended IDs)\n"
    "         -d <can_id>  (destination can_id. Use 8 digits for extended IDs)\n"
    "         -x <addr>[:<rxaddr>]  (extended addressing / opt. separate rxaddr)\n"
    "         -p [tx]:[rx]  (set and enable tx/rx padding bytes)\n"
    "         -P <mode>     (check rx padding for (l)ength (c)ontent (a)ll)\n"
    "         -t <time ns>  (frame transmit time (N_As) in nanosecs)\n"
    "         -f <time ns>  (ignore FC and force local tx stmin value in nanosecs)\n"
    "         -D <len>      (send a fixed PDU with len bytes - no STDIN data)\n"
    "         -b            (block until the PDU transmission is completed)\n"
    "         -S            (SF broadcast mode for functional addressing)\n"
    "         -L <mtu>:<tx_dl>:<tx_flags>  (link layer options for CAN FD)\n"
    "\nCAN IDs and addresses are given and expected in hexadecimal values.\n"
    "The pdu data is expected on STDIN in space separated ASCII hex values.\n"
    "\n"
)


def fixed_pdu(length: int) -> bytes:
    """Test PDU of ``length`` bytes counting 1..255 repeatedly."""
    if length <= 0 or length >= BUFSIZE:
        raise ValueError(f"PDU length must be between 1 and {BUFSIZE - 1}")
    return bytes((i % 0xFF) + 1 for i in range(length))


def read_hex_pdu(stream: TextIO) -> bytes:
    """Read whitespace separated hex bytes up to the first non-hex item."""
    text = stream.read()
    values = bytearray()
    pos = 0
    while len(values) < BUFSIZE:
        value, end = _strtoul(text[pos:], 16)
        if end == 0:
            break
        values.append(value & 0xFF)
        pos += end
    return bytes(values)


def _usage(prg: str = "isotpsend") -> None:
    sys.stderr.write(USAGE.format(prg=prg))


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    try:
        options, args = getopt.gnu_getopt(list(argv), "s:d:x:p:P:t:f:D:bSL:?")
    except getopt.GetoptError as exc:
        print(f"isotpsend: {exc}", file=sys.stderr)
        _usage()
        return 0

    tx_id: Optional[int] = None
    rx_id: Optional[int] = None
    opts = IsotpOptions()
    llopts = LinkLayerOptions()
    force_tx_stmin = 0
    datalen = 0

    for opt, val in options:
        try:
            if opt == "-s":
                tx_id = parse_can_id(val)
            elif opt == "-d":
                rx_id = parse_can_id(val)
            elif opt == "-x":
                opts = parse_ext_addr(val, opts)
            elif opt == "-p":
                opts = parse_padding(val, opts)
            elif opt == "-P":
                opts = parse_pad_check(val, opts)
            elif opt == "-t":
                opts.frame_txtime = _strtoul(val, 10)[0] & 0xFFFFFFFF
            elif opt == "-f":
                opts.flags |= IsotpFlag.FORCE_TXSTMIN
                force_tx_stmin = _strtoul(val, 10)[0] & 0xFFFFFFFF
            elif opt == "-D":
                datalen = _strtoul(val, 10)[0]
                if datalen <= 0 or datalen >= BUFSIZE:
                    _usage()
                    return 0
            elif opt == "-b":
                opts.flags |= IsotpFlag.WAIT_TX_DONE
            elif opt == "-S":
                opts.flags |= IsotpFlag.SF_BROADCAST
            elif opt == "-L":
                llopts = parse_link_layer(val)
            else:
                _usage()
                return 0
        except ValueError as exc:
            print(exc)
            _usage()
            return 0

    if (
        len(args) != 1
        or tx_id is None
        or (rx_id is None and not opts.flags & IsotpFlag.SF_BROADCAST)
    ):
        _usage()
        return 1

    try:
        sock = open_isotp_socket(
            args[0],
            tx_id,
            NO_CAN_ID if rx_id is None else rx_id,
            opts,
            None,
            llopts,
            force_tx_stmin,
        )
    except OSError as exc:
        print(exc.strerror or exc, file=sys.stderr)
        return 1

    with sock:
        pdu = fixed_pdu(datalen) if datalen else read_hex_pdu(sys.stdin)
        try:
            sent = sock.send(pdu)
        except OSError as exc:
            print(f"write: {exc.strerror}", file=sys.stderr)
            return 1
        if sent != len(pdu):
            print(f"wrote only {sent} from {len(pdu)} byte", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())