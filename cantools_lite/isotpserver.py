"""TCP/IP to ISO 15765-2 bridge speaking ASCII hex messages like <1122>."""

from __future__ import annotations

import errno
import getopt
import select
import socket
import sys
import threading
import time
from typing import List, Optional, Sequence

from .isotpopts import (
    FcOptions,
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

# PDUs greater than 4095 bytes are allowed according to ISO 15765-2:2015
MAX_PDU_LENGTH = 6000
_MAX_INDEX = MAX_PDU_LENGTH * 2 + 1
_TCP_CHUNK = 4096

USAGE = (
    "\nUsage: {prg} -l <port> -s <can_id> -d <can_id> [options] <CAN interface>\n"
    "Options:\n"
    "ip addressing:\n"
    "         -l <port>    * (local port for the server)\n"
    "\n"
    "isotp addressing:\n"
    "         -s <can_id>  * (source can_id. Use 8 digits for extended IDs)\n"
    "         -d <can_id>  * (destination can_id. Use 8 digits for extended IDs)\n"
    "         -x <addr>[:<rxaddr>]  (extended addressing / opt. separate rxaddr)\n"
    "         -L <mtu>:<tx_dl>:<tx_flags>  (link layer options for CAN FD)\n"
    "\n"
    "padding:\n"
    "         -p [tx]:[rx]  (set and enable tx/rx padding bytes)\n"
    "         -P <mode>     (check rx padding for (l)ength (c)ontent (a)ll)\n"
    "\n"
    "rx path:\n (config, which is sent to the sender / data source)\n"
    "         -b <bs>       (blocksize. 0 = off)\n"
    "         -m <val>      (STmin in ms/ns. See spec.)\n"
    "         -w <num>      (max. wait frame transmissions)\n"
    "\n"
    "tx path:\n (config, which changes local tx settings)\n"
    "         -t <time ns>  (transmit time in nanosecs)\n"
    "\n"
    "(* = mandatory option)\n"
    "\n"
    "All values except for '-l' and '-t' are expected in hexadecimal values.\n"
    "\n"
)


class TcpFrameDecoder:
    """Collects ``<hex>`` messages from a TCP byte stream.

    :meth:`feed` returns the complete messages (including the angle
    brackets) that have an even length and at least one data byte.
    """

    def __init__(self) -> None:
        self._buf: List[str] = []

    def feed(self, data: bytes) -> List[str]:
        """Consume ``data`` and return the messages completed by it."""
        messages: List[str] = []
        for ch in data.decode("latin-1"):
            if not self._buf:
                if ch == "<":
                    self._buf.append(ch)
                continue
            if len(self._buf) > _MAX_INDEX:
                self._buf.clear()
                continue
            self._buf.append(ch)
            if ch != ">":
                continue
            text = "".join(self._buf).split("\0", 1)[0]
            self._buf.clear()
            if len(text) < 4 or len(text) % 2:
                continue
            messages.append(text)
        return messages


def encode_pdu(pdu: bytes) -> bytes:
    """Wire form ``<HEX>\\n`` of a PDU; raises ValueError on a bad length."""
    if not 1 <= len(pdu) <= MAX_PDU_LENGTH:
        raise ValueError(f"PDU length {len(pdu)} out of range 1..{MAX_PDU_LENGTH}")
    return b"<" + pdu.hex().upper().encode("ascii") + b">\n"


def decode_hex(text: str) -> bytes:
    """Bytes for a string of two-character hex values; raises ValueError."""
    if len(text) % 2:
        raise ValueError(f"odd number of hex characters in {text!r}")
    result = bytearray()
    for pos in range(0, len(text), 2):
        value, end = _strtoul(text[pos:pos + 2], 16)
        if end == 0:
            raise ValueError(f"no hex value at position {pos} in {text!r}")
        result.append(value & 0xFF)
    return bytes(result)


def serve_client(client: socket.socket, can_sock: socket.socket, verbose: bool = False) -> None:
    """Bridge one TCP client and one ISO-TP socket until an error occurs.

    Raises ConnectionError when the client closes the connection and
    OSError on socket failures.
    """
    decoder = TcpFrameDecoder()
    while True:
        readable, _, _ = select.select([can_sock, client], [], [])

        if can_sock in readable:
            pdu = can_sock.recv(MAX_PDU_LENGTH + 1)
            if not 1 <= len(pdu) <= MAX_PDU_LENGTH:
                raise OSError(errno.EMSGSIZE, "read from isotp socket: bad PDU length")
            message = encode_pdu(pdu)
            if verbose:
                print(f"CAN>TCP {message.decode('ascii')}", end="", flush=True)
            client.sendall(message)

        if client in readable:
            data = client.recv(_TCP_CHUNK)
            if not data:
                raise ConnectionError("read from tcp/ip socket: connection closed")
            for text in decoder.feed(data):
                if verbose:
                    print(f"TCP>CAN {text}", flush=True)
                try:
                    pdu = decode_hex(text[1:-1])
                except ValueError:
                    continue
                can_sock.send(pdu)


def _usage(prg: str = "isotpserver") -> None:
    sys.stderr.write(USAGE.format(prg=prg))


def _handle_client(
    client: socket.socket,
    interface: str,
    tx_id: int,
    rx_id: int,
    opts: IsotpOptions,
    fcopts: FcOptions,
    llopts: LinkLayerOptions,
    verbose: bool,
) -> None:
    with client:
        try:
            can_sock = open_isotp_socket(interface, tx_id, rx_id, opts, fcopts, llopts)
        except OSError as exc:
            print(exc.strerror or exc, file=sys.stderr)
            return
        with can_sock:
            try:
                serve_client(client, can_sock, verbose)
            except OSError as exc:
                print(exc.strerror or exc, file=sys.stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    try:
        options, args = getopt.gnu_getopt(list(argv), "l:s:d:x:p:P:b:m:w:t:L:v?")
    except getopt.GetoptError as exc:
        print(f"isotpserver: {exc}", file=sys.stderr)
        _usage()
        return 0

    local_port = 0
    tx_id: Optional[int] = None
    rx_id: Optional[int] = None
    opts = IsotpOptions()
    fcopts = FcOptions()
    llopts = LinkLayerOptions()
    verbose = False

    for opt, val in options:
        try:
            if opt == "-l":
                local_port = _strtoul(val, 10)[0]
            elif opt == "-s":
                tx_id = parse_can_id(val)
            elif opt == "-d":
                rx_id = parse_can_id(val)
            elif opt == "-x":
                opts = parse_ext_addr(val, opts)
            elif opt == "-p":
                opts = parse_padding(val, opts)
            elif opt == "-P":
                opts = parse_pad_check(val, opts)
            elif opt == "-b":
                fcopts.bs = _strtoul(val, 16)[0] & 0xFF
            elif opt == "-m":
                fcopts.stmin = _strtoul(val, 16)[0] & 0xFF
            elif opt == "-w":
                fcopts.wftmax = _strtoul(val, 16)[0] & 0xFF
            elif opt == "-t":
                opts.frame_txtime = _strtoul(val, 10)[0] & 0xFFFFFFFF
            elif opt == "-L":
                llopts = parse_link_layer(val)
            elif opt == "-v":
                verbose = True
            else:
                _usage()
                return 0
        except ValueError as exc:
            print(exc)
            _usage()
            return 0

    if len(args) != 1 or local_port == 0 or tx_id is None or rx_id is None:
        _usage()
        return 1

    try:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    except OSError as exc:
        print(f"inetsocket: {exc.strerror}", file=sys.stderr)
        return 1

    with listener:
        try:
            while True:
                try:
                    listener.bind(("", local_port & 0xFFFF))
                    break
                except OSError:
                    print(".", end="", flush=True)
                    time.sleep(0.1)
            try:
                listener.listen(3)
            except OSError as exc:
                print(f"listen: {exc.strerror}", file=sys.stderr)
                return 1
            while True:
                try:
                    client, _ = listener.accept()
                except OSError as exc:
                    print(f"accept: {exc.strerror}", file=sys.stderr)
                    return 1
                threading.Thread(
                    target=_handle_client,
                    args=(client, args[0], tx_id, rx_id, opts, fcopts, llopts, verbose),
                    daemon=True,
                ).start()
        except KeyboardInterrupt:
            return 0


if __name__ == "__main__":
    sys.exit(main())