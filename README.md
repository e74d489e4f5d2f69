# cantools_lite

Tools for working with CAN bus traffic on Linux SocketCAN, written in plain
Python with no third-party dependencies.

The package has two halves:

* **Text formats and log converters** that work anywhere: parsing and printing
  the compact `<can_id>#<data>` frame notation used in candump-style log
  files, a human-readable "long" frame view, and conversion of log files into
  the ASC format read by common bus analysis tools.
* **ISO-TP (ISO 15765-2) and SAE J1939 command line tools** that talk to a
  CAN interface through the kernel's `CAN_ISOTP` and `CAN_J1939` sockets.
  These need Linux with the matching kernel modules loaded.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Compact frame notation

| Text                       | Meaning                                            |
|----------------------------|----------------------------------------------------|
| `123#`                     | standard id 0x123, no data                         |
| `12345678#112233`          | extended id 0x12345678, three data bytes           |
| `123#R` / `123#R7`         | remote request, length 0 / 7                       |
| `123#11.22.33.44`          | data bytes may be separated by `.`                 |
| `123#1122334455667788_E`   | classic CAN, 8 bytes, raw DLC 14                   |
| `123##1112233`             | CAN FD frame, flags 1 (BRS), three data bytes      |
| `32345678#112233`          | error frame (error flag 0x20000000 set)            |

In Python, `cantools_lite.canframe` provides `parse_canframe`,
`sprint_canframe`, `fprint_canframe` and `sprint_long_canframe` around the
`CanFrame` class, the `View` flags for the long format, and the helpers
`can_fd_dlc2len`, `can_fd_len2dlc`, `asc2nibble` and `hexstring2data`.
`parse_canframe` and `hexstring2data` raise `ValueError` on malformed input.

## Commands

### Log file converters

Turn a compact log into the readable long view (reads stdin, writes stdout):

```
log2long < candump-2024-01-01.log
```

Convert a compact log to ASC, mapping the listed interfaces to channels 1, 2, …:

```
log2asc -I candump.log -O trace.asc can0 can1
```

Options: `-4` four decimal places in timestamps, `-n` CR/LF line ends,
`-f` CAN FD record layout for classic frames as well, `-r` no DLC on remote
request frames.

### ISO-TP

```
echo "11 22 33 44 55 66 77 88 99" | isotpsend -s 123 -d 321 can0
isotpsend -s 123 -d 321 -D 100 can0         # fixed 100-byte PDU
isotpsniffer -s 123 -d 321 -c -t d can0
isotpserver -l 3000 -s 123 -d 321 can0
```

CAN ids and addresses are hexadecimal; give 8 digits for an extended id.
`isotpserver` bridges TCP clients to the bus: each PDU is exchanged as
`<` hex bytes `>`, for example `<1122334455667788>`.

### SAE J1939

```
j1939acd -r 0x80-0x90 -c /tmp/node.jacd 1122334455667788 can0
j1939sr can0:80 90 < payload.bin
j1939cat -i payload.bin can0:0x80 :0x90,0x12300
j1939cat -r can0:0x90 > received.bin
```

`j1939sr` takes addresses written `[IFACE:][NAME|SA][,PGN]` in hexadecimal; a
two-digit value is a source address, a longer one a 64-bit NAME. `j1939cat`
takes `[IFACE][:[SA][,[PGN][,NAME]]]`, with numbers in C notation (`0x` for
hex). The parsing and printing of these addresses is available in Python
through `cantools_lite.j1939addr` (`J1939Addr`, `str2addr`, `addr2str`,
`parse_canaddr`).

`j1939acd` claims and defends a source address for a NAME within the allowed
ranges and stores the address it ended up with in the cache file; send it
`SIGUSR1` to print its view of the address table.

## What this package does not do

* There is no passive J1939 traffic monitor; the J1939 tools here claim
  addresses or send and receive on addresses you give them.
* Error frames are recognised and marked `ERRORFRAME` in the long view, but
  their error classes, controller problems and protocol violations are not
  decoded into readable text; the `View.ERROR` flag has no effect on output.