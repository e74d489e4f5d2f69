import errno
import io
import socket
import struct

import pytest

from cantools_lite.j1939addr import J1939_NO_ADDR, J1939_NO_PGN
from cantools_lite.j1939cat import (
    J1939_MAX_ETP_PACKET_SIZE,
    SCM_TSTAMP_ACK,
    SCM_TSTAMP_SCHED,
    SCM_TSTAMP_SND,
    J1939Cat,
    J1939CatConfig,
    parse_args,
    parse_opt_stats,
    tstype_to_str,
)


class FakeSocket:
    def __init__(self, chunk=None, incoming=()):
        self.sent = []
        self.chunk = chunk
        self.incoming = list(incoming)

    def send(self, data, flags=0):
        self.sent.append(bytes(data))
        if self.chunk is None:
            return len(data)
        return min(len(data), self.chunk)

    def recv(self, size):
        if not self.incoming:
            raise OSError(errno.EIO, "gone")
        return self.incoming.pop(0)

    def close(self):
        pass


def test_defaults():
    cfg = parse_args([])
    assert cfg.max_transfer == J1939_MAX_ETP_PACKET_SIZE == 117440505
    assert cfg.repeat == 1
    assert cfg.todo_prio == -1
    assert cfg.polltimeout == 100000
    assert cfg.valid_peername is False
    assert cfg.sockname.addr == J1939_NO_ADDR
    assert cfg.sockname.pgn == J1939_NO_PGN


def test_addresses_and_flags():
    cfg = parse_args(["-B", "-R", "3", "-s", "100", ":0x80", ":0x90,0x12300"])
    assert cfg.todo_broadcast is True
    assert cfg.repeat == 3
    assert cfg.max_transfer == 100
    assert cfg.sockname.addr == 0x80
    assert cfg.peername.addr == 0x90
    assert cfg.peername.pgn == 0x12300
    assert cfg.valid_peername is True


def test_options_after_operands():
    cfg = parse_args([":0x90", "-r"])
    assert cfg.todo_recv is True
    assert cfg.sockname.addr == 0x90


def test_dash_keeps_default_address():
    cfg = parse_args(["-", "-"])
    assert cfg.sockname.addr == J1939_NO_ADDR
    assert cfg.valid_peername is False


@pytest.mark.parametrize(
    "argv",
    [["-h"], ["-?"], ["-v"], ["-x"], ["-R", "0"], ["-s", str(J1939_MAX_ETP_PACKET_SIZE + 1)]],
)
def test_bad_arguments(argv):
    with pytest.raises(ValueError):
        parse_args(argv)


def test_tstype_labels():
    assert tstype_to_str(SCM_TSTAMP_SCHED) == "  ENQ"
    assert tstype_to_str(SCM_TSTAMP_SND) == "  SND"
    assert tstype_to_str(SCM_TSTAMP_ACK) == "  ACK"
    assert tstype_to_str(99) == "  unk"


def test_opt_stats_bytes_acked():
    data = struct.pack("=HHI", 8, 1, 1234)
    assert parse_opt_stats(data) == 1234


def test_opt_stats_last_value_wins_and_unknown_ignored():
    data = struct.pack("=HHI", 8, 1, 10) + struct.pack("=HHI", 8, 5, 7) + struct.pack("=HHI", 8, 1, 20)
    assert parse_opt_stats(data) == 20
    assert parse_opt_stats(b"") is None


def test_opt_stats_bad_length():
    with pytest.raises(ValueError):
        parse_opt_stats(struct.pack("=HH", 0, 1))


def test_send_without_poll_ends_with_empty_send():
    fake = FakeSocket()
    cat = J1939Cat(J1939CatConfig(polltimeout=0), sock=fake, infile=io.BytesIO(b"hello"),
                   outfile=io.BytesIO())
    with pytest.raises(OSError) as info:
        cat.send()
    assert info.value.errno == errno.EINVAL
    assert fake.sent == [b"hello", b""]


def test_send_splits_into_max_transfer_chunks():
    fake = FakeSocket()
    cat = J1939Cat(J1939CatConfig(polltimeout=0, max_transfer=2), sock=fake,
                   infile=io.BytesIO(b"hello"), outfile=io.BytesIO())
    with pytest.raises(OSError):
        cat.send()
    assert fake.sent[0] == b"he"


def test_send_continues_after_partial_send():
    fake = FakeSocket(chunk=3)
    cat = J1939Cat(J1939CatConfig(polltimeout=0), sock=fake, infile=io.BytesIO(b"hello"),
                   outfile=io.BytesIO())
    with pytest.raises(OSError):
        cat.send()
    assert fake.sent == [b"hello", b"lo", b""]


def test_send_empty_file():
    cat = J1939Cat(J1939CatConfig(), sock=FakeSocket(), infile=io.BytesIO(b""), outfile=io.BytesIO())
    with pytest.raises(ValueError):
        cat.send()


def test_send_with_poll_times_out_waiting_for_ack():
    a, b = socket.socketpair(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        cat = J1939Cat(J1939CatConfig(polltimeout=50), sock=a, infile=io.BytesIO(b"payload"),
                       outfile=io.BytesIO())
        with pytest.raises(OSError) as info:
            cat.send()
        assert info.value.errno == errno.ETIME
        assert b.recv(100) == b"payload"
    finally:
        a.close()
        b.close()


def test_recv_copies_until_error():
    fake = FakeSocket(incoming=[b"abc", b"def"])
    out = io.BytesIO()
    cat = J1939Cat(J1939CatConfig(todo_recv=True), sock=fake, infile=io.BytesIO(), outfile=out)
    with pytest.raises(OSError):
        cat.recv()
    assert out.getvalue() == b"abcdef"


def test_missing_input_file(tmp_path):
    cfg = J1939CatConfig(infile=str(tmp_path / "absent"))
    with pytest.raises(OSError) as info:
        J1939Cat(cfg, sock=FakeSocket(), outfile=io.BytesIO())
    assert info.value.errno == errno.ENOENT