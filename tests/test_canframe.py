import io

import pytest

from cantools_lite.canframe import (
    CAN_EFF_FLAG,
    CAN_ERR_FLAG,
    CAN_MTU,
    CANFD_MTU,
    CAN_RTR_FLAG,
    CanFrame,
    View,
    asc2nibble,
    can_fd_dlc2len,
    can_fd_len2dlc,
    fprint_canframe,
    hexstring2data,
    parse_canframe,
    sprint_canframe,
    sprint_long_canframe,
)


def test_dlc_table_values():
    assert [can_fd_dlc2len(d) for d in range(16)] == [
        0, 1, 2, 3, 4, 5, 6, 7, 8, 12, 16, 20, 24, 32, 48, 64,
    ]


@pytest.mark.parametrize("dlc", range(16))
def test_dlc_round_trip(dlc):
    assert can_fd_len2dlc(can_fd_dlc2len(dlc)) == dlc


@pytest.mark.parametrize("length", range(65))
def test_len2dlc_covers_length(length):
    assert can_fd_dlc2len(can_fd_len2dlc(length)) >= length


def test_len2dlc_above_max():
    assert can_fd_len2dlc(200) == 0xF


def test_asc2nibble():
    assert asc2nibble("a") == 10
    assert asc2nibble("F") == 15
    assert asc2nibble("7") == 7
    with pytest.raises(ValueError):
        asc2nibble("g")


def test_hexstring2data_examples():
    assert hexstring2data("1234", 8) == bytes([0x12, 0x34]) + bytes(6)
    assert hexstring2data("001234", 3) == bytes([0x00, 0x12, 0x34])


@pytest.mark.parametrize("text", ["", "123", "1234567890", "zz"])
def test_hexstring2data_errors(text):
    with pytest.raises(ValueError):
        hexstring2data(text, 4)


def test_parse_standard():
    frame = parse_canframe("123#")
    assert frame.can_id == 0x123
    assert frame.length == 0
    assert frame.mtu == CAN_MTU


def test_parse_extended():
    frame = parse_canframe("12345678#")
    assert frame.can_id == 0x12345678 | CAN_EFF_FLAG
    assert frame.length == 0


@pytest.mark.parametrize(
    "text,length,dlc",
    [("123#R", 0, 0), ("123#R0", 0, 0), ("123#R7", 7, 0), ("123#R8_9", 8, 9)],
)
def test_parse_rtr(text, length, dlc):
    frame = parse_canframe(text)
    assert frame.can_id == 0x123 | CAN_RTR_FLAG
    assert frame.length == length
    assert frame.len8_dlc == dlc


def test_parse_lowercase_rtr():
    frame = parse_canframe("7A1#r")
    assert frame.can_id == 0x7A1 | CAN_RTR_FLAG


def test_parse_data_variants():
    expected = bytes([0x11, 0x22, 0x33, 0x44, 0x55, 0x66, 0x77, 0x88])
    for text in ("123#1122334455667788", "123#11.22.33.44.55.66.77.88", "123#11.2233.44556677.88"):
        frame = parse_canframe(text)
        assert frame.data == expected
        assert frame.length == 8
        assert frame.len8_dlc == 0


def test_parse_single_zero_byte():
    frame = parse_canframe("123#00")
    assert frame.data == b"\x00"
    assert frame.length == 1


def test_parse_raw_dlc():
    frame = parse_canframe("123#1122334455667788_E")
    assert frame.len8_dlc == 14


def test_parse_error_frame():
    frame = parse_canframe("32345678#112233")
    assert frame.can_id & CAN_ERR_FLAG
    assert not frame.can_id & CAN_EFF_FLAG
    assert frame.data == bytes([0x11, 0x22, 0x33])


@pytest.mark.parametrize("text,flags,length", [
    ("123##0112233", 0, 3), ("123##1112233", 1, 3), ("123##2112233", 2, 3), ("123##3", 3, 0),
])
def test_parse_fd(text, flags, length):
    frame = parse_canframe(text)
    assert frame.is_fd
    assert frame.mtu == CANFD_MTU
    assert frame.flags == flags
    assert frame.length == length


@pytest.mark.parametrize("text", ["12#", "1234#11", "123#1", "123#1G", "123##G11", "G23#11"])
def test_parse_errors(text):
    with pytest.raises(ValueError):
        parse_canframe(text)


@pytest.mark.parametrize("text", [
    "12345678#112233",
    "123#1122334455667788_E",
    "12345678#R",
    "12345678#R5",
    "32345678#112233",
    "123##0112233",
    "123##2112233",
])
def test_compact_round_trip(text):
    assert sprint_canframe(parse_canframe(text)) == text


def test_compact_separator():
    frame = parse_canframe("123#1122334455667788")
    assert sprint_canframe(frame, sep=True) == "123#11.22.33.44.55.66.77.88"


def test_compact_fd_separator_round_trip():
    frame = parse_canframe("123##1112233")
    text = sprint_canframe(frame, sep=True)
    assert parse_canframe(text) == frame


def test_frame_round_trip_from_object():
    frame = CanFrame(can_id=0x1ABCDEF0 | CAN_EFF_FLAG, data=bytes(range(5)))
    assert parse_canframe(sprint_canframe(frame)) == frame


def test_fprint_canframe():
    out = io.StringIO()
    frame = parse_canframe("12345678#112233")
    fprint_canframe(out, frame, "\n")
    fprint_canframe(out, frame)
    assert out.getvalue() == "12345678#112233\n12345678#112233"


def test_long_extended():
    frame = parse_canframe("12345678#112233")
    assert sprint_long_canframe(frame) == "12345678   [3]  11 22 33"


def test_long_remote_request():
    frame = parse_canframe("12345678#R")
    assert sprint_long_canframe(frame) == "12345678   [0]  remote request"


def test_long_ascii():
    frame = parse_canframe("14B0DC51#4A94E82AEC585562")
    assert sprint_long_canframe(frame, View.ASCII) == (
        "14B0DC51   [8]  4A 94 E8 2A EC 58 55 62   'J..*.XUb'"
    )


def test_long_len8_dlc():
    frame = parse_canframe("321#1122334455667788_B")
    assert sprint_long_canframe(frame, View.LEN8_DLC) == "321   {B}  11 22 33 44 55 66 77 88"


def test_long_error_frame():
    frame = parse_canframe("20001111#C6237B3269983C")
    assert sprint_long_canframe(frame) == "20001111   [7]  C6 23 7B 32 69 98 3C      ERRORFRAME"


def test_long_fd():
    frame = parse_canframe("12345678##0112233")
    assert sprint_long_canframe(frame) == "12345678  [03]  11 22 33"


def test_long_indent():
    frame = parse_canframe("123#112233")
    plain = sprint_long_canframe(frame)
    indented = sprint_long_canframe(frame, View.INDENT_SFF)
    assert plain == "123   [3]  11 22 33"
    assert indented == "     123   [3]  11 22 33"


def test_long_binary_bits_match_data():
    frame = CanFrame(can_id=0x123, data=bytes([0x11, 0xA5, 0xFF]))
    tokens = sprint_long_canframe(frame, View.BINARY).split()
    assert [int(tok, 2) for tok in tokens[-3:]] == list(frame.data)
    assert all(len(tok) == 8 for tok in tokens[-3:])


def test_long_swap_reverses_bytes():
    frame = CanFrame(can_id=0x123, data=bytes([0x11, 0x22, 0x33]))
    tail = sprint_long_canframe(frame, View.SWAP).split()[-1]
    assert [int(cell, 16) for cell in tail.split("`")] == list(reversed(frame.data))


def test_long_swap_ascii_is_reversed():
    frame = CanFrame(can_id=0x123, data=b"AB")
    text = sprint_long_canframe(frame, View.SWAP | View.ASCII)
    assert text.endswith("`BA`")