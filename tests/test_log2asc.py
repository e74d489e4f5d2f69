import pytest

from cantools_lite.canframe import CAN_MTU, CANFD_MTU, parse_canframe
from cantools_lite.log2asc import can_asc, canfd_asc, convert, main


def test_can_asc_data_frame_tokens():
    text = can_asc(parse_canframe("123#1122"), 1)
    assert text.split() == ["1", "123", "Rx", "d", "2", "11", "22"]
    assert text.startswith("1  123")


def test_can_asc_extended_id_and_tx():
    text = can_asc(parse_canframe("12345678#AA"), 2, False, "T")
    assert text.split()[:3] == ["2", "12345678x", "Tx"]


def test_can_asc_rtr():
    frame = parse_canframe("123#R7")
    assert can_asc(frame, 1).split()[-2:] == ["r", "7"]
    assert can_asc(frame, 1, nortrdlc=True).endswith("r")


def test_can_asc_error_frame():
    assert can_asc(parse_canframe("20000004#0011"), 1).endswith("ErrorFrame")


def test_canfd_asc_fd_frame():
    text = canfd_asc(parse_canframe("123##1112233"), 1, CANFD_MTU)
    tokens = text.split()
    assert tokens[:3] == ["CANFD", "1", "Rx"]
    assert tokens[3:8] == ["123", "1", "0", "3", "3"]
    assert tokens[8:11] == ["11", "22", "33"]
    assert tokens[11:14] == ["130000", "130", "3000"]
    assert text.endswith(" 0 0 0 0 0")


def test_canfd_asc_classic_raw_dlc():
    frame = parse_canframe("123#1122334455667788_E")
    tokens = canfd_asc(frame, 1, CAN_MTU).split()
    assert tokens[6] == "e"
    assert tokens[7] == "8"


def test_canfd_asc_classic_rtr_has_no_data():
    tokens = canfd_asc(parse_canframe("123#R2"), 1, CAN_MTU).split()
    assert tokens[6:8] == ["2", "0"]
    assert tokens[10] == "10"


LOG = [
    "(1000.000000) can0 123#11\n",
    "(1000.500000) can1 456#22\n",
    "(1001.250000) can0 456#R\n",
]


def test_convert_banner_and_lines():
    out = list(convert(LOG, ["can0"]))
    assert out[0].startswith("date ")
    assert "base hex  timestamps absolute\nno internal events logged\n" in out[0]
    assert out[1] == "   0.000000 " + can_asc(parse_canframe("123#11"), 1) + "\n"
    assert out[2] == "   1.250000 " + can_asc(parse_canframe("456#R"), 1) + "\n"
    assert len(out) == 3


def test_convert_channel_numbers():
    out = list(convert(LOG, ["can0", "can1"]))
    assert out[2].split()[1] == "2"


def test_convert_four_digits():
    out = list(convert(LOG, ["can1"], d4=True))
    assert out[1].startswith("   0.5000 ")


def test_convert_crlf():
    out = list(convert(LOG, ["can0"], crlf=True))
    assert out[0].endswith("no internal events logged\r\n")
    assert out[1].endswith("\r\n")


def test_convert_fd_format():
    out = list(convert(LOG[:1], ["can0"], fdfmt=True))
    assert out[1].split()[1] == "CANFD"


def test_convert_skips_comments_and_fd_error_frames():
    lines = ["# comment\n", "(5.000000) can0 20000004##0\n", "(5.100000) can0 123#\n"]
    out = list(convert(lines, ["can0"]))
    assert len(out) == 2
    assert out[1].startswith("   0.100000 ")


def test_convert_bad_frame_raises():
    with pytest.raises(ValueError):
        list(convert(["(1.000000) can0 12#\n"], ["can0"]))


def test_convert_bad_line_format_raises():
    with pytest.raises(ValueError):
        list(convert(["(garbage\n"], ["can0"]))


def test_convert_long_line_raises():
    with pytest.raises(ValueError):
        list(convert(["(" + "1" * 500 + "\n"], ["can0"]))


def test_convert_needs_devices():
    with pytest.raises(ValueError):
        list(convert(LOG, []))


def test_main_files(tmp_path):
    src = tmp_path / "in.log"
    dst = tmp_path / "out.asc"
    src.write_text("".join(LOG))
    assert main(["-I", str(src), "-O", str(dst), "-n", "can0"]) == 0
    text = dst.read_bytes().decode()
    assert text.count("\r\n") == 4
    assert text.splitlines()[-1] == "   1.250000 " + can_asc(parse_canframe("456#R"), 1)


def test_main_without_devices():
    assert main([]) == 1


def test_main_bad_frame(tmp_path):
    src = tmp_path / "in.log"
    src.write_text("(1.000000) can0 xyz#\n")
    assert main(["-I", str(src), "-O", str(tmp_path / "o.asc"), "can0"]) == 1