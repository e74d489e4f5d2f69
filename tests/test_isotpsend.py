import io

import pytest

from cantools_lite.isotpsend import BUFSIZE, fixed_pdu, main, read_hex_pdu


def test_fixed_pdu_start():
    assert fixed_pdu(3) == bytes([1, 2, 3])


def test_fixed_pdu_repeats_without_zero():
    pdu = fixed_pdu(600)
    assert len(pdu) == 600
    assert 0 not in pdu
    assert all(pdu[i] == pdu[i + 255] for i in range(len(pdu) - 255))


def test_fixed_pdu_largest():
    assert len(fixed_pdu(BUFSIZE - 1)) == BUFSIZE - 1


@pytest.mark.parametrize("length", [0, -1, BUFSIZE])
def test_fixed_pdu_bad_length(length):
    with pytest.raises(ValueError):
        fixed_pdu(length)


def test_read_hex_pdu():
    assert read_hex_pdu(io.StringIO("11 22 33\n")) == bytes([0x11, 0x22, 0x33])


def test_read_hex_pdu_stops_at_garbage():
    assert read_hex_pdu(io.StringIO("11 zz 33")) == bytes([0x11])


def test_read_hex_pdu_empty():
    assert read_hex_pdu(io.StringIO("")) == b""


def test_read_hex_pdu_limit():
    assert len(read_hex_pdu(io.StringIO("01 " * (BUFSIZE + 100)))) == BUFSIZE


def test_main_missing_arguments(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_missing_destination():
    assert main(["-s", "123", "can0"]) == 1


def test_main_bad_ext_addr(capsys):
    assert main(["-x", "zz", "-s", "1", "-d", "2", "can0"]) == 0
    assert "incorrect extended addr values 'zz'." in capsys.readouterr().out


def test_main_bad_length():
    assert main(["-D", "0", "-s", "1", "-d", "2", "can0"]) == 0


def test_main_help():
    assert main(["-?"]) == 0


def test_main_unknown_interface():
    assert main(["-D", "10", "-s", "123", "-d", "321", "nosuchif0"]) == 1