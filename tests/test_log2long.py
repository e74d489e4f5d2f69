import io
import sys

import pytest

from cantools_lite.canframe import View, parse_canframe, sprint_long_canframe
from cantools_lite.log2long import convert, convert_line, main


def test_convert_line_ascii_example():
    line = "(1345212884.318850) can0 14B0DC51#4A94E82AEC585562\n"
    assert convert_line(line) == (
        "(1345212884.318850)  can0  14B0DC51   [8]  4A 94 E8 2A EC 58 55 62   'J..*.XUb'"
    )


def test_convert_line_sff_is_indented():
    out = convert_line("(1345212884.318850) can0 123#R")
    assert out.split("  ", 2)[2] == "     123   [0]  remote request"


def test_convert_line_uses_long_form_of_frame():
    ascframe = "123##1112233"
    out = convert_line(f"(1345212884.318850) can0 {ascframe}")
    frame = parse_canframe(ascframe)
    assert out.endswith(sprint_long_canframe(frame, View.INDENT_SFF | View.ASCII))


def test_extra_fields_are_ignored():
    a = convert_line("(1345212884.318850) can0 123#11 T")
    b = convert_line("(1345212884.318850) can0 123#11")
    assert a == b


def test_too_few_fields():
    with pytest.raises(ValueError, match="format"):
        convert_line("(1345212884.318850) can0")


def test_bad_frame():
    with pytest.raises(ValueError, match="incomplete CAN frame"):
        convert_line("(1345212884.318850) can0 12#")


def test_convert_many():
    lines = ["(1.000000) can0 123#11", "(2.000000) can1 12345678#"]
    result = list(convert(lines))
    assert len(result) == 2
    assert result[1].startswith("(2.000000)  can1  12345678")


def test_main_failure(monkeypatch, capsys):
    monkeypatch.setattr(sys, "stdin", io.StringIO("(1.0) can0 123#11\nbroken\n"))
    assert main([]) == 1
    captured = capsys.readouterr()
    assert captured.out.count("\n") == 1
    assert "format" in captured.err