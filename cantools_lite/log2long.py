"""Convert compact CAN log lines into the user readable long form."""

from __future__ import annotations

import argparse
import sys
from typing import Iterable, Iterator, Optional, Sequence

from .canframe import View, parse_canframe, sprint_long_canframe

_VIEW = View.INDENT_SFF | View.ASCII


def convert_line(line: str) -> str:
    """Rewrite one ``(timestamp) device frame`` log line in long form."""
    fields = line.split()
    if len(fields) < 3:
        raise ValueError("incorrect line format")
    timestamp, device, ascframe = fields[:3]
    try:
        frame = parse_canframe(ascframe)
    except ValueError as exc:
        raise ValueError("read: incomplete CAN frame") from exc
    text = sprint_long_canframe(frame, _VIEW, frame.maxdlen)
    return f"{timestamp}  {device}  {text}"


def convert(lines: Iterable[str]) -> Iterator[str]:
    """Convert log lines one by one; stops with ValueError on a bad line."""
    for line in lines:
        yield convert_line(line)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="log2long",
        description="convert compact CAN frame logfile lines from stdin into user readable form",
    )
    parser.parse_args(argv)
    try:
        for out in convert(sys.stdin):
            print(out)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())