"""Command that builds a DTBH image from a directory of device tree blobs."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from .dtbh import DtbhError, load_dtbh_block

DEFAULT_PAGESIZE = 2048

USAGE = (
    "usage: mkdtimg\n"
    "       --dt_dir <dtb path>\n"
    "       -o|--output <filename>\n"
)


def _usage() -> int:
    sys.stderr.write(USAGE)
    return 1


def _parse_int(text: str | None) -> int:
    match = re.match(r"\s*([+-]?\d+)", text or "")
    return int(match.group(1)) if match else 0


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    output = None
    dt_dir = None
    pagesize = DEFAULT_PAGESIZE

    while args:
        arg = args[0]
        val = args[1] if len(args) > 1 else None
        del args[:2]
        if arg in ("--output", "-o"):
            output = val
        elif arg == "--dt_dir":
            dt_dir = val
        elif arg == "-p":
            pass  # accepted for call compatibility, ignored
        elif arg == "-s":
            pagesize = _parse_int(val) or DEFAULT_PAGESIZE
        elif os.path.isdir(arg):
            dt_dir = arg
        else:
            return _usage()

    if output is None:
        print("error: no output filename specified", file=sys.stderr)
        return _usage()
    if dt_dir is None:
        print("error: no dtb path specified", file=sys.stderr)
        return _usage()

    try:
        data = load_dtbh_block(dt_dir, pagesize)
    except (DtbhError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        print(f"error: could not load device tree blobs '{dt_dir}'", file=sys.stderr)
        return 1

    try:
        handle = open(output, "wb")
    except OSError:
        print(f"error: could not create '{output}'", file=sys.stderr)
        return 1
    try:
        with handle:
            handle.write(data)
    except OSError as exc:
        Path(output).unlink(missing_ok=True)
        print(f"error: failed writing '{output}': {exc.strerror or exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())