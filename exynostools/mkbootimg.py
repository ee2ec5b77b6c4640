"""Command that assembles an Android boot image."""

from __future__ import annotations

import re
import sys
from pathlib import Path

from .bootimg import (
    BOOT_ARGS_SIZE,
    BOOT_NAME_SIZE,
    DEFAULT_BASE,
    DEFAULT_KERNEL_OFFSET,
    DEFAULT_PAGESIZE,
    DEFAULT_RAMDISK_OFFSET,
    DEFAULT_SECOND_OFFSET,
    DEFAULT_TAGS_OFFSET,
    SUPPORTED_PAGESIZES,
    BootImageError,
    build_boot_image,
)
from .dtbh import DtbhError, load_dtbh_block

USAGE = (
    "usage: mkbootimg\n"
    "       --kernel <filename>\n"
    "       --ramdisk <filename>\n"
    "       [ --second <2ndbootloader-filename> ]\n"
    "       [ --cmdline <kernel-commandline> ]\n"
    "       [ --board <boardname> ]\n"
    "       [ --base <address> ]\n"
    "       [ --pagesize <pagesize> ]\n"
    "       [ --ramdisk_offset <address> ]\n"
    "       [ --dt_dir <dtb path> ]\n"
    "       [ --dt <filename> ]\n"
    "       [ --signature <filename> ]\n"
    "       -o|--output <filename>\n"
)

_ADDRESS_OPTIONS = {
    "--base": "base",
    "--kernel_offset": "kernel_offset",
    "--ramdisk_offset": "ramdisk_offset",
    "--second_offset": "second_offset",
    "--tags_offset": "tags_offset",
}
_FILE_OPTIONS = {
    "--output": "output",
    "-o": "output",
    "--kernel": "kernel",
    "--ramdisk": "ramdisk",
    "--second": "second",
    "--dt_dir": "dt_dir",
    "--dt": "dt",
    "--signature": "signature",
}


def _usage() -> int:
    sys.stderr.write(USAGE)
    return 1


def _error(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)


def _strtoul(text: str, base: int) -> int:
    if base == 16:
        pattern = r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)"
    else:
        pattern = r"\s*([+-]?)([0-9]+)"
    match = re.match(pattern, text)
    if not match:
        return 0
    value = int(match.group(2), base)
    if match.group(1) == "-":
        value = -value
    return value & 0xFFFFFFFF


def _load(path: str) -> bytes | None:
    try:
        return Path(path).read_bytes()
    except OSError:
        return None


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    files: dict[str, str] = {}
    addresses = {
        "base": DEFAULT_BASE,
        "kernel_offset": DEFAULT_KERNEL_OFFSET,
        "ramdisk_offset": DEFAULT_RAMDISK_OFFSET,
        "second_offset": DEFAULT_SECOND_OFFSET,
        "tags_offset": DEFAULT_TAGS_OFFSET,
    }
    cmdline = ""
    board = ""
    pagesize = DEFAULT_PAGESIZE

    while args:
        if len(args) < 2:
            return _usage()
        arg, val = args[0], args[1]
        del args[:2]
        if arg in _FILE_OPTIONS:
            files[_FILE_OPTIONS[arg]] = val
        elif arg in _ADDRESS_OPTIONS:
            addresses[_ADDRESS_OPTIONS[arg]] = _strtoul(val, 16)
        elif arg == "--cmdline":
            cmdline = val
        elif arg == "--board":
            board = val
        elif arg == "--pagesize":
            pagesize = _strtoul(val, 10)
            if pagesize not in SUPPORTED_PAGESIZES:
                _error(f"unsupported page size {pagesize}")
                return -1
        else:
            return _usage()

    if "dt_dir" in files and "dt" in files:
        _error("don't use both --dt_dir and --dt option")
        return _usage()
    output = files.get("output")
    if output is None:
        _error("no output filename specified")
        return _usage()
    if "kernel" not in files:
        _error("no kernel image specified")
        return _usage()
    if "ramdisk" not in files:
        _error("no ramdisk image specified")
        return _usage()
    if len(board.encode()) >= BOOT_NAME_SIZE:
        _error("board name too large")
        return _usage()
    if len(cmdline.encode()) > BOOT_ARGS_SIZE - 1:
        _error("kernel commandline too large")
        return 1

    kernel = _load(files["kernel"])
    if kernel is None:
        _error(f"could not load kernel '{files['kernel']}'")
        return 1

    ramdisk = b""
    if files["ramdisk"] != "NONE":
        ramdisk = _load(files["ramdisk"])
        if ramdisk is None:
            _error(f"could not load ramdisk '{files['ramdisk']}'")
            return 1

    second = None
    if "second" in files:
        second = _load(files["second"])
        if second is None:
            _error(f"could not load secondstage '{files['second']}'")
            return 1

    dt = None
    if "dt_dir" in files:
        try:
            dt = load_dtbh_block(files["dt_dir"], pagesize)
        except (DtbhError, ValueError) as exc:
            _error(str(exc))
            _error(f"could not load device tree blobs '{files['dt_dir']}'")
            return 1
    if "dt" in files:
        dt = _load(files["dt"])
        if dt is None:
            _error(f"could not load device tree image '{files['dt']}'")
            return 1

    signature = None
    if "signature" in files:
        signature = _load(files["signature"])
        if signature is None:
            _error(f"could not load signature '{files['signature']}'")
            return 1

    try:
        image = build_boot_image(
            kernel, ramdisk, second, dt, signature,
            cmdline=cmdline, board=board, pagesize=pagesize, **addresses,
        )
    except BootImageError as exc:
        _error(str(exc))
        return 1

    try:
        handle = open(output, "wb")
    except OSError:
        _error(f"could not create '{output}'")
        return 1
    try:
        with handle:
            handle.write(image)
    except OSError as exc:
        Path(output).unlink(missing_ok=True)
        _error(f"failed writing '{output}': {exc.strerror or exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())