"""Command that splits an Android boot image into its parts."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from .bootimg import (
    HEADER_SIZE,
    SIGNATURE_SIZE,
    BootImageError,
    BootImgHeader,
    find_magic,
    padding_size,
)

_KERNEL_OFFSET = 0x00008000
_U32 = 0xFFFFFFFF
_LZ4_PREFIX = b"\x02\x21"


def _usage() -> int:
    print("usage: unpackbootimg")
    print("\t-i|--input boot.img")
    print("\t[ -o|--output output_directory]")
    print("\t[ -p|--pagesize <size-in-hexadecimal> ]")
    return 0


def _strtoul_hex(text: str) -> int:
    match = re.match(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)", text)
    if not match:
        return 0
    value = int(match.group(2), 16)
    return (-value if match.group(1) == "-" else value) & _U32


def _board_values(header: BootImgHeader) -> dict[str, str]:
    def relative(addr: int) -> str:
        return f"{(addr - header.kernel_addr + _KERNEL_OFFSET) & _U32:08x}"

    return {
        "base": f"{(header.kernel_addr - _KERNEL_OFFSET) & _U32:08x}",
        "ramdisk_offset": relative(header.ramdisk_addr),
        "second_offset": relative(header.second_addr),
        "tags_offset": relative(header.tags_addr),
        "pagesize": str(header.page_size),
    }


def unpack_boot_image(filename, directory="./", pagesize: int = 0) -> tuple[int, BootImgHeader]:
    """Write the parts of a boot image into ``directory``.

    Returns the offset of the boot magic and the parsed header.
    """
    data = Path(filename).read_bytes()
    offset = find_magic(data)
    header = BootImgHeader.unpack(data[offset:])
    if pagesize == 0:
        pagesize = header.page_size
    if pagesize <= 0:
        raise BootImageError(f"invalid page size {pagesize}")

    prefix = f"{directory}/{os.path.basename(filename)}"

    def write(suffix: str, content: bytes) -> None:
        Path(prefix + suffix).write_bytes(content)

    write("-cmdline", header.cmdline + b"\n")
    for name, value in _board_values(header).items():
        write(f"-{name}", value.encode() + b"\n")

    pos = offset + HEADER_SIZE + padding_size(pagesize, HEADER_SIZE)

    def take(size: int) -> bytes:
        nonlocal pos
        chunk = data[pos:pos + size]
        pos += size + padding_size(pagesize, size)
        return chunk

    write("-zImage", take(header.kernel_size))
    ramdisk = take(header.ramdisk_size)
    write("-ramdisk.lz4" if ramdisk[:2] == _LZ4_PREFIX else "-ramdisk.gz", ramdisk)
    write("-second", take(header.second_size))
    write("-dt", take(header.dt_size))
    write("-signature", data[pos:pos + SIGNATURE_SIZE])
    return offset, header


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    directory = "./"
    filename = None
    pagesize = 0

    while args:
        arg = args[0]
        val = args[1] if len(args) > 1 else None
        del args[:2]
        if arg in ("--input", "-i"):
            filename = val
        elif arg in ("--output", "-o"):
            directory = val
        elif arg in ("--pagesize", "-p"):
            pagesize = _strtoul_hex(val or "")
        else:
            return _usage()

    if filename is None:
        return _usage()

    try:
        offset, header = unpack_boot_image(filename, directory, pagesize)
    except BootImageError as exc:
        print(exc)
        return 1
    except OSError as exc:
        print(f"error: {exc.strerror or exc}: {exc.filename or filename}", file=sys.stderr)
        return 1

    values = _board_values(header)
    print(f"Android magic found at: {offset}")
    print(f"BOARD_KERNEL_CMDLINE {header.cmdline.decode(errors='replace')}")
    print(f"BOARD_KERNEL_BASE {values['base']}")
    print(f"BOARD_RAMDISK_OFFSET {values['ramdisk_offset']}")
    print(f"BOARD_SECOND_OFFSET {values['second_offset']}")
    print(f"BOARD_TAGS_OFFSET {values['tags_offset']}")
    print(f"BOARD_PAGE_SIZE {header.page_size}")
    print(f"BOARD_SECOND_SIZE {header.second_size}")
    print(f"BOARD_DT_SIZE {header.dt_size}")
    return 0


if __name__ == "__main__":
    sys.exit(main())