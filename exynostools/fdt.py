"""Minimal reader for flattened device tree (FDT) blobs."""

from __future__ import annotations

import struct
from dataclasses import dataclass

FDT_MAGIC = 0xD00DFEED
FIRST_SUPPORTED_VERSION = 0x02
LAST_SUPPORTED_VERSION = 0x11

_BEGIN_NODE = 0x1
_END_NODE = 0x2
_PROP = 0x3
_NOP = 0x4
_END = 0x9


class FdtError(ValueError):
    """Raised when a blob is not a well-formed flattened device tree."""


@dataclass(frozen=True)
class _Header:
    totalsize: int
    off_dt_struct: int
    off_dt_strings: int
    off_mem_rsvmap: int
    version: int
    last_comp_version: int
    size_dt_strings: int | None


def _align(value: int, boundary: int) -> int:
    return (value + boundary - 1) & ~(boundary - 1)


def _parse_header(data: bytes) -> _Header:
    if len(data) < 28:
        raise FdtError("blob too short for a device tree header")
    magic, totalsize, off_struct, off_strings, off_rsvmap, version, last_comp = (
        struct.unpack_from(">7I", data)
    )
    if magic != FDT_MAGIC:
        raise FdtError(f"bad magic {magic:#010x}")
    if version < FIRST_SUPPORTED_VERSION or last_comp > LAST_SUPPORTED_VERSION:
        raise FdtError(f"unsupported device tree version {version}")

    if version >= 17:
        header_size = 40
    elif version >= 3:
        header_size = 36
    else:
        header_size = 32
    if len(data) < header_size:
        raise FdtError("blob too short for a device tree header")
    if totalsize < header_size or totalsize > len(data):
        raise FdtError(f"total size {totalsize} does not match the blob")
    for name, offset in (
        ("structure", off_struct),
        ("strings", off_strings),
        ("reserve map", off_rsvmap),
    ):
        if offset < header_size or offset > totalsize:
            raise FdtError(f"{name} block offset {offset} out of range")

    size_strings = None
    if version >= 3:
        (size_strings,) = struct.unpack_from(">I", data, 32)
        if off_strings + size_strings > totalsize:
            raise FdtError("strings block extends past the blob")
    return _Header(totalsize, off_struct, off_strings, off_rsvmap, version, last_comp, size_strings)


def check_header(data: bytes) -> None:
    """Validate the header of a device tree blob, raising FdtError if it is bad."""
    _parse_header(bytes(data))


def _word(blob: bytes, pos: int) -> int:
    if pos < 0 or pos + 4 > len(blob):
        raise FdtError("unexpected end of structure block")
    return int.from_bytes(blob[pos:pos + 4], "big")


def _string(blob: bytes, start: int, end: int) -> str:
    if start >= end:
        raise FdtError("property name offset out of range")
    stop = blob.find(b"\0", start, end)
    if stop < 0:
        raise FdtError("unterminated property name")
    return blob[start:stop].decode("ascii", errors="replace")


def root_properties(data: bytes) -> dict[str, bytes]:
    """Return the properties of the root node as a name-to-value mapping."""
    raw = bytes(data)
    header = _parse_header(raw)
    blob = raw[:header.totalsize]
    if header.size_dt_strings is None:
        strings_end = header.totalsize
    else:
        strings_end = header.off_dt_strings + header.size_dt_strings

    props: dict[str, bytes] = {}
    pos = header.off_dt_struct
    depth = 0
    while True:
        token = _word(blob, pos)
        pos += 4
        if token == _BEGIN_NODE:
            end = blob.find(b"\0", pos)
            if end < 0:
                raise FdtError("unterminated node name")
            pos = _align(end + 1, 4)
            depth += 1
        elif token == _END_NODE:
            depth -= 1
            if depth < 0:
                raise FdtError("unbalanced end of node")
            if depth == 0:
                return props
        elif token == _PROP:
            if depth == 0:
                raise FdtError("property outside of a node")
            length = _word(blob, pos)
            nameoff = _word(blob, pos + 4)
            pos += 8
            if header.version < 16 and length >= 8:
                pos = _align(pos, 8)
            if pos + length > len(blob):
                raise FdtError("property value extends past the blob")
            value = blob[pos:pos + length]
            pos = _align(pos + length, 4)
            if depth == 1:
                name = _string(blob, header.off_dt_strings + nameoff, strings_end)
                props[name] = value
        elif token == _NOP:
            continue
        elif token == _END:
            if depth != 0:
                raise FdtError("structure block ended inside a node")
            return props
        else:
            raise FdtError(f"unknown structure token {token:#x}")