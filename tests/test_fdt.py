import struct

import pytest

from exynostools.fdt import FdtError, check_header, root_properties


def make_fdt(props, child_props=None, version=17, last_comp=16):
    strings = bytearray()
    offsets = {}

    def nameoff(name):
        if name not in offsets:
            offsets[name] = len(strings)
            strings.extend(name.encode() + b"\0")
        return offsets[name]

    def pad(data):
        return data + b"\0" * (-len(data) % 4)

    def prop(name, value):
        return struct.pack(">III", 3, len(value), nameoff(name)) + pad(value)

    body = struct.pack(">I", 1) + pad(b"\0")
    for name, value in props.items():
        body += prop(name, value)
    if child_props:
        body += struct.pack(">I", 1) + pad(b"child\0")
        for name, value in child_props.items():
            body += prop(name, value)
        body += struct.pack(">I", 2)
    body += struct.pack(">II", 2, 9)
    off_struct = 56
    off_strings = off_struct + len(body)
    total = off_strings + len(strings)
    header = struct.pack(
        ">10I", 0xD00DFEED, total, off_struct, off_strings, 40,
        version, last_comp, 0, len(strings), len(body),
    )
    return header + bytes(16) + body + bytes(strings)


def test_root_properties_returns_values():
    props = {"model": b"Board\0", "model_info-chip": struct.pack(">I", 9810)}
    assert root_properties(make_fdt(props)) == props


def test_child_properties_are_ignored():
    blob = make_fdt({"a": b"\x01\x02\x03"}, child_props={"b": b"x\0", "a": b"zz"})
    assert root_properties(blob) == {"a": b"\x01\x02\x03"}


def test_empty_property_value():
    assert root_properties(make_fdt({"flag": b""})) == {"flag": b""}


def test_trailing_data_is_ignored():
    blob = make_fdt({"a": b"abcd"}) + b"\xff" * 8
    assert root_properties(blob) == {"a": b"abcd"}


def test_bad_magic_raises():
    blob = bytearray(make_fdt({}))
    blob[0] = 0
    with pytest.raises(FdtError):
        check_header(bytes(blob))


def test_too_short_raises():
    with pytest.raises(FdtError):
        check_header(b"\xd0\x0d")


def test_truncated_blob_raises():
    with pytest.raises(FdtError):
        check_header(make_fdt({"a": b"abcd"})[:-4])


def test_unsupported_version_raises():
    with pytest.raises(FdtError):
        check_header(make_fdt({}, last_comp=18))


def test_unknown_token_raises():
    blob = bytearray(make_fdt({"a": b"abcd"}))
    blob[56:60] = struct.pack(">I", 7)
    with pytest.raises(FdtError):
        root_properties(bytes(blob))


def test_root_properties_checks_header():
    with pytest.raises(FdtError):
        root_properties(b"not a device tree at all, just some text")