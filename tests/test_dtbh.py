import logging
import struct

import pytest

from exynostools.dtbh import (
    DtbhConfig,
    DtbhError,
    DtbhHeader,
    DtEntry,
    extract_dtbs,
    load_dtbh_block,
)
from exynostools.fdt import root_properties


def make_fdt(props):
    strings = bytearray()
    offsets = {}

    def nameoff(name):
        if name not in offsets:
            offsets[name] = len(strings)
            strings.extend(name.encode() + b"\0")
        return offsets[name]

    def pad(data):
        return data + b"\0" * (-len(data) % 4)

    body = struct.pack(">I", 1) + pad(b"\0")
    for name, value in props.items():
        body += struct.pack(">III", 3, len(value), nameoff(name)) + pad(value)
    body += struct.pack(">II", 2, 9)
    off_struct = 56
    off_strings = off_struct + len(body)
    total = off_strings + len(strings)
    header = struct.pack(
        ">10I", 0xD00DFEED, total, off_struct, off_strings, 40,
        17, 16, 0, len(strings), len(body),
    )
    return header + bytes(16) + body + bytes(strings)


def make_dtb(chip, hw_rev=0, hw_rev_end=255, platform=b"k3g\0",
             subtype=b"k3g_eur_open\0", model=None, chip_value=None):
    props = {}
    if model is not None:
        props["model"] = model
    props["model_info-chip"] = chip_value if chip_value is not None else struct.pack(">I", chip)
    props["model_info-platform"] = platform
    props["model_info-subtype"] = subtype
    props["model_info-hw_rev"] = struct.pack(">I", hw_rev)
    props["model_info-hw_rev_end"] = struct.pack(">I", hw_rev_end)
    return make_fdt(props)


def write_files(directory, files):
    directory.mkdir(exist_ok=True)
    for name, data in files.items():
        (directory / name).write_bytes(data)
    return directory


def test_entry_round_trip():
    entry = DtEntry(9810, 0x1E92, 0x7D64F612, 1, 2, 4096, 2048)
    packed = entry.pack()
    assert len(packed) == 32
    assert DtEntry.unpack(packed) == entry


def test_entry_pack_is_little_endian():
    entry = DtEntry(1, 2, 3, 4, 5, 6, 7, 8)
    assert entry.pack() == struct.pack("<8I", 1, 2, 3, 4, 5, 6, 7, 8)


def test_entry_default_space():
    assert DtEntry(1, 2, 3, 4, 5).space == 0x20


def test_entry_dump_name():
    entry = DtEntry(9810, 0x1E92, 0x7D64F612, 2, 255)
    assert entry.dump_name() == "chip9810-0x1e92-0x7d64f612_rev2-255.dtb"


def test_entry_str_lists_fields():
    text = str(DtEntry(1, 0x1E92, 0x7D64F612, 3, 4, 2048, 4096))
    assert text.startswith("chip: 1, platform: 0x1e92, subtype: 0x7d64f612")
    assert text.endswith("offset: 2048, size: 4096, space: 32")


def test_entry_unpack_short_raises():
    with pytest.raises(DtbhError):
        DtEntry.unpack(b"\0" * 8)


def test_load_builds_sorted_entries(tmp_path):
    blobs = {
        "a.dtb": make_dtb(2, hw_rev=1),
        "b.dtb": make_dtb(1, hw_rev=3),
        "c.dtb": make_dtb(1, hw_rev=0),
    }
    dtb_dir = write_files(tmp_path / "dtbs", blobs)
    image = load_dtbh_block(str(dtb_dir), 2048)
    header = DtbhHeader.unpack(image[:2048])
    assert header.magic == b"DTBH"
    assert header.version == 2
    assert header.entry_count == 3
    assert [(e.chip, e.hw_rev) for e in header.entries] == [(1, 0), (1, 3), (2, 1)]
    for entry in header.entries:
        assert entry.offset % 2048 == 0
        assert entry.size % 2048 == 0
        assert entry.platform == DtbhConfig().platform_code
        assert entry.subtype == DtbhConfig().subtype_code
        assert entry.space == 0x20
        props = root_properties(image[entry.offset:entry.offset + entry.size])
        assert props["model_info-chip"] == struct.pack(">I", entry.chip)
        assert props["model_info-hw_rev"] == struct.pack(">I", entry.hw_rev)
    assert len(image) == 2048 + sum(e.size for e in header.entries)
    assert len(image) % 2048 == 0


def test_load_skips_invalid_files(tmp_path, caplog):
    files = {
        "good.dtb": make_dtb(1),
        "bad.dtb": b"not a device tree",
        "wrongplat.dtb": make_dtb(2, platform=b"other\0"),
        "oddchip.dtb": make_dtb(3, chip_value=b"\x00\x01\x02"),
        "note.txt": make_dtb(4),
    }
    dtb_dir = write_files(tmp_path / "dtbs", files)
    with caplog.at_level(logging.WARNING):
        image = load_dtbh_block(str(dtb_dir), 2048)
    header = DtbhHeader.unpack(image[:2048])
    assert [e.chip for e in header.entries] == [1]
    assert "is not a valid dtb" in caplog.text


def test_load_without_dtbs_raises(tmp_path):
    dtb_dir = write_files(tmp_path / "dtbs", {"x.txt": b"x"})
    with pytest.raises(DtbhError):
        load_dtbh_block(str(dtb_dir), 2048)


def test_load_missing_directory_raises(tmp_path):
    with pytest.raises(DtbhError):
        load_dtbh_block(str(tmp_path / "missing"), 2048)


@pytest.mark.parametrize("pagesize", [0, -2048, 3000])
def test_load_rejects_bad_pagesize(tmp_path, pagesize):
    dtb_dir = write_files(tmp_path / "dtbs", {"a.dtb": make_dtb(1)})
    with pytest.raises(ValueError):
        load_dtbh_block(str(dtb_dir), pagesize)


def test_model_filter(tmp_path):
    files = {
        "a.dtb": make_dtb(1, model=b"Samsung STAR board\0"),
        "b.dtb": make_dtb(2, model=b"Other board\0"),
    }
    dtb_dir = write_files(tmp_path / "dtbs", files)
    image = load_dtbh_block(str(dtb_dir), 2048, DtbhConfig(model="STAR"))
    assert [e.chip for e in DtbhHeader.unpack(image[:2048]).entries] == [1]


def test_custom_config(tmp_path):
    config = DtbhConfig(magic=b"ABCD", version=3, platform="p", subtype="s",
                        platform_code=7, subtype_code=9)
    dtb_dir = write_files(tmp_path / "dtbs",
                          {"a.dtb": make_dtb(5, platform=b"p\0", subtype=b"s\0")})
    header = DtbhHeader.unpack(load_dtbh_block(str(dtb_dir), 4096, config)[:4096])
    assert header.magic == b"ABCD"
    assert header.version == 3
    assert (header.entries[0].platform, header.entries[0].subtype) == (7, 9)
    assert header.entries[0].offset == 4096


def test_header_unpack_short_raises():
    with pytest.raises(DtbhError):
        DtbhHeader.unpack(b"DTBH" + struct.pack("<II", 2, 5))


def test_extract_dtbs(tmp_path):
    dtb_dir = write_files(tmp_path / "dtbs", {"a.dtb": make_dtb(7, hw_rev=1),
                                              "b.dtb": make_dtb(3, hw_rev=2)})
    image_path = tmp_path / "dt.img"
    image_path.write_bytes(load_dtbh_block(str(dtb_dir), 2048))
    out = tmp_path / "out"
    out.mkdir()
    header, written = extract_dtbs(str(image_path), str(out), 2048)
    assert [p.name for p in written] == [e.dump_name() for e in header.entries]
    for entry, path in zip(header.entries, written):
        data = path.read_bytes()
        assert len(data) == entry.size
        assert root_properties(data)["model_info-hw_rev"] == struct.pack(">I", entry.hw_rev)


def test_extract_short_image_raises(tmp_path):
    image_path = tmp_path / "dt.img"
    image_path.write_bytes(b"DTBH" + bytes(100))
    with pytest.raises(DtbhError):
        extract_dtbs(str(image_path), str(tmp_path), 2048)