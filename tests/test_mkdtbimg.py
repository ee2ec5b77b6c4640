import struct

from exynostools.dtbh import DtbhHeader, load_dtbh_block
from exynostools.mkdtbimg import main


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


def make_dtb(chip, hw_rev=0):
    return make_fdt({
        "model_info-chip": struct.pack(">I", chip),
        "model_info-platform": b"k3g\0",
        "model_info-subtype": b"k3g_eur_open\0",
        "model_info-hw_rev": struct.pack(">I", hw_rev),
        "model_info-hw_rev_end": struct.pack(">I", 255),
    })


def dtb_dir(tmp_path):
    directory = tmp_path / "dtbs"
    directory.mkdir()
    (directory / "a.dtb").write_bytes(make_dtb(2))
    (directory / "b.dtb").write_bytes(make_dtb(1))
    return directory


def test_builds_image_with_dt_dir(tmp_path):
    directory = dtb_dir(tmp_path)
    out = tmp_path / "dt.img"
    assert main(["-o", str(out), "--dt_dir", str(directory)]) == 0
    assert out.read_bytes() == load_dtbh_block(str(directory), 2048)


def test_positional_directory_and_pagesize(tmp_path):
    directory = dtb_dir(tmp_path)
    out = tmp_path / "dt.img"
    argv = ["-o", str(out), "-s", "4096", "-p", "dtc", str(directory)]
    assert main(argv) == 0
    data = out.read_bytes()
    assert len(data) % 4096 == 0
    assert data == load_dtbh_block(str(directory), 4096)
    assert DtbhHeader.unpack(data[:4096]).entry_count == 2


def test_zero_pagesize_uses_default(tmp_path):
    directory = dtb_dir(tmp_path)
    out = tmp_path / "dt.img"
    assert main(["--output", str(out), "-s", "0", "--dt_dir", str(directory)]) == 0
    assert out.read_bytes() == load_dtbh_block(str(directory), 2048)


def test_missing_output(tmp_path, capsys):
    directory = dtb_dir(tmp_path)
    assert main(["--dt_dir", str(directory)]) == 1
    err = capsys.readouterr().err
    assert "error: no output filename specified" in err
    assert "usage: mkdtimg" in err


def test_missing_dtb_path(tmp_path, capsys):
    assert main(["-o", str(tmp_path / "dt.img")]) == 1
    assert "error: no dtb path specified" in capsys.readouterr().err


def test_unknown_argument_prints_usage(tmp_path, capsys):
    assert main(["--bogus", "x"]) == 1
    assert "usage: mkdtimg" in capsys.readouterr().err


def test_empty_directory_fails(tmp_path, capsys):
    empty = tmp_path / "empty"
    empty.mkdir()
    out = tmp_path / "dt.img"
    assert main(["-o", str(out), "--dt_dir", str(empty)]) == 1
    assert "could not load device tree blobs" in capsys.readouterr().err
    assert not out.exists()