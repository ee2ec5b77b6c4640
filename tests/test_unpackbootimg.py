import pytest

from exynostools.bootimg import BootImageError, build_boot_image
from exynostools.unpackbootimg import main, unpack_boot_image

KERNEL = b"K" * 700
RAMDISK = b"\x1f\x8b" + b"R" * 98
SECOND = b"S" * 100
DT = b"D" * 50
SIGNATURE = bytes(range(256))


@pytest.fixture
def image(tmp_path):
    data = build_boot_image(KERNEL, RAMDISK, SECOND, DT, SIGNATURE,
                            cmdline="console=ram", board="starlte")
    path = tmp_path / "boot.img"
    path.write_bytes(data)
    out = tmp_path / "out"
    out.mkdir()
    return path, out


def test_unpack_round_trip(image):
    path, out = image
    offset, header = unpack_boot_image(str(path), str(out))
    assert offset == 0
    assert header.cmdline == b"console=ram"
    assert (out / "boot.img-zImage").read_bytes() == KERNEL
    assert (out / "boot.img-ramdisk.gz").read_bytes() == RAMDISK
    assert (out / "boot.img-second").read_bytes() == SECOND
    assert (out / "boot.img-dt").read_bytes() == DT
    assert (out / "boot.img-signature").read_bytes() == SIGNATURE
    assert (out / "boot.img-cmdline").read_text() == "console=ram\n"


def test_unpack_board_values(image):
    path, out = image
    unpack_boot_image(str(path), str(out))
    assert (out / "boot.img-base").read_text() == "10000000\n"
    assert (out / "boot.img-ramdisk_offset").read_text() == "01000000\n"
    assert (out / "boot.img-tags_offset").read_text() == "00000100\n"
    assert (out / "boot.img-pagesize").read_text() == "2048\n"


def test_lz4_ramdisk_name(tmp_path):
    ramdisk = b"\x02\x21" + b"L" * 30
    path = tmp_path / "boot.img"
    path.write_bytes(build_boot_image(b"K" * 10, ramdisk))
    unpack_boot_image(str(path), str(tmp_path))
    assert (tmp_path / "boot.img-ramdisk.lz4").read_bytes() == ramdisk
    assert not (tmp_path / "boot.img-ramdisk.gz").exists()


def test_leading_bytes_before_magic(tmp_path):
    path = tmp_path / "boot.img"
    path.write_bytes(b"\0" * 64 + build_boot_image(KERNEL, RAMDISK))
    offset, header = unpack_boot_image(str(path), str(tmp_path))
    assert offset == 64
    assert header.kernel_size == len(KERNEL)
    assert (tmp_path / "boot.img-zImage").read_bytes() == KERNEL


def test_missing_magic_raises(tmp_path):
    path = tmp_path / "junk.img"
    path.write_bytes(b"\0" * 4096)
    with pytest.raises(BootImageError):
        unpack_boot_image(str(path), str(tmp_path))


def test_main_prints_header(image, capsys):
    path, out = image
    assert main(["-i", str(path), "-o", str(out)]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert "Android magic found at: 0" in lines
    assert "BOARD_KERNEL_CMDLINE console=ram" in lines
    assert "BOARD_PAGE_SIZE 2048" in lines
    assert f"BOARD_DT_SIZE {len(DT)}" in lines


def test_main_without_input_prints_usage(capsys):
    assert main([]) == 0
    assert "usage: unpackbootimg" in capsys.readouterr().out


def test_main_missing_magic(tmp_path, capsys):
    path = tmp_path / "junk.img"
    path.write_bytes(b"x" * 1024)
    assert main(["--input", str(path), "--output", str(tmp_path)]) == 1
    assert "Android boot magic not found." in capsys.readouterr().out


def test_main_missing_file(tmp_path):
    assert main(["-i", str(tmp_path / "absent.img")]) == 1