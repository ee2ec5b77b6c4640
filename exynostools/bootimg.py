"""Android boot image header and image assembly."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass

BOOT_MAGIC = b"ANDROID!"
BOOT_MAGIC_SIZE = 8
BOOT_NAME_SIZE = 16
BOOT_ARGS_SIZE = 512
BOOT_ID_SIZE = 32
SIGNATURE_SIZE = 256
MAGIC_SEARCH_LIMIT = 512

SUPPORTED_PAGESIZES = (2048, 4096, 8192, 16384, 32768, 65536, 131072)

DEFAULT_PAGESIZE = 2048
DEFAULT_BASE = 0x10000000
DEFAULT_KERNEL_OFFSET = 0x00008000
DEFAULT_RAMDISK_OFFSET = 0x01000000
DEFAULT_SECOND_OFFSET = 0x00F00000
DEFAULT_TAGS_OFFSET = 0x00000100

_U32 = 0xFFFFFFFF
_HEADER = struct.Struct(f"<{BOOT_MAGIC_SIZE}s10I{BOOT_NAME_SIZE}s{BOOT_ARGS_SIZE}s{BOOT_ID_SIZE}s")
HEADER_SIZE = _HEADER.size


class BootImageError(Exception):
    """Raised when a boot image cannot be built or read."""


@dataclass
class BootImgHeader:
    """The fixed-size header at the start of a boot image."""

    kernel_size: int = 0
    kernel_addr: int = 0
    ramdisk_size: int = 0
    ramdisk_addr: int = 0
    second_size: int = 0
    second_addr: int = 0
    tags_addr: int = 0
    page_size: int = 0
    dt_size: int = 0
    unused: int = 0
    name: bytes = b""
    cmdline: bytes = b""
    id: bytes = bytes(BOOT_ID_SIZE)
    magic: bytes = BOOT_MAGIC

    def pack(self) -> bytes:
        if len(self.name) >= BOOT_NAME_SIZE:
            raise BootImageError("board name too large")
        if len(self.cmdline) > BOOT_ARGS_SIZE - 1:
            raise BootImageError("kernel commandline too large")
        if len(self.id) > BOOT_ID_SIZE:
            raise BootImageError("image id too large")
        return _HEADER.pack(
            self.magic,
            self.kernel_size & _U32, self.kernel_addr & _U32,
            self.ramdisk_size & _U32, self.ramdisk_addr & _U32,
            self.second_size & _U32, self.second_addr & _U32,
            self.tags_addr & _U32, self.page_size & _U32,
            self.dt_size & _U32, self.unused & _U32,
            self.name, self.cmdline, self.id,
        )

    @classmethod
    def unpack(cls, data: bytes) -> BootImgHeader:
        raw = bytes(data)
        if len(raw) < HEADER_SIZE:
            raise BootImageError(f"header needs {HEADER_SIZE} bytes, got {len(raw)}")
        magic, *numbers, name, cmdline, image_id = _HEADER.unpack_from(raw)
        return cls(
            *numbers,
            name=name.split(b"\0", 1)[0],
            cmdline=cmdline.split(b"\0", 1)[0],
            id=image_id,
            magic=magic,
        )


def padding_size(pagesize: int, itemsize: int) -> int:
    """Number of zero bytes that bring ``itemsize`` up to a page boundary."""
    if pagesize <= 0:
        raise ValueError(f"page size must be positive, got {pagesize}")
    remainder = itemsize & (pagesize - 1)
    return 0 if remainder == 0 else pagesize - remainder


def compute_id(kernel: bytes, ramdisk: bytes = b"", second: bytes | None = None,
               dt: bytes | None = None) -> bytes:
    """SHA-1 of the image contents, zero-padded to the header's id field."""
    digest = hashlib.sha1()
    for part in (kernel, ramdisk or b"", second or b""):
        digest.update(part)
        digest.update(struct.pack("<I", len(part) & _U32))
    if dt is not None:
        digest.update(dt)
        digest.update(struct.pack("<I", len(dt) & _U32))
    return digest.digest()[:BOOT_ID_SIZE].ljust(BOOT_ID_SIZE, b"\0")


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode() if isinstance(value, str) else bytes(value)


def build_boot_image(
    kernel: bytes,
    ramdisk: bytes | None = b"",
    second: bytes | None = None,
    dt: bytes | None = None,
    signature: bytes | None = None,
    cmdline: str | bytes = "",
    board: str | bytes = "",
    pagesize: int = DEFAULT_PAGESIZE,
    base: int = DEFAULT_BASE,
    kernel_offset: int = DEFAULT_KERNEL_OFFSET,
    ramdisk_offset: int = DEFAULT_RAMDISK_OFFSET,
    second_offset: int = DEFAULT_SECOND_OFFSET,
    tags_offset: int = DEFAULT_TAGS_OFFSET,
) -> bytes:
    """Assemble a complete boot image and return its bytes."""
    if pagesize not in SUPPORTED_PAGESIZES:
        raise BootImageError(f"unsupported page size {pagesize}")
    ramdisk = ramdisk or b""
    if signature is not None and len(signature) < SIGNATURE_SIZE:
        raise BootImageError(
            f"signature needs {SIGNATURE_SIZE} bytes, got {len(signature)}"
        )

    header = BootImgHeader(
        kernel_size=len(kernel),
        kernel_addr=(base + kernel_offset) & _U32,
        ramdisk_size=len(ramdisk),
        ramdisk_addr=(base + ramdisk_offset) & _U32,
        second_size=len(second) if second is not None else 0,
        second_addr=(base + second_offset) & _U32,
        tags_addr=(base + tags_offset) & _U32,
        page_size=pagesize,
        dt_size=len(dt) if dt is not None else 0,
        name=_as_bytes(board),
        cmdline=_as_bytes(cmdline),
        id=compute_id(kernel, ramdisk, second, dt),
    )

    def pad(size: int) -> bytes:
        return bytes(padding_size(pagesize, size))

    image = bytearray(header.pack())
    image += pad(HEADER_SIZE)
    image += kernel + pad(len(kernel))
    image += ramdisk + pad(len(ramdisk))
    if second is not None:
        # The second stage is padded by the ramdisk's length; existing
        # images rely on this layout.
        image += second + pad(len(ramdisk))
    if dt is not None:
        image += dt + pad(len(dt))
    if signature is not None:
        image += signature[:SIGNATURE_SIZE]
    return bytes(image)


def find_magic(data: bytes) -> int:
    """Offset of the boot magic within the first bytes of ``data``."""
    raw = bytes(data)
    for offset in range(MAGIC_SEARCH_LIMIT + 1):
        if raw[offset:offset + BOOT_MAGIC_SIZE] == BOOT_MAGIC:
            return offset
    raise BootImageError("Android boot magic not found.")