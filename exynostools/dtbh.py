"""Samsung DTBH device tree images: building and unpacking."""

from __future__ import annotations

import logging
import os
import struct
from dataclasses import dataclass, field
from pathlib import Path

from . import fdt

log = logging.getLogger(__name__)

HEADER_SIZE = 12
ENTRY_SIZE = 32
EOT_MARKER_SIZE = 4
SPACE_DELIMITER = 0x20

_ENTRY = struct.Struct("<8I")


class DtbhError(Exception):
    """Raised when a DTBH image cannot be built or read."""


@dataclass(frozen=True)
class DtbhConfig:
    """Target-specific values identifying the device trees to pack."""

    magic: bytes = b"DTBH"
    version: int = 2
    platform: str = "k3g"
    subtype: str = "k3g_eur_open"
    platform_code: int = 0x1E92
    subtype_code: int = 0x7D64F612
    model: str | None = None


@dataclass
class DtEntry:
    """One entry of the DTBH table."""

    chip: int
    platform: int
    subtype: int
    hw_rev: int
    hw_rev_end: int
    offset: int = 0
    size: int = 0
    space: int = SPACE_DELIMITER

    def pack(self) -> bytes:
        return _ENTRY.pack(
            self.chip, self.platform, self.subtype, self.hw_rev,
            self.hw_rev_end, self.offset, self.size, self.space,
        )

    @classmethod
    def unpack(cls, data: bytes) -> DtEntry:
        if len(data) < ENTRY_SIZE:
            raise DtbhError(f"entry needs {ENTRY_SIZE} bytes, got {len(data)}")
        return cls(*_ENTRY.unpack_from(data))

    def dump_name(self) -> str:
        """File name under which this entry's blob is extracted."""
        return (
            f"chip{self.chip}-0x{self.platform:x}-0x{self.subtype:x}"
            f"_rev{self.hw_rev}-{self.hw_rev_end}.dtb"
        )

    def __str__(self) -> str:
        return (
            f"chip: {self.chip}, platform: 0x{self.platform:x}, "
            f"subtype: 0x{self.subtype:x}, hw_rev: {self.hw_rev}, "
            f"hw_rev_end: {self.hw_rev_end}, offset: {self.offset}, "
            f"size: {self.size}, space: {self.space}"
        )


@dataclass
class DtbhHeader:
    """The DTBH header with its entry table."""

    magic: bytes
    version: int
    entries: list[DtEntry] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def magic_text(self) -> str:
        return self.magic.split(b"\0", 1)[0].decode("latin-1")

    @classmethod
    def unpack(cls, data: bytes) -> DtbhHeader:
        raw = bytes(data)
        if len(raw) < HEADER_SIZE:
            raise DtbhError(f"header needs {HEADER_SIZE} bytes, got {len(raw)}")
        version, count = struct.unpack_from("<II", raw, 4)
        end = HEADER_SIZE + count * ENTRY_SIZE
        if end > len(raw):
            raise DtbhError(f"table of {count} entries does not fit in {len(raw)} bytes")
        entries = [
            DtEntry.unpack(raw[start:start + ENTRY_SIZE])
            for start in range(HEADER_SIZE, end, ENTRY_SIZE)
        ]
        return cls(raw[:4], version, entries)


def _u32_prop(props: dict[str, bytes], name: str) -> int | None:
    value = props.get(name)
    if not value or len(value) % 4:
        return None
    return int.from_bytes(value[:4], "big")


def _str_prop(props: dict[str, bytes], name: str) -> str | None:
    value = props.get(name)
    if value is None:
        return None
    return value.split(b"\0", 1)[0].decode("latin-1")


def _describe(fname: str, payload: bytes, config: DtbhConfig) -> DtEntry | None:
    try:
        props = fdt.root_properties(payload)
    except fdt.FdtError:
        log.warning("'%s' is not a valid dtb, skipping", fname)
        return None

    if config.model is not None:
        model = _str_prop(props, "model")
        if model is None or config.model not in model:
            log.warning(
                "model of %s is invalid, skipping (expected *%s* but got %s)",
                fname, config.model, model,
            )
            return None

    chip = _u32_prop(props, "model_info-chip")
    if chip is None:
        log.warning("model_info-chip of %s is of invalid size, skipping", fname)
        return None

    for prop, expected in (
        ("model_info-platform", config.platform),
        ("model_info-subtype", config.subtype),
    ):
        actual = _str_prop(props, prop)
        if actual != expected:
            log.warning(
                "%s of %s is invalid, skipping (expected %s but got %s)",
                prop, fname, expected, actual,
            )
            return None

    hw_rev = _u32_prop(props, "model_info-hw_rev")
    if hw_rev is None:
        log.warning("model_info-hw_rev of %s is of invalid size, skipping", fname)
        return None
    hw_rev_end = _u32_prop(props, "model_info-hw_rev_end")
    if hw_rev_end is None:
        log.warning("model_info-hw_rev_end of %s is of invalid size, skipping", fname)
        return None

    return DtEntry(chip, config.platform_code, config.subtype_code, hw_rev, hw_rev_end)


def load_dtbh_block(dtb_path, pagesize: int = 2048, config: DtbhConfig | None = None) -> bytes:
    """Build a DTBH image from the ``*.dtb`` files in ``dtb_path``."""
    if pagesize <= 0 or pagesize & (pagesize - 1):
        raise ValueError(f"page size must be a positive power of two, got {pagesize}")
    config = config or DtbhConfig()
    mask = pagesize - 1

    def aligned(size: int) -> int:
        return (size + mask) & ~mask

    try:
        names = sorted(e.name for e in os.scandir(dtb_path) if e.name.endswith(".dtb"))
    except OSError as exc:
        raise DtbhError(f"failed to open '{dtb_path}': {exc.strerror or exc}") from exc

    payloads: list[bytes] = []
    entries: list[tuple[DtEntry, int]] = []
    for name in names:
        fname = f"{dtb_path}/{name}"
        try:
            payload = Path(fname).read_bytes()
        except OSError as exc:
            raise DtbhError(f"failed to read dtb '{fname}': {exc.strerror or exc}") from exc
        entry = _describe(fname, payload, config)
        if entry is None:
            continue
        entries.append((entry, len(payloads)))
        payloads.append(payload)

    if not entries:
        raise DtbhError("unable to locate any dtbs in the given path")

    count = len(entries)
    # The table reservation grows with every entry added (1 + 2 + ... + n
    # entries); existing images depend on this layout.
    hdr_sz = aligned(HEADER_SIZE + ENTRY_SIZE * count * (count + 1) // 2 + EOT_MARKER_SIZE)

    blob_offsets = []
    offset = hdr_sz
    for payload in payloads:
        blob_offsets.append(offset)
        offset += aligned(len(payload))
    blob_sz = offset - hdr_sz

    entries.sort(key=lambda pair: (pair[0].chip, pair[0].hw_rev))
    for entry, index in entries:
        entry.offset = blob_offsets[index]
        entry.size = aligned(len(payloads[index]))

    image = bytearray(hdr_sz + blob_sz)
    image[0:4] = config.magic[:4].ljust(4, b"\0")
    struct.pack_into("<II", image, 4, config.version, count)

    pos = HEADER_SIZE
    for entry, _ in entries:
        image[pos:pos + ENTRY_SIZE] = entry.pack()
        pos += ENTRY_SIZE

    pos += pagesize - (pos & mask)
    for payload in payloads:
        image[pos:pos + len(payload)] = payload
        pos += aligned(len(payload))

    return bytes(image)


def extract_dtbs(image, output_dir, page_size: int = 2048) -> tuple[DtbhHeader, list[Path | None]]:
    """Write every blob of a DTBH image into ``output_dir``.

    Returns the header and, per entry, the written path or None if the
    output file could not be created.
    """
    with open(image, "rb") as source:
        head = source.read(page_size) if page_size > 0 else b""
        if page_size <= 0 or len(head) < page_size:
            raise DtbhError(f"could not read a {page_size}-byte header page")
        header = DtbhHeader.unpack(head)

        written: list[Path | None] = []
        for entry in header.entries:
            source.seek(entry.offset)
            blob = source.read(entry.size)
            if len(blob) < entry.size:
                log.error("Failed to read DTB at offset %d", entry.offset)
                blob = blob.ljust(entry.size, b"\0")
            dest = Path(f"{output_dir}/{entry.dump_name()}")
            try:
                dest.write_bytes(blob)
            except OSError as exc:
                log.error("could not write %s: %s", dest, exc.strerror or exc)
                written.append(None)
                continue
            written.append(dest)
    return header, written