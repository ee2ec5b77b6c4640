"""Command that splits a DTBH image into its device tree blobs."""

from __future__ import annotations

import re
import sys

from .dtbh import DtbhError, extract_dtbs

DEFAULT_PAGE_SIZE = 2048

USAGE = (
    "usage: unpackdtbhimg\n"
    "       -i|--input <dtbh image path>\n"
    "       -o|--output <directory>\n"
    "       -p|--pagesize <pagesize>\n"
)


def _usage() -> int:
    sys.stderr.write(USAGE)
    return 1


def _atoi(text: str | None) -> int:
    match = re.match(r"\s*([+-]?\d+)", text or "")
    return int(match.group(1)) if match else 0


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    image = None
    output_dir = None
    page_size = DEFAULT_PAGE_SIZE

    while args:
        arg = args[0]
        val = args[1] if len(args) > 1 else None
        del args[:2]
        if arg in ("--input", "-i"):
            image = val
        elif arg in ("--output", "-o"):
            output_dir = val
        elif arg in ("--pagesize", "-p"):
            page_size = _atoi(val)

    if image is None:
        print("error: no input filename specified", file=sys.stderr)
        return _usage()
    if output_dir is None:
        print("error: no output path specified", file=sys.stderr)
        return _usage()

    print(f"using page_size: {page_size}")

    try:
        header, written = extract_dtbs(image, output_dir, page_size)
    except DtbhError as exc:
        print(f"Failed to read DTBH header: {exc}", file=sys.stderr)
        return 1
    except OSError:
        print(f"error: could not open {image}", file=sys.stderr)
        return 1

    print(f"DTBH_MAGIC = '{header.magic_text}'")
    print(f"DTBH_VERSION = {header.version}")
    print(f"Number of entries: {header.entry_count}")
    for index, (entry, path) in enumerate(zip(header.entries, written)):
        print(f"DTB {index}: {entry}")
        if path is None:
            print(f"error: could not open {output_dir}/{entry.dump_name()}", file=sys.stderr)
        else:
            print(f"Successfully dumped {path} (size={entry.size})")
    return 0


if __name__ == "__main__":
    sys.exit(main())