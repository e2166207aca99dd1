"""
inspect_header.py - Show what the header parser makes of a single file.

Reads the same capped header window the ingestor uses and prints the
parsed attributes together with any warnings and validation errors.

Usage
-----
    python scripts/inspect_header.py path/to/file.dcm
    python scripts/inspect_header.py path/to/file.dcm --full   # parse whole file
"""

import dataclasses
import logging
import os
import sys

# Ensure repo root is on sys.path
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from series_preview.config import CONFIG  # noqa: E402
from series_preview.header_parser import parse_header  # noqa: E402
from series_preview.models import RawFile  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(levelname)-8s %(message)s")
logger = logging.getLogger(__name__)


def inspect(path: str, full: bool = False) -> None:
    raw = RawFile.from_path(path)
    window = raw.size if full else min(raw.size, CONFIG["ingestion"]["header_window_bytes"])
    result = parse_header(raw.read(0, window), name=raw.name, full_file_scanned=window >= raw.size)

    print("=" * 60)
    print(f"HEADER: {raw.name} ({raw.size} bytes, read {window})")
    print("=" * 60)
    for key, value in dataclasses.asdict(result.attributes).items():
        print(f"  {key:<27}: {value}")
    print()
    found = {True: "yes", False: "no", None: "deferred (outside header window)"}
    print(f"  Pixel data                 : {found[result.pixel_data_found]}")
    print(f"  Fallback attributes        : {'yes' if result.is_fallback else 'no'}")
    for w in result.warnings:
        print(f"  ⚠ {w}")
    for e in result.errors:
        print(f"  ✗ {e}")
    if result.pixel_ready:
        print("  ✓ Pixel module usable for previews")


def main() -> None:
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    inspect(sys.argv[1], full="--full" in sys.argv[2:])


if __name__ == "__main__":
    main()
