"""
models.py - Typed records passed between the pipeline stages.

Every stage works on these concrete structures rather than loose dicts, so
the defaulting rules for missing header fields live in one place:

    RawFile          ->  bytes supplied by the caller (never modified)
    DicomAttributes  ->  parsed or synthesised header facts for one image
    HeaderResult     ->  DicomAttributes plus the parser's diagnostics
    ImageRecord      ->  one addressable image (one frame of a file)
    SeriesRecord     ->  read-only projection over the records of a series
"""

import datetime
import mimetypes
import os
import secrets
import time
from dataclasses import dataclass, field, replace
from typing import Optional

from series_preview.config import CONFIG



def generate_identifier(prefix: str) -> str:
    """Return ``<prefix>-<ms timestamp>-<random hex>`` for a missing UID."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def today_iso() -> str:
    return datetime.date.today().isoformat()


# ---------------------------------------------------------------------------
# Input handle
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawFile:
    """A caller-owned byte sequence with a display name and length."""
    name: str
    size: int
    content_type: str = ""
    _data: Optional[bytes] = field(default=None, repr=False)
    _path: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str = "") -> "RawFile":
        return cls(name=name, size=len(data), content_type=content_type, _data=bytes(data))

    @classmethod
    def from_path(cls, path: str, content_type: Optional[str] = None) -> "RawFile":
        """
        Wrap a file on disk without reading it.

        When *content_type* is not given it is guessed from the extension;
        the configured DICOM extensions map to the configured media type.
        """
        name = os.path.basename(path)
        if content_type is None:
            ingest_cfg = CONFIG["ingestion"]
            suffixes = tuple(e.lower() for e in ingest_cfg["dicom_extensions"])
            if name.lower().endswith(suffixes):
                content_type = ingest_cfg["dicom_media_type"]
            else:
                content_type = mimetypes.guess_type(name)[0] or ""
        return cls(
            name=name,
            size=os.path.getsize(path),
            content_type=content_type,
            _path=os.path.abspath(path),
        )

    @property
    def extension(self) -> str:
        """Lower-cased suffix including the dot, or ``""`` if there is none."""
        return os.path.splitext(self.name)[1].lower()

    def read(self, start: int = 0, end: Optional[int] = None) -> bytes:
        """Return bytes ``[start, end)``, clamped to the file length."""
        end = self.size if end is None else min(end, self.size)
        start = max(0, start)
        if end <= start:
            return b""
        if self._data is not None:
            return self._data[start:end]
        if self._path is None:
            raise ValueError(f"RawFile {self.name!r} has no byte source")
        with open(self._path, "rb") as f:
            f.seek(start)
            return f.read(end - start)


# ---------------------------------------------------------------------------
# Header facts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DicomAttributes:
    """Identifying and pixel-geometry facts for one image."""
    series_id: str
    study_id: str
    series_number: int = 1
    image_number: int = 1
    series_description: str = "Unknown Series"
    study_description: str = "Unknown Study"
    patient_name: str = "Anonymous Patient"
    study_date: str = field(default_factory=today_iso)
    modality: str = "OT"
    sop_instance_id: Optional[str] = None
    frame_count: int = 1
    # Pixel module, used for validation and decoding only
    rows: Optional[int] = None
    columns: Optional[int] = None
    samples_per_pixel: Optional[int] = None
    bits_allocated: Optional[int] = None
    bits_stored: Optional[int] = None
    pixel_representation: Optional[int] = None
    photometric_interpretation: Optional[str] = None

    def __post_init__(self):
        if self.frame_count < 1:
            raise ValueError(f"frame_count must be >= 1, got {self.frame_count}")
        for name in ("rows", "columns"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive when present, got {value}")

    @classmethod
    def fallback(cls, name: str = "") -> "DicomAttributes":
        """Complete placeholder attributes for a header that could not be decoded."""
        return cls(
            series_id=generate_identifier("fallback-series"),
            study_id=generate_identifier("fallback-study"),
            series_description=f"File: {name}" if name else "Unknown Series",
            study_description="Uploaded Study",
        )

    @property
    def is_signed(self) -> bool:
        return self.pixel_representation == 1

    def with_frame(self, frame_index: int) -> "DicomAttributes":
        """Copy with ``image_number`` offset so frames sort contiguously."""
        return replace(self, image_number=self.image_number + frame_index)


@dataclass
class HeaderResult:
    """Outcome of header parsing: attributes plus diagnostics."""
    attributes: DicomAttributes
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    # None means the capped prefix had no pixel data and the check was deferred
    pixel_data_found: Optional[bool] = None
    is_fallback: bool = False

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def pixel_ready(self) -> bool:
        return not self.errors


# ---------------------------------------------------------------------------
# Session records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImageRecord:
    """One addressable image; multi-frame files yield one record per frame."""
    source_file: RawFile
    image_id: str
    attributes: DicomAttributes
    frame_index: Optional[int] = None
    metadata_only: bool = False


@dataclass(frozen=True)
class SeriesRecord:
    """Aggregate view over all ImageRecords sharing a series id."""
    series_id: str
    study_id: str
    series_number: int
    series_description: str
    modality: str
    image_count: int
    ordered_image_ids: tuple[str, ...]
    patient_name: str
    study_description: str
    study_date: str
    divergent_fields: tuple[str, ...] = ()
    thumbnail: Optional[str] = None
