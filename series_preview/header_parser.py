"""
header_parser.py - Extract identifying and pixel-geometry facts from a header.

Only a bounded prefix of each file is decoded (64 KB by default) so that a
batch of large multi-frame objects can be inspected without loading their
pixel data.  The parser reads a fixed set of tags by numeric code and never
raises: anything that cannot be decoded degrades to placeholder attributes
plus a warning for the caller.

VALIDATION POLICY
-----------------
- Rows / Columns missing        -> error (image unusable for pixels)
- BitsAllocated missing         -> error
- SamplesPerPixel missing       -> warning, assume 1 (error in strict mode)
- PixelData missing in prefix   -> deferred, unless the whole file was read,
                                   in which case it is an error
- Header not decodable          -> fallback attributes; counts as missing
                                   PixelData when the whole file was read

References
----------
- DICOM PS3.3 C.7.6.3 Image Pixel Module
- DICOM PS3.5 Section 7 (data element encoding)
"""

import io
import logging
from typing import Any, Optional

import pydicom
from pydicom.dataset import Dataset
from pydicom.multival import MultiValue

from series_preview.models import DicomAttributes, HeaderResult, generate_identifier, today_iso

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tags read by numeric code
# ---------------------------------------------------------------------------
SOP_INSTANCE_UID = 0x00080018
STUDY_DATE = 0x00080020
MODALITY = 0x00080060
STUDY_DESCRIPTION = 0x00081030
SERIES_DESCRIPTION = 0x0008103E
PATIENT_NAME = 0x00100010
STUDY_INSTANCE_UID = 0x0020000D
SERIES_INSTANCE_UID = 0x0020000E
SERIES_NUMBER = 0x00200011
INSTANCE_NUMBER = 0x00200013
SAMPLES_PER_PIXEL = 0x00280002
PHOTOMETRIC_INTERPRETATION = 0x00280004
PLANAR_CONFIGURATION = 0x00280006
NUMBER_OF_FRAMES = 0x00280008
ROWS = 0x00280010
COLUMNS = 0x00280011
BITS_ALLOCATED = 0x00280100
BITS_STORED = 0x00280101
PIXEL_REPRESENTATION = 0x00280103
PIXEL_DATA = 0x7FE00010

# A dataset holding none of these is not treated as a DICOM header at all.
_RECOGNISED_TAGS = (
    SOP_INSTANCE_UID, STUDY_DATE, MODALITY, STUDY_DESCRIPTION,
    SERIES_DESCRIPTION, PATIENT_NAME, STUDY_INSTANCE_UID,
    SERIES_INSTANCE_UID, SERIES_NUMBER, INSTANCE_NUMBER, ROWS, COLUMNS,
    BITS_ALLOCATED, PIXEL_DATA,
)


def read_dataset(data: bytes) -> Dataset:
    """Decode *data* with pydicom, tolerating a missing preamble or a cut-off tail."""
    return pydicom.dcmread(io.BytesIO(data), force=True)


def _first(value: Any) -> Any:
    """Return the first item of a multi-valued element, or the value itself."""
    if isinstance(value, (MultiValue, list, tuple)):
        return value[0] if len(value) else None
    return value


def _as_text(value: Any) -> Optional[str]:
    value = _first(value)
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("latin-1", errors="replace")
    text = str(value).strip(" \x00")
    return text or None


def _as_int(value: Any) -> Optional[int]:
    """Parse an integer from an IS / US value; None if absent or non-numeric."""
    value = _first(value)
    if value is None:
        return None
    if isinstance(value, int):
        return int(value)
    text = _as_text(value)
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except ValueError:
        return None


def _format_date(value: str) -> str:
    """Render a YYYYMMDD DA value as YYYY-MM-DD; anything else is returned as-is."""
    if len(value) == 8 and value.isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:]}"
    return value


def element_int(ds: Dataset, tag: int) -> Optional[int]:
    """Integer value of *tag* in *ds*, or None if absent or non-numeric."""
    return _as_int(ds[tag].value) if tag in ds else None


def element_text(ds: Dataset, tag: int) -> Optional[str]:
    """Stripped text value of *tag* in *ds*, or None if absent or empty."""
    return _as_text(ds[tag].value) if tag in ds else None


class _HeaderReader:
    """Typed access to a decoded dataset, collecting warnings on the way."""

    def __init__(self, ds: Dataset, warnings: list[str]):
        self.ds = ds
        self.warnings = warnings

    def raw(self, tag: int) -> Any:
        if tag not in self.ds:
            return None
        try:
            return self.ds[tag].value
        except Exception as exc:
            self.warnings.append(f"Unreadable element ({tag >> 16:04X},{tag & 0xFFFF:04X}): {exc}")
            return None

    def text(self, tag: int) -> Optional[str]:
        return _as_text(self.raw(tag))

    def integer(self, tag: int, label: str, default: int = 1) -> int:
        value = self.raw(tag)
        if value is None or _as_text(value) is None:
            return default
        parsed = _as_int(value)
        if parsed is None:
            self.warnings.append(f"{label} is not numeric ({_as_text(value)!r}); using {default}")
            return default
        return parsed

    def optional_int(self, tag: int) -> Optional[int]:
        return _as_int(self.raw(tag))


def _fallback_result(name: str, reason: str, full_file_scanned: bool = False) -> HeaderResult:
    logger.warning("Failed to parse DICOM header for %s, using defaults: %s", name or "<unnamed>", reason)
    errors = ["Header could not be decoded"]
    if full_file_scanned:
        # Nothing decodable in the complete file means no pixel data either
        errors.append("No pixel data found")
    return HeaderResult(
        attributes=DicomAttributes.fallback(name),
        warnings=[f"Header could not be decoded: {reason}"],
        errors=errors,
        pixel_data_found=False if full_file_scanned else None,
        is_fallback=True,
    )


def parse_header(
    data: bytes,
    name: str = "",
    full_file_scanned: bool = False,
    strict: bool = False,
) -> HeaderResult:
    """
    Decode a header prefix into DicomAttributes plus diagnostics.

    Parameters
    ----------
    data : bytes
        The first bytes of the file (possibly the whole file).
    name : str
        Display name used in log messages and fallback descriptions.
    full_file_scanned : bool
        True when *data* is the complete file, so a missing PixelData
        element is a real absence rather than a cut-off prefix.
    strict : bool
        Promote pixel-module warnings to errors.

    Returns
    -------
    HeaderResult
        Always a complete result; decode failures yield fallback attributes
        with ``is_fallback=True`` and a warning.
    """
    try:
        ds = read_dataset(data)
    except Exception as exc:
        return _fallback_result(name, str(exc) or type(exc).__name__, full_file_scanned)

    try:
        if not any(tag in ds for tag in _RECOGNISED_TAGS):
            return _fallback_result(name, "no recognisable DICOM elements", full_file_scanned)
        return _extract(ds, name=name, full_file_scanned=full_file_scanned, strict=strict)
    except Exception as exc:
        return _fallback_result(name, str(exc) or type(exc).__name__, full_file_scanned)


def _extract(ds: Dataset, name: str, full_file_scanned: bool, strict: bool) -> HeaderResult:
    warnings: list[str] = []
    errors: list[str] = []
    reader = _HeaderReader(ds, warnings)

    series_id = reader.text(SERIES_INSTANCE_UID)
    if series_id is None:
        series_id = generate_identifier("generated-series")
        warnings.append("SeriesInstanceUID missing; generated an identifier")

    study_id = reader.text(STUDY_INSTANCE_UID)
    if study_id is None:
        study_id = generate_identifier("generated-study")
        warnings.append("StudyInstanceUID missing; generated an identifier")

    frame_count = reader.integer(NUMBER_OF_FRAMES, "NumberOfFrames")
    if frame_count < 1:
        warnings.append(f"NumberOfFrames {frame_count} is below 1; using 1")
        frame_count = 1

    # Pixel module
    rows = reader.optional_int(ROWS)
    columns = reader.optional_int(COLUMNS)
    if not rows or not columns or rows < 0 or columns < 0:
        errors.append(f"Missing image dimensions (rows: {rows}, columns: {columns})")
        rows = rows if rows and rows > 0 else None
        columns = columns if columns and columns > 0 else None

    bits_allocated = reader.optional_int(BITS_ALLOCATED)
    if not bits_allocated:
        errors.append("Missing bits allocated")

    samples_per_pixel = reader.optional_int(SAMPLES_PER_PIXEL)
    if samples_per_pixel is None or samples_per_pixel < 1:
        message = f"Missing or invalid samples per pixel ({samples_per_pixel}); assuming 1"
        (errors if strict else warnings).append(message)
        samples_per_pixel = 1

    if PIXEL_DATA in ds:
        pixel_data_found: Optional[bool] = True
    elif full_file_scanned:
        pixel_data_found = False
        errors.append("No pixel data found")
    else:
        pixel_data_found = None
        logger.debug("PixelData not within header window for %s; check deferred", name)

    study_date = reader.text(STUDY_DATE)
    attributes = DicomAttributes(
        series_id=series_id,
        study_id=study_id,
        series_number=reader.integer(SERIES_NUMBER, "SeriesNumber"),
        image_number=reader.integer(INSTANCE_NUMBER, "InstanceNumber"),
        series_description=reader.text(SERIES_DESCRIPTION) or "Unknown Series",
        study_description=reader.text(STUDY_DESCRIPTION) or "Unknown Study",
        patient_name=reader.text(PATIENT_NAME) or "Anonymous Patient",
        study_date=_format_date(study_date) if study_date else today_iso(),
        modality=reader.text(MODALITY) or "OT",
        sop_instance_id=reader.text(SOP_INSTANCE_UID),
        frame_count=frame_count,
        rows=rows,
        columns=columns,
        samples_per_pixel=samples_per_pixel,
        bits_allocated=bits_allocated or None,
        bits_stored=reader.optional_int(BITS_STORED),
        pixel_representation=reader.optional_int(PIXEL_REPRESENTATION),
        photometric_interpretation=reader.text(PHOTOMETRIC_INTERPRETATION),
    )

    if errors:
        logger.warning("Pixel module validation failed for %s: %s", name, "; ".join(errors))
    else:
        logger.debug(
            "Pixel module validation passed for %s: %sx%s, %s bit, %d frame(s)",
            name, columns, rows, bits_allocated, frame_count,
        )
    for message in warnings:
        logger.debug("Header warning for %s: %s", name, message)

    return HeaderResult(
        attributes=attributes,
        warnings=warnings,
        errors=errors,
        pixel_data_found=pixel_data_found,
    )
