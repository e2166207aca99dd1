"""
thumbnails.py - Fixed-size series previews decoded from real pixel data.

The preview for a series is built from one representative image:

1. Re-read the whole file and locate the PixelData element.
2. Keep exactly one frame's worth of bytes (always the first frame), so a
   multi-frame object is never read past its first frame boundary.
3. Interpret the bytes as (un)signed 8- or 16-bit integers.
4. Estimate a min/max window from a strided sample (see windowing.py).
5. Nearest-neighbour resample onto the output grid, rescale to 0-255,
   invert MONOCHROME1, and write opaque grey RGBA pixels.
6. Encode as a self-contained PNG ``data:`` URI.

Any failure (missing pixel module, compressed transfer syntax, unsupported
bit depth, truncated buffer, flat image) produces a placeholder drawn in
the modality's colour instead, so every series always has a preview.

LIMITATIONS
-----------
- Encapsulated (compressed) pixel data is not decoded.
- Colour images are reduced to the mean of their samples.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from series_preview.config import CONFIG
from series_preview.header_parser import (
    BITS_ALLOCATED,
    COLUMNS,
    NUMBER_OF_FRAMES,
    PHOTOMETRIC_INTERPRETATION,
    PIXEL_DATA,
    PIXEL_REPRESENTATION,
    PLANAR_CONFIGURATION,
    ROWS,
    SAMPLES_PER_PIXEL,
    element_int,
    element_text,
    read_dataset,
)
from series_preview.models import ImageRecord
from series_preview.windowing import estimate_range, nearest_neighbor, rescale_to_uint8

logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = "data:image/png;base64,"
_DESCRIPTION_CHARS = 12


class PixelDecodeError(ValueError):
    """Pixel data exists but cannot be turned into a preview."""


@dataclass
class FramePixels:
    """First frame of an image as a 2-D array."""
    pixels: np.ndarray
    photometric_interpretation: str
    bits_allocated: int
    frame_count: int

    @property
    def inverted(self) -> bool:
        return self.photometric_interpretation == "MONOCHROME1"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_first_frame(data: bytes) -> FramePixels:
    """
    Decode the first frame of a complete DICOM file.

    Raises
    ------
    PixelDecodeError
        If the file has no usable uncompressed 8/16-bit pixel data.
    """
    ds = read_dataset(data)
    if PIXEL_DATA not in ds:
        raise PixelDecodeError("No pixel data found")

    tsyntax = getattr(getattr(ds, "file_meta", None), "TransferSyntaxUID", None)
    known_syntax = tsyntax is not None and tsyntax.is_transfer_syntax
    if known_syntax and tsyntax.is_compressed:
        raise PixelDecodeError(f"Compressed transfer syntax {tsyntax.name} is not supported")
    little_endian = tsyntax.is_little_endian if known_syntax else True

    rows = element_int(ds, ROWS)
    columns = element_int(ds, COLUMNS)
    if not rows or not columns or rows < 0 or columns < 0:
        raise PixelDecodeError(f"Missing image dimensions (rows: {rows}, columns: {columns})")

    bits_allocated = element_int(ds, BITS_ALLOCATED)
    if bits_allocated not in (8, 16):
        raise PixelDecodeError(f"Unsupported bits allocated: {bits_allocated}")

    signed = element_int(ds, PIXEL_REPRESENTATION) == 1
    samples_per_pixel = max(1, element_int(ds, SAMPLES_PER_PIXEL) or 1)
    frame_count = max(1, element_int(ds, NUMBER_OF_FRAMES) or 1)
    photometric = element_text(ds, PHOTOMETRIC_INTERPRETATION) or "MONOCHROME2"

    bytes_per_sample = -(-bits_allocated // 8)
    n_samples = rows * columns * samples_per_pixel
    frame_bytes = n_samples * bytes_per_sample

    raw = ds[PIXEL_DATA].value or b""
    # Never look past the first frame, even when more data follows
    raw = raw[:frame_bytes]
    if len(raw) < frame_bytes:
        raise PixelDecodeError(
            f"Insufficient pixel data: expected {frame_bytes} bytes, got {len(raw)}"
        )

    dtype = np.dtype(f"{'<' if little_endian else '>'}{'i' if signed else 'u'}{bytes_per_sample}")
    flat = np.frombuffer(raw, dtype=dtype, count=n_samples)

    if samples_per_pixel == 1:
        pixels = flat.reshape(rows, columns)
    elif element_int(ds, PLANAR_CONFIGURATION) == 1:
        pixels = flat.reshape(samples_per_pixel, rows, columns).mean(axis=0)
    else:
        pixels = flat.reshape(rows, columns, samples_per_pixel).mean(axis=-1)

    return FramePixels(
        pixels=pixels,
        photometric_interpretation=photometric,
        bits_allocated=bits_allocated,
        frame_count=frame_count,
    )


def window_frame(frame: FramePixels, size: int, max_samples: int) -> np.ndarray:
    """Window and downsample a decoded frame to a ``size`` x ``size`` uint8 grid."""
    lower, upper = estimate_range(frame.pixels, max_samples=max_samples)
    if upper <= lower:
        raise PixelDecodeError(f"Degenerate intensity range ({lower}-{upper})")
    grid = nearest_neighbor(frame.pixels, size)
    return rescale_to_uint8(grid, lower, upper, invert=frame.inverted)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_data_uri(image: Image.Image) -> str:
    """PNG-encode *image* as a base64 ``data:`` URI."""
    bio = io.BytesIO()
    image.save(bio, "PNG")
    return _DATA_URI_PREFIX + base64.b64encode(bio.getvalue()).decode()


def decode_data_uri(uri: str) -> Image.Image:
    """Inverse of encode_data_uri."""
    if not uri.startswith(_DATA_URI_PREFIX):
        raise ValueError("Not a base64 PNG data URI")
    image = Image.open(io.BytesIO(base64.b64decode(uri[len(_DATA_URI_PREFIX):])))
    image.load()
    return image


def _grayscale_rgba(gray: np.ndarray) -> Image.Image:
    alpha = np.full_like(gray, 255)
    return Image.fromarray(np.dstack([gray, gray, gray, alpha]))


# ---------------------------------------------------------------------------
# Placeholder
# ---------------------------------------------------------------------------

def _mix(color: tuple, other: tuple, amount: float) -> tuple:
    """Blend *color* toward *other* by *amount* (0 keeps *color*)."""
    return tuple(int(round(c + (o - c) * amount)) for c, o in zip(color, other))


def _draw_centered(draw: ImageDraw.ImageDraw, text: str, size: int, y_center: float, font, fill) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (size - (right - left)) / 2 - left
    y = y_center - (bottom - top) / 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def placeholder_thumbnail(
    modality: str,
    series_description: str = "",
    size: Optional[int] = None,
) -> str:
    """
    Draw the modality-coloured placeholder preview.

    A pale tint of the modality colour fills the square, framed by a border
    in the full colour, with the modality code, the series description cut
    to 12 characters, and "DICOM" written underneath.
    """
    thumb_cfg = CONFIG["thumbnail"]
    size = size or thumb_cfg["size"]
    hex_color = thumb_cfg["modality_colors"].get(modality, thumb_cfg["default_color"])
    color = ImageColor.getrgb(hex_color)[:3]
    white = (255, 255, 255)

    image = Image.new("RGBA", (size, size), _mix(color, white, 1 - 0x20 / 255) + (255,))
    draw = ImageDraw.Draw(image)

    margin = max(1, size // 12)
    draw.rectangle(
        [margin, margin, size - 1 - margin, size - 1 - margin],
        outline=color,
        width=max(1, size // 60),
    )

    label = series_description[:_DESCRIPTION_CHARS]
    if len(series_description) > _DESCRIPTION_CHARS:
        label += "..."

    font = ImageFont.load_default()
    _draw_centered(draw, modality, size, size * 0.375, font, color)
    _draw_centered(draw, label, size, size * 0.54, font, _mix(color, white, 0.5))
    _draw_centered(draw, "DICOM", size, size * 0.71, font, color)

    return encode_data_uri(image)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def render_thumbnail(
    record: ImageRecord,
    size: Optional[int] = None,
    max_samples: Optional[int] = None,
) -> str:
    """
    Render the preview for one representative image.

    Parameters
    ----------
    record : ImageRecord
        Any record of the series; its source file is read in full, even
        for metadata-only records.
    size : int, optional
        Output edge length in pixels.  Defaults to config value.
    max_samples : int, optional
        Sample budget for window estimation.  Defaults to config value.

    Returns
    -------
    str
        A PNG ``data:`` URI.  Never raises: failures return the placeholder.
    """
    thumb_cfg = CONFIG["thumbnail"]
    size = size or thumb_cfg["size"]
    max_samples = max_samples or thumb_cfg["max_samples"]
    attrs = record.attributes

    # Metadata-only records are still decoded: their pixel module may simply
    # have been outside the header window
    try:
        frame = decode_first_frame(record.source_file.read())
        gray = window_frame(frame, size=size, max_samples=max_samples)
        uri = encode_data_uri(_grayscale_rgba(gray))
        logger.debug(
            "Generated thumbnail for series %s from %s (%dx%d, %d bit, %d frame(s)).",
            attrs.series_id, record.source_file.name, frame.pixels.shape[1],
            frame.pixels.shape[0], frame.bits_allocated, frame.frame_count,
        )
        return uri
    except PixelDecodeError as exc:
        logger.warning("Using placeholder thumbnail for %s: %s", record.source_file.name, exc)
    except Exception as exc:
        logger.error(
            "Thumbnail generation failed for %s: %s", record.source_file.name, exc, exc_info=True,
        )
    return placeholder_thumbnail(attrs.modality, attrs.series_description, size)
