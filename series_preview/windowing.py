"""
windowing.py - Min/max window estimation and grayscale rescaling.

WHY THIS MATTERS
----------------
Stored pixel values are integers whose useful range depends on the modality
and bit depth: an 8-bit ultrasound frame spans 0-255, a 16-bit CT slice
often spans a few thousand values.  A preview must map the range the image
actually uses onto the 0-255 display range, otherwise the picture is either
black or washed out.

The window is estimated from a strided sample of the pixels rather than the
full array, which keeps the cost bounded for very large frames:

    stride = max(1, n_pixels // max_samples)
    lower, upper = min(sample), max(sample)
    display = floor((value - lower) * 255 / (upper - lower))

MONOCHROME1 images store "higher value = darker", so their output is
inverted after rescaling.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES = 10000


def estimate_range(
    pixels: np.ndarray,
    max_samples: int = DEFAULT_MAX_SAMPLES,
) -> tuple[float, float]:
    """
    Approximate the minimum and maximum of *pixels* from a strided sample.

    Parameters
    ----------
    pixels : np.ndarray
        Pixel values of one frame (any shape).
    max_samples : int
        Upper bound on the number of values inspected.

    Returns
    -------
    tuple[float, float]
        (lower, upper) of the sampled values.

    Raises
    ------
    ValueError
        If *pixels* is empty.
    """
    flat = np.ravel(pixels)
    if flat.size == 0:
        raise ValueError("Cannot estimate a window from an empty pixel array.")
    stride = max(1, flat.size // max(1, max_samples))
    sample = flat[::stride]
    lower, upper = float(sample.min()), float(sample.max())
    logger.debug("Sampled %d of %d pixels: range %.1f-%.1f", sample.size, flat.size, lower, upper)
    return lower, upper


def rescale_to_uint8(
    values: np.ndarray,
    lower: float,
    upper: float,
    invert: bool = False,
) -> np.ndarray:
    """
    Linearly map [lower, upper] onto 0-255, clamping anything outside.

    Values are floored after scaling, so the window edges land exactly on
    0 and 255 and intermediate integers are preserved when the window is
    already 0-255.

    Raises
    ------
    ValueError
        If the window has zero or negative width.
    """
    width = upper - lower
    if width <= 0:
        raise ValueError(
            f"Window width must be > 0, got lower={lower}, upper={upper}."
        )
    # Multiply before dividing so integer-valued inputs stay exact
    scaled = (values.astype(np.float64) - lower) * 255.0 / width
    if invert:
        scaled = 255.0 - scaled
    return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)


def nearest_neighbor(pixels: np.ndarray, size: int) -> np.ndarray:
    """
    Resample a 2-D array onto a ``size`` x ``size`` grid.

    Destination pixel (y, x) takes the source value at
    ``(floor(y * rows / size), floor(x * columns / size))``.
    """
    if pixels.ndim != 2:
        raise ValueError(f"Expected a 2-D frame, got shape {pixels.shape}.")
    if size < 1:
        raise ValueError(f"Output size must be >= 1, got {size}.")
    rows, columns = pixels.shape
    ys = (np.arange(size) * rows) // size
    xs = (np.arange(size) * columns) // size
    return pixels[np.ix_(ys, xs)]
