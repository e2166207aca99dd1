"""
visualization.py - matplotlib overview of the series previews.

Plot functions return the Figure so callers can save or display it.
"""

import logging

import matplotlib.pyplot as plt
import numpy as np

from series_preview.models import SeriesRecord
from series_preview.thumbnails import decode_data_uri, placeholder_thumbnail

logger = logging.getLogger(__name__)

# Consistent figure style across all plots
plt.rcParams.update({"figure.dpi": 100, "axes.titlesize": 9})


def plot_series_overview(series: list[SeriesRecord], columns: int = 4) -> plt.Figure:
    """
    Lay out every series thumbnail in a grid, one tile per series.

    Parameters
    ----------
    series : list[SeriesRecord]
        Series in display order.  Records without a thumbnail get the
        modality placeholder.
    columns : int
        Tiles per row.

    Returns
    -------
    plt.Figure
    """
    n = max(1, len(series))
    columns = max(1, min(columns, n))
    rows = -(-n // columns)
    fig, axes = plt.subplots(rows, columns, figsize=(2.2 * columns, 2.4 * rows), squeeze=False)

    for ax in axes.ravel():
        ax.axis("off")

    if not series:
        axes[0, 0].set_title("No series loaded")
        return fig

    for ax, s in zip(axes.ravel(), series):
        uri = s.thumbnail or placeholder_thumbnail(s.modality, s.series_description)
        ax.imshow(np.asarray(decode_data_uri(uri).convert("RGB")))
        ax.set_title(f"#{s.series_number} {s.modality} ({s.image_count})\n{s.series_description[:18]}")

    fig.suptitle(f"{len(series)} series, {sum(s.image_count for s in series)} images")
    fig.tight_layout()
    logger.debug("Plotted overview of %d series.", len(series))
    return fig
