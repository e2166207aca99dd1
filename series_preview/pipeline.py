"""
pipeline.py - Files in, series previews out.

Runs the stages in order for one batch of user-supplied files:

    RawFiles -> IngestionSession.ingest -> build_series -> render_thumbnail

and returns the series enriched with their thumbnails.  Each stage handles
its own per-file and per-thumbnail failures, so the pipeline only ever
returns a (possibly empty) report.
"""

import logging
import os
import time
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from series_preview.aggregator import SeriesStatistics, build_series, series_statistics
from series_preview.ingestor import IngestionReport, IngestionSession
from series_preview.models import ImageRecord, RawFile, SeriesRecord
from series_preview.thumbnails import render_thumbnail

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class PreviewReport:
    """Aggregate report produced at the end of a preview run."""
    ingestion: IngestionReport
    series: list[SeriesRecord] = field(default_factory=list)
    statistics: SeriesStatistics = field(default_factory=lambda: SeriesStatistics(0, 0, ()))
    elapsed_s: float = 0.0

    def summary(self) -> str:
        lines = [
            self.ingestion.summary(),
            "",
            "=" * 50,
            "SERIES SUMMARY",
            "=" * 50,
            f"Series               : {self.statistics.series_count}",
            f"Images               : {self.statistics.total_images}",
            f"Modalities           : {', '.join(self.statistics.modalities) or '-'}",
            f"Total time           : {self.elapsed_s:.2f}s",
        ]
        if self.series:
            lines.append("\nSeries:")
            for s in self.series:
                flag = f"  (conflicting: {', '.join(s.divergent_fields)})" if s.divergent_fields else ""
                lines.append(
                    f"  - #{s.series_number} {s.modality} {s.series_description!r}: "
                    f"{s.image_count} image(s){flag}"
                )
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def files_from_folder(folder: str, recursive: bool = False) -> list[RawFile]:
    """
    Wrap every non-hidden file in *folder* as a RawFile, sorted by path.

    A missing folder is logged and yields an empty list.
    """
    if not os.path.isdir(folder):
        logger.error("Input folder not found: %s", folder)
        return []

    paths: list[str] = []
    if recursive:
        for root, dirs, names in os.walk(folder):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            paths.extend(os.path.join(root, n) for n in names if not n.startswith("."))
    else:
        paths = [
            os.path.join(folder, n) for n in os.listdir(folder)
            if not n.startswith(".") and os.path.isfile(os.path.join(folder, n))
        ]
    return [RawFile.from_path(p) for p in sorted(paths)]


# ---------------------------------------------------------------------------
# Core pipeline
# ---------------------------------------------------------------------------

def attach_thumbnails(
    series: Iterable[SeriesRecord],
    records: Iterable[ImageRecord],
    size: Optional[int] = None,
) -> list[SeriesRecord]:
    """
    Return copies of *series* carrying a thumbnail rendered from the first
    image of each series' ordered image list.
    """
    by_id = {r.image_id: r for r in records}
    enriched = []
    for s in series:
        representative = by_id[s.ordered_image_ids[0]]
        enriched.append(replace(s, thumbnail=render_thumbnail(representative, size=size)))
    return enriched


def build_previews(
    files: Iterable[RawFile],
    session: Optional[IngestionSession] = None,
    thumbnail_size: Optional[int] = None,
) -> PreviewReport:
    """
    Ingest *files* and produce one thumbnail-bearing SeriesRecord per series.

    Parameters
    ----------
    files : iterable of RawFile
        Files in submission order.
    session : IngestionSession, optional
        Session that will own the records.  A fresh one is created when
        omitted; pass one in to keep the image ids resolvable afterwards.
    thumbnail_size : int, optional
        Output edge length.  Defaults to config value.

    Returns
    -------
    PreviewReport
        Series for every record in the session, including records from
        earlier ``ingest`` calls on the same session.
    """
    session = session if session is not None else IngestionSession()
    start = time.time()

    ingestion = session.ingest(files)
    records = session.records
    series = attach_thumbnails(build_series(records), records, size=thumbnail_size)

    report = PreviewReport(
        ingestion=ingestion,
        series=series,
        statistics=series_statistics(series),
        elapsed_s=time.time() - start,
    )
    if not series:
        logger.warning("No series could be built from %d file(s).", ingestion.total_files)
    logger.info(report.summary())
    return report
