"""
aggregator.py - Group image records into series and summarise them.

SeriesRecords are a pure projection of the ImageRecord collection: they are
rebuilt from scratch on every call and never patched in place, so they can
not drift from the records they describe.

Ordering rules
--------------
- Within a series: ``image_number`` ascending, ties kept in ingestion order.
- Across series:   ``series_number`` ascending, ties kept in order of first
  appearance.

The attributes shown on a series come from its first record in ingestion
order.  Later records that disagree are reported in ``divergent_fields``
and logged, not merged.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from series_preview.models import ImageRecord, SeriesRecord

logger = logging.getLogger(__name__)

# Attributes expected to be constant across a series
_SERIES_LEVEL_FIELDS = (
    "study_id",
    "series_number",
    "series_description",
    "modality",
    "patient_name",
    "study_description",
)


@dataclass(frozen=True)
class SeriesStatistics:
    """Totals across a list of SeriesRecords."""
    series_count: int
    total_images: int
    modalities: tuple[str, ...]


def _divergent_fields(members: list[ImageRecord]) -> tuple[str, ...]:
    first = members[0].attributes
    return tuple(
        name for name in _SERIES_LEVEL_FIELDS
        if any(getattr(m.attributes, name) != getattr(first, name) for m in members[1:])
    )


def build_series(records: Iterable[ImageRecord]) -> list[SeriesRecord]:
    """
    Build one SeriesRecord per distinct ``series_id``.

    Parameters
    ----------
    records : iterable of ImageRecord
        The session's records in ingestion order.

    Returns
    -------
    list[SeriesRecord]
        Ordered by series number; empty when *records* is empty.
    """
    groups: dict[str, list[ImageRecord]] = {}
    for record in records:
        groups.setdefault(record.attributes.series_id, []).append(record)

    series: list[SeriesRecord] = []
    for series_id, members in groups.items():
        # sorted() is stable, so equal image numbers keep ingestion order
        ordered = sorted(members, key=lambda r: r.attributes.image_number)
        first = members[0].attributes
        divergent = _divergent_fields(members)
        if divergent:
            logger.warning(
                "Series %s has conflicting %s across its images; showing values from the first image.",
                series_id, ", ".join(divergent),
            )
        series.append(SeriesRecord(
            series_id=series_id,
            study_id=first.study_id,
            series_number=first.series_number,
            series_description=first.series_description,
            modality=first.modality,
            image_count=len(ordered),
            ordered_image_ids=tuple(r.image_id for r in ordered),
            patient_name=first.patient_name,
            study_description=first.study_description,
            study_date=first.study_date,
            divergent_fields=divergent,
        ))

    series.sort(key=lambda s: s.series_number)
    logger.debug("Built %d series from %d group(s).", len(series), len(groups))
    return series


def series_statistics(series: Iterable[SeriesRecord]) -> SeriesStatistics:
    """Recompute totals over *series*; nothing is cached."""
    series = list(series)
    return SeriesStatistics(
        series_count=len(series),
        total_images=sum(s.image_count for s in series),
        modalities=tuple(sorted({s.modality for s in series})),
    )


def group_by_study(series: Iterable[SeriesRecord]) -> dict[str, list[SeriesRecord]]:
    """Map study id -> its series, preserving the incoming series order."""
    studies: dict[str, list[SeriesRecord]] = {}
    for s in series:
        studies.setdefault(s.study_id, []).append(s)
    return studies


def filter_series(
    series: Iterable[SeriesRecord],
    modality: Optional[str] = None,
    study_id: Optional[str] = None,
) -> list[SeriesRecord]:
    """Keep series matching every filter that is given."""
    return [
        s for s in series
        if (modality is None or s.modality == modality)
        and (study_id is None or s.study_id == study_id)
    ]
