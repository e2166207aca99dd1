"""
ingestor.py - Batch ingestion of user-supplied DICOM files.

Turns an ordered list of RawFiles into a flat, ordered list of ImageRecords:

1. Filter out files that do not look like DICOM (extension / media type).
2. Read a capped header window from each candidate and parse it, a fixed
   number of files at a time on a thread pool.  A group fully settles
   before the next one starts, so at most ``batch_size`` header buffers are
   resident at once.
3. Expand multi-frame files into one record per frame.

Results are appended group by group in submission order, so the final list
does not depend on which parse inside a group finished first.

The session owns the records it creates and the ``dicomfile:`` handles that
make their bytes addressable by image id; ``clear()`` releases both.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

from series_preview.config import CONFIG
from series_preview.header_parser import parse_header
from series_preview.models import DicomAttributes, HeaderResult, ImageRecord, RawFile

logger = logging.getLogger(__name__)

IMAGE_ID_SCHEME = "dicomfile:"
_FRAME_QUERY = "?frame="


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class SkippedFile:
    """A submitted file that produced no records, and why."""
    name: str
    reason: str
    # Position in the submitted list; names repeat across folders
    index: int = -1


@dataclass
class IngestionReport:
    """Outcome of one ``IngestionSession.ingest`` call."""
    total_files: int = 0
    accepted_files: int = 0
    records: list[ImageRecord] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)
    failed: list[SkippedFile] = field(default_factory=list)
    # Keyed by position in the submitted list
    warnings: dict[int, list[str]] = field(default_factory=dict)
    elapsed_s: float = 0.0

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    def summary(self) -> str:
        lines = [
            "=" * 50,
            "INGESTION SUMMARY",
            "=" * 50,
            f"Files submitted      : {self.total_files}",
            f"Files accepted       : {self.accepted_files}",
            f"Image records        : {len(self.records)}",
            f"Skipped              : {self.skipped_count}",
            f"Failed               : {self.failed_count}",
            f"Total time           : {self.elapsed_s:.2f}s",
        ]
        if self.skipped:
            lines.append("\nSkipped files:")
            for s in self.skipped:
                lines.append(f"  - [{s.index}] {s.name}: {s.reason}")
        if self.failed:
            lines.append("\nFailed files:")
            for s in self.failed:
                lines.append(f"  - [{s.index}] {s.name}: {s.reason}")
        return "\n".join(lines)


@dataclass
class _ParseOutcome:
    index: int
    raw: RawFile
    header: Optional[HeaderResult] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Filtering and frame expansion
# ---------------------------------------------------------------------------

def is_dicom_candidate(
    raw: RawFile,
    extensions: Optional[Iterable[str]] = None,
    media_type: Optional[str] = None,
) -> tuple[bool, str]:
    """
    Decide whether *raw* should be handed to the header parser.

    A file qualifies if its name has a recognised extension, its declared
    content type is the DICOM media type, or it has no extension at all
    (extensionless exports are common).

    Returns
    -------
    tuple[bool, str]
        Whether the file qualifies and a short reason.
    """
    if extensions is None:
        extensions = CONFIG["ingestion"]["dicom_extensions"]
    media_type = media_type or CONFIG["ingestion"]["dicom_media_type"]

    if raw.extension in {e.lower() for e in extensions}:
        return True, f"recognised extension {raw.extension}"
    if raw.content_type == media_type:
        return True, f"content type {media_type}"
    if raw.extension == "":
        return True, "no extension"
    return False, f"not a DICOM candidate (extension {raw.extension!r}, content type {raw.content_type!r})"


def expand_frames(
    source: RawFile,
    base_id: str,
    attributes: DicomAttributes,
    metadata_only: bool = False,
) -> list[ImageRecord]:
    """
    Build the ImageRecords for one file.

    Single-frame files give one record addressed by *base_id*.  A file with
    N > 1 frames gives N records addressed ``<base_id>?frame=<i>`` with
    ``frame_index`` 0..N-1 and ``image_number`` offset by the frame index.
    """
    if attributes.frame_count <= 1:
        return [ImageRecord(source, base_id, attributes, metadata_only=metadata_only)]

    return [
        ImageRecord(
            source_file=source,
            image_id=f"{base_id}{_FRAME_QUERY}{i}",
            attributes=attributes.with_frame(i),
            frame_index=i,
            metadata_only=metadata_only,
        )
        for i in range(attributes.frame_count)
    ]


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class IngestionSession:
    """
    Session-scoped collection of ImageRecords.

    Parameters
    ----------
    batch_size : int, optional
        Files parsed concurrently per group.  Defaults to config value.
    header_window : int, optional
        Bytes read from the start of each file for header parsing.
    strict : bool, optional
        Promote pixel-module warnings to errors.
    retain_metadata_only : bool, optional
        Keep files whose pixel module is unusable as metadata-only records
        instead of skipping them.
    """

    def __init__(
        self,
        batch_size: Optional[int] = None,
        header_window: Optional[int] = None,
        strict: Optional[bool] = None,
        retain_metadata_only: Optional[bool] = None,
    ):
        ingest_cfg = CONFIG["ingestion"]
        validation_cfg = CONFIG["validation"]

        self.batch_size = batch_size if batch_size is not None else ingest_cfg["batch_size"]
        self.header_window = header_window if header_window is not None else ingest_cfg["header_window_bytes"]
        self.strict = strict if strict is not None else validation_cfg["strict"]
        self.retain_metadata_only = (
            retain_metadata_only if retain_metadata_only is not None
            else validation_cfg["retain_metadata_only"]
        )
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.header_window < 1:
            raise ValueError(f"header_window must be >= 1, got {self.header_window}")

        self._records: list[ImageRecord] = []
        self._handles: dict[str, RawFile] = {}
        self._next_handle = 0

    def __enter__(self) -> "IngestionSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[ImageRecord]:
        """Snapshot of all records, in ingestion order."""
        return list(self._records)

    # -- ingestion ---------------------------------------------------------

    def ingest(self, files: Iterable[RawFile]) -> IngestionReport:
        """
        Parse *files* and append their records to the session.

        One bad file never aborts the batch: it is recorded as skipped or
        failed and processing continues.

        Raises
        ------
        TypeError
            If *files* is None.
        """
        if files is None:
            raise TypeError("ingest() requires a list of files, got None")

        files = list(files)
        report = IngestionReport(total_files=len(files))
        start = time.time()

        candidates: list[tuple[int, RawFile]] = []
        for index, raw in enumerate(files):
            ok, reason = is_dicom_candidate(raw)
            if ok:
                candidates.append((index, raw))
            else:
                logger.warning("Skipping non-DICOM file %s: %s", raw.name, reason)
                report.skipped.append(SkippedFile(raw.name, reason, index))

        if not candidates:
            logger.warning("No DICOM candidates among %d file(s).", len(files))
            report.elapsed_s = time.time() - start
            return report

        n_batches = -(-len(candidates) // self.batch_size)
        logger.info(
            "Starting ingestion: %d candidate file(s) in %d batch(es) of up to %d.",
            len(candidates), n_batches, self.batch_size,
        )

        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for batch_no, offset in enumerate(range(0, len(candidates), self.batch_size), start=1):
                batch = candidates[offset:offset + self.batch_size]
                # map() yields in submission order; list() waits for the whole group
                outcomes = list(pool.map(self._read_and_parse, batch))
                for outcome in outcomes:
                    self._accept(outcome, report)
                logger.info(
                    "Completed batch %d/%d (%d/%d files).",
                    batch_no, n_batches, min(offset + self.batch_size, len(candidates)), len(candidates),
                )

        report.elapsed_s = time.time() - start
        logger.info(
            "Ingestion finished: %d record(s) from %d file(s), %d skipped, %d failed, %.2fs.",
            len(report.records), report.accepted_files, report.skipped_count,
            report.failed_count, report.elapsed_s,
        )
        return report

    def _read_and_parse(self, candidate: tuple[int, RawFile]) -> _ParseOutcome:
        """Worker: read the header window of one candidate and parse it."""
        index, raw = candidate
        window = min(raw.size, self.header_window)
        try:
            prefix = raw.read(0, window)
        except Exception as exc:
            logger.exception("Error reading %s: %s", raw.name, exc)
            return _ParseOutcome(index, raw, error=f"read failed: {exc}")

        header = parse_header(
            prefix,
            name=raw.name,
            full_file_scanned=window >= raw.size,
            strict=self.strict,
        )
        return _ParseOutcome(index, raw, header=header)

    def _accept(self, outcome: _ParseOutcome, report: IngestionReport) -> None:
        """Turn one parse outcome into records, a skip or a failure."""
        raw = outcome.raw
        if outcome.error is not None:
            report.failed.append(SkippedFile(raw.name, outcome.error, outcome.index))
            return

        header = outcome.header
        if header.warnings:
            report.warnings[outcome.index] = list(header.warnings)

        if header.pixel_data_found is False:
            logger.warning("Rejecting %s: no pixel data in the complete file.", raw.name)
            report.skipped.append(SkippedFile(raw.name, "No pixel data found", outcome.index))
            return

        metadata_only = not header.pixel_ready
        if metadata_only and not self.retain_metadata_only:
            reason = "; ".join(header.errors)
            logger.warning("Rejecting %s: %s", raw.name, reason)
            report.skipped.append(SkippedFile(raw.name, reason, outcome.index))
            return
        if metadata_only:
            logger.info("Keeping %s as a metadata-only record: %s", raw.name, "; ".join(header.errors))

        records = expand_frames(raw, self._register(raw), header.attributes, metadata_only=metadata_only)
        if len(records) > 1:
            logger.info(
                "Multi-frame file %s expanded to %d frames (series %s).",
                raw.name, len(records), header.attributes.series_id,
            )
        self._records.extend(records)
        report.records.extend(records)
        report.accepted_files += 1

    # -- handles -----------------------------------------------------------

    def _register(self, raw: RawFile) -> str:
        handle = f"{IMAGE_ID_SCHEME}{self._next_handle}"
        self._next_handle += 1
        self._handles[handle] = raw
        return handle

    def resolve(self, image_id: str) -> tuple[RawFile, Optional[int]]:
        """
        Map an image id back to its source file and frame index.

        Raises
        ------
        KeyError
            If the id was never issued or the session has been cleared.
        """
        handle, _, frame = image_id.partition(_FRAME_QUERY)
        raw = self._handles[handle]
        return raw, (int(frame) if frame else None)

    def image_ids(self) -> list[str]:
        return [r.image_id for r in self._records]

    def image_ids_for_series(self, series_id: str) -> list[str]:
        """Image ids of one series, ordered by image number (stable)."""
        members = [r for r in self._records if r.attributes.series_id == series_id]
        members.sort(key=lambda r: r.attributes.image_number)
        return [r.image_id for r in members]

    def clear(self) -> None:
        """Drop all records and release every file handle."""
        released = len(self._handles)
        self._handles.clear()
        self._records.clear()
        logger.info("Cleared session: released %d file handle(s).", released)
