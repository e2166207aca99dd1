"""
run_full_pipeline.py - End-to-end preview demonstration.

Generates a synthetic study (if data/raw is empty), ingests every file,
groups the images into series, renders one thumbnail per series, and
saves the thumbnails plus an overview sheet to reports/.

Usage
-----
    python scripts/run_full_pipeline.py              # uses data/raw/
    python scripts/run_full_pipeline.py path/to/dir  # any folder of files
"""

import logging
import os
import sys

# Ensure repo root is on sys.path regardless of launch directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

import matplotlib
matplotlib.use("Agg")  # non-interactive backend, no display needed

from series_preview.aggregator import group_by_study
from series_preview.config import CONFIG
from series_preview.ingestor import IngestionSession
from series_preview.pipeline import build_previews, files_from_folder
from series_preview.thumbnails import decode_data_uri
from series_preview.visualization import plot_series_overview

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)-8s %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
INPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])
REPORTS_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["reports_folder"])


def _ensure_sample_data(folder: str) -> None:
    """Generate synthetic data if *folder* is missing or empty."""
    if os.path.isdir(folder) and any(not f.startswith(".") for f in os.listdir(folder)):
        return

    logger.info("No input files in %s, generating samples", folder)
    from scripts.generate_sample_data import generate  # noqa: E402
    generate(folder)


def main() -> None:
    folder = sys.argv[1] if len(sys.argv) > 1 else INPUT_FOLDER
    if folder == INPUT_FOLDER:
        _ensure_sample_data(folder)
    os.makedirs(REPORTS_FOLDER, exist_ok=True)

    # ── Step 1: Ingest and build the previews ──────────────────────────────
    print("=" * 60)
    print("STEP 1: Ingest files and build series previews")
    print("=" * 60)
    files = files_from_folder(folder)
    with IngestionSession() as session:
        report = build_previews(files, session=session)
        print(report.summary())
        print()

        # ── Step 2: Study / series layout ──────────────────────────────────
        print("=" * 60)
        print("STEP 2: Studies and image ids")
        print("=" * 60)
        for study_id, study_series in group_by_study(report.series).items():
            print(f"  Study {study_id}")
            for s in study_series:
                ids = session.image_ids_for_series(s.series_id)
                print(f"    #{s.series_number} {s.modality}: {ids[0]} … {ids[-1]} ({len(ids)})")
        print()

    # ── Step 3: Save thumbnails and the overview sheet ─────────────────────
    print("=" * 60)
    print("STEP 3: Saving thumbnails to reports/")
    print("=" * 60)
    for s in report.series:
        path = os.path.join(REPORTS_FOLDER, f"series_{s.series_number:03d}_{s.modality}.png")
        decode_data_uri(s.thumbnail).save(path)
        print(f"  Saved: {path}")

    fig = plot_series_overview(report.series)
    path = os.path.join(REPORTS_FOLDER, "series_overview.png")
    fig.savefig(path, dpi=100, bbox_inches="tight")
    print(f"  Saved: {path}")
    print()


if __name__ == "__main__":
    main()
