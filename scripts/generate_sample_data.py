"""
generate_sample_data.py - Create synthetic DICOM files for an end-to-end demo.

Writes a small mixed study to data/raw/ so the preview pipeline can run
without real patient data:

- a 16-bit CT series of six slices (instance numbers deliberately shuffled)
- a single 8-bit multi-frame MR file with five frames
- an extensionless 8-bit MONOCHROME1 CR image
- a plain-text note that the ingestor should skip

Usage
-----
    python scripts/generate_sample_data.py

After running, try:
    python scripts/run_full_pipeline.py
"""

import os
import sys

import numpy as np
import pydicom
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian, generate_uid

# Make sure repo root is on the path when run as a script
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _REPO_ROOT)

from series_preview.config import CONFIG  # noqa: E402

OUTPUT_FOLDER = os.path.join(_REPO_ROOT, CONFIG["paths"]["input_folder"])

_STUDY_UID = generate_uid()


def _make_dicom(
    path: str,
    pixels: np.ndarray,
    modality: str,
    series_uid: str,
    series_number: int,
    series_description: str,
    instance_number: int,
    photometric: str = "MONOCHROME2",
) -> None:
    """
    Write one synthetic DICOM file.

    *pixels* is (rows, cols) for a single frame or (frames, rows, cols) for
    a multi-frame object; its dtype decides BitsAllocated and
    PixelRepresentation.
    """
    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.7")
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(path, {}, file_meta=file_meta, preamble=b"\0" * 128)

    ds.PatientName = "Synthetic^Patient"
    ds.PatientID = "00001"
    ds.StudyInstanceUID = _STUDY_UID
    ds.StudyDescription = "Synthetic Demo Study"
    ds.StudyDate = "20240115"
    ds.SeriesInstanceUID = series_uid
    ds.SeriesNumber = series_number
    ds.SeriesDescription = series_description
    ds.Modality = modality
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.InstanceNumber = instance_number

    if pixels.ndim == 3:
        ds.NumberOfFrames = pixels.shape[0]
    ds.Rows, ds.Columns = pixels.shape[-2:]
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = photometric
    ds.BitsAllocated = pixels.dtype.itemsize * 8
    ds.BitsStored = ds.BitsAllocated
    ds.HighBit = ds.BitsAllocated - 1
    ds.PixelRepresentation = 1 if pixels.dtype.kind == "i" else 0
    ds.PixelData = pixels.tobytes()

    ds.save_as(path)


def _phantom(size: int, rng: np.random.Generator, radius: float) -> np.ndarray:
    """A bright disc on a noisy background, values in 0-1."""
    yy, xx = np.mgrid[:size, :size]
    disc = ((yy - size / 2) ** 2 + (xx - size / 2) ** 2) < (radius * size) ** 2
    return np.clip(0.2 + 0.6 * disc + rng.normal(0, 0.05, (size, size)), 0, 1)


def generate(output_folder: str = OUTPUT_FOLDER) -> None:
    """Generate the synthetic study into *output_folder*."""
    os.makedirs(output_folder, exist_ok=True)
    rng = np.random.default_rng(42)
    written = []

    ct_uid = generate_uid()
    for i, instance in enumerate([3, 1, 6, 2, 5, 4], start=1):
        hu = _phantom(64, rng, radius=0.15 + 0.03 * instance) * 2000 - 1000
        name = f"ct_{i:02d}.dcm"
        _make_dicom(
            os.path.join(output_folder, name), hu.astype(np.int16), "CT",
            ct_uid, 2, "Axial Head", instance,
        )
        written.append(name)

    frames = np.stack([(_phantom(48, rng, 0.1 + 0.05 * f) * 255) for f in range(5)]).astype(np.uint8)
    _make_dicom(
        os.path.join(output_folder, "mr_cine.dcm"), frames, "MR",
        generate_uid(), 3, "Cine Short Axis", 1,
    )
    written.append("mr_cine.dcm")

    cr = (_phantom(80, rng, 0.3) * 255).astype(np.uint8)
    _make_dicom(
        os.path.join(output_folder, "CR0001"), cr, "CR",
        generate_uid(), 1, "Chest PA", 1, photometric="MONOCHROME1",
    )
    written.append("CR0001")

    with open(os.path.join(output_folder, "notes.txt"), "w") as f:
        f.write("Not a DICOM file; the ingestor should skip it.\n")
    written.append("notes.txt")

    print(f"Wrote {len(written)} files to: {output_folder}")
    print("-" * 60)
    for name in written:
        print(f"  {name}")
    print("-" * 60)
    print("Done.  Build the previews with:")
    print("  python scripts/run_full_pipeline.py")


if __name__ == "__main__":
    generate()
