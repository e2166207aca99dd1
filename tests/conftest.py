"""Shared fixtures: synthetic DICOM files built in memory."""

import io

import matplotlib
matplotlib.use("Agg")  # non-interactive backend for the plotting tests

import numpy as np
import pydicom
import pytest
from pydicom.dataset import FileDataset
from pydicom.uid import ExplicitVRLittleEndian

from series_preview.models import RawFile

# The four intensity bands used by the windowing scenarios
BANDS_4X4 = np.array(
    [[0] * 4, [85] * 4, [170] * 4, [255] * 4],
    dtype=np.uint8,
)


def make_dicom_bytes(
    pixels: np.ndarray = None,
    omit: tuple = (),
    with_pixel_data: bool = True,
    extra_elements: tuple = (),
    **tags,
) -> bytes:
    """
    Serialise a minimal explicit-VR little-endian DICOM file.

    *pixels* is (rows, cols) or (frames, rows, cols); its dtype sets
    BitsAllocated and PixelRepresentation.  Keyword arguments override
    or add elements by keyword; names in *omit* are deleted, then
    *extra_elements* ``(tag, VR, value)`` are written as given, which allows
    values pydicom would refuse through keyword assignment.
    """
    if pixels is None:
        pixels = BANDS_4X4

    file_meta = pydicom.Dataset()
    file_meta.MediaStorageSOPClassUID = pydicom.uid.UID("1.2.840.10008.5.1.4.1.1.7")
    file_meta.MediaStorageSOPInstanceUID = pydicom.uid.generate_uid()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian

    ds = FileDataset(filename_or_obj=None, dataset={}, file_meta=file_meta, preamble=b"\0" * 128)
    ds.PatientName = "Test^Patient"
    ds.StudyInstanceUID = "1.2.826.0.1.1"
    ds.StudyDescription = "Test Study"
    ds.StudyDate = "20240115"
    ds.SeriesInstanceUID = "1.2.826.0.1.1.1"
    ds.SeriesNumber = 1
    ds.SeriesDescription = "Test Series"
    ds.Modality = "CT"
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.InstanceNumber = 1

    if pixels.ndim == 3:
        ds.NumberOfFrames = pixels.shape[0]
    ds.Rows, ds.Columns = pixels.shape[-2:]
    ds.SamplesPerPixel = 1
    ds.PhotometricInterpretation = "MONOCHROME2"
    ds.BitsAllocated = pixels.dtype.itemsize * 8
    ds.BitsStored = pixels.dtype.itemsize * 8
    ds.HighBit = pixels.dtype.itemsize * 8 - 1
    ds.PixelRepresentation = 1 if pixels.dtype.kind == "i" else 0
    if with_pixel_data:
        ds.PixelData = pixels.tobytes()

    for key, value in tags.items():
        setattr(ds, key, value)
    for key in omit:
        if hasattr(ds, key):
            delattr(ds, key)
    for tag, vr, value in extra_elements:
        ds.add_new(tag, vr, value)

    buf = io.BytesIO()
    ds.save_as(buf)
    return buf.getvalue()


def make_raw_file(name: str = "image.dcm", content_type: str = "", **kwargs) -> RawFile:
    """RawFile wrapping make_dicom_bytes(**kwargs)."""
    return RawFile.from_bytes(name, make_dicom_bytes(**kwargs), content_type=content_type)


@pytest.fixture
def dicom_bytes():
    return make_dicom_bytes


@pytest.fixture
def raw_dicom():
    return make_raw_file
