"""Tests for series_preview/header_parser.py."""

import numpy as np
import pytest

from series_preview.header_parser import parse_header
from series_preview.models import DicomAttributes

# (7FE0,0010) PixelData tag as it appears in an explicit VR little endian stream
_PIXEL_DATA_TAG_BYTES = b"\xe0\x7f\x10\x00"


class TestAttributeExtraction:
    def test_identifying_tags_read(self, dicom_bytes):
        data = dicom_bytes(
            SeriesNumber=7, InstanceNumber=12, Modality="MR",
            SeriesDescription="T1 Axial", PatientName="Doe^Jane",
        )
        result = parse_header(data, name="a.dcm", full_file_scanned=True)
        attrs = result.attributes
        assert attrs.series_id == "1.2.826.0.1.1.1"
        assert attrs.study_id == "1.2.826.0.1.1"
        assert attrs.series_number == 7
        assert attrs.image_number == 12
        assert attrs.modality == "MR"
        assert attrs.series_description == "T1 Axial"
        assert attrs.study_description == "Test Study"
        assert attrs.patient_name == "Doe^Jane"
        assert attrs.study_date == "2024-01-15"
        assert attrs.sop_instance_id

    def test_pixel_geometry_read(self, dicom_bytes):
        pixels = np.zeros((6, 8), dtype=np.int16)
        result = parse_header(dicom_bytes(pixels), full_file_scanned=True)
        attrs = result.attributes
        assert (attrs.rows, attrs.columns) == (6, 8)
        assert attrs.bits_allocated == 16
        assert attrs.bits_stored == 16
        assert attrs.samples_per_pixel == 1
        assert attrs.pixel_representation == 1
        assert attrs.is_signed
        assert attrs.photometric_interpretation == "MONOCHROME2"

    def test_clean_header_is_pixel_ready(self, dicom_bytes):
        result = parse_header(dicom_bytes(), full_file_scanned=True)
        assert result.pixel_ready
        assert result.pixel_data_found is True
        assert not result.is_fallback
        assert result.warnings == []

    def test_frame_count_read(self, dicom_bytes):
        frames = np.zeros((4, 4, 4), dtype=np.uint8)
        result = parse_header(dicom_bytes(frames), full_file_scanned=True)
        assert result.attributes.frame_count == 4

    def test_single_frame_defaults_to_one(self, dicom_bytes):
        result = parse_header(dicom_bytes(), full_file_scanned=True)
        assert result.attributes.frame_count == 1


class TestDefaults:
    def test_missing_identifiers_are_generated(self, dicom_bytes):
        data = dicom_bytes(omit=("SeriesInstanceUID", "StudyInstanceUID"))
        result = parse_header(data, full_file_scanned=True)
        assert result.attributes.series_id.startswith("generated-series-")
        assert result.attributes.study_id.startswith("generated-study-")
        assert result.has_warnings

    def test_generated_identifiers_are_unique(self, dicom_bytes):
        data = dicom_bytes(omit=("SeriesInstanceUID",))
        a = parse_header(data).attributes.series_id
        b = parse_header(data).attributes.series_id
        assert a != b

    def test_missing_display_fields_use_placeholders(self, dicom_bytes):
        data = dicom_bytes(omit=(
            "SeriesDescription", "StudyDescription", "PatientName", "Modality",
            "SeriesNumber", "InstanceNumber",
        ))
        attrs = parse_header(data, full_file_scanned=True).attributes
        assert attrs.series_description == "Unknown Series"
        assert attrs.study_description == "Unknown Study"
        assert attrs.patient_name == "Anonymous Patient"
        assert attrs.modality == "OT"
        assert attrs.series_number == 1
        assert attrs.image_number == 1

    def test_non_numeric_integer_tag_falls_back_to_one(self, dicom_bytes):
        data = dicom_bytes(extra_elements=((0x00200013, "LO", "abc"),))
        result = parse_header(data, full_file_scanned=True)
        assert result.attributes.image_number == 1
        assert any("InstanceNumber" in w for w in result.warnings)

    def test_missing_samples_per_pixel_is_a_warning(self, dicom_bytes):
        data = dicom_bytes(omit=("SamplesPerPixel",))
        result = parse_header(data, full_file_scanned=True)
        assert result.pixel_ready
        assert result.attributes.samples_per_pixel == 1
        assert any("samples per pixel" in w for w in result.warnings)

    def test_strict_mode_promotes_samples_per_pixel_warning(self, dicom_bytes):
        data = dicom_bytes(omit=("SamplesPerPixel",))
        result = parse_header(data, full_file_scanned=True, strict=True)
        assert not result.pixel_ready


class TestValidation:
    def test_missing_rows_is_an_error(self, dicom_bytes):
        result = parse_header(dicom_bytes(omit=("Rows",)), full_file_scanned=True)
        assert not result.pixel_ready
        assert result.attributes.rows is None
        assert any("dimensions" in e for e in result.errors)

    def test_missing_bits_allocated_is_an_error(self, dicom_bytes):
        result = parse_header(dicom_bytes(omit=("BitsAllocated",)), full_file_scanned=True)
        assert not result.pixel_ready
        assert any("bits allocated" in e for e in result.errors)

    def test_no_pixel_data_after_full_scan_is_an_error(self, dicom_bytes):
        data = dicom_bytes(with_pixel_data=False)
        result = parse_header(data, full_file_scanned=True)
        assert result.pixel_data_found is False
        assert "No pixel data found" in result.errors

    def test_pixel_data_outside_prefix_is_deferred(self, dicom_bytes):
        data = dicom_bytes()
        prefix = data[:data.index(_PIXEL_DATA_TAG_BYTES)]
        result = parse_header(prefix, full_file_scanned=False)
        assert result.pixel_data_found is None
        assert result.pixel_ready
        assert result.attributes.rows == 4


class TestFallback:
    @pytest.mark.parametrize("data", [
        b"",
        b"this is not a dicom file at all " * 20,
        bytes(range(256)) * 4,
    ])
    def test_unrecognisable_bytes_return_complete_attributes(self, data):
        result = parse_header(data, name="junk.bin")
        assert isinstance(result.attributes, DicomAttributes)
        assert result.is_fallback
        assert result.has_warnings
        assert result.attributes.series_id
        assert result.attributes.study_id
        assert result.attributes.patient_name == "Anonymous Patient"
        assert result.attributes.frame_count == 1

    def test_fallback_description_names_the_file(self):
        result = parse_header(b"", name="scan.dcm")
        assert result.attributes.series_description == "File: scan.dcm"

    def test_undecodable_complete_file_has_no_pixel_data(self):
        result = parse_header(b"this is not a dicom file at all " * 20, name="junk.dcm", full_file_scanned=True)
        assert result.is_fallback
        assert result.pixel_data_found is False
        assert "No pixel data found" in result.errors

    def test_undecodable_prefix_defers_pixel_check(self):
        result = parse_header(b"this is not a dicom file at all " * 20, name="junk.dcm")
        assert result.is_fallback
        assert result.pixel_data_found is None

    def test_prefix_cut_inside_pixel_data_never_raises(self, dicom_bytes):
        data = dicom_bytes(np.zeros((32, 32), dtype=np.uint16))
        prefix = data[:data.index(_PIXEL_DATA_TAG_BYTES) + 40]
        result = parse_header(prefix, full_file_scanned=False)
        assert result.attributes.series_id
