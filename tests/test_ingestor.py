"""Tests for series_preview/ingestor.py."""

import threading
import time

import numpy as np
import pytest

import series_preview.ingestor as ingestor_module
from series_preview.config import CONFIG
from series_preview.header_parser import parse_header
from series_preview.ingestor import IngestionSession, expand_frames, is_dicom_candidate
from series_preview.models import DicomAttributes, RawFile

from conftest import make_raw_file


def _numbered_files(n: int) -> list[RawFile]:
    return [make_raw_file(f"img{i:02d}.dcm", InstanceNumber=i + 1) for i in range(n)]


class TestCandidateFilter:
    @pytest.mark.parametrize("name,content_type", [
        ("scan.dcm", ""),
        ("SCAN.DICOM", ""),
        ("scan.dic", ""),
        ("IM000123", ""),
        ("export.bin", "application/dicom"),
    ])
    def test_accepted(self, name, content_type):
        ok, _ = is_dicom_candidate(RawFile.from_bytes(name, b"", content_type))
        assert ok

    @pytest.mark.parametrize("name,content_type", [
        ("notes.txt", "text/plain"),
        ("photo.jpg", "image/jpeg"),
        ("archive.zip", ""),
    ])
    def test_rejected(self, name, content_type):
        ok, reason = is_dicom_candidate(RawFile.from_bytes(name, b"", content_type))
        assert not ok
        assert reason

    def test_dicom_extensions_come_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setitem(CONFIG["ingestion"], "dicom_extensions", [".ima"])
        monkeypatch.setitem(CONFIG["ingestion"], "dicom_media_type", "application/x-dicom")
        path = tmp_path / "SLICE.IMA"
        path.write_bytes(b"")
        raw = RawFile.from_path(str(path))
        assert raw.content_type == "application/x-dicom"
        assert is_dicom_candidate(raw)[0]


class TestRejection:
    def test_text_file_is_skipped_without_affecting_others(self):
        files = [
            make_raw_file("a.dcm", InstanceNumber=1),
            RawFile.from_bytes("notes.txt", b"hello", content_type="text/plain"),
            make_raw_file("b.dcm", InstanceNumber=2),
        ]
        with IngestionSession() as session:
            report = session.ingest(files)
            assert report.skipped_count == 1
            assert report.skipped[0].name == "notes.txt"
            assert [r.source_file.name for r in report.records] == ["a.dcm", "b.dcm"]
            assert report.accepted_files == 2

    def test_file_without_pixel_data_is_rejected(self):
        files = [make_raw_file("nopix.dcm", with_pixel_data=False), make_raw_file("ok.dcm")]
        session = IngestionSession()
        report = session.ingest(files)
        assert [r.source_file.name for r in report.records] == ["ok.dcm"]
        assert report.skipped[0].reason == "No pixel data found"

    def test_pixel_data_beyond_header_window_is_not_rejected(self):
        raw = make_raw_file("big.dcm", pixels=np.zeros((64, 64), dtype=np.uint16))
        window = raw.read().index(b"\xe0\x7f\x10\x00")
        session = IngestionSession(header_window=window)
        report = session.ingest([raw])
        assert len(report.records) == 1
        assert not report.records[0].metadata_only

    def test_unreadable_file_counts_as_failed(self, tmp_path):
        path = tmp_path / "gone.dcm"
        path.write_bytes(b"\0" * 200)
        raw = RawFile.from_path(str(path))
        path.unlink()
        report = IngestionSession().ingest([raw, make_raw_file("ok.dcm")])
        assert report.failed_count == 1
        assert report.failed[0].name == "gone.dcm"
        assert len(report.records) == 1

    def test_none_is_a_programming_error(self):
        with pytest.raises(TypeError):
            IngestionSession().ingest(None)

    def test_empty_input_gives_empty_report(self):
        report = IngestionSession().ingest([])
        assert report.records == []
        assert report.total_files == 0

    def test_same_name_in_different_folders_keeps_every_report_entry(self):
        files = [
            make_raw_file("IM00001", omit=("SeriesInstanceUID",)),
            RawFile.from_bytes("IM00001.txt", b"x", content_type="text/plain"),
            make_raw_file("IM00001", omit=("SeriesInstanceUID",)),
        ]
        report = IngestionSession().ingest(files)
        assert sorted(report.warnings) == [0, 2]
        assert all(any("SeriesInstanceUID" in w for w in ws) for ws in report.warnings.values())
        assert report.skipped[0].index == 1
        assert "[1] IM00001.txt" in report.summary()


class TestMetadataOnlyPolicy:
    def test_missing_dimensions_kept_as_metadata_only(self):
        session = IngestionSession(retain_metadata_only=True)
        report = session.ingest([make_raw_file("norows.dcm", omit=("Rows",))])
        assert len(report.records) == 1
        assert report.records[0].metadata_only

    def test_missing_dimensions_skipped_when_policy_disallows(self):
        session = IngestionSession(retain_metadata_only=False)
        report = session.ingest([make_raw_file("norows.dcm", omit=("Rows",))])
        assert report.records == []
        assert "dimensions" in report.skipped[0].reason

    def test_undecodable_complete_file_is_rejected(self):
        raw = RawFile.from_bytes("junk.dcm", b"not dicom " * 50)
        report = IngestionSession(retain_metadata_only=True).ingest([raw, make_raw_file("ok.dcm")])
        assert [r.source_file.name for r in report.records] == ["ok.dcm"]
        assert report.skipped[0].name == "junk.dcm"
        assert report.skipped[0].reason == "No pixel data found"

    def test_undecodable_prefix_kept_with_fallback_attributes(self):
        raw = RawFile.from_bytes("junk.dcm", b"not dicom " * 50)
        report = IngestionSession(header_window=100, retain_metadata_only=True).ingest([raw])
        assert len(report.records) == 1
        record = report.records[0]
        assert record.metadata_only
        assert record.attributes.series_id.startswith("fallback-series-")
        assert 0 in report.warnings


class TestOrdering:
    def test_order_matches_input_for_any_batch_size(self):
        files = _numbered_files(23)
        orders = []
        for batch_size in (1, 5, 23):
            report = IngestionSession(batch_size=batch_size).ingest(files)
            orders.append([r.source_file.name for r in report.records])
        assert orders[0] == [f.name for f in files]
        assert orders[0] == orders[1] == orders[2]

    def test_order_survives_out_of_order_completion(self, monkeypatch):
        files = _numbered_files(10)
        delays = {f.name: 0.01 * (10 - i) for i, f in enumerate(files)}
        finished = []
        lock = threading.Lock()

        def slow_parse(data, name="", **kwargs):
            time.sleep(delays[name])
            with lock:
                finished.append(name)
            return parse_header(data, name=name, **kwargs)

        monkeypatch.setattr(ingestor_module, "parse_header", slow_parse)
        report = IngestionSession(batch_size=5).ingest(files)

        assert finished != [f.name for f in files]
        assert [r.source_file.name for r in report.records] == [f.name for f in files]

    def test_repeated_ingest_appends(self):
        session = IngestionSession()
        session.ingest(_numbered_files(2))
        session.ingest([make_raw_file("later.dcm")])
        assert len(session) == 3
        assert session.records[-1].source_file.name == "later.dcm"


class TestFrameExpansion:
    def test_multi_frame_file_expands_to_one_record_per_frame(self):
        frames = np.zeros((4, 4, 4), dtype=np.uint8)
        raw = make_raw_file("cine.dcm", pixels=frames, InstanceNumber=10)
        report = IngestionSession().ingest([raw])
        records = report.records

        assert len(records) == 4
        assert [r.frame_index for r in records] == [0, 1, 2, 3]
        numbers = [r.attributes.image_number for r in records]
        assert numbers == [10, 11, 12, 13]
        assert all(b > a for a, b in zip(numbers, numbers[1:]))
        assert len({r.image_id for r in records}) == 4
        assert all(r.source_file is raw for r in records)
        assert records[2].image_id.endswith("?frame=2")

    def test_single_frame_has_no_frame_index(self):
        report = IngestionSession().ingest([make_raw_file()])
        assert report.records[0].frame_index is None
        assert "?frame=" not in report.records[0].image_id

    def test_expand_frames_directly(self):
        raw = RawFile.from_bytes("x.dcm", b"")
        attrs = DicomAttributes(series_id="s", study_id="t", image_number=1, frame_count=3)
        records = expand_frames(raw, "dicomfile:9", attrs)
        assert [r.image_id for r in records] == [
            "dicomfile:9?frame=0", "dicomfile:9?frame=1", "dicomfile:9?frame=2",
        ]


class TestSessionLifecycle:
    def test_resolve_returns_file_and_frame(self):
        frames = np.zeros((2, 4, 4), dtype=np.uint8)
        raw = make_raw_file("cine.dcm", pixels=frames)
        session = IngestionSession()
        session.ingest([raw])
        source, frame = session.resolve(session.image_ids()[1])
        assert source is raw
        assert frame == 1

    def test_clear_releases_handles(self):
        session = IngestionSession()
        session.ingest([make_raw_file()])
        image_id = session.image_ids()[0]
        session.clear()
        assert session.records == []
        with pytest.raises(KeyError):
            session.resolve(image_id)

    def test_context_manager_clears(self):
        with IngestionSession() as session:
            session.ingest([make_raw_file()])
            assert len(session) == 1
        assert len(session) == 0

    def test_image_ids_for_series_sorted_by_image_number(self):
        files = [
            make_raw_file("c.dcm", InstanceNumber=3),
            make_raw_file("a.dcm", InstanceNumber=1),
            make_raw_file("other.dcm", SeriesInstanceUID="9.9.9", InstanceNumber=2),
            make_raw_file("b.dcm", InstanceNumber=2),
        ]
        session = IngestionSession()
        session.ingest(files)
        ids = session.image_ids_for_series("1.2.826.0.1.1.1")
        names = [session.resolve(i)[0].name for i in ids]
        assert names == ["a.dcm", "b.dcm", "c.dcm"]

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            IngestionSession(batch_size=0)
