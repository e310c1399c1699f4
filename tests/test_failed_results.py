"""Tests for failed_results.py - Archiving a failed job's working directory."""

import os
import time
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.failed_results import FailedResultsArchiver


def make_archiver(root, **kwargs):
    return FailedResultsArchiver(root, "QC_4bit_01", job=1234, step=2, step_tool="ImsDeMultiplex",
                                 manager_name="Proto-3_IMS", **kwargs)


class TestFailedResultsArchiver:
    def test_not_configured(self, tmp_path):
        archiver = FailedResultsArchiver(None, "QC", job=1, step=1)

        assert archiver.archive(tmp_path) == 0

    def test_archive_name(self, tmp_path):
        assert make_archiver(tmp_path).archive_name == "QC_4bit_01_Job1234_Step2"

    def test_copies_work_dir_and_writes_info_file(self, tmp_path):
        work_dir = tmp_path / "work"
        (work_dir / "sub").mkdir(parents=True)
        (work_dir / "UIMFDemultiplexer_ConsoleOutput.txt").write_text("Error: bad")
        (work_dir / "sub" / "x.txt").write_text("x")
        root = tmp_path / "failed"

        copied = make_archiver(root).archive(work_dir)

        archive = root / "QC_4bit_01_Job1234_Step2"
        assert copied == 2
        assert (archive / "UIMFDemultiplexer_ConsoleOutput.txt").read_text() == "Error: bad"
        assert (archive / "sub" / "x.txt").exists()

        info = (root / "FailedResultsFolderInfo_QC_4bit_01_Job1234_Step2.txt").read_text()
        assert "Job\t1234" in info
        assert "Manager\tProto-3_IMS" in info
        assert "Dataset\tQC_4bit_01" in info

    def test_missing_work_dir(self, tmp_path):
        assert make_archiver(tmp_path / "failed").archive(tmp_path / "missing") == 0

    def test_purges_old_archives(self, tmp_path):
        root = tmp_path / "failed"
        old_archive = root / "Old_Job1_Step1"
        old_archive.mkdir(parents=True)
        old_info = root / "FailedResultsFolderInfo_Old_Job1_Step1.txt"
        old_info.write_text("Date\t2020-01-01")
        stamp = time.time() - 40 * 86400
        os.utime(old_info, (stamp, stamp))

        recent_archive = root / "New_Job2_Step1"
        recent_archive.mkdir()
        (root / "FailedResultsFolderInfo_New_Job2_Step1.txt").write_text("Date\tnow")

        purged = make_archiver(root).purge_old_archives()

        assert purged == 1
        assert not old_archive.exists()
        assert (root / "x_FailedResultsFolderInfo_Old_Job1_Step1.txt").exists()
        assert recent_archive.exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
