"""Tests for reconciler.py - Publishing results and cleaning up after failures."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.formats import DOT_D, UIMF
from ims_demux.models import CloseoutType, OperationResult, ResultBuilder
from ims_demux.reconciler import OutcomeReconciler

DATASET = "QC_4bit_01"


def make_reconciler(fmt, work_dir, remote_dir, **kwargs):
    archiver = MagicMock()
    reconciler = OutcomeReconciler(
        fmt, DATASET, work_dir, remote_dir, archiver, retry_delay=0, clean_holdoff_seconds=0, **kwargs
    )
    return reconciler, archiver


class TestReconcileSuccess:
    def test_rename_checkpoint_copy_and_clean(self, work_dir, remote_dir):
        (remote_dir / "QC_4bit_01.uimf").write_bytes(b"muxed")
        (remote_dir / "QC_4bit_01_decoded.uimf.tmp").write_bytes(b"checkpoint")
        (work_dir / "QC_4bit_01.uimf").write_bytes(b"muxed")
        decoded = work_dir / "QC_4bit_01_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler, _ = make_reconciler(UIMF, work_dir, remote_dir)
        result = ResultBuilder()

        assert reconciler.reconcile_success("QC_4bit_01.uimf", decoded, result) is True

        assert (remote_dir / "QC_4bit_01_encoded.uimf").read_bytes() == b"muxed"
        assert (remote_dir / "QC_4bit_01.uimf").read_bytes() == b"decoded"
        assert not (remote_dir / "QC_4bit_01_decoded.uimf.tmp").exists()
        assert list(work_dir.iterdir()) == []
        assert result.closeout == CloseoutType.SUCCESS

    def test_already_renamed_input_is_left_alone(self, work_dir, remote_dir):
        (remote_dir / "QC_4bit_01_encoded.uimf").write_bytes(b"muxed")
        decoded = work_dir / "QC_4bit_01_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler, _ = make_reconciler(UIMF, work_dir, remote_dir)

        assert reconciler.reconcile_success("QC_4bit_01_encoded.uimf", decoded, ResultBuilder())

        assert (remote_dir / "QC_4bit_01_encoded.uimf").read_bytes() == b"muxed"
        assert (remote_dir / "QC_4bit_01.uimf").read_bytes() == b"decoded"

    def test_rename_failure(self, work_dir, remote_dir):
        decoded = work_dir / "QC_4bit_01_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler, _ = make_reconciler(UIMF, work_dir, remote_dir)
        result = ResultBuilder()

        with patch("ims_demux.reconciler.rename_with_retry", return_value=False):
            assert reconciler.reconcile_success("QC_4bit_01.uimf", decoded, result) is False

        assert result.message == "Error renaming encoded UIMF file on storage server"

    def test_copy_back_failure_keeps_renamed_input(self, work_dir, remote_dir):
        (remote_dir / "QC_4bit_01.uimf").write_bytes(b"muxed")
        decoded = work_dir / "QC_4bit_01_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler, _ = make_reconciler(UIMF, work_dir, remote_dir)
        result = ResultBuilder()

        with patch("ims_demux.reconciler.copy_with_retry", return_value=False):
            assert reconciler.reconcile_success("QC_4bit_01.uimf", decoded, result) is False

        assert result.message == "Error copying demultiplexed UIMF file to storage server"
        assert (remote_dir / "QC_4bit_01_encoded.uimf").exists()

    def test_dataset_name_containing_encoded_is_still_renamed(self, work_dir, remote_dir):
        dataset = "Sample_encoded_gradient_4bit"
        (remote_dir / f"{dataset}.uimf").write_bytes(b"muxed")
        decoded = work_dir / f"{dataset}_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler = OutcomeReconciler(
            UIMF, dataset, work_dir, remote_dir, MagicMock(), retry_delay=0, clean_holdoff_seconds=0
        )

        assert reconciler.reconcile_success(f"{dataset}.uimf", decoded, ResultBuilder()) is True

        assert (remote_dir / f"{dataset}_encoded.uimf").read_bytes() == b"muxed"
        assert (remote_dir / f"{dataset}.uimf").read_bytes() == b"decoded"

    def test_checkpoint_delete_failure_does_not_fail_step(self, work_dir, remote_dir):
        (remote_dir / "QC_4bit_01.uimf").write_bytes(b"muxed")
        (remote_dir / "QC_4bit_01_decoded.uimf.tmp").write_bytes(b"checkpoint")
        decoded = work_dir / "QC_4bit_01_decoded.uimf"
        decoded.write_bytes(b"decoded")
        reconciler, _ = make_reconciler(UIMF, work_dir, remote_dir)
        result = ResultBuilder()

        with patch("ims_demux.reconciler.delete_path",
                   return_value=OperationResult(ok=False, error="locked")) as mock_delete:
            assert reconciler.reconcile_success("QC_4bit_01.uimf", decoded, result) is True

        mock_delete.assert_called_once()
        assert not result.failed
        assert (remote_dir / "QC_4bit_01.uimf").read_bytes() == b"decoded"
        assert (remote_dir / "QC_4bit_01_encoded.uimf").read_bytes() == b"muxed"
        assert (remote_dir / "QC_4bit_01_decoded.uimf.tmp").exists()

    def test_keep_local_output(self, work_dir, remote_dir):
        (remote_dir / "QC_4bit_01.d").mkdir()
        (work_dir / "QC_4bit_01.d").mkdir()
        decoded = work_dir / "QC_4bit_01.d.deMP.d"
        (decoded / "AcqData").mkdir(parents=True)
        reconciler, _ = make_reconciler(DOT_D, work_dir, remote_dir, keep_local_output=True)

        assert reconciler.reconcile_success("QC_4bit_01.d", decoded, ResultBuilder())

        assert decoded.exists()
        assert not (work_dir / "QC_4bit_01.d").exists()
        assert (remote_dir / "QC_4bit_01_muxed.d").is_dir()
        assert (remote_dir / "QC_4bit_01.d" / "AcqData").is_dir()


class TestHandleFailure:
    def test_deletes_staged_copy_then_archives(self, work_dir, remote_dir):
        staged = work_dir / "QC_4bit_01.uimf"
        staged.write_bytes(b"muxed")
        (work_dir / "UIMFDemultiplexer_ConsoleOutput.txt").write_text("Error: x")
        reconciler, archiver = make_reconciler(UIMF, work_dir, remote_dir)

        reconciler.handle_failure(staged)

        assert not staged.exists()
        archiver.archive.assert_called_once_with(work_dir)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
