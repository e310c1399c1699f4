"""Tests for invocations.py - Tool command lines."""

from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.config import DemuxConfigError
from ims_demux.formats import DOT_D, UIMF
from ims_demux.invocations import (
    AgilentConversionInvocation,
    PreprocessorInvocation,
    UimfCalibrationInvocation,
    UimfDemuxInvocation,
)
from ims_demux.models import DemuxJob

EXE = Path("/tools/UIMFDemultiplexer_Console.exe")


class TestUimfDemuxInvocation:
    def test_fresh_run_in_same_directory(self):
        invocation = UimfDemuxInvocation(
            executable=EXE,
            input_path=Path("/work/QC.uimf"),
            output_path=Path("/work/QC_decoded.uimf"),
            frames_to_sum=5,
            bits=4,
        )

        assert invocation.build_args() == [
            "/work/QC.uimf",
            "/N:QC_decoded.uimf",
            "/Bits:4",
            "/FramesToSum:5",
            "/SkipCalibration",
        ]

    def test_resume_with_output_directory_and_checkpoint(self):
        invocation = UimfDemuxInvocation(
            executable=EXE,
            input_path=Path("/work/QC.uimf"),
            output_path=Path("/out/QC_decoded.uimf"),
            frames_to_sum=3,
            bits=1,
            resume=True,
            resume_start_frame=121,
            checkpoint_dir=Path("/mnt/vol/QC"),
        )

        args = invocation.build_args()

        assert "/O:/out" in args
        assert "/Resume" in args
        assert "/CheckPointDirectory:/mnt/vol/QC" in args
        assert not any(arg.startswith("/Bits:") for arg in args)

    def test_auto_calibrate_drops_skip_flag(self):
        invocation = UimfDemuxInvocation(
            executable=EXE,
            input_path=Path("/work/QC.uimf"),
            output_path=Path("/work/QC_decoded.uimf"),
            auto_calibrate=True,
        )

        assert "/SkipCalibration" not in invocation.build_args()

    def test_start_frame_without_resume_rejected(self):
        with pytest.raises(DemuxConfigError):
            UimfDemuxInvocation(
                executable=EXE,
                input_path=Path("/work/QC.uimf"),
                output_path=Path("/work/QC_decoded.uimf"),
                resume_start_frame=10,
            )

    def test_frames_to_sum_validated(self):
        with pytest.raises(DemuxConfigError):
            UimfDemuxInvocation(
                executable=EXE,
                input_path=Path("/work/QC.uimf"),
                output_path=Path("/work/QC_decoded.uimf"),
                frames_to_sum=0,
            )


class TestUimfCalibrationInvocation:
    def test_calibrate_only(self):
        invocation = UimfCalibrationInvocation(executable=EXE, input_path=Path("/mnt/vol/QC/QC.uimf"))

        assert invocation.build_args() == ["/mnt/vol/QC/QC.uimf", "/CalibrateOnly", "/CX"]


class TestPreprocessorInvocation:
    def test_args(self):
        invocation = PreprocessorInvocation(
            executable=Path("/tools/PNNL-PreProcessor.exe"),
            input_path=Path("/work/QC.d"),
            output_path=Path("/work/QC.d.deMP.d"),
            frames_to_sum=5,
            min_pulse_coverage=62,
        )

        assert invocation.build_args() == [
            "-d", "/work/QC.d",
            "-demux", "5",
            "-demuxMA", "5",
            "-demuxSignal", "62",
            "-overwrite",
        ]

    def test_coverage_validated(self):
        with pytest.raises(DemuxConfigError):
            PreprocessorInvocation(
                executable=Path("/tools/PNNL-PreProcessor.exe"),
                input_path=Path("/work/QC.d"),
                output_path=Path("/work/QC.d.deMP.d"),
                min_pulse_coverage=-1,
            )


class TestAgilentConversionInvocation:
    def test_args(self):
        invocation = AgilentConversionInvocation(
            executable=Path("/tools/AgilentToUimfConverter.exe"),
            input_path=Path("/work/QC.d"),
            output_dir=Path("/work"),
        )

        assert invocation.build_args() == ["/work/QC.d", "/work"]

    def test_input_must_be_dot_d(self):
        with pytest.raises(DemuxConfigError):
            AgilentConversionInvocation(
                executable=Path("/tools/AgilentToUimfConverter.exe"),
                input_path=Path("/work/QC.uimf"),
                output_dir=Path("/work"),
            )


class TestFormats:
    def test_uimf_names(self):
        assert UIMF.staged_name("QC") == "QC.uimf"
        assert UIMF.renamed_name("QC") == "QC_encoded.uimf"
        assert UIMF.decoded_name("QC") == "QC_decoded.uimf"
        assert UIMF.checkpoint_name("QC") == "QC_decoded.uimf.tmp"
        assert UIMF.is_renamed("QC_Encoded.UIMF", "QC")

    def test_dot_d_names(self):
        assert DOT_D.staged_name("QC") == "QC.d"
        assert DOT_D.renamed_name("QC") == "QC_muxed.d"
        assert DOT_D.decoded_name("QC") == "QC.d.deMP.d"
        assert not DOT_D.is_renamed("QC.d", "QC")

    def test_marker_inside_dataset_name_is_not_renamed(self):
        assert not UIMF.is_renamed("Sample_encoded_gradient_4bit.uimf", "Sample_encoded_gradient_4bit")
        assert not DOT_D.is_renamed("X_muxed_1.d", "X_muxed_1")
        assert DOT_D.is_renamed("X_muxed_1_muxed.d", "X_muxed_1")

    def test_build_invocation_uses_job_settings(self):
        job = DemuxJob(dataset="QC", remote_dataset_dir=Path("/r"), work_dir=Path("/work"),
                       bits=3, frames_to_sum=4, min_pulse_coverage=50)

        uimf = UIMF.build_invocation(EXE, Path("/work/QC.uimf"), Path("/work/QC_decoded.uimf"), job,
                                     resume_start_frame=11, checkpoint_dir=Path("/r"))
        dot_d = DOT_D.build_invocation(EXE, Path("/work/QC.d"), Path("/work/QC.d.deMP.d"), job)

        assert uimf.resume is True
        assert uimf.bits == 3
        assert dot_d.min_pulse_coverage == 50


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
