"""Tests for cli.py - Argument handling, exit codes and run logs."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILED,
    EXIT_SUCCESS,
    build_parser,
    exit_code_for,
    main,
)
from ims_demux.models import CloseoutType, JobResult

BASE_ARGS = ["--dataset", "QC_4bit_01", "--storage-vol", "/mnt/vol", "--storage-path", "2024_1"]


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args(BASE_ARGS)

        assert args.dataset == "QC_4bit_01"
        assert args.format is None
        assert args.no_calibration is False
        assert args.no_log is False

    def test_format_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(BASE_ARGS + ["--format", "raw"])

    def test_short_flags(self):
        args = build_parser().parse_args(["-n", "QC", "-f", "dot_d", "-w", "/tmp/work"])

        assert args.dataset == "QC"
        assert args.format == "dot_d"
        assert args.work_dir == Path("/tmp/work")

    def test_converter_dir(self):
        args = build_parser().parse_args(BASE_ARGS + ["--converter-dir", "/opt/converter"])

        assert args.converter_dir == Path("/opt/converter")


class TestExitCodeFor:
    def test_success(self):
        assert exit_code_for(JobResult(CloseoutType.SUCCESS)) == EXIT_SUCCESS

    def test_skipped_is_not_a_failure(self):
        assert exit_code_for(JobResult(CloseoutType.SKIPPED, "not IMS")) == EXIT_SUCCESS

    def test_failed(self):
        assert exit_code_for(JobResult(CloseoutType.FAILED, "boom")) == EXIT_FAILED


class TestMain:
    def test_missing_required_values(self, capsys):
        assert main(["--no-log", "--no-progress"]) == EXIT_CONFIG_ERROR

        assert "Missing required parameter" in capsys.readouterr().out

    def test_unreadable_task_params(self, tmp_path):
        code = main(["--no-log", "--task-params", str(tmp_path / "missing.json")])

        assert code == EXIT_CONFIG_ERROR

    @patch("ims_demux.cli.DemuxStepTool")
    def test_success(self, mock_tool, capsys):
        mock_tool.return_value.run.return_value = JobResult(
            CloseoutType.SUCCESS, eval_message="De-multiplexed and calibrated"
        )

        code = main(BASE_ARGS + ["--no-log", "--no-progress"])

        assert code == EXIT_SUCCESS
        config = mock_tool.call_args[0][0]
        assert config.dataset == "QC_4bit_01"
        assert mock_tool.call_args[1]["progress_callback"] is None
        out = capsys.readouterr().out
        assert "Closeout: success" in out
        assert "Evaluation: De-multiplexed and calibrated" in out

    @patch("ims_demux.cli.DemuxStepTool")
    def test_failure(self, mock_tool):
        mock_tool.return_value.run.return_value = JobResult(CloseoutType.FAILED, "Decoded UIMF file not found")

        assert main(BASE_ARGS + ["--no-log", "--no-progress"]) == EXIT_FAILED

    @patch("ims_demux.cli.DemuxStepTool")
    def test_task_params_with_flag_override(self, mock_tool, tmp_path):
        params = tmp_path / "job.json"
        params.write_text(json.dumps({
            "Dataset": "QC_4bit_01",
            "Storage_Vol_External": "/mnt/vol",
            "Storage_Path": "2024_1",
            "Instrument_Class": "IMS_Agilent_TOF_DotD",
            "DemuxFramesToSum": "5",
        }))
        mock_tool.return_value.run.return_value = JobResult(CloseoutType.SUCCESS)

        main(["--task-params", str(params), "--frames-to-sum", "3", "--no-log", "--no-progress"])

        config = mock_tool.call_args[0][0]
        assert config.frames_to_sum == 3
        assert config.dataset_format == "dot_d"

    @patch("ims_demux.cli.DemuxStepTool")
    def test_run_log_written(self, mock_tool, tmp_path, capsys):
        mock_tool.return_value.run.return_value = JobResult(CloseoutType.SKIPPED, "not IMS")
        log_dir = tmp_path / "logs"

        code = main(BASE_ARGS + ["--log-dir", str(log_dir), "--no-progress"])

        assert code == EXIT_SUCCESS
        logs = list(log_dir.glob("*_QC_4bit_01.log"))
        assert len(logs) == 1
        assert "Closeout: skipped" in logs[0].read_text()
        assert "Run log:" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
