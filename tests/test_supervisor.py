"""Tests for supervisor.py - Polling, timeouts and result precedence.

These launch short Python child processes in place of the real tools.
"""

import re
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.console_monitor import UIMF_DEMUX_PATTERNS, ConsoleOutputMonitor
from ims_demux.models import DemuxJob
from ims_demux.supervisor import ProcessSupervisor, describe_runtime


def run_script(tmp_path, code, max_runtime_minutes=1.0, callback=None):
    job = DemuxJob(dataset="QC", remote_dataset_dir=tmp_path, work_dir=tmp_path)
    console = tmp_path / "console.txt"
    supervisor = ProcessSupervisor(poll_interval=0.05, status_interval=0.1, progress_callback=callback)
    result = supervisor.run(
        Path(sys.executable),
        ["-c", code],
        tmp_path,
        max_runtime_minutes,
        console_output_path=console,
        monitor=ConsoleOutputMonitor(job, UIMF_DEMUX_PATTERNS),
        tool_name="FakeTool",
    )
    return result, job, console


class TestDescribeRuntime:
    def test_days(self):
        assert describe_runtime(1440 * 5) == "5 days"

    def test_hours(self):
        assert describe_runtime(120) == "2 hours"

    def test_minutes(self):
        assert describe_runtime(5) == "5 minutes"

    def test_single_unit(self):
        assert describe_runtime(60) == "1 hour"


class TestProcessSupervisor:
    def test_clean_exit_succeeds(self, tmp_path):
        result, _, console = run_script(tmp_path, "print('Processing: 100%')")

        assert result.success is True
        assert result.exit_code == 0
        assert "Processing: 100%" in console.read_text()

    def test_nonzero_exit_fails(self, tmp_path):
        result, _, _ = run_script(tmp_path, "import sys; sys.exit(3)")

        assert result.success is False
        assert result.exit_code == 3
        assert "exit code 3" in result.error

    def test_console_error_fails_despite_clean_exit(self, tmp_path):
        result, job, _ = run_script(tmp_path, "print('Error: frame 7 is corrupt')")

        assert result.success is False
        assert result.error == "Error: frame 7 is corrupt"
        assert job.console_errors == ["Error: frame 7 is corrupt"]

    def test_out_of_memory_takes_precedence_over_exit_code(self, tmp_path):
        code = "import sys; print('Exception: System.OutOfMemoryException: OutOfMemory'); sys.exit(1)"
        result, job, _ = run_script(tmp_path, code)

        assert result.success is False
        assert result.error == "OutOfMemory exception was thrown"
        assert job.out_of_memory is True

    def test_timeout_kills_process(self, tmp_path):
        result, _, _ = run_script(tmp_path, "import time; time.sleep(30)", max_runtime_minutes=0.01)

        assert result.success is False
        assert result.timed_out is True
        assert "timed out" in result.error

    def test_progress_callback_receives_percent(self, tmp_path):
        seen = []
        code = "import time; print('Processing: 40%', flush=True); time.sleep(0.5)"

        result, job, _ = run_script(tmp_path, code, callback=seen.append)

        assert result.success is True
        assert seen
        assert seen[-1] == 40.0
        assert job.progress.percent_complete == 40.0

    def test_missing_executable(self, tmp_path):
        supervisor = ProcessSupervisor(poll_interval=0.05)

        result = supervisor.run(tmp_path / "no_such_tool.exe", [], tmp_path, 1.0)

        assert result.success is False
        assert result.exit_code is None
        assert "Unable to start" in result.error

    def test_runs_without_console_file(self, tmp_path):
        supervisor = ProcessSupervisor(poll_interval=0.05)

        result = supervisor.run(Path(sys.executable), ["-c", "print('quiet')"], tmp_path, 1.0)

        assert result.success is True

    def test_status_lines_are_throttled(self, tmp_path, capsys):
        job = DemuxJob(dataset="QC", remote_dataset_dir=tmp_path, work_dir=tmp_path)
        supervisor = ProcessSupervisor(poll_interval=0.05, status_interval=0.3)
        code = "import time; print('Processing: 25%', flush=True); time.sleep(1.2)"

        result = supervisor.run(
            Path(sys.executable),
            ["-c", code],
            tmp_path,
            1.0,
            console_output_path=tmp_path / "console.txt",
            monitor=ConsoleOutputMonitor(job, UIMF_DEMUX_PATTERNS),
            tool_name="FakeTool",
        )

        assert result.success is True
        status_lines = [line for line in capsys.readouterr().out.splitlines() if "FakeTool running;" in line]
        assert 1 <= len(status_lines) <= int(result.elapsed_minutes * 60 / 0.3) + 1
        for line in status_lines:
            assert re.search(r"FakeTool running; \d+\.\d minutes elapsed, \d+\.\d% complete", line)
        assert job.progress.last_status_message > 0

    def test_no_status_line_before_interval(self, tmp_path, capsys):
        job = DemuxJob(dataset="QC", remote_dataset_dir=tmp_path, work_dir=tmp_path)
        supervisor = ProcessSupervisor(poll_interval=0.05, status_interval=60)

        supervisor.run(
            Path(sys.executable),
            ["-c", "import time; time.sleep(0.3)"],
            tmp_path,
            1.0,
            console_output_path=tmp_path / "console.txt",
            monitor=ConsoleOutputMonitor(job, UIMF_DEMUX_PATTERNS),
            tool_name="FakeTool",
        )

        assert "FakeTool running;" not in capsys.readouterr().out
        assert job.progress.last_status_message == 0.0

    def test_reports_elapsed_minutes(self, tmp_path):
        result, _, _ = run_script(tmp_path, "import time; time.sleep(0.2)")

        assert result.success is True
        assert 0.0 < result.elapsed_minutes < 1.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
