"""Supervised execution of the external demultiplexing and calibration tools.

The supervisor launches one tool, then loops on the calling thread: each
tick waits for the process for up to ``poll_interval`` seconds, re-parses
the console output, and hands the current percent to the progress
callback. The loop stops when the process exits or the wall-clock limit
expires, in which case the process is killed.
"""

import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .console_monitor import ConsoleOutputMonitor
from .constants import POLL_INTERVAL_SECONDS, STATUS_INTERVAL_SECONDS
from .utils import print_debug, print_error, print_info, print_warning

ProgressCallback = Callable[[float], None]

KILL_WAIT_SECONDS = 30


@dataclass
class SupervisorResult:
    """Outcome of one supervised tool run.

    ``success`` already accounts for console errors and out-of-memory, not
    only the exit code.
    """

    success: bool
    exit_code: Optional[int]
    timed_out: bool = False
    elapsed_minutes: float = 0.0
    error: str = ""


def describe_runtime(minutes: float) -> str:
    """Human readable runtime limit, e.g. ``5 days`` or ``12 hours``."""
    if minutes >= 1440 and minutes % 1440 == 0:
        days = int(minutes // 1440)
        return f"{days} day{'s' if days != 1 else ''}"
    if minutes >= 60 and minutes % 60 == 0:
        hours = int(minutes // 60)
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes:g} minute{'s' if minutes != 1 else ''}"


class ProcessSupervisor:
    """Runs an external tool with polling, progress reporting and a timeout."""

    def __init__(
        self,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        status_interval: float = STATUS_INTERVAL_SECONDS,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize supervisor.

        Args:
            poll_interval: Seconds between polling ticks
            status_interval: Minimum seconds between "still running" lines
            progress_callback: Called with percent complete on every tick
        """
        self.poll_interval = poll_interval
        self.status_interval = status_interval
        self.progress_callback = progress_callback

    def run(
        self,
        executable: Path,
        args: Sequence[str],
        work_dir: Path,
        max_runtime_minutes: float,
        console_output_path: Optional[Path] = None,
        monitor: Optional[ConsoleOutputMonitor] = None,
        tool_name: str = "",
    ) -> SupervisorResult:
        """Run the tool and block until it exits or times out.

        Args:
            executable: Tool to launch
            args: Arguments, already built by an invocation value
            work_dir: Working directory the process is bound to
            max_runtime_minutes: Wall-clock limit before the process is killed
            console_output_path: File receiving stdout/stderr (None discards it)
            monitor: Parses ``console_output_path`` on every tick
            tool_name: Name used in status lines

        Returns:
            SupervisorResult describing the run
        """
        tool_name = tool_name or Path(executable).name
        cmd = [str(executable), *[str(arg) for arg in args]]

        print_info(f"Running {tool_name}")
        print_debug(f"$ {' '.join(cmd)}")

        output_handle = None
        if console_output_path is not None:
            output_handle = open(console_output_path, 'w', encoding='utf-8')

        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(work_dir),
                stdin=subprocess.DEVNULL,
                stdout=output_handle if output_handle else subprocess.DEVNULL,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            if output_handle:
                output_handle.close()
            print_error(f"Unable to start {tool_name}: {e}")
            return SupervisorResult(success=False, exit_code=None, error=f"Unable to start {tool_name}: {e}")

        start = time.monotonic()
        deadline = start + max_runtime_minutes * 60
        last_status = start
        timed_out = False

        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timed_out = True
                    break

                try:
                    process.wait(timeout=min(self.poll_interval, remaining))
                    break
                except subprocess.TimeoutExpired:
                    pass

                percent = self._tick(monitor, console_output_path)

                now = time.monotonic()
                if now - last_status >= self.status_interval:
                    last_status = now
                    if monitor is not None:
                        monitor.job.progress.last_status_message = time.time()
                    print_info(
                        f"{tool_name} running; {(now - start) / 60:.1f} minutes elapsed, "
                        f"{percent:.1f}% complete"
                    )

            if timed_out:
                print_error(
                    f"{tool_name} has been running for over {describe_runtime(max_runtime_minutes)}; "
                    f"aborting"
                )
                self._terminate(process, tool_name)
        finally:
            if output_handle:
                output_handle.close()

        self._tick(monitor, console_output_path)
        elapsed = (time.monotonic() - start) / 60.0

        return self._build_result(process.returncode, timed_out, elapsed, monitor, tool_name, max_runtime_minutes)

    def _tick(self, monitor: Optional[ConsoleOutputMonitor], console_output_path: Optional[Path]) -> float:
        """Parse console output and notify the callback; returns percent complete."""
        if monitor is None:
            return 0.0

        if console_output_path is not None:
            monitor.parse(console_output_path)

        percent = monitor.job.progress.percent_complete
        if self.progress_callback:
            self.progress_callback(percent)
        return percent

    @staticmethod
    def _terminate(process: subprocess.Popen, tool_name: str) -> None:
        process.kill()
        try:
            process.wait(timeout=KILL_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            print_warning(f"{tool_name} did not exit after being killed")

    @staticmethod
    def _build_result(
        exit_code: Optional[int],
        timed_out: bool,
        elapsed: float,
        monitor: Optional[ConsoleOutputMonitor],
        tool_name: str,
        max_runtime_minutes: float,
    ) -> SupervisorResult:
        if timed_out:
            return SupervisorResult(
                success=False,
                exit_code=exit_code,
                timed_out=True,
                elapsed_minutes=elapsed,
                error=f"{tool_name} timed out (running for over {describe_runtime(max_runtime_minutes)})",
            )

        if monitor is not None and monitor.job.out_of_memory:
            return SupervisorResult(
                success=False,
                exit_code=exit_code,
                elapsed_minutes=elapsed,
                error="OutOfMemory exception was thrown",
            )

        if exit_code != 0:
            return SupervisorResult(
                success=False,
                exit_code=exit_code,
                elapsed_minutes=elapsed,
                error=f"{tool_name} returned exit code {exit_code}",
            )

        if monitor is not None and monitor.job.has_console_errors:
            return SupervisorResult(
                success=False,
                exit_code=exit_code,
                elapsed_minutes=elapsed,
                error=monitor.job.console_errors[0],
            )

        return SupervisorResult(success=True, exit_code=exit_code, elapsed_minutes=elapsed)
