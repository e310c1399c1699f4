"""Run log capture and rotation for the demultiplexing step.

Captures all terminal output (stdout/stderr) of one step run to a
timestamped log file, keeping the newest N logs. Log files start with a
header naming the dataset, job and host so that a failed run can be
matched to its archived working directory.

Usage:
    from log_manager import LogCapture

    with LogCapture(log_dir, label="Dataset_XYZ") as log:
        result = step_tool.run()

    print(log.get_log_path())
"""

import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

from env_config import DEFAULT_LOG_DIR


class TeeWriter:
    """Write to multiple streams simultaneously (tee-like behavior).

    The first stream is the real terminal; a failing log stream never stops
    output from reaching it.
    """

    def __init__(self, *streams: TextIO):
        self.streams = streams

    def write(self, data: str) -> None:
        if not isinstance(data, str):
            data = str(data)

        for stream in self.streams:
            try:
                stream.write(data)
                stream.flush()
            except (OSError, ValueError):
                continue

    def flush(self) -> None:
        for stream in self.streams:
            try:
                stream.flush()
            except (OSError, ValueError):
                continue

    def isatty(self) -> bool:
        """Report the terminal stream's TTY state so progress bars behave."""
        if self.streams:
            try:
                return self.streams[0].isatty()
            except (AttributeError, ValueError):
                return False
        return False


class LogCapture:
    """Context manager for capturing step output to a rotated log file.

    If the log file cannot be created (permissions, full disk) capture is
    disabled and the wrapped step runs normally; a multi-day demultiplexing
    job must never fail because its log could not be written.

    Attributes:
        log_dir: Directory where logs are stored
        label: Short tag (usually the dataset name) included in the file name
        max_logs: Maximum number of logs to keep
    """

    def __init__(self, log_dir: Optional[Path] = None, label: str = "", max_logs: int = 20):
        self.log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR
        self.label = label
        self.max_logs = max(1, min(max_logs, 500))
        self.log_file: Optional[Path] = None
        self.log_handle: Optional[TextIO] = None
        self._logging_enabled = False

        self._original_stdout = sys.stdout if sys.stdout is not None else sys.__stdout__
        self._original_stderr = sys.stderr if sys.stderr is not None else sys.__stderr__

    def __enter__(self):
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = self._generate_log_filename()
            self.log_handle = open(self.log_file, 'w', encoding='utf-8')
            self._write_log_header()

            sys.stdout = TeeWriter(self._original_stdout, self.log_handle)
            sys.stderr = TeeWriter(self._original_stderr, self.log_handle)

            self._logging_enabled = True

        except OSError as e:
            print(f"Warning: run log disabled ({e})", file=self._original_stderr)
            self._logging_enabled = False
            if self.log_handle:
                self.log_handle.close()
            self.log_handle = None
            self.log_file = None

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        sys.stdout = self._original_stdout
        sys.stderr = self._original_stderr

        if self._logging_enabled and self.log_handle:
            try:
                if exc_type is not None:
                    self.log_handle.write(f"\n{'='*80}\n")
                    self.log_handle.write(f"FATAL ERROR: {exc_type.__name__}: {exc_val}\n")
                    self.log_handle.write(f"{'='*80}\n")
                self.log_handle.close()
            except OSError as e:
                print(f"Warning: could not finalize run log: {e}", file=sys.stderr)

            try:
                self._rotate_logs()
            except OSError as e:
                print(f"Warning: could not rotate run logs: {e}", file=sys.stderr)

        return False

    def _generate_log_filename(self) -> Path:
        """Format: YYYYMMDD_HHMMSS_microseconds[_label].log"""
        now = datetime.now()
        name = f"{now.strftime('%Y%m%d_%H%M%S')}_{now.microsecond:06d}"
        if self.label:
            safe_label = "".join(c if c.isalnum() or c in "-_." else "_" for c in self.label)
            name = f"{name}_{safe_label}"
        return self.log_dir / f"{name}.log"

    def _write_log_header(self) -> None:
        command_str = ' '.join(str(arg) for arg in sys.argv)

        header = f"""{'='*80}
IMS Demux Step Log
{'='*80}
Timestamp:       {datetime.now().strftime("%Y-%m-%d %H:%M:%S")}
Label:           {self.label or '(none)'}
Host:            {platform.node()}
Python Version:  {sys.version.split()[0]}
Platform:        {platform.platform()}
Command:         {command_str}
{'='*80}

"""
        self.log_handle.write(header)
        self.log_handle.flush()

    def _rotate_logs(self) -> None:
        """Keep only the newest max_logs log files."""
        log_files = sorted(
            self.log_dir.glob("*.log"),
            key=lambda p: p.stat().st_mtime,
            reverse=True
        )

        for old_log in log_files[self.max_logs:]:
            old_log.unlink()
            print(f"Rotated old log: {old_log.name}", file=self._original_stdout)

    def get_log_path(self) -> Optional[Path]:
        return self.log_file
