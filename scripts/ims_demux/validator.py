"""Completion validation against the log embedded in a tool's output.

A "finished" marker alone is not trusted: it must also be recent. An old
marker belongs to some earlier run, which is indistinguishable from the
current run having failed or hung.
"""

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .formats import LOG_ENTRIES_TABLE, UIMF, DatasetFormat
from .log_entries import (
    artifact_mtime,
    find_marker_time,
    find_preprocessor_finish_time,
    preprocessor_log_path,
    read_log_entries,
)
from .utils import print_debug, print_error


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    timestamp: Optional[datetime]
    message: str


class CompletionValidator:
    """Checks an output artifact for a fresh completion marker."""

    def __init__(self, dataset_format: DatasetFormat = UIMF, clock: Callable[[], datetime] = datetime.now):
        self.dataset_format = dataset_format
        self.clock = clock

    @property
    def log_description(self) -> str:
        if self.dataset_format.log_kind == LOG_ENTRIES_TABLE:
            return "Log_Entries table"
        return "PNNL-PreProcessorLog.txt file"

    def validate(
        self,
        artifact_path: Path,
        freshness_window_minutes: float,
        marker: Optional[str] = None,
        description: str = "Demultiplexing finished",
    ) -> ValidationResult:
        """Look for ``marker`` in the artifact's log and check its age.

        Args:
            artifact_path: Decoded output file or directory
            freshness_window_minutes: Maximum accepted age of the marker
            marker: Marker text (defaults to the format's finish marker)
            description: Event name used in messages

        Returns:
            ValidationResult; ``message`` differs for an absent and a stale marker
        """
        artifact_path = Path(artifact_path)
        marker = marker or self.dataset_format.finished_marker

        detail = ""
        try:
            timestamp = self._find_timestamp(artifact_path, marker)
        except (OSError, sqlite3.Error) as e:
            timestamp = None
            detail = str(e)

        if timestamp is None:
            message = f"{description} message not found in {self.log_description}"
            print_error(f"{message} in {artifact_path}" + (f"; {detail}" if detail else ""))
            return ValidationResult(valid=False, timestamp=None, message=message)

        age_minutes = (self.clock() - timestamp).total_seconds() / 60.0
        if age_minutes < freshness_window_minutes:
            message = f"{description} message in {self.log_description} has date {timestamp}"
            print_debug(message)
            return ValidationResult(valid=True, timestamp=timestamp, message=message)

        message = (
            f"{description} message in {self.log_description} is more than "
            f"{freshness_window_minutes:g} minutes old"
        )
        print_error(f"{message}: {timestamp}; assuming this is a failure")
        return ValidationResult(valid=False, timestamp=timestamp, message=message)

    def _find_timestamp(self, artifact_path: Path, marker: str) -> Optional[datetime]:
        if self.dataset_format.log_kind == LOG_ENTRIES_TABLE:
            entries = read_log_entries(artifact_path)
            return find_marker_time(entries, marker, fallback_time=artifact_mtime(artifact_path))

        log_path = preprocessor_log_path(artifact_path)
        if not log_path.is_file():
            raise FileNotFoundError(f"File not found: {log_path}")
        return find_preprocessor_finish_time(log_path, marker)
