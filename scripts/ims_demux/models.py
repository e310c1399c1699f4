"""Domain entities for one demultiplexing job."""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .constants import DEFAULT_FRAMES_TO_SUM, DEFAULT_MIN_PULSE_COVERAGE
from .utils import append_message


class CloseoutType(str, Enum):
    """Terminal outcome of a step run."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class MultiplexingStatus(str, Enum):
    """Answer to "does this dataset still need demultiplexing?"."""
    MULTIPLEXED = "multiplexed"
    NON_MULTIPLEXED = "non_multiplexed"
    ERROR = "error"


@dataclass
class ProgressState:
    """Progress of the running external tool.

    The console monitor advances the percent and the supervisor stamps
    ``last_status_message`` when it prints a status line; ``reset`` is
    called at job start.
    """
    percent_complete: float = 0.0
    last_update: float = 0.0
    last_status_message: float = 0.0

    def reset(self) -> None:
        self.percent_complete = 0.0
        self.last_update = 0.0
        self.last_status_message = 0.0

    def advance(self, percent: float) -> None:
        """Raise percent-complete; it never moves backwards within a job."""
        percent = max(0.0, min(100.0, percent))
        if percent > self.percent_complete:
            self.percent_complete = percent
        self.last_update = time.time()


@dataclass
class DemuxJob:
    """One dataset being demultiplexed in one working directory.

    Created per orchestrator run and discarded when it finishes.
    ``reported_lines`` holds every console error/warning line already
    printed so each appears once; ``console_errors`` keeps them in order
    so the first one can be quoted in the closure message.
    """
    dataset: str
    remote_dataset_dir: Path
    work_dir: Path
    bits: int = 0
    frames_to_sum: int = DEFAULT_FRAMES_TO_SUM
    min_pulse_coverage: int = DEFAULT_MIN_PULSE_COVERAGE
    keep_local_output: bool = False
    out_of_memory: bool = False
    reported_lines: set[str] = field(default_factory=set)
    console_errors: list[str] = field(default_factory=list)
    parse_failures: set[str] = field(default_factory=set)
    progress: ProgressState = field(default_factory=ProgressState)

    def record_console_message(self, line: str) -> bool:
        """Remember a console error/warning line.

        Returns:
            True if the line had not been seen before
        """
        if line in self.reported_lines:
            return False
        self.reported_lines.add(line)
        self.console_errors.append(line)
        return True

    @property
    def has_console_errors(self) -> bool:
        return bool(self.console_errors)


@dataclass(frozen=True)
class JobResult:
    """Terminal result handed back to the caller."""
    closeout: CloseoutType
    message: str = ""
    eval_message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.closeout == CloseoutType.SUCCESS


@dataclass
class ResultBuilder:
    """Accumulates closure and evaluation text while a job runs."""
    closeout: CloseoutType = CloseoutType.SUCCESS
    message: str = ""
    eval_message: str = ""

    def fail(self, message: str) -> "ResultBuilder":
        self.closeout = CloseoutType.FAILED
        self.message = append_message(self.message, message)
        return self

    def skip(self, message: str) -> "ResultBuilder":
        self.closeout = CloseoutType.SKIPPED
        self.message = append_message(self.message, message)
        return self

    def append_eval(self, text: str) -> None:
        """Append to the evaluation message (texts carry their own spacing)."""
        self.eval_message = f"{self.eval_message}{text}"

    @property
    def failed(self) -> bool:
        return self.closeout == CloseoutType.FAILED

    def freeze(self) -> JobResult:
        return JobResult(
            closeout=self.closeout,
            message=self.message,
            eval_message=self.eval_message,
        )


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a best-effort operation; logged, never escalated."""
    ok: bool
    error: Optional[str] = None
