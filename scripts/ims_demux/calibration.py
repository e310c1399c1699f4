"""Calibration of demultiplexed UIMF files.

Automatic calibration runs the demultiplexer in calibrate-only mode on the
canonical remote file and then checks its Log_Entries table for a fresh
"applied calibration" entry. Manual calibration writes coefficients that an
operator already recorded in the file's own log.
"""

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .console_monitor import UIMF_DEMUX_PATTERNS, ConsoleOutputMonitor
from .constants import (
    CALIBRATION_APPLIED_MARKER,
    CALIBRATION_FAILED_PHRASE,
    CALIBRATION_LOG_FILE,
    CALIBRATION_MAX_RUNTIME_MINUTES,
    CALIBRATION_UPDATER_NAME,
    COPY_BACK_RETRIES,
    DEFAULT_FRESHNESS_WINDOW_MINUTES,
    MIN_FRAMES_FOR_CALIBRATION,
    RETRY_DELAY_SECONDS,
    SKIP_CALIBRATION_INSTRUMENTS,
    UIMF_CONSOLE_OUTPUT_FILE,
)
from .file_ops import copy_with_retry
from .formats import UIMF
from .invocations import UimfCalibrationInvocation
from .log_entries import read_log_entries
from .models import DemuxJob, ResultBuilder
from .supervisor import ProcessSupervisor
from .uimf_file import UimfFile
from .utils import print_debug, print_error, print_header, print_info, print_success, print_warning
from .validator import CompletionValidator

COEFFICIENTS_PATTERN = re.compile(
    r"slope = ([0-9.+\-eE]+), intercept = ([0-9.+\-eE]+)", re.IGNORECASE
)

NEW_COEFFICIENTS_PREFIX = "New calibration coefficients"
MANUAL_CALIBRATION_PREFIX = "Manually applied calibration coefficients"

# UIMF FrameType value of calibration frames
CALIBRATION_FRAME_TYPE = "3"


@dataclass(frozen=True)
class ManualCalibration:
    """Coefficients an operator applied by hand to a UIMF file."""
    slope: float
    intercept: float


def check_for_calibration_error(dataset_dir: Path) -> bool:
    """True if the dataset's CalibrationLog.txt reports a failed calibration.

    Only the last non-blank line counts: an earlier failure followed by a
    successful run is not an error.
    """
    log_path = Path(dataset_dir) / CALIBRATION_LOG_FILE
    if not log_path.is_file():
        return False

    with open(log_path, 'r', encoding='utf-8', errors='replace') as f:
        lines = [line.strip() for line in f if line.strip()]

    if not lines:
        return False
    return CALIBRATION_FAILED_PHRASE.lower() in lines[-1].lower()


def find_manual_calibration(uimf_path: Path) -> Optional[ManualCalibration]:
    """Coefficients recorded by a manual calibration of ``uimf_path``, if any.

    The newest "New calibration coefficients" entry posted by the calibration
    updater supplies the values. A manual calibration with a zero slope is
    treated as no calibration at all.

    Raises:
        sqlite3.Error: If the file's log cannot be read
    """
    uimf_path = Path(uimf_path)
    if not uimf_path.is_file():
        return None

    # read_log_entries returns oldest first
    entries = [
        entry for entry in reversed(read_log_entries(uimf_path))
        if entry.posted_by == CALIBRATION_UPDATER_NAME
    ]

    manually_calibrated = False
    coefficients: Optional[tuple[float, float]] = None
    for entry in entries:
        message = entry.message or ""
        if message.startswith(MANUAL_CALIBRATION_PREFIX):
            manually_calibrated = True
        elif coefficients is None and message.startswith(NEW_COEFFICIENTS_PREFIX):
            match = COEFFICIENTS_PATTERN.search(message)
            if match:
                try:
                    coefficients = (float(match.group(1)), float(match.group(2)))
                except ValueError:
                    print_warning(f"Unparseable calibration coefficients: {message}")

    if not manually_calibrated or coefficients is None:
        return None

    slope, intercept = coefficients
    if abs(slope) < 1e-12:
        print_warning("Manual calibration has a slope of zero; ignoring it")
        return None
    return ManualCalibration(slope=slope, intercept=intercept)


class UimfCalibrator:
    """Applies automatic or manual calibration to a demultiplexed UIMF file."""

    def __init__(
        self,
        executable: Path,
        supervisor: ProcessSupervisor,
        work_dir: Path,
        remote_dataset_dir: Path,
        instrument_name: str = "",
        freshness_window_minutes: float = DEFAULT_FRESHNESS_WINDOW_MINUTES,
        max_runtime_minutes: float = CALIBRATION_MAX_RUNTIME_MINUTES,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ):
        self.executable = Path(executable)
        self.supervisor = supervisor
        self.work_dir = Path(work_dir)
        self.remote_dataset_dir = Path(remote_dataset_dir)
        self.instrument_name = instrument_name
        self.freshness_window_minutes = freshness_window_minutes
        self.max_runtime_minutes = max_runtime_minutes
        self.retry_delay = retry_delay

    def calibrate(self, uimf_path: Path, dataset: str, result: ResultBuilder) -> None:
        """Run automatic calibration and record the outcome in ``result``.

        Files that cannot be calibrated (excluded instruments, too few
        frames, no calibration data) are left alone with the result
        unchanged.
        """
        uimf_path = Path(uimf_path)

        if self.instrument_name.lower() in SKIP_CALIBRATION_INSTRUMENTS:
            print_info(f"Skipping calibration since instrument is {self.instrument_name}")
            return

        try:
            reason = self._reason_to_skip(uimf_path)
        except (OSError, sqlite3.Error) as e:
            print_error(f"Error examining {uimf_path.name} before calibration: {e}")
            result.fail("Error calibrating UIMF file")
            result.append_eval(" but Calibration failed")
            return

        if reason:
            print_warning(reason)
            return

        print_header(f"Calibrating {uimf_path.name}")
        job = DemuxJob(dataset=dataset, remote_dataset_dir=self.remote_dataset_dir, work_dir=self.work_dir)
        invocation = UimfCalibrationInvocation(executable=self.executable, input_path=uimf_path)

        run = self.supervisor.run(
            self.executable,
            invocation.build_args(),
            self.work_dir,
            self.max_runtime_minutes,
            console_output_path=self.work_dir / UIMF_CONSOLE_OUTPUT_FILE,
            monitor=ConsoleOutputMonitor(job, UIMF_DEMUX_PATTERNS),
            tool_name="UIMF calibration",
        )

        failed = False
        if not run.success:
            result.fail(run.error or "Error calibrating UIMF file")
            failed = True
        else:
            validation = CompletionValidator(UIMF).validate(
                uimf_path,
                self.freshness_window_minutes,
                marker=CALIBRATION_APPLIED_MARKER,
                description="Applied calibration",
            )
            if not validation.valid:
                result.fail(validation.message)
                failed = True

        if not self._copy_calibration_log():
            result.fail(f"Error copying {CALIBRATION_LOG_FILE} to storage server")
            failed = True

        if failed:
            result.append_eval(" but Calibration failed")
        else:
            print_success(f"Calibrated {uimf_path.name}")
            result.append_eval(" and calibrated")

    def apply_manual(self, uimf_path: Path, calibration: ManualCalibration, result: ResultBuilder) -> None:
        """Write manually determined coefficients to every frame of ``uimf_path``."""
        uimf_path = Path(uimf_path)
        print_header(f"Manually calibrating {uimf_path.name}")

        try:
            with UimfFile(uimf_path) as uimf:
                frames = uimf.frame_numbers()
                if not frames:
                    raise sqlite3.DataError(f"{uimf_path.name} has no frames")

                first = frames[0]
                old_slope = uimf.frame_param_values("CalibrationSlope").get(first, "")
                old_intercept = uimf.frame_param_values("CalibrationIntercept").get(first, "")
                if _as_float(old_slope) == 0.0:
                    print_warning(f"Existing slope in {uimf_path.name} is zero; file was never calibrated")

                uimf.set_frame_param_all_frames("CalibrationSlope", calibration.slope)
                uimf.set_frame_param_all_frames("CalibrationIntercept", calibration.intercept)

                uimf.post_log_entry(
                    "Normal",
                    f"{MANUAL_CALIBRATION_PREFIX} to all frames using user-specified calibration coefficients",
                    CALIBRATION_UPDATER_NAME,
                )
                uimf.post_log_entry(
                    "Normal",
                    f"Old calibration coefficients: slope = {old_slope}, intercept = {old_intercept}",
                    CALIBRATION_UPDATER_NAME,
                )
                uimf.post_log_entry(
                    "Normal",
                    f"{NEW_COEFFICIENTS_PREFIX}: slope = {calibration.slope:.7f}, "
                    f"intercept = {calibration.intercept:.7f}",
                    CALIBRATION_UPDATER_NAME,
                )
        except (OSError, sqlite3.Error) as e:
            print_error(f"Error manually calibrating {uimf_path.name}: {e}")
            result.fail("Error manually calibrating UIMF file")
            return

        print_success(
            f"Applied slope {calibration.slope:.7f} and intercept {calibration.intercept:.7f} "
            f"to {len(frames)} frames"
        )
        result.append_eval(" and manually calibrated")

    def _reason_to_skip(self, uimf_path: Path) -> str:
        """Why ``uimf_path`` cannot be calibrated, or an empty string."""
        with UimfFile(uimf_path) as uimf:
            frames = uimf.frame_numbers()
            frame_types = uimf.frame_param_values("FrameType")
            calibration_tables = uimf.calibration_tables()

        if not frames:
            return "Skipping calibration since .UIMF file has no frames"
        if len(frames) < MIN_FRAMES_FOR_CALIBRATION:
            plural = "" if len(frames) == 1 else "s"
            return f"Skipping calibration since .UIMF file only has {len(frames)} frame{plural}"

        has_calibration_frames = any(
            value.strip() == CALIBRATION_FRAME_TYPE for value in frame_types.values()
        )
        if not has_calibration_frames and not calibration_tables:
            return (
                "Skipping calibration since .UIMF file does not contain any calibration frames "
                "or calibration tables"
            )

        print_debug(f"{len(frames)} frames, {len(calibration_tables)} calibration tables")
        return ""

    def _copy_calibration_log(self) -> bool:
        local_log = self.work_dir / CALIBRATION_LOG_FILE
        if not local_log.is_file():
            print_debug(f"No {CALIBRATION_LOG_FILE} written by the calibration run")
            return True

        return copy_with_retry(
            local_log,
            self.remote_dataset_dir / CALIBRATION_LOG_FILE,
            overwrite=True,
            max_retries=COPY_BACK_RETRIES,
            backup_existing=True,
            retry_delay=self.retry_delay,
        )


def _as_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
