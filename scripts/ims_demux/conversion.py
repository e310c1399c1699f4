"""Conversion of an Agilent IMS .d directory to a UIMF file.

Runs after the .d directory has been demultiplexed (or found to need no
demultiplexing). The converter reads a local copy of the .d directory and
writes ``<dataset>.uimf`` into the working directory; that file is copied
to the storage server and then checked there.
"""

import sqlite3
from pathlib import Path
from typing import Optional

from .console_monitor import AGILENT_CONVERSION_PATTERNS, ConsoleOutputMonitor
from .constants import (
    CONVERSION_CONSOLE_OUTPUT_FILE,
    CONVERSION_MAX_RUNTIME_MINUTES,
    CONVERSION_REQUIRED_BIN_FILES,
    COPY_BACK_RETRIES,
    RETRY_DELAY_SECONDS,
    STAGE_IN_RETRIES,
    UIMF_EXTENSION,
    UIMF_MIN_SIZE_KB,
    UIMF_SMALL_SIZE_KB,
)
from .file_ops import copy_with_retry, delete_path
from .formats import DOT_D, UIMF
from .invocations import AgilentConversionInvocation
from .models import DemuxJob, ResultBuilder
from .supervisor import ProcessSupervisor
from .uimf_file import UimfFile
from .utils import print_debug, print_error, print_header, print_info, print_success, print_warning

CONVERTER_NAME = "AgilentToUIMFConverter"
ACQ_DATA_DIR = "AcqData"


def describe_size_kb(size_kb: float) -> str:
    """File size with KB, MB or GB units, e.g. ``75 KB`` or ``1.2 GB``."""
    if size_kb / 1024.0 / 1024.0 > 1:
        return f"{size_kb / 1024.0 / 1024.0:.1f} GB"
    if size_kb / 1024.0 > 1:
        return f"{size_kb / 1024.0:.1f} MB"
    return f"{size_kb:.0f} KB"


def missing_conversion_files(dot_d_path: Path) -> list[str]:
    """Required .bin files absent anywhere under ``dot_d_path``."""
    present = {path.name.lower() for path in Path(dot_d_path).rglob("*.bin")}
    return [name for name in CONVERSION_REQUIRED_BIN_FILES if name.lower() not in present]


def find_acquisition_dir(dot_d_path: Path) -> Optional[Path]:
    """The .d directory that holds ``AcqData``.

    Usually ``dot_d_path`` itself; some acquisitions nest the real .d
    directory one level down (``Run.d/sequence1.d/AcqData``).
    """
    dot_d_path = Path(dot_d_path)
    if (dot_d_path / ACQ_DATA_DIR).is_dir():
        return dot_d_path

    for child in sorted(dot_d_path.iterdir()):
        if child.is_dir() and child.suffix.lower() == ".d" and (child / ACQ_DATA_DIR).is_dir():
            return child
    return None


def check_converted_uimf(uimf_path: Path) -> str:
    """Why ``uimf_path`` is not a usable UIMF file, or an empty string."""
    uimf_path = Path(uimf_path)
    if not uimf_path.is_file():
        return f"Data file {uimf_path} not found"

    size_kb = uimf_path.stat().st_size / 1024.0
    if size_kb < UIMF_MIN_SIZE_KB:
        if size_kb < 0.0001:
            return "Data file is 0 bytes"
        return (
            f"Data file size is {describe_size_kb(size_kb)}; "
            f"minimum allowed size is {describe_size_kb(UIMF_MIN_SIZE_KB)}"
        )

    try:
        with UimfFile(uimf_path) as uimf:
            frames = uimf.frame_numbers()
        status = "" if frames else "appears corrupt (no frame info)"
    except (OSError, sqlite3.Error) as e:
        print_error(f"Error reading {uimf_path.name}: {e}")
        status = "appears corrupt (exception reading data)"

    if not status:
        return ""
    if size_kb < UIMF_SMALL_SIZE_KB:
        return f"Data file size is less than {UIMF_SMALL_SIZE_KB} KB; it {status}"
    return f"Data file is {describe_size_kb(size_kb)}; it {status}"


class AgilentToUimfConverter:
    """Creates ``<dataset>.uimf`` on the storage server from the dataset's .d directory."""

    def __init__(
        self,
        executable: Path,
        supervisor: ProcessSupervisor,
        work_dir: Path,
        remote_dataset_dir: Path,
        dataset: str,
        max_runtime_minutes: float = CONVERSION_MAX_RUNTIME_MINUTES,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ):
        self.executable = Path(executable)
        self.supervisor = supervisor
        self.work_dir = Path(work_dir)
        self.remote_dataset_dir = Path(remote_dataset_dir)
        self.dataset = dataset
        self.max_runtime_minutes = max_runtime_minutes
        self.retry_delay = retry_delay

    @property
    def remote_uimf(self) -> Path:
        return self.remote_dataset_dir / UIMF.staged_name(self.dataset)

    def convert(self, result: ResultBuilder) -> bool:
        """Convert, publish and check the UIMF file; failures are recorded in ``result``.

        Returns:
            True if a valid ``<dataset>.uimf`` is on the storage server
        """
        print_header(f"Converting {DOT_D.staged_name(self.dataset)} to {UIMF.staged_name(self.dataset)}")
        try:
            if not self._convert(result):
                return False
        except (OSError, sqlite3.Error) as e:
            print_error(f"Exception converting .d directory to a UIMF file: {e}")
            result.fail("Exception converting .d directory to a UIMF file")
            return False

        problem = check_converted_uimf(self.remote_uimf)
        if problem:
            print_error(problem)
            result.fail(problem)
            return False

        print_success(f"Created {self.remote_uimf.name}")
        return True

    def _convert(self, result: ResultBuilder) -> bool:
        local_dot_d = self._local_dot_d(result)
        if local_dot_d is None:
            return False

        source = find_acquisition_dir(local_dot_d)
        if source is None:
            delete_path(local_dot_d, "local .d directory")
            return self._fail(result, ".D directory does not have an AcqData subdirectory")
        if source != local_dot_d:
            print_info(f"Using the .d directory below the primary .d directory: {source.name}")

        console_output = self.work_dir / CONVERSION_CONSOLE_OUTPUT_FILE
        invocation = AgilentConversionInvocation(self.executable, source, self.work_dir)
        job = DemuxJob(dataset=self.dataset, remote_dataset_dir=self.remote_dataset_dir, work_dir=self.work_dir)

        run = self.supervisor.run(
            self.executable,
            invocation.build_args(),
            self.work_dir,
            self.max_runtime_minutes,
            console_output_path=console_output,
            monitor=ConsoleOutputMonitor(job, AGILENT_CONVERSION_PATTERNS),
            tool_name=CONVERTER_NAME,
        )

        delete_path(local_dot_d, "local .d directory")

        if not run.success:
            if run.error:
                print_warning(run.error)
            return self._fail(result, f"Error running the {CONVERTER_NAME}")
        print_debug(f"{CONVERTER_NAME} finished in {run.elapsed_minutes:.1f} minutes")

        # The converter names its output after the .d directory it was given
        local_uimf = self.work_dir / UIMF.staged_name(self.dataset)
        created_uimf = self.work_dir / source.with_suffix(UIMF_EXTENSION).name
        if created_uimf.name.lower() != local_uimf.name.lower():
            if not created_uimf.is_file():
                return self._fail(result, f"{CONVERTER_NAME} did not create a .UIMF file named {created_uimf.name}")
            print_debug(f"Renaming {created_uimf.name} to {local_uimf.name}")
            created_uimf.replace(local_uimf)

        if not local_uimf.is_file():
            return self._fail(result, f"{CONVERTER_NAME} did not create a .UIMF file named {local_uimf.name}")

        print_info(f"Copying {local_uimf.name} to {self.remote_dataset_dir}")
        if not copy_with_retry(
            local_uimf,
            self.remote_uimf,
            overwrite=True,
            max_retries=COPY_BACK_RETRIES,
            retry_delay=self.retry_delay,
        ):
            return self._fail(result, f"Error copying {local_uimf.name} to storage server")

        delete_path(local_uimf, "local copy of the new .UIMF file")
        delete_path(console_output, "converter console output")
        return True

    def _local_dot_d(self, result: ResultBuilder) -> Optional[Path]:
        """A local .d directory to convert, copying it from the storage server if needed."""
        for name in (DOT_D.staged_name(self.dataset), DOT_D.decoded_name(self.dataset)):
            candidate = self.work_dir / name
            if candidate.is_dir():
                print_debug(f"Converting local copy {candidate.name}")
                return candidate

        remote_dot_d = self.remote_dataset_dir / DOT_D.staged_name(self.dataset)
        missing = missing_conversion_files(remote_dot_d)
        if len(missing) == 1:
            self._fail(result, f"Cannot convert .d to .UIMF; missing file {missing[0]}")
            return None
        if missing:
            self._fail(result, f"Cannot convert .d to .UIMF; missing files {', '.join(missing)}")
            return None

        local_dot_d = self.work_dir / remote_dot_d.name
        print_info(f"Copying {remote_dot_d.name} to the working directory")
        if not copy_with_retry(remote_dot_d, local_dot_d, max_retries=STAGE_IN_RETRIES, retry_delay=self.retry_delay):
            self._fail(result, f"Error copying {remote_dot_d.name} to the working directory")
            return None
        return local_dot_d

    @staticmethod
    def _fail(result: ResultBuilder, message: str) -> bool:
        print_error(message)
        result.fail(message)
        return False
