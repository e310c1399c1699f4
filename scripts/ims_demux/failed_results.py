"""Preservation of a failed job's working directory.

When a job fails after the tool ran, its working directory (console
output, partial or unvalidated output) is copied to a failed-results
directory for later inspection. Each archive gets an info file beside it;
archives older than the retention period are purged on the next failure.
"""

import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from .constants import FAILED_RESULTS_RETENTION_DAYS
from .utils import print_error, print_info, print_success, print_warning

INFO_FILE_PREFIX = "FailedResultsFolderInfo_"
RETIRED_INFO_PREFIX = "x_"


class FailedResultsArchiver:
    """Copies a failed job's working directory to the failed-results area."""

    def __init__(
        self,
        failed_results_dir: Optional[Path],
        dataset: str,
        job: int,
        step: int,
        step_tool: str = "",
        manager_name: str = "",
        retention_days: int = FAILED_RESULTS_RETENTION_DAYS,
    ):
        self.failed_results_dir = Path(failed_results_dir) if failed_results_dir else None
        self.dataset = dataset or "Unknown_Dataset"
        self.job = job
        self.step = step
        self.step_tool = step_tool
        self.manager_name = manager_name
        self.retention_days = retention_days

    @property
    def archive_name(self) -> str:
        return f"{self.dataset}_Job{self.job}_Step{self.step}"

    def archive(self, work_dir: Path) -> int:
        """Copy everything in ``work_dir`` to the archive directory.

        Returns:
            Number of files and directories copied (0 if archiving is not
            configured or the work dir is missing)
        """
        if self.failed_results_dir is None:
            print_warning("Failed results directory is not defined for this manager; cannot copy results")
            return 0

        work_dir = Path(work_dir)
        try:
            self.failed_results_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            print_error(f"Cannot create failed results directory {self.failed_results_dir}: {e}")
            return 0

        target_dir = self.failed_results_dir / self.archive_name
        info_file = self.failed_results_dir / f"{INFO_FILE_PREFIX}{self.archive_name}.txt"
        try:
            self._write_info_file(info_file)
        except OSError as e:
            print_error(f"Error creating the results folder info file '{info_file}': {e}")

        if not work_dir.is_dir():
            print_error(f"Source folder not found; cannot copy results: {work_dir}")
            return 0

        self.purge_old_archives()

        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            print_error(f"Cannot create {target_dir}: {e}")
            return 0

        print_info(f"Copying data files to failed results archive: {work_dir}")
        copied = 0
        error_count = 0
        for item in sorted(work_dir.iterdir()):
            destination = target_dir / item.name
            try:
                if item.is_dir():
                    shutil.copytree(item, destination, dirs_exist_ok=True)
                else:
                    shutil.copy2(item, destination)
                copied += 1
            except (OSError, shutil.Error) as e:
                print_error(f"Error copying {item} to {target_dir}: {e}")
                error_count += 1

        if error_count == 0:
            print_success(f"Failed results copied to {target_dir}")
        else:
            print_warning(f"Copy complete; error count = {error_count}")
        return copied

    def _write_info_file(self, info_file: Path) -> None:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        lines = [
            f"Date\t{now}",
            f"ResultsFolderName\t{self.archive_name}",
            f"Manager\t{self.manager_name}",
            f"Job\t{self.job}",
            f"Step\t{self.step}",
            f"StepTool\t{self.step_tool}",
            f"Dataset\t{self.dataset}",
        ]
        info_file.write_text("\n".join(lines) + "\n", encoding='utf-8')

    def purge_old_archives(self) -> int:
        """Delete archives whose info file is older than the retention period.

        The info file itself is kept under an ``x_`` prefix as a record.

        Returns:
            Number of archives purged
        """
        if self.failed_results_dir is None or not self.failed_results_dir.is_dir():
            return 0

        cutoff = time.time() - self.retention_days * 86400
        purged = 0
        for info_file in self.failed_results_dir.glob(f"{INFO_FILE_PREFIX}*"):
            try:
                if info_file.stat().st_mtime >= cutoff:
                    continue

                old_archive = self.failed_results_dir / info_file.stem[len(INFO_FILE_PREFIX):]
                if old_archive.is_dir():
                    print_info(f"Deleting old failed results folder: {old_archive}")
                    shutil.rmtree(old_archive)
                    purged += 1

                info_file.replace(info_file.with_name(RETIRED_INFO_PREFIX + info_file.name))
            except OSError as e:
                print_error(f"Error deleting old failed results folder for {info_file.name}: {e}")
        return purged
