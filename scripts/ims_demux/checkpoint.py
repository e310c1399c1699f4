"""Resume support for interrupted demultiplexing runs.

While it runs, the demultiplexer keeps a ``<decoded>.tmp`` checkpoint in the
remote dataset directory. If a previous run died, that checkpoint is copied
into the working directory and its ``Log_Entries`` table tells us the last
frame that was finished.
"""

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from .file_ops import copy_with_retry, delete_path
from .formats import UIMF, DatasetFormat
from .log_entries import max_demultiplexed_frame, read_log_entries
from .utils import print_error, print_info, print_warning


@dataclass(frozen=True)
class ResumeDecision:
    """Whether to resume, and from which frame."""
    resume: bool
    start_frame: int = 0
    reason: str = ""


class CheckpointResolver:
    """Finds a usable remote checkpoint and works out the resume frame."""

    def __init__(self, work_dir: Path, dataset_format: DatasetFormat = UIMF):
        self.work_dir = Path(work_dir)
        self.dataset_format = dataset_format

    def local_checkpoint_path(self, dataset: str) -> Path:
        return self.work_dir / self.dataset_format.checkpoint_name(dataset)

    def resolve(self, remote_dataset_dir: Path, dataset: str) -> ResumeDecision:
        """Decide whether the next run can resume.

        Any problem (copy failure, unreadable checkpoint, no finished
        frames) disables resume and the run starts from the beginning.
        """
        if not self.dataset_format.supports_resume:
            return ResumeDecision(resume=False, reason="format does not support resume")

        checkpoint_name = self.dataset_format.checkpoint_name(dataset)
        remote_checkpoint = Path(remote_dataset_dir) / checkpoint_name
        if not remote_checkpoint.exists():
            return ResumeDecision(resume=False, reason="no checkpoint found")

        local_checkpoint = self.local_checkpoint_path(dataset)
        if not copy_with_retry(remote_checkpoint, local_checkpoint, overwrite=True, max_retries=0):
            print_warning(
                f"Error copying .tmp decoded file from {remote_checkpoint} to the work directory; "
                f"unable to resume demultiplexing"
            )
            return ResumeDecision(resume=False, reason="checkpoint copy failed")

        print_info(f".tmp decoded file found at {remote_checkpoint}; will resume demultiplexing")

        detail = ""
        try:
            max_frame = max_demultiplexed_frame(read_log_entries(local_checkpoint))
        except (OSError, sqlite3.Error) as e:
            max_frame = 0
            detail = str(e)

        if max_frame <= 0:
            reason = "Error looking up max demultiplexed frame number from the Log_Entries table"
            message = f"{reason} in {local_checkpoint}"
            if detail:
                message = f"{message}; {detail}"
            print_error(message)
            print_warning("Demultiplexing will start from the first frame")
            delete_path(local_checkpoint, "unusable checkpoint copy")
            return ResumeDecision(resume=False, reason=reason)

        start_frame = max_frame + 1
        print_info(f"Resuming demultiplexing at frame {start_frame}")
        return ResumeDecision(resume=True, start_frame=start_frame)
