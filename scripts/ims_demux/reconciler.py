"""Reconciling a finished job with the remote dataset directory.

Remote changes on success happen in a fixed order: rename the multiplexed
input, delete the checkpoint, copy the decoded output back. A crash between
any two steps leaves the remote directory in a state the next run
recognizes (for example a renamed input with no decoded copy yet).
"""

from pathlib import Path

from .constants import COPY_BACK_RETRIES, RETRY_DELAY_SECONDS
from .failed_results import FailedResultsArchiver
from .file_ops import clean_work_dir, copy_with_retry, delete_path, rename_with_retry
from .formats import DatasetFormat
from .models import ResultBuilder
from .utils import print_debug, print_info, print_warning


def artifact_label(dataset_format: DatasetFormat) -> str:
    return ".D directory" if dataset_format.is_directory else "UIMF file"


class OutcomeReconciler:
    """Success and failure handling for one job's artifacts."""

    def __init__(
        self,
        dataset_format: DatasetFormat,
        dataset: str,
        work_dir: Path,
        remote_dataset_dir: Path,
        archiver: FailedResultsArchiver,
        keep_local_output: bool = False,
        retry_delay: float = RETRY_DELAY_SECONDS,
        clean_holdoff_seconds: float = 1.0,
    ):
        self.dataset_format = dataset_format
        self.dataset = dataset
        self.work_dir = Path(work_dir)
        self.remote_dataset_dir = Path(remote_dataset_dir)
        self.archiver = archiver
        self.keep_local_output = keep_local_output
        self.retry_delay = retry_delay
        self.clean_holdoff_seconds = clean_holdoff_seconds

    def reconcile_success(self, input_name: str, decoded_local: Path, result: ResultBuilder) -> bool:
        """Publish a validated output to the remote dataset directory.

        Args:
            input_name: Remote name the multiplexed input was staged from
            decoded_local: Validated decoded output in the work dir
            result: Receives the closure message of a failed step

        Returns:
            True if every must-succeed step worked (cleanup never fails it)
        """
        fmt = self.dataset_format
        label = artifact_label(fmt)

        if fmt.is_renamed(input_name, self.dataset):
            print_debug(f"{input_name} was already renamed on a previous run")
        else:
            source = self.remote_dataset_dir / input_name
            target = self.remote_dataset_dir / fmt.renamed_name(self.dataset)
            print_info(f"Renaming {source.name} to {target.name} on storage server")
            if not rename_with_retry(source, target):
                result.fail(f"Error renaming encoded {label} on storage server")
                return False

        if fmt.supports_resume:
            checkpoint = self.remote_dataset_dir / fmt.checkpoint_name(self.dataset)
            deleted = delete_path(checkpoint, "checkpoint file on storage server")
            if not deleted.ok:
                print_warning(f"Leaving stale checkpoint {checkpoint}: {deleted.error}")

        canonical = self.remote_dataset_dir / fmt.staged_name(self.dataset)
        print_info(f"Copying demultiplexed {label} to {canonical}")
        if not copy_with_retry(
            decoded_local,
            canonical,
            overwrite=True,
            max_retries=COPY_BACK_RETRIES,
            retry_delay=self.retry_delay,
        ):
            result.fail(f"Error copying demultiplexed {label} to storage server")
            return False

        self._cleanup_after_success(decoded_local)
        return True

    def _cleanup_after_success(self, decoded_local: Path) -> None:
        if self.keep_local_output:
            staged = self.work_dir / self.dataset_format.staged_name(self.dataset)
            delete_path(staged, "multiplexed local copy")
            print_debug(f"Keeping local output {decoded_local.name}")
            return

        cleaned = clean_work_dir(self.work_dir, holdoff_seconds=self.clean_holdoff_seconds)
        if not cleaned.ok:
            print_warning(f"Working directory not fully cleaned; continuing ({cleaned.error})")

    def handle_failure(self, staged_local: Path) -> None:
        """Drop the useless multiplexed copy and preserve the rest for inspection."""
        delete_path(staged_local, "multiplexed local copy")
        self.archiver.archive(self.work_dir)
