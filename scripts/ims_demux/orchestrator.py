"""Job orchestration for one dataset.

States, in order::

    StageInput -> CheckResume -> Invoke -> ValidateOutput
        -> RenameRemote -> DeleteCheckpoint -> CopyBack -> Cleanup

A failure while staging ends the job at once (nothing local to keep).
Any failure from Invoke onward deletes the staged input and archives the
working directory. Every outcome is returned as a ``JobResult``.
"""

import sqlite3
import subprocess
from pathlib import Path
from typing import Optional

from .checkpoint import CheckpointResolver, ResumeDecision
from .config import DemuxConfigError
from .console_monitor import ConsoleOutputMonitor
from .constants import (
    CLEAN_HOLDOFF_SECONDS,
    DEFAULT_FRESHNESS_WINDOW_MINUTES,
    DEMUX_MAX_RUNTIME_MINUTES,
    RETRY_DELAY_SECONDS,
    STAGE_IN_RETRIES,
)
from .failed_results import FailedResultsArchiver
from .file_ops import clean_work_dir, copy_with_retry
from .formats import DatasetFormat
from .models import DemuxJob, JobResult, ResultBuilder
from .reconciler import OutcomeReconciler, artifact_label
from .supervisor import ProcessSupervisor
from .utils import print_error, print_header, print_info, print_success
from .validator import CompletionValidator


class DemuxOrchestrator:
    """Runs the demultiplexing state machine for one job."""

    def __init__(
        self,
        dataset_format: DatasetFormat,
        executable: Path,
        supervisor: ProcessSupervisor,
        archiver: FailedResultsArchiver,
        freshness_window_minutes: float = DEFAULT_FRESHNESS_WINDOW_MINUTES,
        max_runtime_minutes: float = DEMUX_MAX_RUNTIME_MINUTES,
        retry_delay: float = RETRY_DELAY_SECONDS,
        clean_holdoff_seconds: float = CLEAN_HOLDOFF_SECONDS,
    ):
        self.dataset_format = dataset_format
        self.executable = Path(executable)
        self.supervisor = supervisor
        self.archiver = archiver
        self.freshness_window_minutes = freshness_window_minutes
        self.max_runtime_minutes = max_runtime_minutes
        self.retry_delay = retry_delay
        self.clean_holdoff_seconds = clean_holdoff_seconds

    def run(self, job: DemuxJob, input_name: str) -> JobResult:
        """Demultiplex ``input_name`` from the job's remote dataset directory.

        Args:
            job: Job to run; its progress and console state are reset
            input_name: Remote name of the multiplexed input (may already
                carry the renamed suffix on a re-run)

        Returns:
            Terminal JobResult
        """
        fmt = self.dataset_format
        result = ResultBuilder()
        job.progress.reset()

        print_header(f"Demultiplexing {job.dataset} ({fmt.tool_name})")

        cleaned = clean_work_dir(job.work_dir, holdoff_seconds=0)
        if not cleaned.ok:
            return result.fail("Unable to empty the working directory before staging").freeze()

        staged = job.work_dir / fmt.staged_name(job.dataset)
        if not self._stage_input(job, input_name, staged):
            return result.fail(f"Error copying {artifact_label(fmt)} to working directory").freeze()

        reconciler = OutcomeReconciler(
            fmt,
            job.dataset,
            job.work_dir,
            job.remote_dataset_dir,
            self.archiver,
            keep_local_output=job.keep_local_output,
            retry_delay=self.retry_delay,
            clean_holdoff_seconds=self.clean_holdoff_seconds,
        )

        try:
            decision = CheckpointResolver(job.work_dir, fmt).resolve(job.remote_dataset_dir, job.dataset)
            decoded = self._invoke_and_validate(job, staged, decision, result)
            if decoded is not None and reconciler.reconcile_success(input_name, decoded, result):
                result.append_eval("De-multiplexed")
                if decision.resume:
                    result.append_eval(f" (resumed at unit {decision.start_frame})")
                print_success(f"{job.dataset}: {result.eval_message}")
                return result.freeze()
        except (OSError, sqlite3.Error, subprocess.SubprocessError, DemuxConfigError) as e:
            print_error(f"Error demultiplexing {job.dataset}: {e}")
            result.fail(f"Error demultiplexing {artifact_label(fmt)}: {e}")

        if not result.failed:
            result.fail(f"Error demultiplexing {artifact_label(fmt)}")
        reconciler.handle_failure(staged)
        return result.freeze()

    def _stage_input(self, job: DemuxJob, input_name: str, staged: Path) -> bool:
        remote_input = job.remote_dataset_dir / input_name
        print_info(f"Copying {remote_input} to working directory")
        return copy_with_retry(
            remote_input,
            staged,
            overwrite=True,
            max_retries=STAGE_IN_RETRIES,
            retry_delay=self.retry_delay,
        )

    def _invoke_and_validate(
        self,
        job: DemuxJob,
        staged: Path,
        decision: ResumeDecision,
        result: ResultBuilder,
    ) -> Optional[Path]:
        """Run the tool and validate its output.

        Returns:
            Path of the validated decoded output, or None after recording a failure
        """
        fmt = self.dataset_format
        decoded = job.work_dir / fmt.decoded_name(job.dataset)

        invocation = fmt.build_invocation(
            self.executable,
            staged,
            decoded,
            job,
            resume_start_frame=decision.start_frame if decision.resume else 0,
            checkpoint_dir=job.remote_dataset_dir if fmt.supports_resume else None,
        )

        run = self.supervisor.run(
            self.executable,
            invocation.build_args(),
            job.work_dir,
            self.max_runtime_minutes,
            console_output_path=job.work_dir / fmt.console_output_file,
            monitor=ConsoleOutputMonitor(job, fmt.patterns),
            tool_name=fmt.tool_name,
        )
        if not run.success:
            result.fail(run.error or f"Error running {fmt.tool_name}")
            return None
        print_info(f"{fmt.tool_name} finished in {run.elapsed_minutes:.1f} minutes")

        if not decoded.exists():
            message = f"Decoded {artifact_label(fmt)} not found"
            print_error(f"{message}: {decoded}")
            result.fail(message)
            return None

        validation = CompletionValidator(fmt).validate(decoded, self.freshness_window_minutes)
        if not validation.valid:
            result.fail(validation.message)
            return None

        return decoded
