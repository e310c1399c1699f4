"""IMS demultiplexing step.

This package demultiplexes ion-mobility datasets that live on a storage
server, one dataset per run:
- Stages the multiplexed input to a local working directory
- Runs the external demultiplexer under supervision, resuming from a
  checkpoint when one is available
- Validates that the output finished recently
- Publishes the output back to the dataset directory and calibrates it

Supports two input formats:
- UIMF files (UIMFDemultiplexer)
- Agilent .d directories (PNNL-PreProcessor), converted to UIMF afterwards
  (AgilentToUimfConverter)

Usage:
    python scripts/run_demux.py --dataset QC_4bit_01 --storage-vol /mnt/vol --storage-path 2024_1
    python -m ims_demux.cli --task-params job.json
"""

from .calibration import ManualCalibration, UimfCalibrator, check_for_calibration_error, find_manual_calibration
from .checkpoint import CheckpointResolver, ResumeDecision
from .cli import main
from .config import DemuxConfigError, StepConfig, load_task_params
from .console_monitor import ConsoleOutputMonitor, ConsolePatterns
from .conversion import AgilentToUimfConverter
from .failed_results import FailedResultsArchiver
from .file_ops import clean_work_dir, copy_with_retry, delete_path, rename_with_retry
from .formats import DOT_D, UIMF, DatasetFormat
from .models import CloseoutType, DemuxJob, JobResult, MultiplexingStatus, OperationResult
from .orchestrator import DemuxOrchestrator
from .reconciler import OutcomeReconciler
from .step_tool import DemuxStepTool
from .supervisor import ProcessSupervisor, SupervisorResult
from .validator import CompletionValidator, ValidationResult

__all__ = [
    'main',
    'AgilentToUimfConverter',
    'CheckpointResolver',
    'CloseoutType',
    'CompletionValidator',
    'ConsoleOutputMonitor',
    'ConsolePatterns',
    'DatasetFormat',
    'DemuxConfigError',
    'DemuxJob',
    'DemuxOrchestrator',
    'DemuxStepTool',
    'DOT_D',
    'FailedResultsArchiver',
    'JobResult',
    'ManualCalibration',
    'MultiplexingStatus',
    'OperationResult',
    'OutcomeReconciler',
    'ProcessSupervisor',
    'ResumeDecision',
    'StepConfig',
    'SupervisorResult',
    'UIMF',
    'UimfCalibrator',
    'ValidationResult',
    'check_for_calibration_error',
    'clean_work_dir',
    'copy_with_retry',
    'delete_path',
    'find_manual_calibration',
    'load_task_params',
    'rename_with_retry',
]
