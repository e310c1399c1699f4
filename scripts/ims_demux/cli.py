"""Command-line interface for the IMS demultiplexing step.

Parses flags (optionally seeded from a task-parameter JSON file), runs
the step under log capture and exits with a code the host can act on:
0 for success or skip, 1 for a failed step, 2 for bad configuration.
"""

import argparse
import sys
from pathlib import Path

from env_config import DEFAULT_LOG_DIR
from log_manager import LogCapture

from .config import DATASET_FORMAT_KEYS, DemuxConfigError, StepConfig, load_task_params
from .models import CloseoutType, JobResult
from .progress import ProgressBarManager
from .step_tool import DemuxStepTool
from .utils import print_error, print_info, print_success, print_warning, set_debug

EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Demultiplex an IMS dataset on a storage server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    ims-demux --dataset QC_4bit_01 --storage-vol /mnt/proto3 --storage-path 2024_1
    ims-demux --task-params job_123456.json               # Everything from the host
    ims-demux --task-params job.json --frames-to-sum 3    # Flags override the file
    ims-demux --dataset QC_01 --storage-vol /mnt/p --storage-path 2024_1 --format dot_d
    ims-demux ... --no-calibration --keep-local-output --debug
"""
    )
    parser.add_argument("--dataset", "-n", type=str, help="Dataset name")
    parser.add_argument("--storage-vol", type=str, help="Storage server volume (root path)")
    parser.add_argument("--storage-path", type=str, help="Path below the volume holding dataset directories")
    parser.add_argument(
        "--dataset-dir",
        type=str,
        help="Dataset directory name, when it differs from the dataset name"
    )
    parser.add_argument("--work-dir", "-w", type=Path, help="Local working directory")
    parser.add_argument("--task-params", "-p", type=Path, help="JSON file of host task parameters")
    parser.add_argument("--job", type=int, help="Host job number (used when archiving failures)")
    parser.add_argument("--step", type=int, help="Host step number (used when archiving failures)")
    parser.add_argument("--instrument", type=str, help="Instrument name")
    parser.add_argument(
        "--format", "-f",
        type=str,
        choices=list(DATASET_FORMAT_KEYS),
        help="Dataset format (default: uimf, or from Instrument_Class)"
    )
    parser.add_argument("--frames-to-sum", type=int, help="Frames to sum while demultiplexing")
    parser.add_argument(
        "--min-pulse-coverage",
        type=int,
        help="Minimum pulse coverage percent (Agilent .d only)"
    )
    parser.add_argument(
        "--no-calibration",
        action="store_true",
        help="Do not calibrate the demultiplexed UIMF file"
    )
    parser.add_argument(
        "--keep-local-output",
        action="store_true",
        help="Keep the demultiplexed output in the working directory"
    )
    parser.add_argument(
        "--freshness-window",
        type=float,
        help="Minutes within which the completion log entry must fall"
    )
    parser.add_argument("--poll-interval", type=float, help="Seconds between tool polls")
    parser.add_argument("--demultiplexer-dir", type=Path, help="Directory containing the UIMF demultiplexer")
    parser.add_argument("--preprocessor-dir", type=Path, help="Directory containing the PNNL preprocessor")
    parser.add_argument("--converter-dir", type=Path, help="Directory containing the Agilent .d to UIMF converter")
    parser.add_argument("--failed-results-dir", type=Path, help="Where failed working directories are archived")
    parser.add_argument("--log-dir", type=Path, default=None, help=f"Run log directory (default: {DEFAULT_LOG_DIR})")
    parser.add_argument("--no-log", action="store_true", help="Do not write a run log")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    parser.add_argument("--debug", action="store_true", help="Print debug output")
    return parser


def exit_code_for(result: JobResult) -> int:
    if result.closeout == CloseoutType.FAILED:
        return EXIT_FAILED
    return EXIT_SUCCESS


def report_result(result: JobResult) -> None:
    """Print the closeout the host records for this step."""
    print()
    if result.closeout == CloseoutType.SUCCESS:
        print_success(f"Closeout: {result.closeout.value}")
    elif result.closeout == CloseoutType.SKIPPED:
        print_warning(f"Closeout: {result.closeout.value}")
    else:
        print_error(f"Closeout: {result.closeout.value}")
    if result.message:
        print_info(f"Message: {result.message}")
    if result.eval_message:
        print_info(f"Evaluation: {result.eval_message}")


def run_step(config: StepConfig, show_progress: bool = True) -> JobResult:
    with ProgressBarManager(enabled=None if show_progress else False) as bars:
        callback = bars.update if bars.enabled else None
        return DemuxStepTool(config, progress_callback=callback).run()


def main(argv=None) -> int:
    """Main entry point for the demultiplexing step."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        set_debug(True)

    try:
        task_params = load_task_params(args.task_params) if args.task_params else None
        config = StepConfig.from_args(args, task_params)
    except DemuxConfigError as e:
        print_error(str(e))
        return EXIT_CONFIG_ERROR

    if args.no_log:
        result = run_step(config, show_progress=not args.no_progress)
    else:
        with LogCapture(args.log_dir, label=config.dataset) as log:
            result = run_step(config, show_progress=not args.no_progress)
            report_result(result)
        if log.get_log_path():
            print_info(f"Run log: {log.get_log_path()}")
        return exit_code_for(result)

    report_result(result)
    return exit_code_for(result)


if __name__ == "__main__":
    sys.exit(main())
