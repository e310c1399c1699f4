"""The IMS demultiplexing step.

Decides what the dataset on the storage server needs (demultiplexing,
nothing, or a skip because it is not IMS data), runs the orchestrator for
the dataset's format, and then calibrates a demultiplexed UIMF file or
converts an Agilent .d directory to UIMF.
Whatever happens, ``run`` returns a ``JobResult``.
"""

import traceback
from pathlib import Path
from typing import Optional

from .calibration import ManualCalibration, UimfCalibrator, check_for_calibration_error, find_manual_calibration
from .config import StepConfig
from .conversion import AgilentToUimfConverter
from .failed_results import FailedResultsArchiver
from .file_ops import delete_path
from .formats import DOT_D, UIMF, DatasetFormat
from .models import CloseoutType, DemuxJob, JobResult, MultiplexingStatus, ResultBuilder
from .mux_status import MuxStatusResult, get_dot_d_mux_status, get_uimf_mux_status, is_ims_dot_d
from .orchestrator import DemuxOrchestrator
from .supervisor import ProcessSupervisor, ProgressCallback
from .utils import print_debug, print_error, print_header, print_info, print_warning

CALIBRATION_LOG_ERROR_EVAL = (
    "De-multiplexed but Calibration failed.  If you want to re-demultiplex the "
    "_encoded.uimf file, you should rename the CalibrationLog.txt file"
)


class DemuxStepTool:
    """Runs one demultiplexing step for the dataset described by a StepConfig.

    Example:
        config = StepConfig(dataset="QC_4bit_01", storage_vol="/mnt/vol", storage_path="2024_1")
        result = DemuxStepTool(config).run()
    """

    def __init__(
        self,
        config: StepConfig,
        supervisor: Optional[ProcessSupervisor] = None,
        archiver: Optional[FailedResultsArchiver] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.config = config
        self.supervisor = supervisor or ProcessSupervisor(
            poll_interval=config.poll_interval,
            status_interval=config.status_interval,
            progress_callback=progress_callback,
        )
        self.archiver = archiver or FailedResultsArchiver(
            config.failed_results_dir,
            config.dataset,
            job=config.job,
            step=config.step,
            step_tool=config.step_tool,
            manager_name=config.manager_name,
        )

    def run(self) -> JobResult:
        """Run the step; unexpected errors become a failed result."""
        config = self.config
        print_header(f"{config.step_tool}: {config.dataset}")
        print_debug(f"Remote dataset directory: {config.remote_dataset_dir}")
        print_debug(f"Working directory: {config.work_dir}")

        try:
            Path(config.work_dir).mkdir(parents=True, exist_ok=True)
            if config.dataset_format == DOT_D.key:
                return self._run_dot_d()
            return self._run_uimf()
        except Exception as e:
            # Last line of defence: the host must always receive a result
            print_error(f"Exception running {config.step_tool}: {e}")
            print_debug(traceback.format_exc())
            return ResultBuilder().fail(f"Exception running {config.step_tool}: {e}").freeze()

    def _new_job(self, mux_status: MuxStatusResult) -> DemuxJob:
        config = self.config
        return DemuxJob(
            dataset=config.dataset,
            remote_dataset_dir=config.remote_dataset_dir,
            work_dir=Path(config.work_dir),
            bits=mux_status.bits,
            frames_to_sum=config.frames_to_sum,
            min_pulse_coverage=config.min_pulse_coverage,
            keep_local_output=config.keep_local_output,
        )

    def _orchestrator(self, dataset_format: DatasetFormat, executable: Path) -> DemuxOrchestrator:
        return DemuxOrchestrator(
            dataset_format,
            executable,
            self.supervisor,
            self.archiver,
            freshness_window_minutes=self.config.freshness_window_minutes,
            max_runtime_minutes=self.config.max_demux_runtime_minutes,
        )

    def _demultiplex(
        self,
        dataset_format: DatasetFormat,
        executable: Path,
        input_name: str,
        mux_status: MuxStatusResult,
    ) -> ResultBuilder:
        job = self._new_job(mux_status)
        outcome = self._orchestrator(dataset_format, executable).run(job, input_name)
        result = ResultBuilder(outcome.closeout, outcome.message, outcome.eval_message)
        if job.out_of_memory and not result.failed:
            result.fail("Out of memory")
        return result

    # UIMF datasets

    def _run_uimf(self) -> JobResult:
        config = self.config
        remote = config.remote_dataset_dir
        result = ResultBuilder()
        manual: Optional[ManualCalibration] = None

        encoded = remote / UIMF.renamed_name(config.dataset)
        if encoded.is_file() and encoded.stat().st_size > 0:
            # A previous run renamed the input but may not have finished
            input_name = encoded.name
            if check_for_calibration_error(remote):
                manual = find_manual_calibration(remote / UIMF.staged_name(config.dataset))
                if manual is None:
                    print_error(
                        "CalibrationLog.txt reports a failed calibration; rename it to "
                        "re-demultiplex the _encoded.uimf file"
                    )
                    result.fail("Error calibrating UIMF file; see CalibrationLog.txt")
                    result.append_eval(CALIBRATION_LOG_ERROR_EVAL)
                    return result.freeze()
                print_info("Calibration previously failed but manual coefficients are available")
        else:
            if encoded.exists():
                print_warning(f"Deleting 0-byte file {encoded.name}")
                deleted = delete_path(encoded, "0-byte _encoded.uimf file")
                if not deleted.ok:
                    return result.fail("Exception deleting 0-byte uimf_encoded file").freeze()

            input_name = UIMF.staged_name(config.dataset)
            if not (remote / input_name).is_file():
                return self._missing_uimf(input_name)

        mux_status = get_uimf_mux_status(remote / input_name)
        demultiplexed = False
        if mux_status.status == MultiplexingStatus.NON_MULTIPLEXED:
            print_info(f"{input_name} is not multiplexed; nothing to demultiplex")
            result.append_eval("Non-Multiplexed")
        elif mux_status.status == MultiplexingStatus.ERROR:
            result.fail(f"Problem determining UIMF file status for dataset {config.dataset}")
        else:
            result = self._demultiplex(UIMF, config.demultiplexer_path, input_name, mux_status)
            demultiplexed = True

        if result.closeout != CloseoutType.SUCCESS:
            return result.freeze()

        uimf_path = remote / UIMF.staged_name(config.dataset)
        if not uimf_path.is_file():
            reason = "after demultiplexing" if demultiplexed else "(skipped demultiplexing)"
            result.fail(f"UIMF File not found {reason}: {uimf_path}")
            return result.freeze()

        self._calibrate(uimf_path, manual, result)
        return result.freeze()

    def _missing_uimf(self, input_name: str) -> JobResult:
        config = self.config
        result = ResultBuilder()
        dot_d = config.remote_dataset_dir / DOT_D.staged_name(config.dataset)

        if not dot_d.is_dir():
            return result.fail(f"Dataset .d directory not found: {dot_d}").freeze()

        if not is_ims_dot_d(dot_d):
            message = "Skipped demultiplexing since not an IMS dataset (no .UIMF file or IMS files)"
            print_info(message)
            result.skip(message)
            result.append_eval(message)
            return result.freeze()

        return result.fail(f"UIMF file not found: {input_name}").freeze()

    def _calibrate(self, uimf_path: Path, manual: Optional[ManualCalibration], result: ResultBuilder) -> None:
        config = self.config
        calibrator = UimfCalibrator(
            config.demultiplexer_path,
            self.supervisor,
            Path(config.work_dir),
            config.remote_dataset_dir,
            instrument_name=config.instrument_name,
            freshness_window_minutes=config.freshness_window_minutes,
        )
        if manual is not None:
            calibrator.apply_manual(uimf_path, manual, result)
        elif config.perform_calibration:
            calibrator.calibrate(uimf_path, config.dataset, result)
        else:
            print_debug("Calibration disabled for this step")

    # Agilent .d datasets

    def _run_dot_d(self) -> JobResult:
        config = self.config
        remote = config.remote_dataset_dir
        result = ResultBuilder()

        dot_d = remote / DOT_D.staged_name(config.dataset)
        if not dot_d.is_dir():
            return result.fail(f"Dataset .d directory not found: {dot_d}").freeze()

        if not is_ims_dot_d(dot_d):
            message = "Skipped since not an IMS dataset (no .UIMF file or IMS files)"
            print_info(message)
            result.skip(message)
            result.append_eval(message)
            return result.freeze()

        muxed = remote / DOT_D.renamed_name(config.dataset)
        input_name = dot_d.name
        if muxed.is_dir() and is_ims_dot_d(muxed) and \
                get_dot_d_mux_status(muxed).status == MultiplexingStatus.MULTIPLEXED:
            # A previous run renamed the input; the multiplexed data lives there
            input_name = muxed.name
        elif muxed.exists():
            print_warning(f"Deleting incomplete {muxed.name}")
            deleted = delete_path(muxed, "incomplete _muxed.d directory")
            if not deleted.ok:
                return result.fail("Exception deleting incomplete Agilent .D IMS _muxed.d directory").freeze()

        mux_status = get_dot_d_mux_status(remote / input_name)
        demultiplexed = False
        if mux_status.status == MultiplexingStatus.NON_MULTIPLEXED:
            print_info(f"{input_name} is not multiplexed; nothing to demultiplex")
            result.append_eval("Non-Multiplexed")
        elif mux_status.status == MultiplexingStatus.ERROR:
            return result.fail(
                f"Problem determining Agilent IMS .D file status for dataset {config.dataset}"
            ).freeze()
        else:
            result = self._demultiplex(DOT_D, config.preprocessor_path, input_name, mux_status)
            demultiplexed = True
            if result.closeout == CloseoutType.SUCCESS and not dot_d.is_dir():
                result.fail(f".D directory not found after demultiplexing: {dot_d}")

        if result.closeout != CloseoutType.SUCCESS:
            return result.freeze()

        converter = AgilentToUimfConverter(
            config.converter_path,
            self.supervisor,
            Path(config.work_dir),
            remote,
            config.dataset,
            max_runtime_minutes=config.max_conversion_runtime_minutes,
        )
        if not converter.convert(result):
            return result.freeze()

        uimf_path = remote / UIMF.staged_name(config.dataset)
        if not uimf_path.is_file():
            reason = "after demultiplexing" if demultiplexed else "(skipped demultiplexing)"
            result.fail(f"UIMF File not found {reason}: {uimf_path}")
        return result.freeze()

