"""Step configuration.

Centralizes everything one demultiplexing step needs into a single typed,
immutable object. Values come from command-line flags, optionally seeded
from a JSON file of host task parameters, with defaults from
``env_config``.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from env_config import (
    AGILENT_TO_UIMF_DIR,
    DEFAULT_WORK_DIR,
    FAILED_RESULTS_DIR,
    PNNL_PREPROCESSOR_DIR,
    UIMF_DEMULTIPLEXER_DIR,
    get_manager_name,
)

from .constants import (
    AGILENT_TO_UIMF_EXE,
    CONVERSION_MAX_RUNTIME_MINUTES,
    DEFAULT_FRAMES_TO_SUM,
    DEFAULT_FRESHNESS_WINDOW_MINUTES,
    DEFAULT_MIN_PULSE_COVERAGE,
    DEMUX_MAX_RUNTIME_MINUTES,
    PNNL_PREPROCESSOR_EXE,
    POLL_INTERVAL_SECONDS,
    STATUS_INTERVAL_SECONDS,
    UIMF_DEMULTIPLEXER_EXE,
)


class DemuxConfigError(ValueError):
    """Raised when step or tool configuration is invalid."""


DATASET_FORMAT_KEYS = ("uimf", "dot_d")

# Instrument classes whose datasets are Agilent .d directories
DOT_D_INSTRUMENT_CLASSES = {"ims_agilent_tof_dotd"}

# Host task-parameter names -> StepConfig field names
TASK_PARAM_FIELDS = {
    "Dataset": "dataset",
    "Storage_Vol_External": "storage_vol",
    "Storage_Path": "storage_path",
    "Directory": "dataset_dir_name",
    "Folder": "dataset_dir_name",
    "Job": "job",
    "Step": "step",
    "StepTool": "step_tool",
    "Instrument_Name": "instrument_name",
    "Instrument_Class": "instrument_class",
    "DemuxFramesToSum": "frames_to_sum",
    "DemuxMinPulseCoverage": "min_pulse_coverage",
    "PerformCalibration": "perform_calibration",
}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "y")


def load_task_params(path: Path) -> dict[str, Any]:
    """Load a JSON file of host task parameters and map them to field names.

    ``Directory`` wins over ``Folder`` when both are present. Unknown keys
    are ignored.

    Raises:
        DemuxConfigError: If the file cannot be read or is not a JSON object
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DemuxConfigError(f"Could not load task parameters from {path}: {e}") from e

    if not isinstance(raw, dict):
        raise DemuxConfigError(f"Task parameter file {path} must contain a JSON object")

    params: dict[str, Any] = {}
    for key in ("Folder",) + tuple(k for k in TASK_PARAM_FIELDS if k != "Folder"):
        if key in raw and raw[key] is not None:
            params[TASK_PARAM_FIELDS[key]] = raw[key]
    return params


@dataclass(frozen=True)
class StepConfig:
    """Configuration for one demultiplexing step run.

    Validated at construction; an invalid value raises ``DemuxConfigError``.
    """

    dataset: str
    storage_vol: str
    storage_path: str
    dataset_dir_name: str = ""
    work_dir: Path = DEFAULT_WORK_DIR
    job: int = 0
    step: int = 0
    step_tool: str = "ImsDeMultiplex"
    manager_name: str = field(default_factory=get_manager_name)
    instrument_name: str = ""
    dataset_format: str = "uimf"

    frames_to_sum: int = DEFAULT_FRAMES_TO_SUM
    min_pulse_coverage: int = DEFAULT_MIN_PULSE_COVERAGE
    perform_calibration: bool = True
    keep_local_output: bool = False

    demultiplexer_dir: Path = UIMF_DEMULTIPLEXER_DIR
    preprocessor_dir: Path = PNNL_PREPROCESSOR_DIR
    converter_dir: Path = AGILENT_TO_UIMF_DIR
    failed_results_dir: Optional[Path] = Path(FAILED_RESULTS_DIR) if FAILED_RESULTS_DIR else None

    freshness_window_minutes: float = DEFAULT_FRESHNESS_WINDOW_MINUTES
    poll_interval: float = POLL_INTERVAL_SECONDS
    status_interval: float = STATUS_INTERVAL_SECONDS
    max_demux_runtime_minutes: float = DEMUX_MAX_RUNTIME_MINUTES
    max_conversion_runtime_minutes: float = CONVERSION_MAX_RUNTIME_MINUTES

    def __post_init__(self):
        if not self.dataset or not self.dataset.strip():
            raise DemuxConfigError("Dataset name is required")
        if any(sep in self.dataset for sep in ("/", "\\")):
            raise DemuxConfigError(f"Dataset name cannot contain path separators: {self.dataset}")
        if self.dataset_format not in DATASET_FORMAT_KEYS:
            raise DemuxConfigError(
                f"Unknown dataset format '{self.dataset_format}'; expected one of {sorted(DATASET_FORMAT_KEYS)}"
            )
        if not self.storage_vol:
            raise DemuxConfigError("Storage volume is required")
        if self.frames_to_sum < 1:
            raise DemuxConfigError(f"Frames to sum must be at least 1, got {self.frames_to_sum}")
        if not 0 <= self.min_pulse_coverage <= 100:
            raise DemuxConfigError(
                f"Minimum pulse coverage must be between 0 and 100, got {self.min_pulse_coverage}"
            )
        if self.freshness_window_minutes <= 0:
            raise DemuxConfigError("Freshness window must be positive")
        if self.poll_interval <= 0 or self.status_interval <= 0:
            raise DemuxConfigError("Poll and status intervals must be positive")
        if self.max_demux_runtime_minutes <= 0 or self.max_conversion_runtime_minutes <= 0:
            raise DemuxConfigError("Maximum runtime must be positive")

    @property
    def dataset_directory(self) -> str:
        """Name of the dataset's directory on the storage server."""
        return self.dataset_dir_name or self.dataset

    @property
    def remote_dataset_dir(self) -> Path:
        return Path(self.storage_vol) / self.storage_path / self.dataset_directory

    @property
    def demultiplexer_path(self) -> Path:
        return Path(self.demultiplexer_dir) / UIMF_DEMULTIPLEXER_EXE

    @property
    def preprocessor_path(self) -> Path:
        return Path(self.preprocessor_dir) / PNNL_PREPROCESSOR_EXE

    @property
    def converter_path(self) -> Path:
        return Path(self.converter_dir) / AGILENT_TO_UIMF_EXE

    @classmethod
    def from_args(cls, args, task_params: Optional[dict[str, Any]] = None) -> "StepConfig":
        """Create config from an argparse namespace.

        Flags left at None fall back to ``task_params`` (as returned by
        ``load_task_params``), then to the dataclass defaults.

        Raises:
            DemuxConfigError: If required values are missing or invalid
        """
        merged: dict[str, Any] = dict(task_params or {})

        flag_fields = {
            "dataset": getattr(args, "dataset", None),
            "storage_vol": getattr(args, "storage_vol", None),
            "storage_path": getattr(args, "storage_path", None),
            "dataset_dir_name": getattr(args, "dataset_dir", None),
            "work_dir": getattr(args, "work_dir", None),
            "job": getattr(args, "job", None),
            "step": getattr(args, "step", None),
            "instrument_name": getattr(args, "instrument", None),
            "dataset_format": getattr(args, "format", None),
            "frames_to_sum": getattr(args, "frames_to_sum", None),
            "min_pulse_coverage": getattr(args, "min_pulse_coverage", None),
            "demultiplexer_dir": getattr(args, "demultiplexer_dir", None),
            "preprocessor_dir": getattr(args, "preprocessor_dir", None),
            "converter_dir": getattr(args, "converter_dir", None),
            "failed_results_dir": getattr(args, "failed_results_dir", None),
            "freshness_window_minutes": getattr(args, "freshness_window", None),
            "poll_interval": getattr(args, "poll_interval", None),
        }
        for name, value in flag_fields.items():
            if value is not None:
                merged[name] = value

        if getattr(args, "no_calibration", False):
            merged["perform_calibration"] = False
        if getattr(args, "keep_local_output", False):
            merged["keep_local_output"] = True

        instrument_class = merged.pop("instrument_class", None)
        if instrument_class and "dataset_format" not in merged:
            is_dot_d = str(instrument_class).lower() in DOT_D_INSTRUMENT_CLASSES
            merged["dataset_format"] = "dot_d" if is_dot_d else "uimf"

        for required in ("dataset", "storage_vol", "storage_path"):
            if not merged.get(required):
                raise DemuxConfigError(f"Missing required parameter: {required}")

        try:
            for name in ("job", "step", "frames_to_sum", "min_pulse_coverage"):
                if name in merged:
                    merged[name] = int(merged[name])
            for name in ("freshness_window_minutes", "poll_interval"):
                if name in merged:
                    merged[name] = float(merged[name])
        except (TypeError, ValueError) as e:
            raise DemuxConfigError(f"Invalid numeric parameter: {e}") from e

        if "perform_calibration" in merged:
            merged["perform_calibration"] = _to_bool(merged["perform_calibration"])
        for name in ("work_dir", "demultiplexer_dir", "preprocessor_dir", "converter_dir", "failed_results_dir"):
            if merged.get(name) is not None:
                merged[name] = Path(merged[name])

        return cls(**merged)
