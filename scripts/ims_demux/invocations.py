"""Command lines for the external tools.

Each invocation is an immutable value validated at construction, so a bad
combination of options fails before anything is launched.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import DemuxConfigError
from .constants import DEFAULT_FRAMES_TO_SUM, DEFAULT_MIN_PULSE_COVERAGE


def _same_directory(first: Path, second: Path) -> bool:
    return str(Path(first).parent).lower() == str(Path(second).parent).lower()


@dataclass(frozen=True)
class UimfDemuxInvocation:
    """UIMFDemultiplexer_Console arguments for demultiplexing one file."""

    executable: Path
    input_path: Path
    output_path: Path
    frames_to_sum: int = DEFAULT_FRAMES_TO_SUM
    bits: int = 0
    resume: bool = False
    resume_start_frame: int = 0
    auto_calibrate: bool = False
    checkpoint_dir: Optional[Path] = None

    def __post_init__(self):
        if self.frames_to_sum < 1:
            raise DemuxConfigError(f"Frames to sum must be at least 1, got {self.frames_to_sum}")
        if self.bits < 0:
            raise DemuxConfigError(f"Encoding bits cannot be negative, got {self.bits}")
        if self.resume_start_frame < 0:
            raise DemuxConfigError("Resume start frame cannot be negative")
        if self.resume_start_frame and not self.resume:
            raise DemuxConfigError("Resume start frame given without resume")

    def build_args(self) -> list[str]:
        args = [str(self.input_path)]
        if not _same_directory(self.input_path, self.output_path):
            args.append(f"/O:{Path(self.output_path).parent}")

        args.append(f"/N:{Path(self.output_path).name}")
        if self.bits > 1:
            args.append(f"/Bits:{self.bits}")
        args.append(f"/FramesToSum:{self.frames_to_sum}")
        if self.resume:
            args.append("/Resume")
        if not self.auto_calibrate:
            args.append("/SkipCalibration")
        if self.checkpoint_dir:
            args.append(f"/CheckPointDirectory:{self.checkpoint_dir}")
        return args


@dataclass(frozen=True)
class UimfCalibrationInvocation:
    """UIMFDemultiplexer_Console arguments for calibrating a demultiplexed file in place."""

    executable: Path
    input_path: Path
    output_path: Optional[Path] = None

    def build_args(self) -> list[str]:
        args = [str(self.input_path)]
        if self.output_path is not None and not _same_directory(self.input_path, self.output_path):
            args.append(f"/O:{Path(self.output_path).parent}")
        # /CX lets the tool borrow calibration tables from similarly named files
        args.extend(["/CalibrateOnly", "/CX"])
        return args


@dataclass(frozen=True)
class PreprocessorInvocation:
    """PNNL-PreProcessor arguments for demultiplexing an Agilent .d directory.

    The preprocessor picks its own output name; only the directory is passed.
    """

    executable: Path
    input_path: Path
    output_path: Path
    frames_to_sum: int = DEFAULT_FRAMES_TO_SUM
    min_pulse_coverage: int = DEFAULT_MIN_PULSE_COVERAGE

    def __post_init__(self):
        if self.frames_to_sum < 1:
            raise DemuxConfigError(f"Frames to sum must be at least 1, got {self.frames_to_sum}")
        if not 0 <= self.min_pulse_coverage <= 100:
            raise DemuxConfigError(
                f"Minimum pulse coverage must be between 0 and 100, got {self.min_pulse_coverage}"
            )

    def build_args(self) -> list[str]:
        args = ["-d", str(self.input_path)]
        if not _same_directory(self.input_path, self.output_path):
            args.extend(["-out", str(Path(self.output_path).parent)])
        args.extend([
            "-demux", str(self.frames_to_sum),
            "-demuxMA", str(self.frames_to_sum),
            "-demuxSignal", str(self.min_pulse_coverage),
            "-overwrite",
        ])
        return args


@dataclass(frozen=True)
class AgilentConversionInvocation:
    """AgilentToUimfConverter arguments: the .d directory, then where the .uimf goes."""

    executable: Path
    input_path: Path
    output_dir: Path

    def __post_init__(self):
        if Path(self.input_path).suffix.lower() != ".d":
            raise DemuxConfigError(f"Converter input must be a .d directory, got {self.input_path}")

    def build_args(self) -> list[str]:
        return [str(self.input_path), str(self.output_dir)]
