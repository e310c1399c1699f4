"""Dataset formats handled by the demultiplexing orchestrator.

A format bundles the artifact naming rules, tool, console patterns and
completion-log style for one kind of multiplexed input. The orchestrator
itself never branches on file extensions.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .console_monitor import PREPROCESSOR_PATTERNS, UIMF_DEMUX_PATTERNS, ConsolePatterns
from .constants import (
    CHECKPOINT_SUFFIX,
    DECODED_DOT_D_SUFFIX,
    DECODED_UIMF_SUFFIX,
    DOT_D_EXTENSION,
    ENCODED_UIMF_SUFFIX,
    MUXED_DOT_D_SUFFIX,
    PREPROCESSOR_CONSOLE_OUTPUT_FILE,
    PREPROCESSOR_FINISHED_MARKER,
    UIMF_CONSOLE_OUTPUT_FILE,
    UIMF_EXTENSION,
    UIMF_FINISHED_MARKER,
)
from .invocations import PreprocessorInvocation, UimfDemuxInvocation
from .models import DemuxJob

Invocation = Union[UimfDemuxInvocation, PreprocessorInvocation]

LOG_ENTRIES_TABLE = "log_entries"
PREPROCESSOR_LOG = "preprocessor_log"


@dataclass(frozen=True)
class DatasetFormat:
    """Naming and tooling rules for one multiplexed input format.

    Attributes:
        key: Short identifier
        staged_template: Local (and canonical remote) name of the input
        renamed_template: Remote name of the input once demultiplexed
        decoded_template: Name the tool gives its output
        is_directory: Artifacts are directory trees rather than files
        supports_resume: Tool can resume from a checkpoint artifact
        console_output_file: Name of the console output file in the work dir
        patterns: Progress-extraction patterns for the console output
        finished_marker: Completion marker in the output's embedded log
        log_kind: Where the embedded log lives
        tool_name: Name used in messages
    """

    key: str
    staged_template: str
    renamed_template: str
    decoded_template: str
    is_directory: bool
    supports_resume: bool
    console_output_file: str
    patterns: ConsolePatterns
    finished_marker: str
    log_kind: str
    tool_name: str

    def staged_name(self, dataset: str) -> str:
        return self.staged_template.format(dataset=dataset)

    def renamed_name(self, dataset: str) -> str:
        return self.renamed_template.format(dataset=dataset)

    def decoded_name(self, dataset: str) -> str:
        return self.decoded_template.format(dataset=dataset)

    def checkpoint_name(self, dataset: str) -> str:
        return self.decoded_name(dataset) + CHECKPOINT_SUFFIX

    def is_renamed(self, name: str, dataset: str) -> bool:
        """True if ``name`` is the dataset's renamed input.

        Only the whole name counts; a dataset whose own name contains
        ``_encoded`` or ``_muxed`` is not renamed.
        """
        return name.lower() == self.renamed_name(dataset).lower()

    def build_invocation(
        self,
        executable: Path,
        input_path: Path,
        output_path: Path,
        job: DemuxJob,
        resume_start_frame: int = 0,
        checkpoint_dir: Optional[Path] = None,
    ) -> Invocation:
        if self.key == UIMF.key:
            return UimfDemuxInvocation(
                executable=executable,
                input_path=input_path,
                output_path=output_path,
                frames_to_sum=job.frames_to_sum,
                bits=job.bits,
                resume=resume_start_frame > 0,
                resume_start_frame=resume_start_frame,
                checkpoint_dir=checkpoint_dir,
            )
        return PreprocessorInvocation(
            executable=executable,
            input_path=input_path,
            output_path=output_path,
            frames_to_sum=job.frames_to_sum,
            min_pulse_coverage=job.min_pulse_coverage,
        )


UIMF = DatasetFormat(
    key="uimf",
    staged_template="{dataset}" + UIMF_EXTENSION,
    renamed_template="{dataset}" + ENCODED_UIMF_SUFFIX + UIMF_EXTENSION,
    decoded_template="{dataset}" + DECODED_UIMF_SUFFIX + UIMF_EXTENSION,
    is_directory=False,
    supports_resume=True,
    console_output_file=UIMF_CONSOLE_OUTPUT_FILE,
    patterns=UIMF_DEMUX_PATTERNS,
    finished_marker=UIMF_FINISHED_MARKER,
    log_kind=LOG_ENTRIES_TABLE,
    tool_name="UIMFDemultiplexer",
)

DOT_D = DatasetFormat(
    key="dot_d",
    staged_template="{dataset}" + DOT_D_EXTENSION,
    renamed_template="{dataset}" + MUXED_DOT_D_SUFFIX + DOT_D_EXTENSION,
    decoded_template="{dataset}" + DOT_D_EXTENSION + DECODED_DOT_D_SUFFIX,
    is_directory=True,
    supports_resume=False,
    console_output_file=PREPROCESSOR_CONSOLE_OUTPUT_FILE,
    patterns=PREPROCESSOR_PATTERNS,
    finished_marker=PREPROCESSOR_FINISHED_MARKER,
    log_kind=PREPROCESSOR_LOG,
    tool_name="PNNL-PreProcessor",
)
