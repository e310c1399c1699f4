"""Console-output monitoring for the external demultiplexing tools.

The tools write their console output to a text file in the working
directory. ``ConsoleOutputMonitor.parse`` re-reads the whole file on each
polling tick and updates the job's progress, error list and out-of-memory
flag. Parsing is advisory: it never raises.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import ERROR_LINE_PREFIXES, OUT_OF_MEMORY_MARKER, WARNING_LINE_PREFIX
from .models import DemuxJob
from .utils import print_error, print_warning


@dataclass(frozen=True)
class ConsolePatterns:
    """Progress-extraction regexes for one tool.

    Attributes:
        tool_name: Name used when printing console errors and warnings
        percent: Regex whose first group is an explicit percent complete, if the tool prints one
        total_units: Regex whose first group is the number of units to process
        current_unit: Regex whose first group is the unit being processed
    """

    tool_name: str
    percent: Optional[re.Pattern] = None
    total_units: Optional[re.Pattern] = None
    current_unit: Optional[re.Pattern] = None

    def match_percent(self, line: str) -> Optional[float]:
        return _first_number(self.percent, line)

    def match_total(self, line: str) -> Optional[float]:
        return _first_number(self.total_units, line)

    def match_current(self, line: str) -> Optional[float]:
        return _first_number(self.current_unit, line)


def _first_number(pattern: Optional[re.Pattern], line: str) -> Optional[float]:
    if pattern is None:
        return None
    match = pattern.search(line)
    if not match:
        return None
    try:
        return float(match.group(1))
    except (IndexError, ValueError):
        return None


UIMF_DEMUX_PATTERNS = ConsolePatterns(
    tool_name="UIMFDemultiplexer",
    percent=re.compile(r"Processing: (\d+)%", re.IGNORECASE),
    total_units=re.compile(r"frames to demultiplex: (\d+)", re.IGNORECASE),
    current_unit=re.compile(r"Demultiplexing frame (\d+)", re.IGNORECASE),
)

PREPROCESSOR_PATTERNS = ConsolePatterns(
    tool_name="PNNL-PreProcessor",
    percent=re.compile(r"Progress: (\d+(?:\.\d+)?)\s*%", re.IGNORECASE),
)

AGILENT_CONVERSION_PATTERNS = ConsolePatterns(
    tool_name="AgilentToUIMFConverter",
    total_units=re.compile(r"Converting frame \d+ / (\d+)", re.IGNORECASE),
    current_unit=re.compile(r"Converting frame (\d+) / \d+", re.IGNORECASE),
)


class ConsoleOutputMonitor:
    """Extracts progress, errors and warnings from a tool's console output.

    The monitor does not own any state of its own; everything it learns is
    written to the ``DemuxJob`` it was given, whose ``reported_lines`` set
    keeps a repeated line from being printed on every tick.
    """

    def __init__(self, job: DemuxJob, patterns: ConsolePatterns):
        self.job = job
        self.patterns = patterns

    def parse(self, console_output_path: Path) -> None:
        """Re-read the console output file and update the job.

        A missing file means the tool has not written anything yet.
        """
        console_output_path = Path(console_output_path)
        if not console_output_path.exists():
            return

        try:
            with open(console_output_path, 'r', encoding='utf-8', errors='replace') as f:
                lines = f.read().splitlines()
            self._classify_lines(lines)
        except (OSError, ValueError) as e:
            message = f"Error parsing console output file {console_output_path.name}: {e}"
            if message not in self.job.parse_failures:
                self.job.parse_failures.add(message)
                print_warning(message)

    def _classify_lines(self, lines: list[str]) -> None:
        explicit_percent: Optional[float] = None
        total_units = 0.0
        current_unit = 0.0

        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue

            if line.startswith(ERROR_LINE_PREFIXES):
                if self.job.record_console_message(line):
                    print_error(f"{self.patterns.tool_name}: {line}")
                if OUT_OF_MEMORY_MARKER in line:
                    self.job.out_of_memory = True
                continue

            if line.startswith(WARNING_LINE_PREFIX):
                if self.job.record_console_message(line):
                    print_warning(f"{self.patterns.tool_name}: {line}")
                continue

            percent = self.patterns.match_percent(line)
            if percent is not None:
                explicit_percent = percent
                continue

            # Some tools print the unit and the total on the same line
            total = self.patterns.match_total(line)
            if total is not None:
                total_units = total

            current = self.patterns.match_current(line)
            if current is not None:
                current_unit = current

        estimates = []
        if explicit_percent is not None:
            estimates.append(explicit_percent)
        if total_units > 0:
            estimates.append(current_unit / total_units * 100.0)

        if estimates:
            self.job.progress.advance(max(estimates))
