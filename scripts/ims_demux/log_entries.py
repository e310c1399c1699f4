"""Readers for the completion logs embedded in the tools' output artifacts.

UIMF files are SQLite databases with an append-only ``Log_Entries`` table.
The Agilent preprocessor writes a plain-text log inside the ``.d``
directory instead, made of ``--- <timestamp> ---`` section headers
followed by free-form lines.
"""

import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Optional, Union

from .constants import PREPROCESSOR_LOG_RELATIVE_PATH

# Messages the demultiplexer posts after each block of frames, e.g.
# "Demultiplexed frame 120" or "Demultiplexed frames 101 to 120"
DEMULTIPLEXED_FRAME_PATTERN = re.compile(
    r"demultiplexed\s+(?:frames?\s+\d+\s*(?:to|-)\s*|frame\s+)(\d+)",
    re.IGNORECASE,
)

_DOTNET_EPOCH = datetime(1, 1, 1)

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
)


@dataclass(frozen=True)
class LogEntry:
    """One row of a UIMF ``Log_Entries`` table."""
    posted_by: str
    posting_time: Optional[datetime]
    entry_type: str
    message: str


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Parse a logged timestamp.

    Accepts text in the usual ISO and US formats, or .NET ticks as stored
    by older writers. Timezone information is dropped; log times are local.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, (int, float)):
        if value > 10 ** 15:
            return _DOTNET_EPOCH + timedelta(microseconds=value / 10)
        return datetime.fromtimestamp(value)

    text = str(value).strip()
    if not text:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        return None


def read_log_entries(uimf_path: Path) -> list[LogEntry]:
    """Read the Log_Entries table of a UIMF file, oldest first.

    Raises:
        FileNotFoundError: If the file does not exist
        sqlite3.Error: If the file is not a UIMF database or has no log table
    """
    uimf_path = Path(uimf_path)
    if not uimf_path.is_file():
        raise FileNotFoundError(f"UIMF file not found: {uimf_path}")

    conn = sqlite3.connect(str(uimf_path))
    try:
        cursor = conn.execute(
            "SELECT Posted_By, Posting_Time, Type, Message FROM Log_Entries ORDER BY Entry_ID"
        )
        return [
            LogEntry(
                posted_by=posted_by or "",
                posting_time=parse_timestamp(posting_time),
                entry_type=entry_type or "",
                message=message or "",
            )
            for posted_by, posting_time, entry_type, message in cursor.fetchall()
        ]
    finally:
        conn.close()


def find_marker_time(
    entries: Iterable[LogEntry],
    marker: str,
    fallback_time: Optional[datetime] = None,
) -> Optional[datetime]:
    """Most recent time of an entry whose message starts with ``marker``.

    An entry without a readable posting time takes ``fallback_time``
    (normally the artifact's last-modified time).

    Returns:
        Timestamp, or None if no entry carries the marker
    """
    marker_lower = marker.lower()
    latest: Optional[datetime] = None
    for entry in entries:
        if not entry.message.lower().startswith(marker_lower):
            continue
        stamp = entry.posting_time or fallback_time
        if stamp is not None and (latest is None or stamp > latest):
            latest = stamp
    return latest


def max_demultiplexed_frame(entries: Iterable[LogEntry]) -> int:
    """Highest frame number the demultiplexer reported as finished (0 if none)."""
    max_frame = 0
    for entry in entries:
        for match in DEMULTIPLEXED_FRAME_PATTERN.finditer(entry.message):
            max_frame = max(max_frame, int(match.group(1)))
    return max_frame


def artifact_mtime(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(Path(path).stat().st_mtime)
    except OSError:
        return None


def preprocessor_log_path(decoded_dir: Path) -> Path:
    return Path(decoded_dir).joinpath(*PREPROCESSOR_LOG_RELATIVE_PATH)


def find_preprocessor_finish_time(log_path: Path, marker: str) -> Optional[datetime]:
    """Completion time recorded by the preprocessor log, or None.

    Each ``--- <timestamp> ---`` header starts a new section (a new run).
    Only the last section counts: it must contain a line equal to ``marker``
    (case-insensitive). No header follows that line, so the finish time is
    the later of the section header time and the log's last-modified time.

    Raises:
        OSError: If the log cannot be read
    """
    log_path = Path(log_path)
    section_time: Optional[datetime] = None
    found_finish = False
    marker_lower = marker.lower()

    with open(log_path, 'r', encoding='utf-8', errors='replace') as f:
        for raw_line in f:
            line = raw_line.strip()
            if line.startswith("---"):
                stamp = parse_timestamp(line.strip("-").strip())
                if stamp is not None:
                    section_time = stamp
                    found_finish = False
                continue
            if line.lower() == marker_lower:
                found_finish = True

    if not found_finish:
        return None

    stamps = [t for t in (section_time, artifact_mtime(log_path)) if t is not None]
    return max(stamps) if stamps else None
