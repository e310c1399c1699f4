"""Shared fixtures for the demultiplexing step tests.

UIMF files are built as real SQLite databases with the same tables the
step reads; Agilent .d directories get the AcqData files that mark them as
IMS acquisitions.
"""

import sqlite3
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from ims_demux.supervisor import SupervisorResult  # noqa: E402

FRAME_PARAM_NAMES = {
    "MultiplexingEncodingSequence": 1,
    "CalibrationSlope": 2,
    "CalibrationIntercept": 3,
    "FrameType": 4,
}


def now_text(when: Optional[datetime] = None) -> str:
    return (when or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")


def create_uimf(
    path: Path,
    frames: int = 3,
    sequence: str = "4bit_Seq.txt",
    log_entries=(),
    frame_types: Optional[dict] = None,
    calibration_tables=(),
    slope: float = 0.35,
    intercept: float = 0.02,
) -> Path:
    """Write a minimal UIMF file.

    Args:
        log_entries: (posted_by, posting_time, message) tuples, oldest first;
            posting_time may be a datetime or text
        frame_types: Frame number -> FrameType (default 1 for every frame)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame_types = frame_types or {}

    conn = sqlite3.connect(str(path))
    conn.execute(
        "CREATE TABLE Log_Entries (Entry_ID INTEGER PRIMARY KEY AUTOINCREMENT, "
        "Posted_By TEXT, Posting_Time TEXT, Type TEXT, Message TEXT)"
    )
    conn.execute(
        "CREATE TABLE Frame_Param_Keys (ParamID INTEGER PRIMARY KEY, ParamName TEXT, "
        "ParamDataType TEXT, ParamDescription TEXT)"
    )
    conn.execute("CREATE TABLE Frame_Params (FrameNum INTEGER, ParamID INTEGER, ParamValue TEXT)")
    for name, param_id in FRAME_PARAM_NAMES.items():
        conn.execute(
            "INSERT INTO Frame_Param_Keys (ParamID, ParamName, ParamDataType, ParamDescription) "
            "VALUES (?, ?, 'string', '')",
            (param_id, name),
        )

    for frame in range(1, frames + 1):
        values = {
            "MultiplexingEncodingSequence": sequence,
            "CalibrationSlope": str(slope),
            "CalibrationIntercept": str(intercept),
            "FrameType": str(frame_types.get(frame, 1)),
        }
        for name, value in values.items():
            conn.execute(
                "INSERT INTO Frame_Params (FrameNum, ParamID, ParamValue) VALUES (?, ?, ?)",
                (frame, FRAME_PARAM_NAMES[name], value),
            )

    for table in calibration_tables:
        conn.execute(f"CREATE TABLE {table} (Value REAL)")

    for posted_by, posting_time, message in log_entries:
        if isinstance(posting_time, datetime):
            posting_time = now_text(posting_time)
        conn.execute(
            "INSERT INTO Log_Entries (Posted_By, Posting_Time, Type, Message) VALUES (?, ?, 'Normal', ?)",
            (posted_by, posting_time, message),
        )

    conn.commit()
    conn.close()
    return path


def add_log_entry(path: Path, message: str, posted_by: str = "UIMFDemultiplexer", when=None) -> None:
    conn = sqlite3.connect(str(path))
    conn.execute(
        "INSERT INTO Log_Entries (Posted_By, Posting_Time, Type, Message) VALUES (?, ?, 'Normal', ?)",
        (posted_by, now_text(when), message),
    )
    conn.commit()
    conn.close()


def frame_meth_xml(methods) -> str:
    body = "".join(
        f"<FrameMethod><ImsMuxProcessing>{processing}</ImsMuxProcessing>"
        f"<ImsMuxSequence>{sequence}</ImsMuxSequence></FrameMethod>"
        for processing, sequence in methods
    )
    return f"<?xml version=\"1.0\"?><FrameMethods>{body}</FrameMethods>"


def create_dot_d(
    path: Path,
    ims: bool = True,
    methods=((1, "4bit_Seq"),),
    preprocessor_log: Optional[str] = None,
) -> Path:
    """Write an Agilent .d directory.

    Args:
        ims: Create the AcqData files that mark an IMS acquisition
        methods: (ImsMuxProcessing, ImsMuxSequence) per FrameMethod
        preprocessor_log: Content of AcqData/PNNL-PreProcessorLog.txt, if any
    """
    path = Path(path)
    acq_data = path / "AcqData"
    acq_data.mkdir(parents=True, exist_ok=True)
    (acq_data / "MSScan.bin").write_bytes(b"\x00" * 16)
    if ims:
        (acq_data / "IMSFrame.bin").write_bytes(b"\x01" * 16)
        (acq_data / "MSPeriodicActuals.bin").write_bytes(b"\x02" * 16)
        (acq_data / "MSProfile.bin").write_bytes(b"\x03" * 16)
        (acq_data / "IMSFrame.xsd").write_text("<xs:schema/>", encoding='utf-8')
        (acq_data / "IMSFrameMeth.xml").write_text(frame_meth_xml(methods), encoding='utf-8')
    if preprocessor_log is not None:
        (acq_data / "PNNL-PreProcessorLog.txt").write_text(preprocessor_log, encoding='utf-8')
    return path


def finished_preprocessor_log(when: Optional[datetime] = None) -> str:
    return f"--- {now_text(when)} ---\nDemultiplexing...\nDemultiplexing finished!\n"


class FakeSupervisor:
    """Stands in for ProcessSupervisor; ``action`` plays the external tool.

    ``action(args, work_dir)`` creates whatever the tool would and returns a
    SupervisorResult (None means success).
    """

    def __init__(self, action: Optional[Callable] = None):
        self.action = action
        self.calls = []

    def run(self, executable, args, work_dir, max_runtime_minutes,
            console_output_path=None, monitor=None, tool_name=""):
        self.calls.append(list(args))
        result = self.action(list(args), Path(work_dir)) if self.action else None
        if console_output_path is not None and monitor is not None:
            monitor.parse(console_output_path)
        return result or SupervisorResult(success=True, exit_code=0)


@pytest.fixture
def make_uimf():
    return create_uimf


@pytest.fixture
def make_dot_d():
    return create_dot_d


@pytest.fixture
def remote_dir(tmp_path):
    """Dataset directory on a fake storage server: <vol>/<path>/<dataset>."""
    path = tmp_path / "vol" / "2024_1" / "QC_4bit_01"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path
