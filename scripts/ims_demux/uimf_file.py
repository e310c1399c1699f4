"""Minimal SQLite access to UIMF files.

Only what the step needs: frame lists, per-frame parameters, table names,
and the two writes done by manual calibration. Both the current
key/value frame-parameter schema (``Frame_Params`` + ``Frame_Param_Keys``)
and the legacy wide ``Frame_Parameters`` table are understood.
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

# Parameter name -> column in the legacy Frame_Parameters table
LEGACY_FRAME_COLUMNS = {
    "MultiplexingEncodingSequence": "IMFProfile",
    "CalibrationSlope": "CalibrationSlope",
    "CalibrationIntercept": "CalibrationIntercept",
    "FrameType": "FrameType",
}


class UimfFile:
    """Context manager around a SQLite connection to a UIMF file.

    Usage:
        with UimfFile(path) as uimf:
            frames = uimf.frame_numbers()
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self):
        if not self.path.is_file():
            raise FileNotFoundError(f"UIMF file not found: {self.path}")
        self.conn = sqlite3.connect(str(self.path))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn is not None:
            if exc_type is None:
                self.conn.commit()
            self.conn.close()
            self.conn = None
        return False

    def table_names(self) -> set[str]:
        rows = self.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        return {row[0] for row in rows}

    @property
    def uses_legacy_schema(self) -> bool:
        tables = self.table_names()
        return "Frame_Params" not in tables and "Frame_Parameters" in tables

    def frame_numbers(self) -> list[int]:
        tables = self.table_names()
        if "Frame_Params" in tables:
            query = "SELECT DISTINCT FrameNum FROM Frame_Params ORDER BY FrameNum"
        elif "Frame_Parameters" in tables:
            query = "SELECT DISTINCT FrameNum FROM Frame_Parameters ORDER BY FrameNum"
        else:
            return []
        return [row[0] for row in self.conn.execute(query).fetchall()]

    def frame_param_values(self, param_name: str) -> dict[int, str]:
        """Value of one frame parameter for every frame that defines it."""
        if self.uses_legacy_schema:
            column = LEGACY_FRAME_COLUMNS.get(param_name)
            if column is None:
                return {}
            rows = self.conn.execute(f"SELECT FrameNum, {column} FROM Frame_Parameters").fetchall()
        else:
            rows = self.conn.execute(
                "SELECT FP.FrameNum, FP.ParamValue "
                "FROM Frame_Params FP INNER JOIN Frame_Param_Keys K ON FP.ParamID = K.ParamID "
                "WHERE K.ParamName = ?",
                (param_name,),
            ).fetchall()
        return {frame: "" if value is None else str(value) for frame, value in rows}

    def calibration_tables(self) -> list[str]:
        return sorted(name for name in self.table_names() if name.lower().startswith("calib_"))

    def set_frame_param_all_frames(self, param_name: str, value: float) -> int:
        """Write a frame parameter for every frame; returns the number of frames updated."""
        frames = self.frame_numbers()
        if self.uses_legacy_schema:
            column = LEGACY_FRAME_COLUMNS[param_name]
            self.conn.execute(f"UPDATE Frame_Parameters SET {column} = ?", (value,))
            return len(frames)

        row = self.conn.execute(
            "SELECT ParamID FROM Frame_Param_Keys WHERE ParamName = ?", (param_name,)
        ).fetchone()
        if row is None:
            raise sqlite3.OperationalError(f"Frame parameter {param_name} is not defined in {self.path.name}")
        param_id = row[0]

        for frame in frames:
            updated = self.conn.execute(
                "UPDATE Frame_Params SET ParamValue = ? WHERE FrameNum = ? AND ParamID = ?",
                (str(value), frame, param_id),
            ).rowcount
            if updated == 0:
                self.conn.execute(
                    "INSERT INTO Frame_Params (FrameNum, ParamID, ParamValue) VALUES (?, ?, ?)",
                    (frame, param_id, str(value)),
                )
        return len(frames)

    def post_log_entry(self, entry_type: str, message: str, posted_by: str) -> None:
        self.conn.execute(
            "INSERT INTO Log_Entries (Posted_By, Posting_Time, Type, Message) VALUES (?, ?, ?, ?)",
            (posted_by, datetime.now().strftime("%Y-%m-%d %H:%M:%S"), entry_type, message),
        )
