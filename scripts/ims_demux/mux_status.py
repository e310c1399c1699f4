"""Is a dataset still multiplexed?

UIMF files record the multiplexing sequence per frame; Agilent ``.d``
directories record it in ``AcqData/IMSFrameMeth.xml``.
"""

import re
import sqlite3
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from .constants import IMS_DOT_D_REQUIRED_FILES
from .models import MultiplexingStatus
from .uimf_file import UimfFile
from .utils import print_error, print_warning

SEQUENCE_BITS_PATTERN = re.compile(r"^(\d)bit", re.IGNORECASE)
# BSA_65min_0pt5uL_1pt5ms_4bit_0001 or BSA_65min_0pt5uL_1pt5ms_4bit
DATASET_BITS_PATTERN = re.compile(r"_(\d)bit(?:_|$)", re.IGNORECASE)


@dataclass(frozen=True)
class MuxStatusResult:
    status: MultiplexingStatus
    bits: int = 0
    sequence: str = ""


def get_uimf_mux_status(uimf_path: Path) -> MuxStatusResult:
    """Multiplexing status of a UIMF file.

    A sequence file name like ``4bit_...`` means multiplexed with 4 bits.
    When no frame records a sequence, the dataset name is checked instead.
    """
    uimf_path = Path(uimf_path)
    try:
        with UimfFile(uimf_path) as uimf:
            frames = uimf.frame_numbers()
            values = uimf.frame_param_values("MultiplexingEncodingSequence")
    except (OSError, sqlite3.Error) as e:
        print_error(f"Unable to read frame parameters from {uimf_path}: {e}")
        return MuxStatusResult(MultiplexingStatus.ERROR)

    if not frames:
        print_error(f"UIMF file has no frames: {uimf_path}")
        return MuxStatusResult(MultiplexingStatus.ERROR)

    sequences = sorted({values.get(frame, "") for frame in frames})
    always_blank = True
    for sequence in sequences:
        if not sequence.strip():
            continue
        always_blank = False
        sequence_name = Path(sequence.replace("\\", "/")).name
        match = SEQUENCE_BITS_PATTERN.match(sequence_name)
        if match:
            return MuxStatusResult(MultiplexingStatus.MULTIPLEXED, int(match.group(1)), sequence)

    if always_blank:
        match = DATASET_BITS_PATTERN.search(uimf_path.stem)
        if match:
            return MuxStatusResult(MultiplexingStatus.MULTIPLEXED, int(match.group(1)))

    return MuxStatusResult(MultiplexingStatus.NON_MULTIPLEXED)


def is_ims_dot_d(dot_d_path: Path) -> bool:
    """True if an Agilent .d directory holds IMS data."""
    acq_data = Path(dot_d_path) / "AcqData"
    return all((acq_data / name).is_file() for name in IMS_DOT_D_REQUIRED_FILES)


def _frame_methods(dot_d_path: Path) -> list[tuple[int, str]]:
    """(ImsMuxProcessing, ImsMuxSequence) for every FrameMethod with processing > 0.

    Raises:
        OSError: If IMSFrameMeth.xml is missing or unreadable
        ValueError: If it cannot be parsed
    """
    meth_path = Path(dot_d_path) / "AcqData" / "IMSFrameMeth.xml"
    if not meth_path.is_file():
        raise FileNotFoundError(f"IMSFrameMeth.xml does not exist: {meth_path}")

    try:
        root = ET.parse(meth_path).getroot()
    except ET.ParseError as e:
        raise ValueError(f"Error parsing {meth_path}: {e}") from e

    methods = []
    frame_methods = root.findall("FrameMethod") if root.tag == "FrameMethods" else []
    for method in frame_methods:
        processing_text = (method.findtext("ImsMuxProcessing") or "0").strip()
        sequence = (method.findtext("ImsMuxSequence") or "").strip()
        processing = int(processing_text) if processing_text.lstrip("-").isdigit() else 0
        if processing > 0:
            methods.append((processing, sequence))
    return methods


def get_dot_d_mux_status(dot_d_path: Path) -> MuxStatusResult:
    """Multiplexing status of an Agilent .d directory."""
    try:
        methods = _frame_methods(dot_d_path)
    except (OSError, ValueError) as e:
        print_error(f"Agilent .D file: {e}")
        return MuxStatusResult(MultiplexingStatus.ERROR)

    if not methods:
        print_error(f"Agilent .D file, no ImsMuxProcessing entries in IMSFrameMeth.xml: {dot_d_path}")
        return MuxStatusResult(MultiplexingStatus.ERROR)

    status = MultiplexingStatus.NON_MULTIPLEXED
    mux_sequence = ""
    for processing, sequence in methods:
        if not sequence or processing != 1:
            continue
        status = MultiplexingStatus.MULTIPLEXED
        if not mux_sequence:
            mux_sequence = sequence
        elif sequence != mux_sequence:
            print_warning(
                f"Multiple multiplexing sequences in file, which is abnormal: '{mux_sequence}' and '{sequence}'"
            )

    return MuxStatusResult(status, sequence=mux_sequence)
