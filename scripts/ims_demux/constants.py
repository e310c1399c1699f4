"""Demultiplexing step constants.

Central location for artifact names, marker strings, retry counts and
timing values shared across the step's modules. Names and markers must
match what the external tools write, character for character.
"""

__all__ = [
    "UIMF_EXTENSION",
    "DOT_D_EXTENSION",
    "ENCODED_UIMF_SUFFIX",
    "DECODED_UIMF_SUFFIX",
    "MUXED_DOT_D_SUFFIX",
    "DECODED_DOT_D_SUFFIX",
    "CHECKPOINT_SUFFIX",
    "CALIBRATION_LOG_FILE",
    "UIMF_DEMULTIPLEXER_EXE",
    "PNNL_PREPROCESSOR_EXE",
    "AGILENT_TO_UIMF_EXE",
    "UIMF_CONSOLE_OUTPUT_FILE",
    "PREPROCESSOR_CONSOLE_OUTPUT_FILE",
    "CONVERSION_CONSOLE_OUTPUT_FILE",
    "PREPROCESSOR_LOG_RELATIVE_PATH",
    "UIMF_FINISHED_MARKER",
    "PREPROCESSOR_FINISHED_MARKER",
    "CALIBRATION_APPLIED_MARKER",
    "CALIBRATION_FAILED_PHRASE",
    "CALIBRATION_UPDATER_NAME",
    "ERROR_LINE_PREFIXES",
    "WARNING_LINE_PREFIX",
    "OUT_OF_MEMORY_MARKER",
    "STAGE_IN_RETRIES",
    "COPY_BACK_RETRIES",
    "RETRY_DELAY_SECONDS",
    "RENAME_RETRY_DELAY_SECONDS",
    "CLEAN_ATTEMPTS",
    "CLEAN_HOLDOFF_SECONDS",
    "BACKUP_VERSIONS",
    "POLL_INTERVAL_SECONDS",
    "STATUS_INTERVAL_SECONDS",
    "DEMUX_MAX_RUNTIME_MINUTES",
    "CALIBRATION_MAX_RUNTIME_MINUTES",
    "CONVERSION_MAX_RUNTIME_MINUTES",
    "DEFAULT_FRESHNESS_WINDOW_MINUTES",
    "DEFAULT_FRAMES_TO_SUM",
    "DEFAULT_MIN_PULSE_COVERAGE",
    "MIN_FRAMES_FOR_CALIBRATION",
    "SKIP_CALIBRATION_INSTRUMENTS",
    "IMS_DOT_D_REQUIRED_FILES",
    "CONVERSION_REQUIRED_BIN_FILES",
    "UIMF_MIN_SIZE_KB",
    "UIMF_SMALL_SIZE_KB",
    "FAILED_RESULTS_RETENTION_DAYS",
]

# Artifact naming
UIMF_EXTENSION = ".uimf"
DOT_D_EXTENSION = ".d"
ENCODED_UIMF_SUFFIX = "_encoded"
DECODED_UIMF_SUFFIX = "_decoded"
MUXED_DOT_D_SUFFIX = "_muxed"
DECODED_DOT_D_SUFFIX = ".deMP.d"
CHECKPOINT_SUFFIX = ".tmp"
CALIBRATION_LOG_FILE = "CalibrationLog.txt"

# External tools
UIMF_DEMULTIPLEXER_EXE = "UIMFDemultiplexer_Console.exe"
PNNL_PREPROCESSOR_EXE = "PNNL-PreProcessor.exe"
AGILENT_TO_UIMF_EXE = "AgilentToUimfConverter.exe"
UIMF_CONSOLE_OUTPUT_FILE = "UIMFDemultiplexer_ConsoleOutput.txt"
PREPROCESSOR_CONSOLE_OUTPUT_FILE = "PNNL-PreProcessor_ConsoleOutput.txt"
CONVERSION_CONSOLE_OUTPUT_FILE = "AgilentToUIMF_ConsoleOutput.txt"
PREPROCESSOR_LOG_RELATIVE_PATH = ("AcqData", "PNNL-PreProcessorLog.txt")

# Completion-log markers
UIMF_FINISHED_MARKER = "Finished demultiplexing"
PREPROCESSOR_FINISHED_MARKER = "Demultiplexing finished!"
CALIBRATION_APPLIED_MARKER = "Applied calibration coefficients to all frames"
CALIBRATION_FAILED_PHRASE = "Could not obtain a good calibration"
CALIBRATION_UPDATER_NAME = "UIMF Calibration Updater"

# Console-output markers
ERROR_LINE_PREFIXES = ("Error in", "Error:", "Exception")
WARNING_LINE_PREFIX = "Warning:"
OUT_OF_MEMORY_MARKER = "OutOfMemory"

# Copy / cleanup
STAGE_IN_RETRIES = 0
COPY_BACK_RETRIES = 3
RETRY_DELAY_SECONDS = 2.0
RENAME_RETRY_DELAY_SECONDS = 0.25
CLEAN_ATTEMPTS = 3
CLEAN_HOLDOFF_SECONDS = 1.0
BACKUP_VERSIONS = 5

# Supervision
POLL_INTERVAL_SECONDS = 30.0
STATUS_INTERVAL_SECONDS = 300.0
DEMUX_MAX_RUNTIME_MINUTES = 1440 * 5
CALIBRATION_MAX_RUNTIME_MINUTES = 5
CONVERSION_MAX_RUNTIME_MINUTES = 720
DEFAULT_FRESHNESS_WINDOW_MINUTES = 10

# Tool parameters
DEFAULT_FRAMES_TO_SUM = 5
DEFAULT_MIN_PULSE_COVERAGE = 62

# Calibration
MIN_FRAMES_FOR_CALIBRATION = 5
SKIP_CALIBRATION_INSTRUMENTS = frozenset({"ims_tof_1", "ims_tof_2", "ims_tof_3"})

# An Agilent .d directory is only an IMS acquisition if these exist under AcqData
IMS_DOT_D_REQUIRED_FILES = ("IMSFrame.bin", "IMSFrame.xsd", "IMSFrameMeth.xml")

FAILED_RESULTS_RETENTION_DAYS = 31

# Agilent .d to UIMF conversion; purged datasets lack some of these
CONVERSION_REQUIRED_BIN_FILES = ("IMSFrame.bin", "MSPeriodicActuals.bin", "MSProfile.bin", "MSScan.bin")
UIMF_MIN_SIZE_KB = 5
UIMF_SMALL_SIZE_KB = 50
