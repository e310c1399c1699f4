#!/usr/bin/env python3
"""Centralized environment configuration for the IMS demultiplexing step.

This module provides:
- Single source of truth for default directories and tool locations
- Environment variable overrides for container and manager deployments

Usage:
    from env_config import DEFAULT_WORK_DIR, UIMF_DEMULTIPLEXER_DIR

    work_dir = args.work_dir or DEFAULT_WORK_DIR
"""

import os
import platform
from pathlib import Path


# =============================================================================
# DIRECTORY CONFIGURATION
# =============================================================================

# Repo root directory
_REPO_ROOT = Path(__file__).resolve().parent.parent

# Local working directory; exclusively owned by one job at a time
DEFAULT_WORK_DIR = Path(os.environ.get(
    "IMS_DEMUX_WORK_DIR",
    str(_REPO_ROOT / "work")
))

# Where the working directory is preserved when a job fails.
# Empty means "not configured" and failed results are not archived.
FAILED_RESULTS_DIR = os.environ.get("IMS_DEMUX_FAILED_RESULTS_DIR", "")

# Rotated run logs
DEFAULT_LOG_DIR = Path(os.environ.get(
    "IMS_DEMUX_LOG_DIR",
    str(_REPO_ROOT / "logs")
))


# =============================================================================
# EXTERNAL TOOL LOCATIONS
# =============================================================================

UIMF_DEMULTIPLEXER_DIR = Path(os.environ.get(
    "UIMF_DEMULTIPLEXER_DIR",
    str(_REPO_ROOT / "tools" / "UIMFDemultiplexer")
))

PNNL_PREPROCESSOR_DIR = Path(os.environ.get(
    "PNNL_PREPROCESSOR_DIR",
    str(_REPO_ROOT / "tools" / "PNNL-PreProcessor")
))

AGILENT_TO_UIMF_DIR = Path(os.environ.get(
    "AGILENT_TO_UIMF_DIR",
    str(_REPO_ROOT / "tools" / "AgilentToUimfConverter")
))


# =============================================================================
# DIAGNOSTICS
# =============================================================================

DEBUG_OUTPUT = os.environ.get("IMS_DEMUX_DEBUG", "").lower() in ("1", "true", "yes")


def get_manager_name() -> str:
    """Name recorded in failed-results info files."""
    return os.environ.get("IMS_DEMUX_MANAGER_NAME", platform.node() or "unknown")
