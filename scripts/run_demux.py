#!/usr/bin/env python3
"""Run the IMS demultiplexing step for one dataset.

Thin launcher for ``ims_demux.cli`` so the step can be started from a
checkout without installing the package.

Usage:
    python scripts/run_demux.py --dataset QC_4bit_01 --storage-vol /mnt/vol --storage-path 2024_1
    python scripts/run_demux.py --task-params job.json --debug
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from ims_demux.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
