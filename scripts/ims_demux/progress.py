"""Progress bar for a supervised tool run.

The supervisor reports percent complete through its progress callback;
this module turns those calls into a tqdm bar when output goes to a
terminal. Redirected output (host managers, log capture) gets the plain
status lines only.
"""

import sys
from typing import Optional

import tqdm


class ProgressBarManager:
    """Feeds a single tqdm bar from percent-complete updates."""

    def __init__(self, enabled: Optional[bool] = None, desc: str = "Demultiplexing"):
        self.enabled = sys.stdout.isatty() if enabled is None else enabled
        self.desc = desc
        self.bar = None

    def create_progress_bar(self, desc: str = ""):
        """Create the bar (0 to 100 percent).

        Returns:
            Progress bar object or None when disabled
        """
        if not self.enabled:
            return None
        self.bar = tqdm.tqdm(
            total=100,
            desc=desc or self.desc,
            unit='%',
            bar_format='{l_bar}{bar}| {n:.1f}% [{elapsed}]',
        )
        return self.bar

    def update(self, percent: float) -> None:
        """Progress callback: move the bar forward to ``percent``."""
        if not self.enabled:
            return
        if self.bar is None:
            self.create_progress_bar()
        target = max(0.0, min(100.0, percent))
        delta = target - self.bar.n
        if delta > 0:
            self.bar.update(delta)

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
