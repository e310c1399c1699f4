"""File operations between the working directory and the remote dataset directory.

Two kinds of operation live here and are kept apart on purpose:

- Must-succeed operations (``copy_with_retry``, ``rename_with_retry``)
  return ``bool``; callers turn ``False`` into a failed job.
- Best-effort operations (``delete_path``, ``clean_work_dir``) return an
  ``OperationResult``; failures are printed as warnings and callers only
  log them.
"""

import errno
import os
import shutil
import time
from pathlib import Path
from typing import Union

from .constants import (
    BACKUP_VERSIONS,
    CLEAN_ATTEMPTS,
    CLEAN_HOLDOFF_SECONDS,
    RENAME_RETRY_DELAY_SECONDS,
    RETRY_DELAY_SECONDS,
)
from .models import OperationResult
from .utils import print_debug, print_error, print_warning

PathLike = Union[str, Path]

PARTIAL_SUFFIX = ".partial"
REPLACED_SUFFIX = ".replaced"


def backup_name(path: Path, version: int) -> Path:
    """Name of the Nth backup of ``path``: ``<stem>_Old<N><suffix>``."""
    if path.is_dir():
        return path.with_name(f"{path.name}_Old{version}")
    return path.with_name(f"{path.stem}_Old{version}{path.suffix}")


def backup_before_copy(path: PathLike, versions: int = BACKUP_VERSIONS) -> None:
    """Rename an existing file or directory to its ``_Old1`` backup name.

    Older backups shift up one number; the oldest beyond ``versions`` is
    removed. Does nothing if ``path`` does not exist.

    Raises:
        OSError: If a backup could not be rotated or created
    """
    path = Path(path)
    if not path.exists():
        return

    versions = max(1, versions)
    oldest = backup_name(path, versions)
    if oldest.exists():
        _remove(oldest)

    for version in range(versions - 1, 0, -1):
        current = backup_name(path, version)
        if current.exists():
            current.rename(backup_name(path, version + 1))

    path.rename(backup_name(path, 1))
    print_debug(f"Backed up {path.name} to {backup_name(path, 1).name}")


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _copy_all_or_nothing(source: Path, destination: Path, overwrite: bool) -> None:
    """Copy to a sibling ``.partial`` name, then move it into place.

    A directory tree is copied as a single unit. The destination is only
    replaced once the complete copy exists, and an existing tree is moved
    aside rather than deleted until the new one is in place.
    """
    if destination.exists() and not overwrite:
        raise FileExistsError(errno.EEXIST, "Destination already exists", str(destination))

    partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
    replaced = destination.with_name(destination.name + REPLACED_SUFFIX)
    for leftover in (partial, replaced):
        if leftover.exists():
            _remove(leftover)

    try:
        if source.is_dir():
            shutil.copytree(source, partial)
        else:
            shutil.copy2(source, partial)

        if destination.is_dir():
            os.replace(destination, replaced)
        try:
            os.replace(partial, destination)
        except OSError:
            if replaced.exists() and not destination.exists():
                os.replace(replaced, destination)
            raise
    except (OSError, shutil.Error):
        if partial.exists():
            try:
                _remove(partial)
            except OSError as cleanup_error:
                print_warning(f"Could not remove partial copy {partial}: {cleanup_error}")
        raise

    if replaced.exists():
        try:
            _remove(replaced)
        except OSError as cleanup_error:
            print_warning(f"Could not remove replaced copy {replaced}: {cleanup_error}")


def copy_with_retry(
    source: PathLike,
    destination: PathLike,
    overwrite: bool = False,
    max_retries: int = 0,
    backup_existing: bool = False,
    retry_delay: float = RETRY_DELAY_SECONDS,
) -> bool:
    """Copy a file or directory tree, retrying transient failures.

    Args:
        source: File or directory to copy
        destination: Full target path (not the parent directory)
        overwrite: Replace an existing destination
        max_retries: Extra attempts after the first; negative means none
        backup_existing: Rename an existing destination to ``_Old1`` first
        retry_delay: Seconds to sleep between attempts

    Returns:
        True once a copy succeeds, False after every attempt failed
    """
    source = Path(source)
    destination = Path(destination)
    retries_left = max(0, max_retries)

    if backup_existing and destination.exists():
        try:
            backup_before_copy(destination)
        except OSError as e:
            print_error(f"Could not back up {destination} before copy: {e}")
            return False

    while True:
        try:
            _copy_all_or_nothing(source, destination, overwrite)
            print_debug(f"Copied {source} to {destination}")
            return True
        except (OSError, shutil.Error) as e:
            print_error(f"Error copying {source} to {destination}: {e}")

        if retries_left <= 0:
            return False

        print_warning(f"Retrying copy; retries remaining = {retries_left}")
        retries_left -= 1
        time.sleep(retry_delay)


def rename_with_retry(
    source: PathLike,
    destination: PathLike,
    retry_delay: float = RENAME_RETRY_DELAY_SECONDS,
) -> bool:
    """Rename a remote file or directory, trying a second time after a short pause.

    Returns:
        True if the rename succeeded
    """
    source = Path(source)
    destination = Path(destination)

    for attempt in range(2):
        try:
            source.rename(destination)
            return True
        except OSError as e:
            if attempt == 0:
                print_warning(f"Rename of {source.name} failed ({e}); retrying")
                time.sleep(retry_delay)
            else:
                print_error(f"Error renaming {source} to {destination.name}: {e}")
    return False


def delete_path(path: PathLike, description: str = "") -> OperationResult:
    """Delete a file or directory tree if present (best effort)."""
    path = Path(path)
    if not path.exists() and not path.is_symlink():
        return OperationResult(ok=True)

    try:
        _remove(path)
        return OperationResult(ok=True)
    except OSError as e:
        label = description or path.name
        print_warning(f"Could not delete {label}: {e}")
        return OperationResult(ok=False, error=str(e))


def clean_work_dir(
    work_dir: PathLike,
    holdoff_seconds: float = CLEAN_HOLDOFF_SECONDS,
    attempts: int = CLEAN_ATTEMPTS,
) -> OperationResult:
    """Empty the working directory (best effort).

    Waits ``holdoff_seconds`` first since a process that just exited can
    still hold its files for a moment, then deletes files before
    subdirectories, repeating up to ``attempts`` times.
    """
    work_dir = Path(work_dir)
    if not work_dir.exists():
        work_dir.mkdir(parents=True, exist_ok=True)
        return OperationResult(ok=True)

    if holdoff_seconds > 0:
        time.sleep(holdoff_seconds)

    remaining: list[Path] = []
    for attempt in range(max(1, attempts)):
        children = sorted(work_dir.iterdir(), key=lambda p: (p.is_dir(), p.name))
        remaining = []
        for child in children:
            try:
                _remove(child)
            except OSError as e:
                print_debug(f"Could not delete {child.name} (attempt {attempt + 1}): {e}")
                remaining.append(child)

        if not remaining:
            return OperationResult(ok=True)

        if attempt < attempts - 1:
            time.sleep(max(holdoff_seconds, 0.5))

    error = f"{len(remaining)} item(s) could not be deleted from {work_dir}: " + ", ".join(
        p.name for p in remaining
    )
    print_warning(error)
    return OperationResult(ok=False, error=error)
