"""
Collision-free placement of files and their sidecar metadata.

Nothing here ever overwrites an existing path. Destination names are made
unique up front, and the move itself refuses to clobber in case something
appeared at the destination in between (a single operator works sequentially,
so that window is not locked).
"""
from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .config import ReviewConfig

logger = logging.getLogger(__name__)


@dataclass
class MoveResult:
    """Outcome of moving a file together with its optional sidecar."""

    file_path: Path
    metadata_path: Optional[Path] = None
    metadata_error: Optional[OSError] = None

    @property
    def complete(self) -> bool:
        return self.metadata_error is None


def unique_filename(folder: Path | str, basename: str) -> Path:
    """Return ``folder/basename``, or ``folder/<stem> (N)<suffix>`` if that is taken."""
    folder = Path(folder)
    candidate = folder / basename
    if not os.path.lexists(candidate):
        return candidate
    stem, suffix = os.path.splitext(basename)
    counter = 1
    while True:
        candidate = folder / f"{stem} ({counter}){suffix}"
        if not os.path.lexists(candidate):
            return candidate
        counter += 1


def move_or_link_file(current_path: Path, new_path: Path, config: ReviewConfig) -> None:
    """Move (or symlink) one file, creating folders as needed and never clobbering.

    Raises:
        FileExistsError: if ``new_path`` already exists.
        OSError: for any other filesystem failure.
    """
    if config.dry_run:
        logger.info(f"[dry-run] would move '{current_path}' to '{new_path}'")
        return
    logger.debug(f"Move/link '{current_path}' to '{new_path}'")
    new_path.parent.mkdir(parents=True, exist_ok=True)
    if os.path.lexists(new_path):
        raise FileExistsError(f"Refusing to overwrite existing file '{new_path}'")
    if config.symlink_only:
        os.symlink(os.path.realpath(current_path), new_path)
    else:
        shutil.move(str(current_path), str(new_path))


def move_or_link_file_and_maybe_meta(
    new_folder: Path, file_path: Path, metadata_path: Path, config: ReviewConfig
) -> MoveResult:
    """Move a file into ``new_folder`` and, if it has one, its sidecar after it.

    The sidecar is only touched once the file itself has moved. A failure to
    move the sidecar is returned in the result rather than undoing the file move.
    """
    new_path = unique_filename(new_folder, file_path.name)
    move_or_link_file(file_path, new_path, config)
    result = MoveResult(file_path=new_path)

    if metadata_path.is_file():
        new_metadata_path = unique_filename(
            new_path.parent, f"{new_path.name}.{config.metadata_extension}"
        )
        try:
            move_or_link_file(metadata_path, new_metadata_path, config)
            result.metadata_path = new_metadata_path
        except OSError as e:
            logger.error(f"Moved '{file_path}' but not its metadata '{metadata_path}': {e}")
            result.metadata_error = e
    return result


def rename_file(current_path: Path, new_path: Path, config: ReviewConfig) -> None:
    """Like move_or_link_file, but always a real move, never a symlink."""
    move_or_link_file(current_path, new_path, replace(config, symlink_only=False))


def move_no_clobber(current_path: Path, target: str, config: ReviewConfig) -> Path:
    """Move a file to an operator-typed destination.

    A destination that is an existing folder, or that ends with a path
    separator, receives the file under its current name. The file is always
    moved, even in symlink mode, since its sidecar is dropped afterwards.
    """
    new_path = Path(os.path.expanduser(target))
    if target.endswith(os.sep) or new_path.is_dir():
        new_path = new_path / current_path.name
    rename_file(current_path, new_path, config)
    return new_path
