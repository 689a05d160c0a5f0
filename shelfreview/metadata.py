from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

OLD_PATH_FIELD = "Old file path"
SOURCE_FIELD = "Metadata source"
ISBN_FIELD = "ISBN"
FIELD_NAME_WIDTH = 20

_ISBN_CANDIDATE_RE = re.compile(r"(?<![0-9])(?:977|978|979)?(?:[ –-]?[0-9][ –-]?){9}[0-9xX](?![0-9])")
_ISBN_BLACKLIST_RE = re.compile(r"^(?:0123456789|([0-9xX])\1{9})$")

Field = Tuple[str, str]


def metadata_path_for(path: Path | str, extension: str) -> Path:
    """Sidecar files sit next to the file they describe: ``<file>.<extension>``."""
    return Path(f"{path}.{extension}")


def parse_fields(text: str) -> List[Field]:
    """Parse "Field : Value" lines into an ordered list, keeping duplicates.

    Lines without a colon are continuation or noise lines and are skipped.
    """
    fields: List[Field] = []
    for line in text.splitlines():
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        name = name.strip()
        if name:
            fields.append((name, value.strip()))
    return fields


def get_field(fields: Iterable[Field], name: str) -> Optional[str]:
    """Return the first value recorded for ``name``; later duplicates never win."""
    for field_name, value in fields:
        if field_name == name:
            return value
    return None


def read_fields(metadata_path: Path) -> List[Field]:
    with open(metadata_path, "r", encoding="utf-8", errors="replace") as f:
        return parse_fields(f.read())


def old_path(candidate_path: Path, metadata_path: Path) -> Path:
    """Return the path a file had before it was renamed.

    Without a sidecar, or with a sidecar that does not record one, the current
    path is the original path.
    """
    if not metadata_path.is_file():
        return candidate_path
    value = get_field(read_fields(metadata_path), OLD_PATH_FIELD)
    if not value:
        logger.debug(f"No '{OLD_PATH_FIELD}' in {metadata_path}, assuming unchanged")
        return candidate_path
    return Path(value)


def format_field(name: str, value: str) -> str:
    return f"{name:<{FIELD_NAME_WIDTH}}: {value}"


def append_fields(text: str, fields: Iterable[Field]) -> str:
    """Return ``text`` with the given fields appended as new lines."""
    lines = [format_field(name, value) for name, value in fields]
    if not lines:
        return text
    if text and not text.endswith("\n"):
        text += "\n"
    return text + "\n".join(lines) + "\n"


def write_sidecar(metadata_path: Path, text: str, dry_run: bool = False) -> None:
    """Replace the sidecar with ``text`` as a whole.

    The content goes to a temporary file in the same folder first and is then
    renamed over the target, so readers never see a half-written sidecar.
    """
    if dry_run:
        logger.info(f"[dry-run] would write metadata file {metadata_path}")
        return
    metadata_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{metadata_path.name}.", suffix=".tmp", dir=metadata_path.parent
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, metadata_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def remove_sidecar(metadata_path: Path, dry_run: bool = False) -> bool:
    """Delete a sidecar if it exists. Returns True when there was one."""
    if not metadata_path.is_file():
        return False
    if dry_run:
        logger.info(f"[dry-run] would remove metadata file {metadata_path}")
        return True
    metadata_path.unlink()
    return True


def is_valid_isbn(isbn: str) -> bool:
    """Checksum validation for ISBN-10 and ISBN-13 (separators already removed)."""
    if len(isbn) == 10:
        if _ISBN_BLACKLIST_RE.match(isbn) or not isbn[:9].isdigit():
            return False
        if not (isbn[9].isdigit() or isbn[9] in "xX"):
            return False
        digits = [int(c) for c in isbn[:9]] + [10 if isbn[9] in "xX" else int(isbn[9])]
        return sum((10 - i) * d for i, d in enumerate(digits)) % 11 == 0
    if len(isbn) == 13:
        if not isbn.isdigit():
            return False
        total = sum(int(c) * (1 if i % 2 == 0 else 3) for i, c in enumerate(isbn))
        return total % 10 == 0
    return False


def find_isbns(text: str) -> List[str]:
    """Find valid ISBNs anywhere in ``text``, in order of appearance, without duplicates."""
    found: List[str] = []
    for match in _ISBN_CANDIDATE_RE.finditer(text or ""):
        isbn = re.sub(r"[^0-9xX]", "", match.group(0)).upper()
        if is_valid_isbn(isbn) and isbn not in found:
            found.append(isbn)
    return found
