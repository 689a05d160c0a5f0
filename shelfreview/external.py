"""
Adapters for the external tools the review loop relies on.

Metadata fetching, conversion to text and embedded-metadata inspection are
done by calibre's command line tools (and ``pdftotext`` for PDFs). The review
code only sees the small interfaces defined here, so none of it depends on how
those tools are invoked.
"""
from __future__ import annotations

import logging
import mimetypes
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import typer

from .config import ReviewConfig

logger = logging.getLogger(__name__)

ISBN_QUERY = "isbn"
TITLE_QUERY = "title"

# Formats that are already readable in a pager
DIRECT_TEXT_MIMETYPES = {"application/json", "application/xml", "application/x-sh"}


class ExternalToolError(RuntimeError):
    """An external tool was missing or reported failure."""


class FetchError(ExternalToolError):
    pass


class ConversionError(ExternalToolError):
    pass


@dataclass(frozen=True)
class MetadataQuery:
    kind: str
    value: str

    def as_args(self) -> List[str]:
        return [f"--{self.kind}", self.value]


def _run(argv: Sequence[str], error_cls: type, **kwargs) -> subprocess.CompletedProcess:
    logger.debug(f"Running {list(argv)}")
    try:
        proc = subprocess.run(list(argv), capture_output=True, text=True, **kwargs)
    except FileNotFoundError as e:
        raise error_cls(f"'{argv[0]}' is not installed or not on PATH") from e
    except OSError as e:
        raise error_cls(f"Could not run '{argv[0]}': {e}") from e
    if proc.returncode != 0:
        detail = (proc.stderr or proc.stdout or "").strip().splitlines()
        raise error_cls(
            f"'{argv[0]}' exited with status {proc.returncode}"
            + (f": {detail[-1]}" if detail else "")
        )
    return proc


@dataclass(frozen=True)
class CommandMetadataSource:
    """One metadata provider, reached through ``fetch-ebook-metadata``.

    ``name`` is a calibre metadata plugin; ``all`` lets calibre pick.
    """

    name: str
    command: str = "fetch-ebook-metadata"

    def fetch(self, query: MetadataQuery) -> str:
        argv = [self.command, *query.as_args()]
        if self.name and self.name != "all":
            argv += ["--allowed-plugin", self.name]
        proc = _run(argv, FetchError)
        if not proc.stdout.strip():
            raise FetchError(f"{self.name} returned no metadata")
        return proc.stdout


def metadata_sources(query: MetadataQuery, config: ReviewConfig) -> List[CommandMetadataSource]:
    """Sources for a query, in the configured order for its kind."""
    names = config.isbn_fetch_order if query.kind == ISBN_QUERY else config.title_fetch_order
    return [CommandMetadataSource(name or "all", config.fetch_command) for name in (names or ("all",))]


def guess_mimetype(path: Path) -> str:
    mimetype, _ = mimetypes.guess_type(str(path))
    return mimetype or "application/octet-stream"


def convert_to_text(path: Path) -> str:
    """Return the readable text of a document.

    Raises:
        ConversionError: if the format cannot be converted.
    """
    mimetype = guess_mimetype(path)
    if mimetype.startswith("text/") or mimetype in DIRECT_TEXT_MIMETYPES:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    with tempfile.TemporaryDirectory(prefix="shelfreview-") as tmpdir:
        txt_path = Path(tmpdir) / "converted.txt"
        if mimetype == "application/pdf":
            _run(["pdftotext", str(path), str(txt_path)], ConversionError)
        else:
            _run(["ebook-convert", str(path), str(txt_path)], ConversionError)
        if not txt_path.is_file():
            raise ConversionError(f"No text was produced for '{path}'")
        return txt_path.read_text(encoding="utf-8", errors="replace")


def inspect_file(path: Path) -> str:
    """Embedded metadata as reported by calibre's ``ebook-meta``."""
    return _run(["ebook-meta", str(path)], ExternalToolError).stdout


def open_in_viewer(path: Path) -> None:
    typer.launch(str(path))


def launch_shell(cwd: Path) -> int:
    shell = os.environ.get("SHELL") or "/bin/sh"
    return subprocess.call([shell], cwd=str(cwd))
