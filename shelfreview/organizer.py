"""
Interactive reorganization of a single file.

The operator either types a new name in single quotes (a freehand rename that
records the old path in a fresh sidecar) or search terms, in which case the
configured metadata sources are queried one after another until the operator
accepts a result. An accepted result renames the file after its metadata.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.text import Text

from .config import ReviewConfig, console as default_console
from .external import (
    ISBN_QUERY,
    TITLE_QUERY,
    CommandMetadataSource,
    FetchError,
    MetadataQuery,
    metadata_sources,
)
from .metadata import (
    ISBN_FIELD,
    OLD_PATH_FIELD,
    SOURCE_FIELD,
    Field,
    append_fields,
    find_isbns,
    get_field,
    metadata_path_for,
    old_path,
    parse_fields,
    remove_sidecar,
    write_sidecar,
)
from .placement import MoveResult, rename_file, unique_filename
from .prompts import narrate

logger = logging.getLogger(__name__)

QUOTED_NAME_RE = re.compile(r"^'(.+)'$")
_AUTHOR_SORT_KEY_RE = re.compile(r"\s*\[[^\]]*\]\s*$")
_UNSAFE_NAME_CHARS_RE = re.compile(r"[/\x00]")

MAX_NAME_BYTES = 255

SourceFactory = Callable[[MetadataQuery, ReviewConfig], Sequence[CommandMetadataSource]]


def _authors(value: str) -> str:
    # calibre prints "Name [Sort, Key] & Other [Key]"
    names = [_AUTHOR_SORT_KEY_RE.sub("", a).strip() for a in value.split(" & ")]
    return ", ".join(n for n in names if n)


def _fit_name(stem: str, suffix: str) -> str:
    while stem and len((stem + suffix).encode("utf-8")) > MAX_NAME_BYTES:
        stem = stem[:-1]
    return stem.rstrip() + suffix


def build_filename(fields: Sequence[Field], extension: str) -> str:
    """Build ``Authors - [Series] - Title (Year) [ISBN].ext`` from fetched metadata.

    Raises:
        ValueError: if the metadata has no title.
    """
    title = get_field(fields, "Title")
    if not title:
        raise ValueError("The fetched metadata has no title")

    stem = ""
    authors = _authors(get_field(fields, "Author(s)") or get_field(fields, "Authors") or "")
    if authors:
        stem += f"{authors} - "
    series = get_field(fields, "Series")
    if series:
        stem += f"[{series}] - "
    stem += title.replace(":", " -")
    published = get_field(fields, "Published")
    if published:
        stem += f" ({published.split('-', 1)[0]})"
    isbn = get_field(fields, ISBN_FIELD)
    if isbn:
        stem += f" [{isbn}]"

    stem = _UNSAFE_NAME_CHARS_RE.sub("_", " ".join(stem.split()))
    suffix = f".{extension}" if extension else ""
    return _fit_name(stem, suffix)


def replace_sidecar(path: Path, new_path: Path, metadata_text: str, config: ReviewConfig) -> MoveResult:
    """Write the sidecar of ``new_path``, then drop the one ``path`` had.

    Called once the file already sits at ``new_path``. A failure here is
    returned in the result and the file stays where it is; the previous
    sidecar is only removed after the new one was written.
    """
    ext = config.metadata_extension
    old_metadata_path = metadata_path_for(path, ext)
    new_metadata_path = metadata_path_for(new_path, ext)
    result = MoveResult(file_path=new_path)
    try:
        write_sidecar(new_metadata_path, metadata_text, config.dry_run)
        result.metadata_path = new_metadata_path
        if old_metadata_path != new_metadata_path:
            remove_sidecar(old_metadata_path, config.dry_run)
    except OSError as e:
        logger.error(f"Moved '{path}' to '{new_path}' but could not update its metadata: {e}")
        result.metadata_error = e
    return result


def organize_with_metadata(path: Path, metadata_text: str, config: ReviewConfig) -> MoveResult:
    """Rename ``path`` after its metadata and store the metadata next to it.

    The file moves first, so a failed move loses nothing.

    Raises:
        ValueError: if the metadata has no title.
        OSError: if the file itself could not be renamed.
    """
    new_name = build_filename(parse_fields(metadata_text), path.suffix.lstrip("."))
    if new_name == path.name:
        new_path = path
    else:
        new_path = unique_filename(path.parent, new_name)
        rename_file(path, new_path, config)
    return replace_sidecar(path, new_path, metadata_text, config)


class Reorganizer:
    def __init__(
        self,
        config: ReviewConfig,
        operator,
        console: Optional[Console] = None,
        source_factory: SourceFactory = metadata_sources,
    ):
        self.config = config
        self.operator = operator
        self.console = console or default_console
        self.source_factory = source_factory

    def _narrate(self, message: str) -> None:
        narrate(message, self.config, self.console)

    def _finish(self, result: MoveResult) -> Path:
        if not result.complete:
            self.console.print(
                f"[bold red]The file is now '{escape(str(result.file_path))}', but its metadata "
                f"could not be updated: {escape(str(result.metadata_error))}[/bold red]"
            )
        return result.file_path

    def run(self, path: Path) -> Optional[Path]:
        """Returns the file's new path, or None if nothing changed."""
        metadata_path = metadata_path_for(path, self.config.metadata_extension)
        previous = old_path(path, metadata_path)

        answer = self.operator.ask("Enter search terms or 'new filename'", default=previous.name)
        self.console.print(f"Your choice: {escape(answer)}")
        if not answer:
            return None
        quoted = QUOTED_NAME_RE.match(answer)
        if quoted:
            return self.rename_freehand(path, quoted.group(1), previous)
        return self.search(path, answer, previous)

    def rename_freehand(self, path: Path, new_name: str, previous: Path) -> Optional[Path]:
        self.console.print(
            f"Renaming file to '{escape(new_name)}', removing the old metadata if present "
            "and saving old file path in the new metadata..."
        )
        new_path = path.parent / new_name
        try:
            rename_file(path, new_path, self.config)
        except OSError as e:
            self.console.print(f"[bold red]Could not rename '{escape(str(path))}': {escape(str(e))}[/bold red]")
            return None

        metadata_text = append_fields("", [(OLD_PATH_FIELD, str(previous))])
        return self._finish(replace_sidecar(path, new_path, metadata_text, self.config))

    def search(self, path: Path, text: str, previous: Path) -> Optional[Path]:
        isbns = find_isbns(text)
        if isbns:
            query = MetadataQuery(ISBN_QUERY, isbns[0])
        else:
            query = MetadataQuery(TITLE_QUERY, text)
        sources = list(self.source_factory(query, self.config))
        names = ",".join(s.name for s in sources)
        label = "ISBN" if isbns else "title"
        self.console.print(
            f"Fetching metadata from sources {escape(names)} for {label} '{escape(query.value)}'..."
        )

        for source in sources:
            self._narrate(f"Fetching metadata from {source.name}...")
            try:
                blob = source.fetch(query)
            except FetchError as e:
                self._narrate(f"{source.name} failed: {e}")
                continue

            self._narrate("Successfully fetched metadata:")
            self.console.print(Text("\n".join("[meta] " + line for line in blob.rstrip().splitlines())))

            choice = self.operator.choose(
                "Do you want to use these metadata to rename the file", ["y", "n", "q"], "y"
            ).lower()
            if choice == "n":
                self.console.print("You chose no, trying the next metadata source...")
                continue
            if choice != "y":
                self.console.print("You chose to quit, returning to the main menu!")
                return None
            self.console.print("You chose yes, renaming the file...")

            isbn = query.value if isbns else next(iter(find_isbns(blob)), "")
            provenance: List[Field] = [(OLD_PATH_FIELD, str(previous)), (SOURCE_FIELD, source.name)]
            if isbn:
                provenance.append((ISBN_FIELD, isbn))
            metadata_text = append_fields(blob, provenance)

            self._narrate(f"Organizing '{path}'...")
            try:
                result = organize_with_metadata(path, metadata_text, self.config)
            except ValueError as e:
                self.console.print(f"[red]Cannot use metadata from {escape(source.name)}: {escape(str(e))}[/red]")
                continue
            except OSError as e:
                self.console.print(f"[bold red]Could not organize '{escape(str(path))}': {escape(str(e))}[/bold red]")
                return None
            return self._finish(result)

        self.console.print("[yellow]No metadata found![/yellow]")
        return None
