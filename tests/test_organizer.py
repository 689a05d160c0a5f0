"""Tests for freehand renames and metadata-driven reorganization."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest

from shelfreview.external import ISBN_QUERY, TITLE_QUERY, FetchError, MetadataQuery, metadata_sources
from shelfreview.matching import VerdictKind, classify
from shelfreview.metadata import (
    ISBN_FIELD,
    OLD_PATH_FIELD,
    SOURCE_FIELD,
    get_field,
    metadata_path_for,
    parse_fields,
    read_fields,
)
from shelfreview.organizer import Reorganizer, build_filename, organize_with_metadata

KR_METADATA = """\
Title               : The C Programming Language
Author(s)           : Brian W. Kernighan [Kernighan, Brian W.] & Dennis M. Ritchie [Ritchie, Dennis M.]
Publisher           : Prentice Hall
Published           : 1988-04-01T00:00:00+00:00
"""


@dataclass
class FakeSource:
    name: str
    blob: Optional[str] = None

    def fetch(self, query: MetadataQuery) -> str:
        if self.blob is None:
            raise FetchError(f"{self.name} found nothing")
        return self.blob


class RecordingFactory:
    """Hands out fake sources named after the configured fetch order."""

    def __init__(self, blobs: dict):
        self.blobs = blobs
        self.queries: list[tuple[MetadataQuery, list[str]]] = []

    def __call__(self, query, config):
        names = [s.name for s in metadata_sources(query, config)]
        self.queries.append((query, names))
        return [FakeSource(name, self.blobs.get(name)) for name in names]


def test_build_filename() -> None:
    fields = parse_fields(KR_METADATA + "ISBN                : 9780131103627\n")
    assert build_filename(fields, "pdf") == (
        "Brian W. Kernighan, Dennis M. Ritchie - The C Programming Language (1988) [9780131103627].pdf"
    )


def test_build_filename_with_series_and_unsafe_characters() -> None:
    fields = [("Title", "Dune: Part/One"), ("Series", "Dune #1"), ("Authors", "Frank Herbert")]
    assert build_filename(fields, "epub") == "Frank Herbert - [Dune #1] - Dune - Part_One.epub"


def test_build_filename_needs_a_title() -> None:
    with pytest.raises(ValueError):
        build_filename([("Authors", "Nobody")], "pdf")


def test_build_filename_fits_the_name_limit() -> None:
    name = build_filename([("Title", "x" * 400)], "pdf")
    assert name.endswith(".pdf")
    assert len(name.encode("utf-8")) <= 255


def test_freehand_rename_records_old_path(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    config = make_config()
    operator = scripted(answers=["'My Book.pdf'"])

    new_path = Reorganizer(config, operator, console).run(path)

    assert new_path == library / "My Book.pdf"
    assert new_path.is_file()
    assert not path.exists()
    assert read_fields(metadata_path_for(new_path, "meta")) == [(OLD_PATH_FIELD, str(path))]
    assert classify(new_path, config).kind is not VerdictKind.NO_METADATA
    # the prompt offers the old name for editing
    assert operator.prompts[0][1] == "scan001.pdf"


def test_freehand_rename_replaces_existing_sidecar(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "renamed.pdf", old="/books/original.pdf")
    new_path = Reorganizer(make_config(), scripted(answers=["'better.pdf'"]), console).run(path)

    assert not metadata_path_for(path, "meta").exists()
    assert read_fields(metadata_path_for(new_path, "meta")) == [(OLD_PATH_FIELD, "/books/original.pdf")]


def test_empty_answer_changes_nothing(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    assert Reorganizer(make_config(), scripted(answers=[""]), console).run(path) is None
    assert path.is_file()


def test_isbn_search_uses_isbn_sources_only(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    config = make_config()
    factory = RecordingFactory({"Goodreads": KR_METADATA})
    operator = scripted(answers=["9780131103627"], choices=["y"])

    new_path = Reorganizer(config, operator, console, factory).run(path)

    query, names = factory.queries[0]
    assert query == MetadataQuery(ISBN_QUERY, "9780131103627")
    assert names == list(config.isbn_fetch_order)
    assert len(factory.queries) == 1

    assert new_path == library / (
        "Brian W. Kernighan, Dennis M. Ritchie - The C Programming Language (1988) [9780131103627].pdf"
    )
    fields = read_fields(metadata_path_for(new_path, "meta"))
    assert get_field(fields, OLD_PATH_FIELD) == str(path)
    assert get_field(fields, SOURCE_FIELD) == "Goodreads"
    assert get_field(fields, ISBN_FIELD) == "9780131103627"
    assert get_field(fields, "Publisher") == "Prentice Hall"


def test_title_search_uses_title_sources(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    config = make_config(title_fetch_order=("Google",))
    factory = RecordingFactory({"Google": KR_METADATA})

    Reorganizer(config, scripted(answers=["c programming language"], choices=["y"]), console, factory).run(path)

    query, names = factory.queries[0]
    assert query == MetadataQuery(TITLE_QUERY, "c programming language")
    assert names == ["Google"]


def test_failed_and_rejected_sources_fall_through(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    config = make_config(isbn_fetch_order=("Broken", "Rejected", "Accepted"))
    factory = RecordingFactory({"Rejected": "Title : Wrong Book\n", "Accepted": KR_METADATA})
    operator = scripted(answers=["0131103628"], choices=["n", "y"])

    new_path = Reorganizer(config, operator, console, factory).run(path)

    assert new_path is not None
    fields = read_fields(metadata_path_for(new_path, "meta"))
    assert get_field(fields, SOURCE_FIELD) == "Accepted"
    assert get_field(fields, ISBN_FIELD) == "0131103628"
    assert "Broken failed" in console.file.getvalue()


def test_all_sources_failing_reports_no_metadata(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    config = make_config(isbn_fetch_order=("A", "B"))

    new_path = Reorganizer(config, scripted(answers=["9780131103627"]), console, RecordingFactory({})).run(path)

    assert new_path is None
    assert path.is_file()
    assert "No metadata found!" in console.file.getvalue()


def test_quit_during_search(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    factory = RecordingFactory({"Goodreads": KR_METADATA})
    operator = scripted(answers=["9780131103627"], choices=["q"])
    assert Reorganizer(make_config(), operator, console, factory).run(path) is None
    assert path.is_file()


def test_organize_with_metadata_dry_run(library: Path, make_book, make_config) -> None:
    path = make_book(library, "scan001.pdf", old="/books/kr.pdf")
    new_path = organize_with_metadata(path, KR_METADATA, make_config(dry_run=True)).file_path
    assert new_path.name.startswith("Brian W. Kernighan")
    assert path.is_file()
    assert not new_path.exists()
    assert read_fields(metadata_path_for(path, "meta"))[-1] == (OLD_PATH_FIELD, "/books/kr.pdf")


def test_organize_keeps_the_move_when_the_sidecar_cannot_be_written(
    library: Path, make_book, make_config
) -> None:
    path = make_book(library, "scan001.pdf", old="/books/kr.pdf")
    expected = library / (
        "Brian W. Kernighan, Dennis M. Ritchie - The C Programming Language (1988).pdf"
    )
    metadata_path_for(expected, "meta").mkdir()

    result = organize_with_metadata(path, KR_METADATA, make_config())

    assert result.file_path == expected
    assert expected.is_file()
    assert not result.complete
    assert isinstance(result.metadata_error, OSError)
    # the previous sidecar still holds the history
    assert read_fields(metadata_path_for(path, "meta"))[-1] == (OLD_PATH_FIELD, "/books/kr.pdf")


def test_freehand_rename_reports_sidecar_failure(library: Path, make_book, make_config, scripted, console) -> None:
    path = make_book(library, "scan001.pdf")
    metadata_path_for(library / "My Book.pdf", "meta").mkdir()

    new_path = Reorganizer(make_config(), scripted(answers=["'My Book.pdf'"]), console).run(path)

    assert new_path == library / "My Book.pdf"
    assert new_path.is_file()
    assert "its metadata could not be updated" in " ".join(console.file.getvalue().split())
