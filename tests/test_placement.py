"""Tests for collision-free moves of files and their sidecars."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from shelfreview import placement
from shelfreview.metadata import metadata_path_for
from shelfreview.placement import (
    move_no_clobber,
    move_or_link_file,
    move_or_link_file_and_maybe_meta,
    unique_filename,
)


def test_unique_filename_free_name(tmp_path: Path) -> None:
    assert unique_filename(tmp_path, "book.pdf") == tmp_path / "book.pdf"


def test_unique_filename_counts_up(tmp_path: Path) -> None:
    (tmp_path / "book.pdf").touch()
    assert unique_filename(tmp_path, "book.pdf") == tmp_path / "book (1).pdf"
    (tmp_path / "book (1).pdf").touch()
    assert unique_filename(tmp_path, "book.pdf") == tmp_path / "book (2).pdf"


def test_unique_filename_without_extension(tmp_path: Path) -> None:
    (tmp_path / "README").touch()
    assert unique_filename(tmp_path, "README") == tmp_path / "README (1)"


def test_unique_filename_counts_dangling_symlinks_as_taken(tmp_path: Path) -> None:
    os.symlink(tmp_path / "nowhere", tmp_path / "book.pdf")
    assert unique_filename(tmp_path, "book.pdf") == tmp_path / "book (1).pdf"


def test_unique_filename_never_repeats_once_created(tmp_path: Path) -> None:
    """Each result is free at call time; creating it makes the next call differ."""
    seen = set()
    for _ in range(5):
        candidate = unique_filename(tmp_path, "book.pdf")
        assert not candidate.exists()
        assert candidate not in seen
        candidate.touch()
        seen.add(candidate)


def test_move_or_link_file_refuses_to_overwrite(tmp_path: Path, make_config) -> None:
    src = tmp_path / "a.pdf"
    dst = tmp_path / "b.pdf"
    src.write_text("a")
    dst.write_text("b")
    with pytest.raises(FileExistsError):
        move_or_link_file(src, dst, make_config())
    assert dst.read_text() == "b"
    assert src.exists()


def test_move_file_and_sidecar(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub", old="/old/dune.epub")
    out = tmp_path / "out"

    result = move_or_link_file_and_maybe_meta(out, path, metadata_path_for(path, "meta"), make_config())

    assert result.complete
    assert result.file_path == out / "Dune.epub"
    assert result.metadata_path == out / "Dune.epub.meta"
    assert result.file_path.is_file()
    assert result.metadata_path.is_file()
    assert not path.exists()
    assert not metadata_path_for(path, "meta").exists()


def test_move_into_occupied_folder_renames_both(library: Path, tmp_path: Path, make_book, make_config) -> None:
    out = tmp_path / "out"
    out.mkdir()
    (out / "Dune.epub").write_text("already here")
    path = make_book(library, "Dune.epub", old="/old/dune.epub")

    result = move_or_link_file_and_maybe_meta(out, path, metadata_path_for(path, "meta"), make_config())

    assert result.file_path == out / "Dune (1).epub"
    assert result.metadata_path == out / "Dune (1).epub.meta"
    assert (out / "Dune.epub").read_text() == "already here"


def test_move_without_sidecar(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "scan001.pdf")
    result = move_or_link_file_and_maybe_meta(
        tmp_path / "out", path, metadata_path_for(path, "meta"), make_config()
    )
    assert result.metadata_path is None
    assert result.complete


def test_sidecar_failure_does_not_undo_the_file_move(
    library: Path, tmp_path: Path, make_book, make_config, monkeypatch
) -> None:
    path = make_book(library, "Dune.epub", old="/old/dune.epub")
    sidecar = metadata_path_for(path, "meta")
    real_move = placement.move_or_link_file

    def failing_for_sidecars(current: Path, new: Path, config) -> None:
        if str(current).endswith(".meta"):
            raise PermissionError("read-only sidecar")
        real_move(current, new, config)

    monkeypatch.setattr(placement, "move_or_link_file", failing_for_sidecars)
    result = move_or_link_file_and_maybe_meta(tmp_path / "out", path, sidecar, make_config())

    assert not result.complete
    assert isinstance(result.metadata_error, PermissionError)
    assert result.file_path.is_file()
    assert sidecar.is_file()


def test_dry_run_touches_nothing(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub", old="/old/dune.epub")
    out = tmp_path / "out"
    result = move_or_link_file_and_maybe_meta(
        out, path, metadata_path_for(path, "meta"), make_config(dry_run=True)
    )
    assert result.file_path == out / "Dune.epub"
    assert path.is_file()
    assert metadata_path_for(path, "meta").is_file()
    assert not out.exists()


def test_symlink_mode_leaves_the_original(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub")
    result = move_or_link_file_and_maybe_meta(
        tmp_path / "out", path, metadata_path_for(path, "meta"), make_config(symlink_only=True)
    )
    assert result.file_path.is_symlink()
    assert result.file_path.resolve() == path.resolve()
    assert path.is_file()


def test_move_no_clobber_into_folder(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub")
    new_path = move_no_clobber(path, f"{tmp_path / 'new' / 'folder'}/", make_config())
    assert new_path == tmp_path / "new" / "folder" / "Dune.epub"
    assert new_path.is_file()


def test_move_no_clobber_to_a_full_path(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub")
    target = tmp_path / "restored" / "books" / "dune (1965).epub"
    assert move_no_clobber(path, str(target), make_config(symlink_only=True)) == target
    assert target.is_file() and not target.is_symlink()
    assert not path.exists()


def test_move_no_clobber_refuses_existing_target(library: Path, tmp_path: Path, make_book, make_config) -> None:
    path = make_book(library, "Dune.epub")
    target = tmp_path / "taken.epub"
    target.write_text("keep me")
    with pytest.raises(FileExistsError):
        move_no_clobber(path, str(target), make_config())
    assert target.read_text() == "keep me"
