"""Tests for the command line interface."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from shelfreview import config
from shelfreview.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> None:
    """Keep the user's own configuration file and environment out of the tests."""
    monkeypatch.setattr(config, "CONFIG_FILE", tmp_path / "no-config.json")
    for env_name in config.ENV_MAP.values():
        monkeypatch.delenv(env_name, raising=False)


def test_diff_reports_missing_words() -> None:
    result = runner.invoke(app, ["diff", "Clean Code (Robert C. Martin).pdf", "Clean_Code_Martin.pdf"])
    assert result.exit_code == 1
    assert "Robert|C" in result.output


def test_diff_full_match() -> None:
    result = runner.invoke(app, ["diff", "naive.pdf", "naïve.pdf"])
    assert result.exit_code == 0
    assert "No missing words!" in result.output


def test_diff_rejects_bad_masking_rule() -> None:
    result = runner.invoke(app, ["diff", "a.pdf", "b.pdf", "--ddm", "s/a/b"])
    assert result.exit_code == 2


def test_review_skip(tmp_path: Path) -> None:
    library = tmp_path / "library"
    library.mkdir()
    (library / "scan001.pdf").write_text("content")

    result = runner.invoke(app, ["review", str(library), "--quiet"], input="s")

    assert result.exit_code == 0
    assert "[no metadata]" in result.output
    assert "skipped" in result.output
    assert (library / "scan001.pdf").is_file()


def test_review_quick_mode_without_output_folder() -> None:
    result = runner.invoke(app, ["review", ".", "--quick-mode"])
    assert result.exit_code == 2
    assert "Quick mode needs at least one output folder" in result.output


def test_config_show() -> None:
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0
    assert "OUTPUT_METADATA_EXTENSION" in result.output
    assert "QUICK_MODE" in result.output
