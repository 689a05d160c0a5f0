"""Shared fixtures: a throwaway library tree, a config factory and a scripted operator."""

from __future__ import annotations

import io
from collections import deque
from pathlib import Path
from typing import Iterable, Optional

import pytest
from rich.console import Console

from shelfreview.config import ReviewConfig
from shelfreview.metadata import OLD_PATH_FIELD, append_fields, metadata_path_for


class ScriptedOperator:
    """Plays back canned keystrokes and answers instead of reading the terminal.

    An answer of None accepts the prompt's default. Running out of keystrokes
    raises IndexError, which makes a test fail where the loop asked for more
    input than the scenario expected.
    """

    def __init__(
        self,
        keys: Iterable[str] = (),
        answers: Iterable[Optional[str]] = (),
        choices: Iterable[Optional[str]] = (),
    ):
        self.keys = deque(keys)
        self.answers = deque(answers)
        self.choices = deque(choices)
        self.prompts: list[tuple[str, str]] = []

    def keystroke(self) -> str:
        return self.keys.popleft()

    def ask(self, prompt: str, default: str = "") -> str:
        self.prompts.append((prompt, default))
        answer = self.answers.popleft()
        return default if answer is None else answer

    def choose(self, prompt: str, choices, default: str) -> str:
        self.prompts.append((prompt, default))
        choice = self.choices.popleft()
        return default if choice is None else choice


@pytest.fixture
def console() -> Console:
    """A console that records into a string buffer (``console.file.getvalue()``)."""
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def scripted():
    return ScriptedOperator


@pytest.fixture
def library(tmp_path: Path) -> Path:
    folder = tmp_path / "library"
    folder.mkdir()
    return folder


@pytest.fixture
def make_config():
    def _make(**kwargs) -> ReviewConfig:
        return ReviewConfig(**kwargs)

    return _make


@pytest.fixture
def make_book():
    """Create a file and, when ``old`` is given, a sidecar recording its old path."""

    def _make(folder: Path, name: str, old: Optional[str] = None, ext: str = "meta") -> Path:
        path = folder / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"%PDF-1.4 test content")
        if old is not None:
            metadata_path_for(path, ext).write_text(
                append_fields("Title               : Whatever\n", [(OLD_PATH_FIELD, old)]),
                encoding="utf-8",
            )
        return path

    return _make
