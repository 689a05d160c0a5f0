"""
The per-file review loop.

For every candidate file the loop prints a header with the name verdict,
offers the action menu, reads one key and runs the chosen action. Actions that
move the file, or that end the run, are terminal; every other action comes
back to the verdict, which is computed again because the file, its sidecar or
the configuration may have changed in between.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from rich import filesize
from rich.console import Console
from rich.markup import escape
from rich.padding import Padding
from rich.text import Text

from .config import ReviewConfig, console as default_console, parse_bool
from .external import (
    ExternalToolError,
    convert_to_text,
    guess_mimetype,
    inspect_file,
    launch_shell,
    metadata_sources,
    open_in_viewer,
)
from .matching import (
    COVERED,
    IGNORED,
    MISSING,
    SEPARATOR,
    Verdict,
    VerdictKind,
    annotate_old_name,
    classify,
)
from .metadata import metadata_path_for, old_path, remove_sidecar
from .organizer import Reorganizer, SourceFactory
from .placement import MoveResult, move_no_clobber, move_or_link_file_and_maybe_meta
from .prompts import TerminalOperator, narrate
from .tokens import MaskingRuleError, compile_ignore_pattern, parse_masking_rules

logger = logging.getLogger(__name__)


class Action(Enum):
    OUTPUT = "output"
    MOVE = "m"
    RESTORE = "r"
    INTERACTIVE = "i"
    OPEN = "o"
    READ = "l"
    SHOW_METADATA = "c"
    INSPECT = "?"
    EDIT_CONFIG = "e"
    SHELL = "t"
    SKIP = "s"
    QUIT = "q"
    INVALID = "invalid"


class Outcome(Enum):
    RELOCATED = "relocated"
    SKIPPED = "skipped"
    QUIT = "quit"


# Raw keys that stand for another key
KEY_ALIASES = {
    "\x08": "i",  # backspace
    "\x7f": "i",  # delete
    "\t": "m",
    " ": "0",
    "\r": "o",
    "\n": "o",
    "\x00": "o",
    "": "o",
    "`": "t",
    "\x1b": "q",  # escape
}

_KEY_ACTIONS = {a.value: a for a in Action if len(a.value) == 1}

EDITABLE_SETTINGS = (
    "tokens_to_ignore",
    "masking_rules",
    "quick_mode",
    "verbose",
    "custom_move_base_dir",
    "restore_original_base_dir",
)

STATUS_STYLES = {
    MISSING: "bold red",
    COVERED: "bold green",
    IGNORED: "bold bright_black",
    SEPARATOR: "",
}


@dataclass(frozen=True)
class Choice:
    action: Action
    key: str
    index: Optional[int] = None


def resolve_key(raw: str) -> Choice:
    """Map one raw keystroke to the action it stands for."""
    key = KEY_ALIASES.get(raw, raw)
    if len(key) == 1 and key.isdigit():
        return Choice(Action.OUTPUT, key, int(key))
    return Choice(_KEY_ACTIONS.get(key, Action.INVALID), key)


@dataclass
class ReviewSummary:
    relocated: int = 0
    skipped: int = 0
    quit: bool = False

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.RELOCATED:
            self.relocated += 1
        elif outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.quit = True


class Reviewer:
    """Runs the review loop for one file at a time."""

    def __init__(
        self,
        config: ReviewConfig,
        operator=None,
        console: Optional[Console] = None,
        source_factory: SourceFactory = metadata_sources,
    ):
        self.config = config
        self.console = console or default_console
        self.operator = operator or TerminalOperator(self.console)
        self.source_factory = source_factory
        self._handlers = {
            Action.OUTPUT: self._move_to_output_choice,
            Action.MOVE: self._move_custom,
            Action.RESTORE: self._restore_original,
            Action.INTERACTIVE: self._reorganize,
            Action.OPEN: self._open,
            Action.READ: self._read,
            Action.SHOW_METADATA: self._show_metadata,
            Action.INSPECT: self._inspect,
            Action.EDIT_CONFIG: self._edit_config,
            Action.SHELL: self._shell,
            Action.SKIP: lambda path, choice: Outcome.SKIPPED,
            Action.QUIT: lambda path, choice: Outcome.QUIT,
            Action.INVALID: self._invalid,
        }

    def _narrate(self, message: str) -> None:
        narrate(message, self.config, self.console)

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]{escape(message)}[/bold red]")

    def _metadata_path(self, path: Path) -> Path:
        return metadata_path_for(path, self.config.metadata_extension)

    def _previous_path(self, path: Path) -> Path:
        try:
            return old_path(path, self._metadata_path(path))
        except OSError as e:
            self.error(f"Cannot read the metadata of '{path}': {e}")
            return path

    ############################################################################
    # Verdict
    ############################################################################

    def highlight_old_name(self, old_name: str, new_name: str) -> Text:
        text = Text()
        segments = annotate_old_name(
            old_name,
            new_name,
            self.config.masking_rules,
            compile_ignore_pattern(self.config.tokens_to_ignore),
        )
        for segment, status in segments:
            text.append(segment, style=STATUS_STYLES[status])
        return text

    def header_and_check(self, path: Path) -> Verdict:
        """Print the file header and return its verdict."""
        size = filesize.decimal(path.stat().st_size)
        self.console.print(
            f"File\t'{escape(path.name)}' ([bold]{size}[/bold] in '{escape(str(path.parent))}/')",
            end="",
        )
        verdict = classify(path, self.config)
        if verdict.kind is VerdictKind.NO_METADATA:
            self.console.print(" [bold red]\\[no metadata][/bold red]")
            return verdict
        self.console.print(" [bold]\\[has metadata][/bold]")

        line = Text("Old\t'")
        line.append_text(self.highlight_old_name(verdict.old_path.name, path.name))
        line.append(f"' (in '{verdict.old_path.parent}/')")
        self.console.print(line)
        if verdict.similarity is not None:
            self._narrate(f"Name similarity: {verdict.similarity}%")

        if verdict.missing:
            self.console.print(
                f"Missing words from the old file name: [bold]{escape('|'.join(verdict.missing))}[/bold]"
            )
        else:
            self.console.print("[bold]No missing words from the old filename in the new![/bold]")
        return verdict

    def print_options(self, previous: Path) -> None:
        if not self.config.verbose:
            return
        lines = ["Possible actions: "]
        for i, folder in enumerate(self.config.output_folders):
            key = f"{i}/spc" if i == 0 else str(i)
            lines.append(f" [bold]{key}[/bold])\tMove file and metadata to '{escape(str(folder))}'")
        if self.config.restore_original_base_dir:
            target = self._restore_target(previous)
            lines.append(
                f" [bold]r[/bold])\tRestore file with original path to '{escape(target)}' and delete metadata"
            )
        lines += [
            " [bold]m/tab[/bold])\tMove to another folder\t\t| [bold]i/bs[/bold])\t Interactively reorganize the file",
            " [bold]o/ent[/bold])\tOpen file in external viewer\t| [bold]l[/bold])\t Read in terminal",
            " [bold]c[/bold])\tRead the saved metadata file\t| [bold]?[/bold])\t Inspect embedded metadata",
            " [bold]t/`[/bold])\tRun shell in terminal\t\t| [bold]e[/bold])\t Change settings",
            " [bold]s[/bold])\tSkip file\t\t\t| [bold]q/esc[/bold]) Quit",
        ]
        for line in lines:
            self.console.print(line)

    ############################################################################
    # Loop
    ############################################################################

    def review_file(self, path: Path) -> Outcome:
        """Review one file until it is relocated, skipped, or the run is quit."""
        while True:
            try:
                verdict: Optional[Verdict] = self.header_and_check(path)
            except MaskingRuleError as e:
                self.console.print()
                self.error(str(e))
                verdict = None
            except OSError as e:
                self.console.print()
                self.error(f"Cannot read '{path}': {e}")
                if not path.exists():
                    return Outcome.SKIPPED
                verdict = None

            if verdict is not None and verdict.is_full_match and self.config.quick_mode:
                self.console.print("Quick mode enabled, moving the file to the first output folder")
                outcome = self._move_to_output(path, 0)
                if outcome is not None:
                    return outcome

            self.print_options(self._previous_path(path))
            choice = resolve_key(self.operator.keystroke())
            self.console.print(f"Chosen option: {escape(choice.key)}")
            outcome = self.dispatch(path, choice)
            if outcome is not None:
                return outcome
            self.console.print()

    def dispatch(self, path: Path, choice: Choice) -> Optional[Outcome]:
        """Run one action. None means: show the verdict and the menu again."""
        logger.debug(f"Dispatching {choice} for {path}")
        return self._handlers[choice.action](path, choice)

    ############################################################################
    # Actions
    ############################################################################

    def _report_move(self, result: MoveResult) -> None:
        if self.config.dry_run:
            self.console.print(f"\\[dry-run] Would move the file to '{escape(str(result.file_path))}'")
        else:
            self._narrate(f"Moved the file to '{result.file_path}'")
        if not result.complete:
            self.error(f"The file was moved, but its metadata was not: {result.metadata_error}")
        elif result.metadata_path is not None and self.config.dry_run:
            self.console.print(f"\\[dry-run] Would move the metadata to '{escape(str(result.metadata_path))}'")
        elif result.metadata_path is not None:
            self._narrate(f"Moved the metadata to '{result.metadata_path}'")

    def _move_to_output(self, path: Path, index: int) -> Optional[Outcome]:
        if index >= len(self.config.output_folders):
            self.error(f"Invalid output folder {index}!")
            return None
        folder = self.config.output_folders[index]
        try:
            result = move_or_link_file_and_maybe_meta(folder, path, self._metadata_path(path), self.config)
        except OSError as e:
            self.error(f"Could not move '{path}' to '{folder}': {e}")
            return None
        self._report_move(result)
        return Outcome.RELOCATED

    def _move_to_output_choice(self, path: Path, choice: Choice) -> Optional[Outcome]:
        return self._move_to_output(path, choice.index)

    def _restore_target(self, previous: Path) -> str:
        base = self.config.restore_original_base_dir.rstrip("/")
        return f"{base}/{str(previous).lstrip('/')}"

    def _move_freehand(self, path: Path, default: str) -> Optional[Outcome]:
        target = self.operator.ask("Delete metadata if exists and move the file to", default=default)
        if not target:
            self.console.print("No path entered, ignoring!")
            return None
        try:
            new_path = move_no_clobber(path, target, self.config)
        except OSError as e:
            self.error(f"Could not move '{path}' to '{target}': {e}")
            return None
        if self.config.dry_run:
            self.console.print(f"\\[dry-run] Would move the file to '{escape(str(new_path))}'")

        metadata_path = self._metadata_path(path)
        try:
            if remove_sidecar(metadata_path, self.config.dry_run):
                self._narrate(f"Deleted metadata file '{metadata_path}'")
        except OSError as e:
            self.error(f"The file was moved, but its metadata '{metadata_path}' could not be deleted: {e}")
        return Outcome.RELOCATED

    def _move_custom(self, path: Path, choice: Choice) -> Optional[Outcome]:
        base = self.config.custom_move_base_dir
        return self._move_freehand(path, f"{base.rstrip('/')}/" if base else "")

    def _restore_original(self, path: Path, choice: Choice) -> Optional[Outcome]:
        if not self.config.restore_original_base_dir:
            return self._invalid(path, choice)
        previous = self._previous_path(path)
        return self._move_freehand(path, self._restore_target(previous))

    def _reorganize(self, path: Path, choice: Choice) -> Optional[Outcome]:
        reorganizer = Reorganizer(self.config, self.operator, self.console, self.source_factory)
        try:
            new_path = reorganizer.run(path)
        except OSError as e:
            self.error(f"Reorganizing '{path}' failed: {e}")
            return None
        if new_path is None:
            return None
        if self.config.dry_run:
            self.console.print(f"\\[dry-run] The file would now be '{escape(str(new_path))}'")
            return Outcome.RELOCATED
        self._narrate(f"New path is '{new_path}'! Reviewing the new file...")
        return self.review_file(new_path)

    def _open(self, path: Path, choice: Choice) -> None:
        try:
            open_in_viewer(path)
        except OSError as e:
            self.error(f"Could not open '{path}': {e}")

    def _read(self, path: Path, choice: Choice) -> None:
        self.console.print(f"Reading '{escape(str(path))}' ({guess_mimetype(path)})...")
        try:
            text = convert_to_text(path)
        except (ExternalToolError, OSError) as e:
            self.error("Conversion failed!")
            self.console.print(escape(str(e)))
            return
        with self.console.pager():
            self.console.print(Text(text))

    def _show_metadata(self, path: Path, choice: Choice) -> None:
        metadata_path = self._metadata_path(path)
        if not metadata_path.is_file():
            self.console.print("There is no metadata file present!")
            return
        with open(metadata_path, "r", encoding="utf-8", errors="replace") as f:
            self.console.print(Padding(Text(f.read().rstrip()), (0, 0, 0, 8)))

    def _inspect(self, path: Path, choice: Choice) -> None:
        try:
            output = inspect_file(path)
        except ExternalToolError as e:
            self.error(str(e))
            return
        self.console.print(Padding(Text(output.rstrip()), (0, 0, 0, 8)))

    def _shell(self, path: Path, choice: Choice) -> None:
        self.console.print(f"Launching '{escape(os.environ.get('SHELL') or '/bin/sh')}'...")
        try:
            launch_shell(path.parent)
        except OSError as e:
            self.error(f"Could not launch the shell: {e}")

    def _invalid(self, path: Path, choice: Choice) -> None:
        self.console.print(f"Chosen option '{escape(choice.key)}' is invalid, try again")

    def _edit_config(self, path: Path, choice: Choice) -> None:
        setting = self.operator.choose("Setting to change", EDITABLE_SETTINGS, EDITABLE_SETTINGS[0])
        try:
            self.config = self._edited_config(setting)
        except ValueError as e:
            self.error(str(e))
            return
        self._narrate(f"Updated {setting}")

    def _edited_config(self, setting: str) -> ReviewConfig:
        current = self.config
        if setting == "masking_rules":
            self.console.print("Enter one masking rule per line, an empty line to finish (none = defaults)")
            rules: List[str] = []
            while True:
                rule = self.operator.ask("Masking rule")
                if not rule:
                    break
                rules.append(rule)
            return current.updated(masking_rules=parse_masking_rules(rules))
        if setting in ("quick_mode", "verbose"):
            value = self.operator.ask(setting, default="yes" if getattr(current, setting) else "no")
            return current.updated(**{setting: parse_bool(value)})
        if setting in EDITABLE_SETTINGS:
            value = self.operator.ask(setting, default=getattr(current, setting))
            return current.updated(**{setting: value})
        raise ValueError(f"Unknown setting: {setting}")


def _is_candidate(path: Path, suffix: str) -> bool:
    return os.path.isfile(path) and not os.path.islink(path) and not path.name.endswith(suffix)


def iter_candidate_files(root: Path, metadata_extension: str) -> List[Path]:
    """All regular files under ``root`` except sidecars, sorted.

    Symlinks, dangling or not, are left out, like ``find -type f`` does.

    Raises:
        OSError: if ``root`` does not exist.
    """
    suffix = f".{metadata_extension}"
    if not os.path.lexists(root):
        raise OSError(f"Path does not exist: {root}")
    if not root.is_dir():
        return [root] if _is_candidate(root, suffix) else []
    files = []
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            if _is_candidate(path, suffix):
                files.append(path)
    return sorted(files, key=str)


def review_paths(roots: Iterable[Path], reviewer: Reviewer) -> ReviewSummary:
    """Review every candidate under ``roots``, one at a time, until done or quit."""
    summary = ReviewSummary()
    console = reviewer.console
    for root in roots:
        ext = reviewer.config.metadata_extension
        console.print(f"Recursively scanning '{escape(str(root))}' for files (except .{escape(ext)})")
        try:
            candidates = iter_candidate_files(Path(root), ext)
        except OSError as e:
            reviewer.error(str(e))
            continue

        for path in candidates:
            if not os.path.lexists(path):
                logger.debug(f"Skipping '{path}', it is gone")
                continue
            outcome = reviewer.review_file(path)
            summary.record(outcome)
            console.print("=" * 79)
            console.print()
            if outcome is Outcome.QUIT:
                return summary
    return summary
