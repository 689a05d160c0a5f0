import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.markup import escape
from rich.text import Text

from .config import CONFIG_FILE, ReviewConfig, build_config, console, effective_settings
from .matching import missing_words, name_similarity, name_stem
from .review import Reviewer, review_paths
from .tokens import compile_ignore_pattern, tokenize

app = typer.Typer(help="Review renamed files against the names they had before.")

# Sub-apps
config_app = typer.Typer(help="Show configuration")


def _build_config(overrides: dict) -> ReviewConfig:
    """Build the run configuration, turning bad values into a clean exit."""
    try:
        return build_config(overrides)
    except ValueError as e:
        console.print(f"[bold red]{escape(str(e))}[/bold red]")
        raise typer.Exit(2)


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Log diagnostics to stderr"),
):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


@app.command()
def review(
    paths: List[Path] = typer.Argument(..., help="Files or folders to review (scanned recursively)"),
    output_folder: Optional[List[Path]] = typer.Option(
        None,
        "--output-folder",
        "-o",
        help="Destination folder; repeat for more. The first one is used by quick mode and the space key.",
    ),
    quick_mode: Optional[bool] = typer.Option(
        None,
        "--quick-mode/--no-quick-mode",
        help="Move files whose new name keeps every old word to the first output folder without asking",
    ),
    custom_move_base_dir: Optional[str] = typer.Option(
        None, "--custom-move-base-dir", help="Prefilled destination for the 'm' action"
    ),
    restore_original_base_dir: Optional[str] = typer.Option(
        None,
        "--restore-original-base-dir",
        help="Enables the 'r' action: move files back to their old path under this folder",
    ),
    diacritic_difference_masking: Optional[List[str]] = typer.Option(
        None,
        "--diacritic-difference-masking",
        "--ddm",
        help="sed-style rule such as 's/(ae|æ)/(ae|æ)/g'; repeat for more. Replaces the default rules.",
    ),
    tokens_to_ignore: Optional[str] = typer.Option(
        None, "--tokens-to-ignore", help="Regex alternation of words that never count as missing"
    ),
    metadata_extension: Optional[str] = typer.Option(
        None, "--metadata-extension", help="Extension of the sidecar metadata files"
    ),
    verbose: Optional[bool] = typer.Option(None, "--verbose/--quiet", help="Show the menu and narration"),
    dry_run: Optional[bool] = typer.Option(
        None, "--dry-run/--no-dry-run", help="Only print what would be moved, renamed or deleted"
    ),
    symlink_only: Optional[bool] = typer.Option(
        None, "--symlink-only/--no-symlink-only", help="Symlink into output folders instead of moving"
    ),
):
    """
    Interactively review every file under PATHS, one at a time.

    For each file the old name recorded in its metadata is compared with the
    current one, and the words that went missing are shown before you decide
    where the file goes.
    """
    cfg = _build_config(
        {
            "OUTPUT_FOLDERS": [str(p) for p in output_folder or []],
            "QUICK_MODE": quick_mode,
            "CUSTOM_MOVE_BASE_DIR": custom_move_base_dir,
            "RESTORE_ORIGINAL_BASE_DIR": restore_original_base_dir,
            "DIACRITIC_DIFFERENCE_MASKINGS": list(diacritic_difference_masking or []),
            "TOKENS_TO_IGNORE": tokens_to_ignore,
            "OUTPUT_METADATA_EXTENSION": metadata_extension,
            "VERBOSE": verbose,
            "DRY_RUN": dry_run,
            "SYMLINK_ONLY": symlink_only,
        }
    )
    if cfg.dry_run:
        console.print("[yellow]Dry run: no file will be moved, renamed or deleted.[/yellow]")

    reviewer = Reviewer(cfg)
    try:
        summary = review_paths(paths, reviewer)
    except (KeyboardInterrupt, EOFError):
        console.print("\n[bold red]Review aborted by user. Exiting...[/bold red]")
        raise typer.Exit(0)

    console.print(
        f"[bold green]{summary.relocated} relocated[/bold green], "
        f"[bold yellow]{summary.skipped} skipped[/bold yellow]"
    )
    if summary.quit:
        console.print("Stopped early at the operator's request.")


@app.command()
def diff(
    old_name: str = typer.Argument(..., help="The file name before renaming"),
    new_name: str = typer.Argument(..., help="The file name after renaming"),
    diacritic_difference_masking: Optional[List[str]] = typer.Option(
        None, "--diacritic-difference-masking", "--ddm", help="sed-style masking rule; repeat for more"
    ),
    tokens_to_ignore: Optional[str] = typer.Option(None, "--tokens-to-ignore"),
):
    """
    Show which words of OLD_NAME are missing from NEW_NAME, without touching any file.

    Exits with status 1 when words are missing.
    """
    cfg = _build_config(
        {
            "DIACRITIC_DIFFERENCE_MASKINGS": list(diacritic_difference_masking or []),
            "TOKENS_TO_IGNORE": tokens_to_ignore,
        }
    )
    try:
        missing = missing_words(
            old_name, new_name, cfg.masking_rules, compile_ignore_pattern(cfg.tokens_to_ignore)
        )
    except ValueError as e:
        console.print(f"[bold red]{escape(str(e))}[/bold red]")
        raise typer.Exit(2)

    console.print(Text(f"Old tokens: {' | '.join(tokenize(name_stem(old_name)))}"))
    console.print(Text(f"New tokens: {' | '.join(tokenize(name_stem(new_name)))}"))
    console.print(f"Similarity: {name_similarity(old_name, new_name)}%")
    if missing:
        console.print(f"Missing words: [bold red]{escape('|'.join(missing))}[/bold red]")
        raise typer.Exit(1)
    console.print("[bold green]No missing words![/bold green]")


@config_app.command(name="show")
def config_show():
    """Show the effective configuration values (file, environment and defaults)."""
    try:
        settings = effective_settings()
    except ValueError as e:
        console.print(f"[bold red]{escape(str(e))}[/bold red]")
        raise typer.Exit(2)
    for k, v in settings.items():
        console.print(f"[cyan]{k}[/cyan]=[white]{escape(str(v))}[/white]")


@config_app.command(name="path")
def config_path():
    """Print where the user configuration file is read from."""
    console.print(str(CONFIG_FILE))


# Mount sub-apps
app.add_typer(config_app, name="config")


if __name__ == "__main__":
    app()
