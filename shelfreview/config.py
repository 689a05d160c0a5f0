#!/usr/bin/env python3
"""
Centralized configuration for shelfreview with env var overrides.
- User config file: ~/.config/shelfreview/config.json
- Precedence: command line > environment > user config file > built-in defaults
- The effective settings are frozen into a ReviewConfig that is passed to every
  component; nothing reads module-level settings during a review.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from rich.console import Console

from .tokens import MaskingRule, compile_ignore_pattern, parse_masking_rules

logger = logging.getLogger(__name__)

# Paths
CONFIG_DIR = Path.home() / ".config" / "shelfreview"
CONFIG_FILE = CONFIG_DIR / "config.json"

console = Console()

DEFAULT_TOKENS_TO_IGNORE = (
    r"a|an|the|of|and|ebook|book|novel|series|ed(ition)?|vol(ume)?|(1[0-9]|20)[0-9][0-9]"
)

# Built-in defaults
DEFAULTS: Dict[str, Any] = {
    "OUTPUT_FOLDERS": [],
    "QUICK_MODE": False,
    "CUSTOM_MOVE_BASE_DIR": "",
    "RESTORE_ORIGINAL_BASE_DIR": "",
    # Empty means the three built-in rules in tokens.DEFAULT_MASKING_RULES
    "DIACRITIC_DIFFERENCE_MASKINGS": [],
    "TOKENS_TO_IGNORE": DEFAULT_TOKENS_TO_IGNORE,
    "OUTPUT_METADATA_EXTENSION": "meta",
    "ISBN_METADATA_FETCH_ORDER": [
        "Goodreads",
        "Amazon.com",
        "Google",
        "ISBNDB",
        "WorldCat xISBN",
        "OZON.ru",
    ],
    "ORGANIZE_WITHOUT_ISBN_SOURCES": ["Goodreads", "Amazon.com", "Google"],
    "FETCH_METADATA_COMMAND": "fetch-ebook-metadata",
    "VERBOSE": True,
    "DRY_RUN": False,
    "SYMLINK_ONLY": False,
}

# Environment variable mapping
ENV_MAP = {
    "OUTPUT_FOLDERS": "SHELF_OUTPUT_FOLDERS",  # comma-separated list
    "QUICK_MODE": "SHELF_QUICK_MODE",
    "CUSTOM_MOVE_BASE_DIR": "SHELF_CUSTOM_MOVE_BASE_DIR",
    "RESTORE_ORIGINAL_BASE_DIR": "SHELF_RESTORE_ORIGINAL_BASE_DIR",
    "TOKENS_TO_IGNORE": "SHELF_TOKENS_TO_IGNORE",
    "OUTPUT_METADATA_EXTENSION": "SHELF_OUTPUT_METADATA_EXTENSION",
    "ISBN_METADATA_FETCH_ORDER": "SHELF_ISBN_METADATA_FETCH_ORDER",  # comma-separated list
    "ORGANIZE_WITHOUT_ISBN_SOURCES": "SHELF_ORGANIZE_WITHOUT_ISBN_SOURCES",  # comma-separated list
    "FETCH_METADATA_COMMAND": "SHELF_FETCH_METADATA_COMMAND",
    "VERBOSE": "SHELF_VERBOSE",
    "DRY_RUN": "SHELF_DRY_RUN",
    "SYMLINK_ONLY": "SHELF_SYMLINK_ONLY",
}

LIST_KEYS = ("OUTPUT_FOLDERS", "ISBN_METADATA_FETCH_ORDER", "ORGANIZE_WITHOUT_ISBN_SOURCES")
BOOL_KEYS = ("QUICK_MODE", "VERBOSE", "DRY_RUN", "SYMLINK_ONLY")

_TRUE_WORDS = {"1", "true", "yes", "y", "on"}
_FALSE_WORDS = {"0", "false", "no", "n", "off"}


class ConfigError(ValueError):
    """Raised for configuration values that would make a review run meaningless."""


@dataclass(frozen=True)
class ReviewConfig:
    output_folders: Tuple[Path, ...] = ()
    quick_mode: bool = False
    custom_move_base_dir: str = ""
    restore_original_base_dir: str = ""
    masking_rules: Tuple[MaskingRule, ...] = field(default_factory=lambda: parse_masking_rules(()))
    tokens_to_ignore: str = DEFAULT_TOKENS_TO_IGNORE
    metadata_extension: str = "meta"
    isbn_fetch_order: Tuple[str, ...] = tuple(DEFAULTS["ISBN_METADATA_FETCH_ORDER"])
    title_fetch_order: Tuple[str, ...] = tuple(DEFAULTS["ORGANIZE_WITHOUT_ISBN_SOURCES"])
    fetch_command: str = "fetch-ebook-metadata"
    verbose: bool = True
    dry_run: bool = False
    symlink_only: bool = False

    def updated(self, **changes: Any) -> "ReviewConfig":
        """Return a validated copy with some fields replaced."""
        new = replace(self, **changes)
        validate_config(new)
        return new


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ConfigError(f"Expected a yes/no value, got {value!r}")


def _load_user_file(config_file: Path) -> Dict[str, Any]:
    if not config_file.exists():
        return {}
    try:
        with open(config_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {config_file}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {config_file}: expected a JSON object")
        return {}
    return {k: v for k, v in data.items() if k in DEFAULTS}


def _apply_env_overrides(cfg: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    out = dict(cfg)
    for key, env_name in ENV_MAP.items():
        val = environ.get(env_name)
        if val is None:
            continue
        if key in LIST_KEYS:
            out[key] = [s for s in (v.strip() for v in val.split(",")) if s]
        elif key in BOOL_KEYS:
            try:
                out[key] = parse_bool(val)
            except ConfigError:
                logger.warning(f"Ignoring {env_name}={val!r}: not a yes/no value")
        else:
            out[key] = val
    return out


def _apply_overrides(cfg: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(cfg)
    for key, val in overrides.items():
        if key not in DEFAULTS:
            raise ConfigError(f"Unknown configuration key: {key}")
        # None and empty lists mean "not given on the command line"
        if val is None or (key in LIST_KEYS + ("DIACRITIC_DIFFERENCE_MASKINGS",) and not val):
            continue
        out[key] = val
    return out


def validate_config(cfg: ReviewConfig) -> None:
    if not cfg.metadata_extension or "/" in cfg.metadata_extension:
        raise ConfigError(f"Invalid metadata extension: {cfg.metadata_extension!r}")
    if cfg.quick_mode and not cfg.output_folders:
        raise ConfigError("Quick mode needs at least one output folder (-o/--output-folder)")
    try:
        compile_ignore_pattern(cfg.tokens_to_ignore)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def _coerce(eff: Dict[str, Any]) -> ReviewConfig:
    try:
        bools = {k: parse_bool(eff[k]) for k in BOOL_KEYS}
    except ConfigError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
    cfg = ReviewConfig(
        output_folders=tuple(Path(str(p)).expanduser() for p in eff["OUTPUT_FOLDERS"]),
        quick_mode=bools["QUICK_MODE"],
        custom_move_base_dir=str(eff["CUSTOM_MOVE_BASE_DIR"] or ""),
        restore_original_base_dir=str(eff["RESTORE_ORIGINAL_BASE_DIR"] or ""),
        masking_rules=parse_masking_rules(eff["DIACRITIC_DIFFERENCE_MASKINGS"]),
        tokens_to_ignore=str(eff["TOKENS_TO_IGNORE"]),
        metadata_extension=str(eff["OUTPUT_METADATA_EXTENSION"]).lstrip("."),
        isbn_fetch_order=tuple(eff["ISBN_METADATA_FETCH_ORDER"]),
        title_fetch_order=tuple(eff["ORGANIZE_WITHOUT_ISBN_SOURCES"]),
        fetch_command=str(eff["FETCH_METADATA_COMMAND"]),
        verbose=bools["VERBOSE"],
        dry_run=bools["DRY_RUN"],
        symlink_only=bools["SYMLINK_ONLY"],
    )
    validate_config(cfg)
    return cfg


def effective_settings(
    overrides: Optional[Dict[str, Any]] = None,
    config_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Merge defaults, the user file, the environment and explicit overrides."""
    merged = DEFAULTS | _load_user_file(config_file or CONFIG_FILE)
    merged = _apply_env_overrides(merged, environ)
    return _apply_overrides(merged, overrides or {})


def build_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ReviewConfig:
    """Load the effective configuration, coerced and validated.

    Raises:
        ConfigError: for invalid values (bad ignore pattern, quick mode
            without an output folder, ...).
        MaskingRuleError: for malformed masking rules.
    """
    return _coerce(effective_settings(overrides, config_file, environ))
