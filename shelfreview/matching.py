"""
Compares a file's current name with the name it had before it was renamed.

The verdict produced here is the only thing the review loop uses to decide
whether a file may be moved without asking: a rename is considered safe when
every meaningful word of the old filename is still present in the new one.
"""
from __future__ import annotations

import logging
import os
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from thefuzz import fuzz

from .config import ReviewConfig
from .metadata import metadata_path_for, old_path
from .tokens import (
    MaskingRule,
    MaskingRuleError,
    compile_ignore_pattern,
    mask,
    tokenize,
)

logger = logging.getLogger(__name__)

_SPLIT_KEEP_SEPARATORS_RE = re.compile(r"([\W_]+)")

MISSING = "missing"
COVERED = "covered"
IGNORED = "ignored"
SEPARATOR = "separator"


class VerdictKind(Enum):
    NO_METADATA = "no metadata"
    MISSING_WORDS = "missing words"
    FULL_MATCH = "full match"


@dataclass(frozen=True)
class Verdict:
    kind: VerdictKind
    missing: Tuple[str, ...] = ()
    old_path: Optional[Path] = None
    similarity: Optional[int] = None

    @property
    def is_full_match(self) -> bool:
        return self.kind is VerdictKind.FULL_MATCH


def name_stem(name: str) -> str:
    """Basename without its last extension."""
    return os.path.splitext(os.path.basename(name))[0]


def build_coverage_pattern(new_name: str, rules: Sequence[MaskingRule]) -> Optional[re.Pattern]:
    """Build "any sequence of the new name's masked tokens" as one anchored-use pattern.

    Returns None when the new name has no tokens at all.
    """
    new_tokens = list(dict.fromkeys(tokenize(name_stem(new_name))))
    if not new_tokens:
        return None
    alternation = "|".join(mask(t, rules) for t in new_tokens)
    try:
        pattern = re.compile(f"(?:{alternation})+", re.IGNORECASE)
    except re.error as e:
        raise MaskingRuleError(f"Masking rules produced an invalid pattern for {new_name!r}: {e}") from e
    if pattern.fullmatch(""):
        raise MaskingRuleError(
            f"Masking rules produced a pattern that matches empty text for {new_name!r}"
        )
    return pattern


def _token_status(token: str, coverage: Optional[re.Pattern], ignore: Optional[re.Pattern]) -> str:
    if ignore is not None and ignore.fullmatch(token):
        return IGNORED
    if coverage is not None and coverage.fullmatch(token):
        return COVERED
    return MISSING


def missing_words(
    old_name: str,
    new_name: str,
    rules: Sequence[MaskingRule],
    ignore: Optional[re.Pattern] = None,
) -> List[str]:
    """Return the old name's tokens that the new name does not contain, in old-name order.

    Matching is case-insensitive and whole-token: an old token is covered only
    when it is entirely made of (masked) new-name tokens. Tokens matching the
    ignore pattern are never reported.
    """
    coverage = build_coverage_pattern(new_name, rules)
    missing: List[str] = []
    for token in tokenize(name_stem(old_name)):
        if _token_status(token, coverage, ignore) == MISSING and token not in missing:
            missing.append(token)
    return missing


def annotate_old_name(
    old_name: str,
    new_name: str,
    rules: Sequence[MaskingRule],
    ignore: Optional[re.Pattern] = None,
) -> List[Tuple[str, str]]:
    """Split the old name into (segment, status) pairs for highlighting."""
    coverage = build_coverage_pattern(new_name, rules)
    base = os.path.basename(old_name)
    stem = name_stem(base)
    extension = base[len(stem):]

    segments: List[Tuple[str, str]] = []
    for part in _SPLIT_KEEP_SEPARATORS_RE.split(unicodedata.normalize("NFC", stem)):
        if not part:
            continue
        if _SPLIT_KEEP_SEPARATORS_RE.fullmatch(part):
            segments.append((part, SEPARATOR))
        else:
            segments.append((part, _token_status(part, coverage, ignore)))
    if extension:
        segments.append((extension, SEPARATOR))
    return segments


def name_similarity(old_name: str, new_name: str) -> int:
    """Fuzzy similarity (0-100) between two stems, shown to the operator as a hint."""
    return fuzz.token_set_ratio(name_stem(old_name), name_stem(new_name))


def classify(path: Path, config: ReviewConfig) -> Verdict:
    """Compute the verdict for one candidate file."""
    metadata_path = metadata_path_for(path, config.metadata_extension)
    if not metadata_path.is_file():
        return Verdict(VerdictKind.NO_METADATA)

    previous = old_path(path, metadata_path)
    missing = missing_words(
        previous.name,
        path.name,
        config.masking_rules,
        compile_ignore_pattern(config.tokens_to_ignore),
    )
    similarity = name_similarity(previous.name, path.name)
    logger.debug(f"{path.name!r} vs {previous.name!r}: missing={missing} similarity={similarity}")
    if missing:
        return Verdict(VerdictKind.MISSING_WORDS, tuple(missing), previous, similarity)
    return Verdict(VerdictKind.FULL_MATCH, (), previous, similarity)
