"""
Filename tokenization and diacritic masking.

Filename stems are split into word tokens, and tokens from the new filename are
turned into regular expressions by a list of masking rules. Rules are written
as GNU sed substitutions (``s/PATTERN/REPLACEMENT/FLAGS``) so that existing
rule sets keep working, including POSIX equivalence classes such as
``[[=a=]]``, which Python's ``re`` does not understand and which are expanded
here into explicit character classes.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Sequence, Tuple

DEFAULT_MASKING_RULES: Tuple[str, ...] = (
    r"s/(ae|æ)/(ae|æ)/g",
    r"s/(ss|ß)/(ss|ß)/g",
    r"s/([[=a=][=e=][=i=][=o=][=u=][=c=][=n=][=s=][=z=]])/[[=\1=]]/g",
)

_SEPARATOR_RE = re.compile(r"[\W_]+")
_EQUIVALENCE_RE = re.compile(r"\[=(.)=\]", re.DOTALL)
_SED_FLAGS = {"g", "i"}

# Latin-1 through Latin Extended-B covers the accented letters seen in book titles
_LATIN_LETTERS = [chr(c) for c in range(0x41, 0x250) if chr(c).isalpha()]


class MaskingRuleError(ValueError):
    """Raised when a masking rule cannot be parsed or produces an unusable pattern."""


def tokenize(name_stem: str) -> List[str]:
    """Split a filename stem into word tokens, keeping their order and casing."""
    if not name_stem:
        return []
    normalized = unicodedata.normalize("NFC", name_stem)
    return [t for t in _SEPARATOR_RE.split(normalized) if t]


def _base_letter(ch: str) -> str:
    return unicodedata.normalize("NFD", ch)[0].lower()


@lru_cache(maxsize=None)
def equivalence_class(ch: str) -> str:
    """Return the body of a character class matching every letter equivalent to ``ch``."""
    base = _base_letter(ch)
    members = [c for c in _LATIN_LETTERS if _base_letter(c) == base]
    if ch not in members:
        members.append(ch)
    return "".join(re.escape(c) for c in members)


def expand_equivalence_classes(pattern: str) -> str:
    """Translate POSIX ``[=x=]`` items (inside brackets) into explicit letters."""
    return _EQUIVALENCE_RE.sub(lambda m: equivalence_class(m.group(1)), pattern)


@dataclass(frozen=True)
class MaskingRule:
    source: str
    regex: re.Pattern
    replacement: str
    count: int = 0

    def apply(self, text: str) -> str:
        return self.regex.sub(self.replacement, text, count=self.count)


def _split_sed_expression(text: str) -> Tuple[str, str, str]:
    if len(text) < 2 or text[0] != "s":
        raise MaskingRuleError(f"Masking rule {text!r} must look like 's/PATTERN/REPLACEMENT/FLAGS'")
    delimiter = text[1]
    if delimiter.isalnum() or delimiter in "\\\n ":
        raise MaskingRuleError(f"Masking rule {text!r} uses an invalid delimiter {delimiter!r}")

    parts: List[str] = []
    buf: List[str] = []
    i = 2
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            buf.append(nxt if nxt == delimiter else ch + nxt)
            i += 2
            continue
        if ch == delimiter:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
        i += 1
    parts.append("".join(buf))

    if len(parts) != 3:
        raise MaskingRuleError(
            f"Masking rule {text!r} must have exactly three {delimiter!r}-separated parts"
        )
    return parts[0], parts[1], parts[2]


def _translate_replacement(replacement: str) -> str:
    """Convert a sed replacement into a Python ``re.sub`` template."""
    out: List[str] = []
    i = 0
    while i < len(replacement):
        ch = replacement[i]
        if ch == "\\" and i + 1 < len(replacement):
            nxt = replacement[i + 1]
            if nxt.isdigit():
                out.append(f"\\g<{nxt}>")
            elif nxt == "n":
                out.append("\n")
            elif nxt == "\\":
                out.append("\\\\")
            else:
                out.append(nxt)
            i += 2
            continue
        if ch == "&":
            out.append("\\g<0>")
        elif ch == "\\":
            out.append("\\\\")
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def parse_masking_rule(text: str) -> MaskingRule:
    """Parse one sed-style masking rule, failing loudly on anything malformed."""
    pattern, replacement, flags = _split_sed_expression(text.strip())
    unknown = set(flags) - _SED_FLAGS
    if unknown:
        raise MaskingRuleError(
            f"Masking rule {text!r} has unsupported flag(s): {''.join(sorted(unknown))}"
        )
    if not pattern:
        raise MaskingRuleError(f"Masking rule {text!r} has an empty pattern")

    re_flags = re.IGNORECASE if "i" in flags else 0
    try:
        regex = re.compile(expand_equivalence_classes(pattern), re_flags)
        template = _translate_replacement(replacement)
        # compiles the template, so bad group references fail here and not mid-review
        regex.sub(template, "")
    except re.error as e:
        raise MaskingRuleError(f"Masking rule {text!r} is not valid: {e}") from e

    return MaskingRule(
        source=text,
        regex=regex,
        replacement=template,
        count=0 if "g" in flags else 1,
    )


def parse_masking_rules(texts: Iterable[str]) -> Tuple[MaskingRule, ...]:
    """Parse operator rules, falling back to the defaults when none are given."""
    texts = [t for t in texts if t and t.strip()]
    if not texts:
        texts = list(DEFAULT_MASKING_RULES)
    return tuple(parse_masking_rule(t) for t in texts)


def mask(token: str, rules: Sequence[MaskingRule]) -> str:
    """Turn a token into a regular expression that also matches its spelling variants."""
    masked = token
    for rule in rules:
        masked = rule.apply(masked)
    return expand_equivalence_classes(masked)


@lru_cache(maxsize=None)
def compile_ignore_pattern(tokens_to_ignore: str) -> re.Pattern:
    """Compile the ignore list (a regex alternation) for whole-token, case-insensitive use."""
    try:
        return re.compile(f"(?:{tokens_to_ignore})", re.IGNORECASE)
    except re.error as e:
        raise ValueError(f"Invalid tokens-to-ignore pattern {tokens_to_ignore!r}: {e}") from e
