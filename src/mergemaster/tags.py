"""Structured version tags.

A tag such as ``2.3.1-pre`` is split into alternating literal and numeric
runs: literals ``("", ".", ".", "-pre")`` and values ``(2, 3, 1)``. Tags are
immutable values; ``increment_tag`` always returns a new tag string.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import cmp_to_key

PRERELEASE_SUFFIX = "-pre"


@dataclass(frozen=True)
class ParsedTag:
    literals: tuple[str, ...]
    values: tuple[int, ...]

    @property
    def format(self) -> str:
        """Skeleton with ``%d`` placeholders, e.g. ``%d.%d.%d-pre``."""
        out = self.literals[0]
        for literal in self.literals[1:]:
            out += "%d" + literal
        return out

    @property
    def prerelease(self) -> bool:
        return self.literals[-1].endswith(PRERELEASE_SUFFIX)

    def __str__(self) -> str:
        return stringify_tag(self)


def parse_tag(text: str) -> ParsedTag:
    """Split ``text`` into literal and numeric runs.

    Raises ``ValueError`` when the text carries no digits at all, since such a
    tag cannot be ordered or incremented.
    """
    literals: list[str] = []
    values: list[int] = []
    current = ""
    in_digits = False
    for ch in text:
        is_digit = "0" <= ch <= "9"
        if is_digit != in_digits:
            if in_digits:
                values.append(int(current))
            else:
                literals.append(current)
            current = ""
            in_digits = is_digit
        current += ch
    if in_digits:
        values.append(int(current))
        literals.append("")
    else:
        literals.append(current)
    if not values:
        raise ValueError(f"Tag {text!r} has no numeric components")
    return ParsedTag(tuple(literals), tuple(values))


def stringify_tag(tag: ParsedTag) -> str:
    out = tag.literals[0]
    for value, literal in zip(tag.values, tag.literals[1:]):
        out += f"{value}{literal}"
    return out


def compare_tags(a: ParsedTag, b: ParsedTag) -> int:
    """Component-wise numeric comparison; literals (``-pre``) are ignored."""
    for left, right in zip(a.values, b.values):
        if left != right:
            return -1 if left < right else 1
    if len(a.values) == len(b.values):
        return 0
    return -1 if len(a.values) < len(b.values) else 1


def increment_tag(tag: ParsedTag, prerelease: bool) -> str:
    last = tag.literals[-1]
    if last.endswith(PRERELEASE_SUFFIX):
        last = last[: -len(PRERELEASE_SUFFIX)]
    if prerelease:
        last += PRERELEASE_SUFFIX
    values = tag.values[:-1] + (tag.values[-1] + 1,)
    return stringify_tag(ParsedTag(tag.literals[:-1] + (last,), values))


def try_parse_tag(text: str) -> ParsedTag | None:
    try:
        return parse_tag(text)
    except ValueError:
        return None


def latest_tag(tags: Iterable[ParsedTag]) -> ParsedTag | None:
    ordered = sorted(tags, key=cmp_to_key(compare_tags))
    return ordered[-1] if ordered else None


__all__ = [
    "PRERELEASE_SUFFIX",
    "ParsedTag",
    "parse_tag",
    "try_parse_tag",
    "stringify_tag",
    "compare_tags",
    "increment_tag",
    "latest_tag",
]
