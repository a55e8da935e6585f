"""Dotted event-name pattern matching.

Patterns are compared segment by segment:

* ``*`` matches exactly one segment (``phase.start.*`` matches
  ``phase.start.night`` but not ``phase.start``).
* ``**`` matches any remainder, including nothing. It may appear at the
  start (``**.result``), at the end (``player.**``) or once in the middle
  (``action.**.result``).
"""

from __future__ import annotations

from typing import List, Sequence

SEPARATOR = "."
SINGLE = "*"
MULTI = "**"


def split_name(name: str) -> List[str]:
    return name.split(SEPARATOR) if name else []


def is_pattern(pattern: str) -> bool:
    return SINGLE in split_name(pattern) or MULTI in split_name(pattern)


def _match_segments(pattern: Sequence[str], name: Sequence[str]) -> bool:
    if len(pattern) != len(name):
        return False
    return all(p == SINGLE or p == n for p, n in zip(pattern, name))


def matches(pattern: str, name: str) -> bool:
    if pattern == name:
        return True

    pattern_parts = split_name(pattern)
    name_parts = split_name(name)

    multi_count = pattern_parts.count(MULTI)
    if multi_count == 0:
        return _match_segments(pattern_parts, name_parts)
    if multi_count > 1:
        return False

    split_at = pattern_parts.index(MULTI)
    head = pattern_parts[:split_at]
    tail = pattern_parts[split_at + 1 :]
    if len(head) + len(tail) > len(name_parts):
        return False
    if not _match_segments(head, name_parts[: len(head)]):
        return False
    if tail and not _match_segments(tail, name_parts[len(name_parts) - len(tail) :]):
        return False
    return True


def namespace_parents(name: str) -> List[str]:
    """Return ``a.b`` and ``a`` for ``a.b.c``, nearest parent first."""

    parts = split_name(name)
    return [SEPARATOR.join(parts[:i]) for i in range(len(parts) - 1, 0, -1)]
