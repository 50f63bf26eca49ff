"""Year-scoped human reference numbers: ``SSR-<year>-<seq:03d>``.

The sequence restarts at 1 every calendar year and is otherwise the highest
existing sequence for that year plus one. Sequences past 999 simply widen.
"""
from __future__ import annotations
import re
from typing import Iterable, Optional, Tuple

PREFIX = 'SSR'
_PATTERN = re.compile(r'^SSR-(\d{4})-(\d+)$')


def format_reference_number(year: int, sequence: int) -> str:
    return f"{PREFIX}-{year}-{sequence:03d}"


def parse_reference_number(value: str) -> Optional[Tuple[int, int]]:
    match = _PATTERN.match(value or '')
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def next_sequence(existing: Iterable[str], year: int) -> int:
    highest = 0
    for ref in existing:
        parsed = parse_reference_number(ref)
        if parsed and parsed[0] == year:
            highest = max(highest, parsed[1])
    return highest + 1


def next_reference_number(existing: Iterable[str], year: int) -> str:
    return format_reference_number(year, next_sequence(existing, year))


def year_prefix(year: int) -> str:
    """LIKE prefix selecting every reference number of a given year."""
    return f"{PREFIX}-{year}-"

__all__ = ['format_reference_number', 'parse_reference_number', 'next_sequence', 'next_reference_number', 'year_prefix']
