"""
Package identifier format and numbering.

Identifiers look like ``N-PL-0042``: a fixed prefix, the process code, and a
zero-padded running number that wraps from the maximum back to 1.  Pure
functions; the numbering service supplies the identifiers already in use.
"""

import re
from collections.abc import Iterable
from uuid import UUID

from production_kernel.exceptions import IdentifierConflictError


def format_identifier(prefix: str, code: str, number: int, width: int = 4) -> str:
    return f"{prefix}-{code}-{number:0{width}d}"


def identifier_pattern(prefix: str, code: str | None = None) -> re.Pattern[str]:
    """Regex capturing (code, number).  Restricted to ``code`` when given."""
    code_part = re.escape(code) if code else r"[A-Z]{2}"
    return re.compile(rf"^{re.escape(prefix)}-({code_part})-(\d+)$")


def extract_code(identifier: str | None, prefix: str) -> str | None:
    """Process code embedded in an identifier, or None if it does not match."""
    if not identifier:
        return None
    match = identifier_pattern(prefix).match(identifier.strip())
    return match.group(1) if match else None


def used_numbers(identifiers: Iterable[str | None], prefix: str, code: str) -> set[int]:
    pattern = identifier_pattern(prefix, code)
    numbers: set[int] = set()
    for identifier in identifiers:
        if not identifier:
            continue
        match = pattern.match(identifier.strip())
        if match:
            numbers.add(int(match.group(2)))
    return numbers


def next_numbers(taken: set[int], count: int, max_number: int = 9999) -> list[int]:
    """
    Allocate ``count`` numbers following the highest one taken.

    Numbering continues from max(taken) + 1, wraps from ``max_number`` to 1,
    and skips any number already taken.

    Raises:
        ValueError: Fewer than ``count`` numbers are free.
    """
    in_range = {n for n in taken if 1 <= n <= max_number}
    free = max_number - len(in_range)
    if count > free:
        raise ValueError(f"Only {free} identifiers remain free")

    highest = max(in_range, default=0)
    candidate = 1 if highest >= max_number else highest + 1

    allocated: list[int] = []
    while len(allocated) < count:
        if candidate not in taken:
            allocated.append(candidate)
        candidate = 1 if candidate >= max_number else candidate + 1
    return allocated


def find_duplicates(identifiers: Iterable[str | None]) -> list[str]:
    """Identifiers that appear more than once, in first-seen order."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for identifier in identifiers:
        if not identifier:
            continue
        if identifier in seen and identifier not in duplicates:
            duplicates.append(identifier)
        seen.add(identifier)
    return duplicates


def check_unique_within(tenant_id: UUID, identifiers: Iterable[str | None]) -> None:
    """
    Raises:
        IdentifierConflictError: An identifier is repeated.
    """
    duplicates = find_duplicates(identifiers)
    if duplicates:
        raise IdentifierConflictError(tenant_id, duplicates)
