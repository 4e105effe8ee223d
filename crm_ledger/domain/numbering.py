"""Receipt and invoice number formatting"""

import re
from typing import Iterable, Optional


def format_document_number(prefix: str, year: int, sequence: int) -> str:
    """RCP-2026-001 style numbers; sequence widens past 999 instead of wrapping"""
    return f"{prefix}-{year}-{sequence:03d}"


def next_sequence(prefix: str, year: int, existing: Iterable[Optional[str]]) -> int:
    """Next free sequence for a prefix/year given the numbers already issued"""
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
    highest = 0
    for number in existing:
        if not number:
            continue
        match = pattern.match(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1
