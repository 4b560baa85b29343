"""Mass-deletion safety guard.

A merge that makes most of the record set vanish is far more likely to be a
bug or an accident than intent. The guard flags it and produces a forensic
report so the cause can be diagnosed without digging through history.
"Vanished" means gone from the file entirely; closing or tombstoning a
record does not count.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .records import count_records, titles_by_id


MIN_RECORDS_FOR_CHECK = 5
VANISHED_FRACTION_THRESHOLD = 0.5
TITLE_LIMIT = 60


@dataclass(frozen=True)
class SafetyCheckResult:
    triggered: bool
    details: str = ""
    vanished_percent: float = 0.0


def check(before_count: int, after_count: int) -> SafetyCheckResult:
    """Flag a drop from ``before_count`` to ``after_count`` records.

    Triggers when more than 5 records existed and more than half vanished.
    """
    if before_count <= MIN_RECORDS_FOR_CHECK or after_count >= before_count:
        return SafetyCheckResult(triggered=False)
    fraction = (before_count - after_count) / before_count
    percent = fraction * 100
    if fraction <= VANISHED_FRACTION_THRESHOLD:
        return SafetyCheckResult(triggered=False, vanished_percent=percent)
    details = (
        f"{percent:.0f}% of records vanished during merge "
        f"({before_count} -> {after_count} records)"
    )
    return SafetyCheckResult(triggered=True, details=details, vanished_percent=percent)


def check_content(before: bytes, after: bytes) -> SafetyCheckResult:
    return check(count_records(before), count_records(after))


def _truncate(title: str) -> str:
    if len(title) > TITLE_LIMIT:
        return title[: TITLE_LIMIT - 3] + "..."
    return title


def forensic_report(
    before_content: bytes,
    after_content: bytes,
    before_count: Optional[int] = None,
    after_count: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[str]:
    """Human-readable lines listing the records that vanished."""
    if before_count is None:
        before_count = count_records(before_content)
    if after_count is None:
        after_count = count_records(after_content)
    before = titles_by_id(before_content)
    after = titles_by_id(after_content)
    stamp = (now or datetime.now().astimezone()).strftime("%Y-%m-%d %H:%M:%S %Z").strip()

    lines = [
        f"Mass deletion forensic log [{stamp}]",
        f"  Before merge: {before_count} records",
        f"  After merge:  {after_count} records",
        "  Vanished records:",
    ]
    vanished = sorted(rid for rid in before if rid not in after)
    for rid in vanished:
        lines.append(f"    - {rid}: {_truncate(before[rid])}")
    lines.append(f"  Total vanished: {len(vanished)}")
    return lines
