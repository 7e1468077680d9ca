"""Value coercion helpers shared by the filter compiler, sort engine and SQLite."""

import math
import re
from typing import Any, Optional

# Plain decimal literals only: no digit separators, hex or words like 'nan'
_NUMBER_RE = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a stored cell value as a number.

    Returns None for empty, non-numeric or non-finite input instead of
    raising, so numeric comparisons can treat such values as non-matching.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not _NUMBER_RE.match(text):
            return None
        number = float(text)
    if not math.isfinite(number):
        return None
    return number


def fold_text(value: Any) -> str:
    """Case-folded text used for case-insensitive compares and TEXT sorting."""
    if value is None:
        return ''
    return str(value).lower()
