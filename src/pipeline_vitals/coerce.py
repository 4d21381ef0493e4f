"""Parse-or-default helpers for numbers read from loosely typed inputs.

Every helper returns ``None`` when the value cannot be interpreted, so the
caller picks (and tests can observe) the default explicitly.
"""

from __future__ import annotations

import math
import re
from typing import Any

_NUMERIC_RE = re.compile(r"^-?(\d+(\.\d*)?|\.\d+)$")


def parse_number(value: Any) -> float | None:
    """Return *value* as a finite float, or ``None`` when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not _NUMERIC_RE.match(text):
            return None
        number = float(text)
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_int(value: Any) -> int | None:
    """Return *value* truncated to an int, or ``None`` when it is not numeric."""
    number = parse_number(value)
    if number is None:
        return None
    return int(number)


def clamp_score(value: float) -> int:
    """Clamp a score to the closed interval [0, 100]."""
    return max(0, min(100, int(value)))
