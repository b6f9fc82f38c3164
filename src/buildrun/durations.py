# durations.py
from __future__ import annotations

import re
from typing import Union

# Durations use the protobuf JSON form: seconds with an "s" suffix,
# optionally fractional ("1800s", "2.5s").
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")

DEFAULT_BUILD_TIMEOUT = "600s"


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts "1800s" style strings and bare numbers (already in seconds).
    Raises ValueError for anything else, including negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}: expected seconds like '600s'")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        m = _DURATION_RE.match(value.strip())
        if not m:
            raise ValueError(f"invalid duration {value!r}: expected seconds like '600s'")
        seconds = float(m.group(1))
    else:
        raise ValueError(f"invalid duration {value!r}: expected seconds like '600s'")

    if seconds < 0:
        raise ValueError(f"invalid duration {value!r}: must not be negative")
    return seconds


def format_duration(seconds: float) -> str:
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:g}s"
