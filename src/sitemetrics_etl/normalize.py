"""Normalization functions for legacy calculations ingestion.

String helpers accept str | None; location-name normalization always
returns a string so comparisons stay symmetric.
"""

from __future__ import annotations

import math
import re
from typing import Any

_LOCATION_SEPARATORS = re.compile(r"[,\-\s]+")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_location_name  (for site matching)
# ---------------------------------------------------------------------------

def normalize_location_name(value: str | None) -> str:
    """Lowercase, collapse runs of commas/hyphens/whitespace to one space, trim.

    Applied identically to legacy location text, site names and slugs.
    'Shangri-La, North Lake' → 'shangri la north lake'.
    """
    if not value:
        return ""
    v = value.lower()
    v = _LOCATION_SEPARATORS.sub(" ", v)
    return v.strip()


# ---------------------------------------------------------------------------
# Rule 4: metric_value
# ---------------------------------------------------------------------------

def metric_value(value: Any) -> float | None:
    """Return a finite JSON number as float, else None.

    Booleans, strings (including numeric-looking text) and NaN/Infinity are
    treated as absent.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    fval = float(value)
    if not math.isfinite(fval):
        return None
    return fval
