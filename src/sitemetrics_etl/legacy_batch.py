"""sitemetrics_etl.legacy_batch

Staging layer for the legacy CALCULATIONS.json export.

The export is a JSON array with one flat object per location:

    [{"Location": "Shangri-La, North Lake", "TreeCanopy2021": 42.5, ...}, ...]

Parsing is all-or-nothing: a batch that is not an array of objects is
rejected as a whole with MalformedBatchError.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from sitemetrics_etl.import_config import DEFAULT_CONFIG, ImportConfig
from sitemetrics_etl.normalize import normalize_space
from sitemetrics_etl.shared import MalformedBatchError

LOCATION_KEYS = ("Location", "location")


# ---------------------------------------------------------------------------
# Staging dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LegacyRecord:
    index: int                      # 1-based position in the batch
    location: str                   # raw export text, "" when missing
    values: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def has_location(self) -> bool:
        return normalize_space(self.location) is not None

    @property
    def display_name(self) -> str:
        """Raw location text, or a positional placeholder for error messages."""
        return self.location if self.has_location else f"Location {self.index}"

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def as_row(self) -> dict[str, Any]:
        return dict(self.values)


@dataclass
class LegacyBatchSummary:
    total_locations: int
    years_available: list[int]
    metrics_per_year: dict[int, int]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _location_of(obj: Mapping[str, Any], index: int) -> str:
    for key in LOCATION_KEYS:
        if key not in obj:
            continue
        value = obj[key]
        if value is None:
            return ""
        if not isinstance(value, str):
            raise MalformedBatchError(
                f"Record {index}: '{key}' must be a string, got {type(value).__name__}"
            )
        return value
    return ""


def parse_legacy_batch(content: str | bytes) -> list[LegacyRecord]:
    """Decode a batch payload into LegacyRecords, preserving input order.

    Raises:
        MalformedBatchError: invalid JSON, a non-array top level, a non-object
            element, or a non-string location.
    """
    try:
        data = json.loads(content)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedBatchError(f"Failed to parse calculations JSON: {exc}") from exc

    if not isinstance(data, list):
        raise MalformedBatchError(
            "Failed to parse calculations JSON: Expected an array of calculations"
        )

    records: list[LegacyRecord] = []
    for idx, obj in enumerate(data, start=1):
        if not isinstance(obj, dict):
            raise MalformedBatchError(
                f"Record {idx}: expected an object, got {type(obj).__name__}"
            )
        records.append(
            LegacyRecord(
                index=idx,
                location=_location_of(obj, idx),
                values=MappingProxyType(dict(obj)),
            )
        )
    return records


def load_legacy_batch(path: Path) -> list[LegacyRecord]:
    """Read a CALCULATIONS.json file (BOM tolerated) and parse it."""
    return parse_legacy_batch(path.read_text(encoding="utf-8-sig"))


# ---------------------------------------------------------------------------
# Summary (pre-import preview)
# ---------------------------------------------------------------------------

def summarize_legacy_batch(
    records: Iterable[LegacyRecord],
    config: ImportConfig = DEFAULT_CONFIG,
) -> LegacyBatchSummary:
    """Count, per configured year, the records carrying any metric key.

    A key counts as present even when its value is null or non-numeric;
    this is a preview of the export's shape, not of what will be written.
    """
    records = list(records)
    metrics_per_year: dict[int, int] = {}
    for year in config.years:
        keys = [config.legacy_key(prefix, year) for prefix in config.field_mappings]
        count = sum(1 for rec in records if any(k in rec.values for k in keys))
        if count > 0:
            metrics_per_year[year] = count
    return LegacyBatchSummary(
        total_locations=len(records),
        years_available=sorted(metrics_per_year),
        metrics_per_year=metrics_per_year,
    )
