"""sitemetrics_etl.extract

Year-keyed field extraction: one LegacyRecord + one year → the canonical
yearly-metrics payload for the matched site, or None when the record has no
numeric value for that year.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sitemetrics_etl.import_config import CANONICAL_FIELDS, DEFAULT_CONFIG, ImportConfig
from sitemetrics_etl.legacy_batch import LegacyRecord
from sitemetrics_etl.normalize import metric_value


@dataclass
class ExtractedYearMetrics:
    site_id: int
    year: int
    tree_canopy: float | None = None
    green_area: float | None = None
    barren_land: float | None = None
    wet_land: float | None = None
    snow: float | None = None
    rock: float | None = None
    water: float | None = None
    buildup: float | None = None
    solar_panels: float | None = None

    def populated(self) -> dict[str, float]:
        """Canonical fields that carry a value, in CANONICAL_FIELDS order."""
        return {
            name: getattr(self, name)
            for name in CANONICAL_FIELDS
            if getattr(self, name) is not None
        }

    def to_payload(self) -> dict[str, Any]:
        """Partial-update payload: omitted fields are left untouched downstream."""
        return {"site_id": self.site_id, "year": self.year, **self.populated()}


def extract_yearly_metrics(
    record: LegacyRecord,
    year: int,
    site_id: int,
    config: ImportConfig = DEFAULT_CONFIG,
) -> ExtractedYearMetrics | None:
    """Read `<prefix><year>` for every configured prefix.

    Only whitelisted prefixes are read; other keys in the record are ignored.
    Non-numeric values are treated as absent. Returns None when no field was
    populated for the year.
    """
    values: dict[str, float] = {}
    for prefix, canonical in config.field_mappings.items():
        value = metric_value(record.get(config.legacy_key(prefix, year)))
        if value is not None:
            values[canonical] = value

    if not values:
        return None
    return ExtractedYearMetrics(site_id=site_id, year=year, **values)
