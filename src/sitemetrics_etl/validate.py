"""sitemetrics_etl.validate

Advisory pre-import scan of a parsed batch. Warnings are surfaced before a
run starts; flagged rows are still attempted by the import.
"""

from __future__ import annotations

from collections.abc import Iterable

from sitemetrics_etl.import_config import DEFAULT_CONFIG, ImportConfig
from sitemetrics_etl.legacy_batch import LegacyRecord


def _has_any_year_data(record: LegacyRecord, config: ImportConfig) -> bool:
    return any(record.get(key) is not None for key in config.legacy_keys())


def validate_legacy_batch(
    records: Iterable[LegacyRecord],
    config: ImportConfig = DEFAULT_CONFIG,
) -> list[str]:
    """Return at most one warning per row, in row order.

    Non-numeric values still count as data here; the extractor decides later
    whether they are usable.
    """
    warnings: list[str] = []
    for record in records:
        problems: list[str] = []
        if not record.has_location:
            problems.append("Missing Location name")
        if not _has_any_year_data(record, config):
            problems.append(f'No metric data found for "{record.location}"')
        if problems:
            warnings.append(f"Row {record.index}: {'; '.join(problems)}")
    return warnings
