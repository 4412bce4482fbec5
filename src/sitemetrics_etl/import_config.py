"""sitemetrics_etl.import_config

Year range and legacy-prefix → canonical-field table for the calculations
import.

Responsibilities:
  - Hold the reference deployment defaults (DEFAULT_CONFIG)
  - Load and validate an optional YAML override (config/import_calculations.yml)
  - Hash YAML content for traceability in run reports

Usage:
    from pathlib import Path
    from sitemetrics_etl.import_config import load_import_config

    config = load_import_config(Path("config/import_calculations.yml"))
    config.legacy_key("TreeCanopy", 2022)   # → "TreeCanopy2022"
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CANONICAL_FIELDS = (
    "tree_canopy",
    "green_area",
    "barren_land",
    "wet_land",
    "snow",
    "rock",
    "water",
    "buildup",
    "solar_panels",
)

DEFAULT_YEARS = (2020, 2021, 2022, 2023, 2024, 2025)

DEFAULT_FIELD_MAPPINGS: Mapping[str, str] = MappingProxyType({
    "GreenArea": "green_area",
    "TreeCanopy": "tree_canopy",
    "BarrenLand": "barren_land",
    "WetLand": "wet_land",
    "Snow": "snow",
    "Rock": "rock",
    "Water": "water",
    "Buildup": "buildup",
    "SolarPanels": "solar_panels",
})

REQUIRED_YAML_KEYS = frozenset({"years", "field_mappings"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when a YAML import config fails schema validation."""


# ---------------------------------------------------------------------------
# ImportConfig dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportConfig:
    """Validated year range and field table for one import run."""

    years: tuple[int, ...] = DEFAULT_YEARS
    field_mappings: Mapping[str, str] = field(
        default_factory=lambda: DEFAULT_FIELD_MAPPINGS
    )
    yaml_hash: str | None = None

    def __post_init__(self) -> None:
        # Read-only copies; DEFAULT_CONFIG is shared by every run.
        object.__setattr__(self, "years", tuple(self.years))
        object.__setattr__(
            self, "field_mappings", MappingProxyType(dict(self.field_mappings))
        )

    def legacy_key(self, prefix: str, year: int) -> str:
        return f"{prefix}{year}"

    def legacy_keys(self) -> list[str]:
        """Every `<prefix><year>` key this config reads, year-major order."""
        return [
            self.legacy_key(prefix, year)
            for year in self.years
            for prefix in self.field_mappings
        ]


DEFAULT_CONFIG = ImportConfig()


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_import_config(yaml_path: Path | None) -> ImportConfig:
    """Load, validate, and return an ImportConfig from a YAML file.

    Args:
        yaml_path: Path to the YAML file, or None for DEFAULT_CONFIG.

    Raises:
        ConfigValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    if yaml_path is None:
        return DEFAULT_CONFIG
    raw = yaml_path.read_text(encoding="utf-8")
    data: dict[str, Any] = yaml.safe_load(raw)
    validate_import_config(data)
    return ImportConfig(
        years=tuple(int(y) for y in data["years"]),
        field_mappings={str(k): str(v) for k, v in data["field_mappings"].items()},
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def validate_import_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match required schema.

    Validates:
      - Required top-level keys present
      - years: non-empty, unique, ascending four-digit integers
      - field_mappings: non-empty, every target one of CANONICAL_FIELDS,
        no canonical field targeted twice
    """
    if not isinstance(data, dict):
        raise ConfigValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise ConfigValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    years = data.get("years")
    if not isinstance(years, list) or not years:
        raise ConfigValidationError("'years' must be a non-empty list.")
    for year in years:
        if isinstance(year, bool) or not isinstance(year, int) or not (1000 <= year <= 9999):
            raise ConfigValidationError(f"Year '{year}' is not a four-digit integer.")
    if list(years) != sorted(set(years)):
        raise ConfigValidationError("'years' must be unique and in ascending order.")

    mappings = data.get("field_mappings")
    if not isinstance(mappings, dict) or not mappings:
        raise ConfigValidationError("'field_mappings' must be a non-empty mapping.")
    seen: set[str] = set()
    for prefix, target in mappings.items():
        if not isinstance(prefix, str) or not prefix.strip():
            raise ConfigValidationError(f"Legacy prefix '{prefix}' must be a non-empty string.")
        if target not in CANONICAL_FIELDS:
            raise ConfigValidationError(
                f"Prefix '{prefix}' maps to unknown field '{target}'. "
                f"Must be one of {list(CANONICAL_FIELDS)}."
            )
        if target in seen:
            raise ConfigValidationError(f"Field '{target}' is mapped more than once.")
        seen.add(target)
