"""sitemetrics_etl.site_matching

Resolve a free-text legacy location to one canonical site.

Strategies run in a fixed order and the first one that returns a site wins:

  1. exact        normalized location == normalized site name
  2. containment  either normalized string contains the other
  3. slug         normalized slug contains the location, spaces → hyphens

Within a strategy the first site in catalog order wins, so a fixed catalog
and location always resolve to the same site.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sitemetrics_etl.normalize import normalize_location_name


@dataclass(frozen=True)
class CanonicalSite:
    id: int
    name: str
    slug: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CanonicalSite":
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or ""),
            slug=str(data.get("slug") or ""),
        )


MatchStrategy = Callable[[str, Sequence[CanonicalSite]], "CanonicalSite | None"]


# ---------------------------------------------------------------------------
# Strategies
# All take an already-normalized, non-empty location.
# ---------------------------------------------------------------------------

def match_exact(location_norm: str, sites: Sequence[CanonicalSite]) -> CanonicalSite | None:
    for site in sites:
        if normalize_location_name(site.name) == location_norm:
            return site
    return None


def match_containment(location_norm: str, sites: Sequence[CanonicalSite]) -> CanonicalSite | None:
    for site in sites:
        name_norm = normalize_location_name(site.name)
        if not name_norm:
            continue
        if location_norm in name_norm or name_norm in location_norm:
            return site
    return None


def match_slug(location_norm: str, sites: Sequence[CanonicalSite]) -> CanonicalSite | None:
    hyphenated = location_norm.replace(" ", "-")
    for site in sites:
        if not site.slug:
            continue
        # The normalized slug has no hyphens, so only single-token
        # locations can match here.
        if hyphenated in normalize_location_name(site.slug):
            return site
    return None


MATCH_STRATEGIES: tuple[tuple[str, MatchStrategy], ...] = (
    ("exact", match_exact),
    ("containment", match_containment),
    ("slug", match_slug),
)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def match_site_with_strategy(
    location: str | None,
    sites: Sequence[CanonicalSite],
) -> tuple[CanonicalSite | None, str | None]:
    """Return (site, strategy_name), or (None, None) when nothing matches."""
    location_norm = normalize_location_name(location)
    if not location_norm:
        return None, None
    for name, strategy in MATCH_STRATEGIES:
        site = strategy(location_norm, sites)
        if site is not None:
            return site, name
    return None, None


def find_matching_site(
    location: str | None,
    sites: Sequence[CanonicalSite],
) -> CanonicalSite | None:
    site, _ = match_site_with_strategy(location, sites)
    return site
