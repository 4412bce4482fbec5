"""sitemetrics_etl.site_store

Adapters for the store that owns sites and their yearly metrics.

The import only needs two operations, both individually atomic:

  list_sites()                 bulk read of the site catalog
  upsert_yearly_metrics(data)  create-or-overwrite keyed by (site_id, year);
                               fields absent from `data` are left untouched

Adapters:
  HttpSiteStore    REST API of the live system (requests)
  PgSiteStore      direct PostgreSQL access (psycopg)
  DryRunSiteStore  reads through to another store, records writes only
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import psycopg
import requests

from sitemetrics_etl.extract import ExtractedYearMetrics
from sitemetrics_etl.site_matching import CanonicalSite

log = logging.getLogger(__name__)

UpsertOutcome = Literal["created", "updated"] | None

# Canonical field → REST API (camelCase) field.
API_FIELD_NAMES = {
    "site_id": "siteId",
    "year": "year",
    "tree_canopy": "treeCanopy",
    "green_area": "greenArea",
    "barren_land": "barrenLand",
    "wet_land": "wetLand",
    "snow": "snow",
    "rock": "rock",
    "water": "water",
    "buildup": "buildup",
    "solar_panels": "solarPanels",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SiteStoreError(Exception):
    """Raised by adapters when a store read or write fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class SiteStore(Protocol):
    def list_sites(self) -> list[CanonicalSite]:
        ...

    def upsert_yearly_metrics(self, data: ExtractedYearMetrics) -> UpsertOutcome:
        """Return 'created'/'updated' when the store reports it, else None."""
        ...


# ---------------------------------------------------------------------------
# HTTP adapter
# ---------------------------------------------------------------------------

def _handle_response(resp: requests.Response) -> Any:
    """Return the decoded JSON body, raising SiteStoreError for non-2xx."""
    if resp.ok:
        return resp.json()
    try:
        body = resp.json()
    except ValueError:
        body = None
    message = body.get("message") if isinstance(body, dict) else None
    if resp.status_code == 401:
        raise SiteStoreError(
            message or "You need to be logged in to perform this action.",
            status_code=401,
        )
    raise SiteStoreError(message or f"HTTP error {resp.status_code}", resp.status_code)


def to_api_payload(data: ExtractedYearMetrics) -> dict[str, Any]:
    """camelCase body for POST /yearly-metrics/upsert, populated fields only."""
    return {API_FIELD_NAMES[k]: v for k, v in data.to_payload().items()}


class HttpSiteStore:
    """Talk to the live REST API (`{base_url}/sites`, `{base_url}/yearly-metrics`)."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        session: requests.Session | None = None,
        timeout: int = 30,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def list_sites(self) -> list[CanonicalSite]:
        try:
            resp = self._session.get(f"{self._base_url}/sites", timeout=self._timeout)
        except requests.RequestException as exc:
            raise SiteStoreError(f"GET /sites failed: {exc}") from exc
        data = _handle_response(resp)
        if not isinstance(data, list):
            raise SiteStoreError("GET /sites did not return a list")
        return [CanonicalSite.from_api(item) for item in data]

    def upsert_yearly_metrics(self, data: ExtractedYearMetrics) -> UpsertOutcome:
        try:
            resp = self._session.post(
                f"{self._base_url}/yearly-metrics/upsert",
                json=to_api_payload(data),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise SiteStoreError(f"POST /yearly-metrics/upsert failed: {exc}") from exc
        _handle_response(resp)
        # The API returns the stored row without saying whether it was new.
        return None


# ---------------------------------------------------------------------------
# PostgreSQL adapter
# ---------------------------------------------------------------------------

class PgSiteStore:
    """Read `site` and upsert `yearly_metrics` (migrations/0001_site_yearly_metrics.sql).

    Each call runs in its own transaction on the supplied connection.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def list_sites(self) -> list[CanonicalSite]:
        try:
            with self._conn.transaction():
                rows = self._conn.execute(
                    "SELECT id, name, slug FROM site ORDER BY id ASC"
                ).fetchall()
        except psycopg.Error as exc:
            raise SiteStoreError(f"site catalog query failed: {exc}") from exc
        return [CanonicalSite(id=r[0], name=r[1], slug=r[2] or "") for r in rows]

    def upsert_yearly_metrics(self, data: ExtractedYearMetrics) -> UpsertOutcome:
        params = {"site_id": data.site_id, "year": data.year}
        params.update(
            {
                name: getattr(data, name)
                for name in API_FIELD_NAMES
                if name not in ("site_id", "year")
            }
        )
        try:
            with self._conn.transaction():
                row = self._conn.execute(
                    """
                    INSERT INTO yearly_metrics
                      (site_id, year, tree_canopy, green_area, barren_land,
                       wet_land, snow, rock, water, buildup, solar_panels)
                    VALUES
                      (%(site_id)s, %(year)s, %(tree_canopy)s, %(green_area)s,
                       %(barren_land)s, %(wet_land)s, %(snow)s, %(rock)s,
                       %(water)s, %(buildup)s, %(solar_panels)s)
                    ON CONFLICT (site_id, year) DO UPDATE SET
                      tree_canopy  = COALESCE(EXCLUDED.tree_canopy,  yearly_metrics.tree_canopy),
                      green_area   = COALESCE(EXCLUDED.green_area,   yearly_metrics.green_area),
                      barren_land  = COALESCE(EXCLUDED.barren_land,  yearly_metrics.barren_land),
                      wet_land     = COALESCE(EXCLUDED.wet_land,     yearly_metrics.wet_land),
                      snow         = COALESCE(EXCLUDED.snow,         yearly_metrics.snow),
                      rock         = COALESCE(EXCLUDED.rock,         yearly_metrics.rock),
                      water        = COALESCE(EXCLUDED.water,        yearly_metrics.water),
                      buildup      = COALESCE(EXCLUDED.buildup,      yearly_metrics.buildup),
                      solar_panels = COALESCE(EXCLUDED.solar_panels, yearly_metrics.solar_panels),
                      updated_at   = now()
                    RETURNING (xmax = 0) AS inserted
                    """,
                    params,
                ).fetchone()
        except psycopg.Error as exc:
            raise SiteStoreError(str(exc)) from exc
        return "created" if row[0] else "updated"


# ---------------------------------------------------------------------------
# Dry-run wrapper
# ---------------------------------------------------------------------------

@dataclass
class DryRunSiteStore:
    """Read the real catalog; keep writes in memory instead of sending them."""

    inner: SiteStore
    writes: list[dict[str, Any]] = field(default_factory=list)

    def list_sites(self) -> list[CanonicalSite]:
        return self.inner.list_sites()

    def upsert_yearly_metrics(self, data: ExtractedYearMetrics) -> UpsertOutcome:
        self.writes.append(data.to_payload())
        log.debug("[dry-run] would upsert site_id=%s year=%s", data.site_id, data.year)
        return None
