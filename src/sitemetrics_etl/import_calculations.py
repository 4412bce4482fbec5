"""sitemetrics_etl.import_calculations

Import the legacy CALCULATIONS.json export into per-(site, year) metric
records.

Processing order:
  1.  Parse the batch (whole-batch failure on malformed input)
  2.  Advisory validation + per-year summary
  3.  Fetch the site catalog once (fatal on failure or when empty)
  4.  For each record, in input order:
      a.  Match the location to one site (once per record)
      b.  For each configured year, oldest first:
          i.   Report progress
          ii.  Extract the year's fields → skip when none
          iii. Upsert (site_id, year); a failure is recorded, never raised

Re-running is always safe: every write is an upsert keyed by (site_id, year).

Usage:
    python -m sitemetrics_etl.import_calculations \\
        --batch-path "rawEvidence/CALCULATIONS.json" \\
        --api-url "$SITEMETRICS_API_URL"

    python -m sitemetrics_etl.import_calculations \\
        --batch-path "rawEvidence/CALCULATIONS.json" \\
        --db-dsn "$DB_DSN" --dry-run
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path

import click
import psycopg

from sitemetrics_etl.extract import extract_yearly_metrics
from sitemetrics_etl.import_config import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ImportConfig,
    load_import_config,
)
from sitemetrics_etl.legacy_batch import (
    LegacyRecord,
    load_legacy_batch,
    summarize_legacy_batch,
)
from sitemetrics_etl.shared import (
    ImportFatalError,
    MigrationResult,
    RejectWriter,
    SiteCatalogError,
    write_run_report,
)
from sitemetrics_etl.site_matching import CanonicalSite, match_site_with_strategy
from sitemetrics_etl.site_store import (
    DryRunSiteStore,
    HttpSiteStore,
    PgSiteStore,
    SiteStore,
    UpsertOutcome,
)
from sitemetrics_etl.validate import validate_legacy_batch

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

EMPTY_CATALOG_MESSAGE = "No sites found in database. Please create sites first."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fetch_sites(store: SiteStore) -> list[CanonicalSite]:
    try:
        sites = store.list_sites()
    except Exception as exc:
        raise SiteCatalogError(f"Failed to fetch sites: {exc}") from exc
    if not sites:
        raise SiteCatalogError(EMPTY_CATALOG_MESSAGE)
    return sites


def _record_write(result: MigrationResult, outcome: UpsertOutcome, count_updates: bool) -> None:
    """Attribute one successful write.

    Every write counts as created unless count_updates is set and the store
    reported an overwrite.
    """
    if count_updates and outcome == "updated":
        result.updated += 1
    else:
        result.created += 1


def _reject(rejects: RejectWriter | None, record: LegacyRecord, reason: str) -> None:
    if rejects is not None:
        rejects.write({"_row": record.index, **record.as_row()}, reason)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def import_calculations(
    records: Sequence[LegacyRecord],
    store: SiteStore,
    config: ImportConfig = DEFAULT_CONFIG,
    on_progress: ProgressCallback | None = None,
    rejects: RejectWriter | None = None,
    count_updates: bool = False,
) -> MigrationResult:
    """Reconcile parsed legacy records against the store's site catalog.

    Raises:
        SiteCatalogError: the catalog could not be fetched or is empty.
            Nothing has been written when this is raised.

    Every other failure is captured in the returned MigrationResult.
    """
    result = MigrationResult()
    sites = _fetch_sites(store)
    log.info("Fetched %d sites for matching", len(sites))

    years = config.years
    total = len(records) * len(years)
    current = 0

    for record in records:
        label = record.display_name

        site = None
        if record.has_location:
            site, strategy = match_site_with_strategy(record.location, sites)
            if site is not None:
                log.debug("%s → site %s via %s", label, site.id, strategy)

        if site is None:
            result.unmatched_locations.append(label)
            _reject(rejects, record, "unmatched_location")
            log.info("No site matches location %r", label)
            current += len(years)
            continue

        for year in years:
            current += 1
            if on_progress is not None:
                on_progress(current, total, f"{label} ({year})")

            try:
                metrics = extract_yearly_metrics(record, year, site.id, config)
                if metrics is None:
                    result.skipped += 1
                    continue
                outcome = store.upsert_yearly_metrics(metrics)
            except Exception as exc:
                result.errors.append(f"{label} ({year}): {exc}")
                _reject(rejects, record, f"upsert_error:{year}: {exc}")
                log.warning("Upsert failed for %s (%s): %s", label, year, exc)
                continue
            _record_write(result, outcome, count_updates)

    result.success = not result.errors
    log.info(
        "Import finished: created=%d updated=%d skipped=%d errors=%d unmatched=%d",
        result.created, result.updated, result.skipped,
        len(result.errors), len(result.unmatched_locations),
    )
    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--batch-path", required=True, type=click.Path(), help="Legacy CALCULATIONS.json export")
@click.option("--api-url", default=None, envvar="SITEMETRICS_API_URL", help="REST API base URL, e.g. http://localhost:3000/api/v1")
@click.option("--api-token-env", default="SITEMETRICS_API_TOKEN", show_default=True, help="Env var name holding the API bearer token")
@click.option("--db-dsn", default=None, help="PostgreSQL DSN (instead of --api-url)")
@click.option("--config-path", default=None, type=click.Path(), help="YAML year range / field mapping override")
@click.option("--dry-run", is_flag=True, default=False, help="Read sites and match, but send no writes")
@click.option("--validate-only", is_flag=True, default=False, help="Parse, validate and summarize only; never contact the store")
@click.option(
    "--count-updates/--no-count-updates",
    default=False,
    show_default=True,
    help="Count overwrites as 'updated' when the store reports them",
)
@click.option(
    "--max-unmatched-rate",
    default=1.0,
    type=float,
    show_default=True,
    help="Fraction of records that may match no site before the run exits non-zero",
)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/calculations_rejects.csv",
    show_default=True,
)
@click.option("--reports-dir", default="./artifacts/reports", show_default=True, type=click.Path())
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--progress-every", default=25, type=int, show_default=True, help="Echo progress every N operations")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    batch_path: str,
    api_url: str | None,
    api_token_env: str,
    db_dsn: str | None,
    config_path: str | None,
    dry_run: bool,
    validate_only: bool,
    count_updates: bool,
    max_unmatched_rate: float,
    rejects_path: str,
    reports_dir: str,
    run_id: str | None,
    progress_every: int,
    log_level: str,
) -> None:
    """Import legacy calculations into yearly site metrics."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    click.echo(f"[{run_id}] Starting calculations run (dry_run={dry_run})")

    # Phase 1: config + pre-scan
    try:
        config = load_import_config(Path(config_path) if config_path else None)
    except (ConfigValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: invalid config: {exc}", err=True)
        sys.exit(1)

    try:
        records = load_legacy_batch(Path(batch_path))
    except FileNotFoundError:
        click.echo(f"[{run_id}] FATAL: --batch-path not found: {batch_path}", err=True)
        sys.exit(1)
    except ImportFatalError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    warnings = validate_legacy_batch(records, config)
    for warning in warnings:
        click.echo(f"[{run_id}] WARN: {warning}")

    summary = summarize_legacy_batch(records, config)
    click.echo(
        f"[{run_id}] Pre-scan: {summary.total_locations} locations read, "
        f"{len(warnings)} with warnings, years with data: {summary.years_available}"
    )
    for year, count in summary.metrics_per_year.items():
        click.echo(f"[{run_id}]   {year}: {count} locations")

    if validate_only:
        click.echo(f"[{run_id}] Validate-only: no store contacted.")
        return

    _validate_store_flags(api_url, db_dsn, run_id)

    # Phase 2: import
    conn: psycopg.Connection | None = None
    store: SiteStore
    if db_dsn:
        try:
            conn = psycopg.connect(db_dsn, autocommit=False)
        except psycopg.Error as exc:
            click.echo(f"[{run_id}] FATAL: could not connect to database: {exc}", err=True)
            sys.exit(1)
        store = PgSiteStore(conn)
    else:
        store = HttpSiteStore(api_url, token=os.environ.get(api_token_env) or None)  # type: ignore[arg-type]
    if dry_run:
        store = DryRunSiteStore(store)

    def on_progress(current: int, total: int, label: str) -> None:
        if current == total or (progress_every > 0 and current % progress_every == 0):
            click.echo(f"[{run_id}] [{current}/{total}] {label}")

    rejects = RejectWriter(Path(rejects_path))
    try:
        result = import_calculations(
            records, store, config,
            on_progress=on_progress,
            rejects=rejects,
            count_updates=count_updates,
        )
    except ImportFatalError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    finally:
        rejects.close()
        if conn is not None:
            conn.close()

    if dry_run:
        click.echo(f"[{run_id}] [dry-run] {len(store.writes)} write(s) not sent.")  # type: ignore[union-attr]

    report_path = write_run_report(
        run_id, started_at, dry_run,
        {"batch_path": batch_path, "config_path": config_path or ""},
        result,
        extra={"config_yaml_hash": config.yaml_hash, "validation_warnings": warnings[:50]},
        reports_dir=Path(reports_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    click.echo(json.dumps(result.to_dict(), indent=2, default=str))

    for location in result.unmatched_locations:
        click.echo(f"[{run_id}] UNMATCHED: {location}", err=True)
    for error in result.errors:
        click.echo(f"[{run_id}] ERROR: {error}", err=True)

    if result.errors:
        click.echo(f"[{run_id}] {len(result.errors)} write error(s), exiting non-zero", err=True)
        sys.exit(1)

    unmatched_rate = len(result.unmatched_locations) / len(records) if records else 0.0
    if unmatched_rate > max_unmatched_rate:
        click.echo(
            f"[{run_id}] unmatched location rate ({unmatched_rate:.2%}) exceeds "
            f"threshold of {max_unmatched_rate:.2%}.",
            err=True,
        )
        sys.exit(1)

    click.echo(f"[{run_id}] Done.")


def _validate_store_flags(
    api_url: str | None,
    db_dsn: str | None,
    run_id: str,
) -> None:
    if bool(api_url) == bool(db_dsn):
        click.echo(
            f"[{run_id}] FATAL: exactly one of --api-url or --db-dsn is required",
            err=True,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
