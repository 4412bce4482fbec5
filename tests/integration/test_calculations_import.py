"""Integration tests for the import_calculations CLI.

These tests run against an ephemeral PostgreSQL database with the schema
applied via the db_conn fixture in conftest.py.
"""

from __future__ import annotations

import csv
import json

import pytest
from click.testing import CliRunner

from sitemetrics_etl.import_calculations import main

# ---------------------------------------------------------------------------
# Shared constants
# ---------------------------------------------------------------------------

BATCH = [
    {
        "Location": "Shangri-La, North Lake",
        "TreeCanopy2021": 42.5,
        "Water2021": 3.0,
        "TreeCanopy2023": 40.0,
    },
    {"Location": "Lake Side", "Snow2020": 1.5},
    {"Location": "Atlantis", "Rock2022": 9.0},
    {"Location": "", "Rock2022": 9.0},
]


def _insert_site(conn, name, slug):
    row = conn.execute(
        "INSERT INTO site (name, slug) VALUES (%s, %s) RETURNING id",
        (name, slug),
    ).fetchone()
    conn.commit()
    return row[0]


def _write_batch(tmp_path, batch=BATCH):
    path = tmp_path / "CALCULATIONS.json"
    path.write_text(json.dumps(batch), encoding="utf-8")
    return path


def _run(tmp_path, *args):
    runner = CliRunner()
    return runner.invoke(
        main,
        [
            "--rejects-path", str(tmp_path / "rejects.csv"),
            "--reports-dir", str(tmp_path / "reports"),
            "--run-id", "test-run",
            *args,
        ],
        catch_exceptions=False,
    )


@pytest.fixture
def seeded(db_conn):
    conn, dsn = db_conn
    shangri_la = _insert_site(conn, "Shangri-La North Lake", "shangri-la-north-lake")
    lake_side = _insert_site(conn, "Lake Side", "lake-side")
    return conn, dsn, shangri_la, lake_side


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------

class TestCalculationsImport:
    def test_imports_matched_rows(self, seeded, tmp_path):
        conn, dsn, shangri_la, lake_side = seeded
        batch_path = _write_batch(tmp_path)

        result = _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)

        assert result.exit_code == 0, result.output
        rows = conn.execute(
            "SELECT site_id, year, tree_canopy, water, snow FROM yearly_metrics ORDER BY site_id, year"
        ).fetchall()
        assert rows == [
            (shangri_la, 2021, 42.5, 3.0, None),
            (shangri_la, 2023, 40.0, None, None),
            (lake_side, 2020, None, None, 1.5),
        ]

    def test_report_written(self, seeded, tmp_path):
        _, dsn, _, _ = seeded
        batch_path = _write_batch(tmp_path)

        _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)

        report = json.loads((tmp_path / "reports" / "test-run.json").read_text())
        assert report["mode"] == "calculations"
        assert report["dry_run"] is False
        assert report["result"]["created"] == 3
        assert report["result"]["skipped"] == 9
        assert report["result"]["unmatched_locations"] == ["Atlantis", "Location 4"]
        assert report["result"]["success"] is True

    def test_unmatched_rows_rejected(self, seeded, tmp_path):
        _, dsn, _, _ = seeded
        batch_path = _write_batch(tmp_path)

        _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)

        with open(tmp_path / "rejects.csv", newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert [r["_row"] for r in rows] == ["3", "4"]
        assert {r["_reject_reason"] for r in rows} == {"unmatched_location"}

    def test_rerun_is_idempotent(self, seeded, tmp_path):
        conn, dsn, _, _ = seeded
        batch_path = _write_batch(tmp_path)

        _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)
        before = conn.execute(
            "SELECT site_id, year, tree_canopy, water, snow FROM yearly_metrics ORDER BY site_id, year"
        ).fetchall()
        conn.commit()
        result = _run(
            tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn, "--count-updates"
        )
        after = conn.execute(
            "SELECT site_id, year, tree_canopy, water, snow FROM yearly_metrics ORDER BY site_id, year"
        ).fetchall()

        assert result.exit_code == 0, result.output
        assert after == before
        report = json.loads((tmp_path / "reports" / "test-run.json").read_text())
        assert report["result"]["created"] == 0
        assert report["result"]["updated"] == 3

    def test_unmatched_threshold_exits_non_zero(self, seeded, tmp_path):
        _, dsn, _, _ = seeded
        batch_path = _write_batch(tmp_path)

        result = _run(
            tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn,
            "--max-unmatched-rate", "0.25",
        )

        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# Dry run / validate-only
# ---------------------------------------------------------------------------

class TestNoWriteModes:
    def test_dry_run_writes_nothing(self, seeded, tmp_path):
        conn, dsn, _, _ = seeded
        batch_path = _write_batch(tmp_path)

        result = _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn, "--dry-run")

        assert result.exit_code == 0, result.output
        assert "[dry-run] 3 write(s) not sent." in result.output
        count = conn.execute("SELECT count(*) FROM yearly_metrics").fetchone()[0]
        assert count == 0

    def test_validate_only_needs_no_store(self, tmp_path):
        batch_path = _write_batch(tmp_path)

        result = _run(tmp_path, "--batch-path", str(batch_path), "--validate-only")

        assert result.exit_code == 0, result.output
        assert "Row 4: Missing Location name" in result.output
        assert "4 locations read" in result.output
        assert not (tmp_path / "reports").exists()


# ---------------------------------------------------------------------------
# Fatal paths
# ---------------------------------------------------------------------------

class TestFatalPaths:
    def test_malformed_batch(self, seeded, tmp_path):
        conn, dsn, _, _ = seeded
        batch_path = tmp_path / "CALCULATIONS.json"
        batch_path.write_text('{"Location": "Lake Side"}', encoding="utf-8")

        result = _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)

        assert result.exit_code == 1
        assert "FATAL" in result.output
        count = conn.execute("SELECT count(*) FROM yearly_metrics").fetchone()[0]
        assert count == 0

    def test_missing_batch_file(self, tmp_path):
        result = _run(tmp_path, "--batch-path", str(tmp_path / "nope.json"), "--validate-only")
        assert result.exit_code == 1

    def test_empty_catalog(self, db_conn, tmp_path):
        _, dsn = db_conn
        batch_path = _write_batch(tmp_path)

        result = _run(tmp_path, "--batch-path", str(batch_path), "--db-dsn", dsn)

        assert result.exit_code == 1
        assert "No sites found in database" in result.output

    def test_store_flags_required(self, tmp_path):
        batch_path = _write_batch(tmp_path)
        result = _run(tmp_path, "--batch-path", str(batch_path))
        assert result.exit_code == 1
        assert "exactly one of --api-url or --db-dsn" in result.output
