#!/usr/bin/env python3
"""
Install a workflow catalog into the template tables.

Loads a catalog YAML (the bundled llc_formation catalog by default),
validates it, creates missing tables when asked, and upserts products,
steps, fields and document types by code.  Safe to run repeatedly.

Usage:
  python3 scripts/install_catalog.py [--catalog PATH] [--db-url URL] [--create-tables]

The database URL defaults to the DATABASE_URL environment variable.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_DB_URL = os.environ.get("DATABASE_URL", "sqlite:///dossiers.db")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Install a workflow catalog into the database")
    p.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Catalog YAML file (default: bundled llc_formation catalog)",
    )
    p.add_argument(
        "--db-url",
        default=DEFAULT_DB_URL,
        help=f"Database URL (default: {DEFAULT_DB_URL!r}, or DATABASE_URL)",
    )
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before installing",
    )
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from dossier_config.installer import install_catalog
    from dossier_config.loader import load_bundled_catalog, load_catalog
    from dossier_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from dossier_kernel.domain.identity import SYSTEM_CALLER_ID
    from dossier_kernel.logging_config import configure_logging

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        catalog = (
            load_catalog(args.catalog) if args.catalog else load_bundled_catalog("llc_formation")
        )
    except (OSError, KeyError, ValueError) as exc:
        print(f"  ERROR: could not load catalog: {exc}", file=sys.stderr)
        return 1

    print(f"  catalog:  {catalog.catalog_id} v{catalog.version}")
    print(f"  checksum: {catalog.checksum[:16]}...")

    init_engine_from_url(args.db_url, echo=False)
    if args.create_tables:
        create_tables()

    with session_scope() as session:
        summary = install_catalog(session, catalog, SYSTEM_CALLER_ID)

    if not summary.changed:
        print("  Already up to date.")
    for label, bucket in (
        ("created", summary.created),
        ("updated", summary.updated),
        ("removed", summary.removed),
    ):
        for kind, count in sorted(bucket.items()):
            print(f"  {label:8} {kind}: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
