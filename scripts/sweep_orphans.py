#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from portfolio_storage.core.config import settings
from portfolio_storage.database.db import SessionLocal
from portfolio_storage.services.maintenance_service import MaintenanceService
from portfolio_storage.storage import build_chunk_store


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Remove catalog records without chunks and chunk sets without catalog records."
    )
    parser.add_argument(
        "--stale-minutes",
        type=int,
        default=settings.orphan_stale_minutes,
        help="Leave uncatalogued chunks younger than this alone (uploads may still be running).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be removed.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    service = MaintenanceService(build_chunk_store(settings, SessionLocal))
    with SessionLocal() as db:
        report = service.sweep(db, timedelta(minutes=args.stale_minutes), dry_run=args.dry_run)

    verb = "Would remove" if args.dry_run else "Removed"
    print(f"{verb} {len(report.dangling_records)} dangling catalog records")
    for object_id in report.dangling_records:
        print(f"  record {object_id}")
    print(f"{verb} {len(report.orphan_chunk_sets)} orphaned chunk sets")
    for object_id in report.orphan_chunk_sets:
        print(f"  chunks {object_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
