#!/usr/bin/env python3
"""
Trail Ingestion Orchestrator

Command-line entry point for running the trail ingestion pipeline, suitable
for cron or any other scheduler. Each invocation performs exactly one
ingestion run and exits with a status code reflecting its outcome.

Usage:
    # Ingest all routes in a bounding box (south west north east)
    python scripts/orchestrator.py bbox 45.20 25.40 45.50 25.70 --write-db

    # Ingest routes around a point
    python scripts/orchestrator.py nearby 45.35 25.54 --radius-km 10

    # Ingest a configured region preset
    python scripts/orchestrator.py region bucegi --write-db

    # Ingest a single route relation by its OSM id
    python scripts/orchestrator.py relation 123456 --write-db

Features:
- In-memory dry runs unless --write-db is given
- Pre-flight database connectivity check
- Run statistics and absorbed failures logged at the end of every run
- Exit code 0 on success, 1 on failure
"""

from __future__ import annotations

import argparse
import os
import sys
import time

from dotenv import load_dotenv

# Add project root to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

# Load .env before local imports that need env vars
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from sqlalchemy import text

from config.settings import config
from scripts.collectors.overpass_client import OverpassClient
from scripts.database.trail_store import (
    DatabaseTrailStore,
    InMemoryTrailStore,
    get_postgres_engine,
)
from scripts.domain.exceptions import TrailIngestError
from scripts.domain.models import IngestionRun
from scripts.ingestion.pipeline import IngestionPipeline
from utils.logging import setup_ingestion_logging


class TrailIngestionOrchestrator:
    """Build the pipeline for one invocation and report its outcome."""

    def __init__(self, write_db: bool = False, log_level: str | None = None):
        """
        Args:
            write_db: Persist trails to PostgreSQL instead of an in-memory store
            log_level: Overrides config.LOG_LEVEL
        """
        self.logger = setup_ingestion_logging(log_level)
        self.write_db = write_db
        self.start_time = time.time()
        self.engine = None
        self.pipeline: IngestionPipeline | None = None

    def _pre_flight_checks(self) -> bool:
        """
        Verify database connectivity when trails will be written to the database.

        Returns:
            bool: True if all checks pass, False otherwise
        """
        if not self.write_db:
            self.logger.info("Running without --write-db: trails are kept in memory only")
            return True

        try:
            self.engine = get_postgres_engine()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            self.logger.info("✅ Database connectivity verified")
        except Exception as e:
            self.logger.error(f"❌ Database connectivity check failed: {e!s}")
            self.logger.error("Please verify database configuration and connectivity")
            return False
        return True

    def build_pipeline(self) -> IngestionPipeline | None:
        """Create the pipeline, or None when pre-flight checks fail."""
        if not self._pre_flight_checks():
            return None

        if self.write_db:
            store = DatabaseTrailStore(self.engine, self.logger)
            store.ensure_table_exists()
        else:
            store = InMemoryTrailStore(self.logger)

        self.pipeline = IngestionPipeline(OverpassClient(), store=store)
        return self.pipeline

    def report(self, run: IngestionRun) -> bool:
        """Log the run summary and every absorbed failure."""
        elapsed = time.time() - self.start_time
        if run.success:
            self.logger.info(f"🎉 Ingestion finished in {elapsed:.1f} seconds")
        else:
            self.logger.error(f"💥 Ingestion failed after {elapsed:.1f} seconds: {run.error_message}")

        self.logger.info(f"📊 Summary: {run.summary()}")
        for failure in run.errors:
            self.logger.warning(
                f"  [{failure.stage}] route {failure.external_id}: "
                f"{failure.error_type}: {failure.message}"
            )
        return run.success

    def run(self, args: argparse.Namespace) -> bool:
        """
        Dispatch the parsed command to the pipeline.

        Returns:
            bool: True if the ingestion succeeded
        """
        pipeline = self.build_pipeline()
        if pipeline is None:
            return False

        self.logger.info(f"🚀 Starting trail ingestion: {args.command}")

        if args.command == "bbox":
            run = pipeline.ingest_bounding_box(args.south, args.west, args.north, args.east)
        elif args.command == "nearby":
            run = pipeline.ingest_nearby(args.latitude, args.longitude, args.radius_km)
        elif args.command == "region":
            if args.region.strip().lower() not in config.INGEST_REGIONS:
                self.logger.error(
                    f"Unknown region '{args.region}'. Known regions: {sorted(config.INGEST_REGIONS)}"
                )
                return False
            run = pipeline.ingest_region(args.region)
        else:
            try:
                trail = pipeline.ingest_by_id(args.external_id)
            except TrailIngestError as e:
                self.logger.error(f"❌ Failed to ingest route {args.external_id}: {e}")
                return False
            self.logger.info(
                f"✅ Stored trail '{trail.name}' ({trail.id}): {trail.distance_km:.2f} km, "
                f"{trail.difficulty.value if trail.difficulty else 'unknown'}"
            )
            return True

        return self.report(run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trail ingestion from OpenStreetMap route relations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s bbox 45.20 25.40 45.50 25.70 --write-db   # Ingest a bounding box
  %(prog)s nearby 45.35 25.54 --radius-km 5          # Ingest around a point
  %(prog)s region bucegi                             # Ingest a region preset
  %(prog)s relation 123456 --write-db                # Ingest one route

Notes:
  - Without --write-db trails are kept in memory (useful for dry runs)
  - Requests to the Overpass API are rate limited and retried with backoff
  - Check logs/ingestion.log for detailed progress
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--write-db",
        action="store_true",
        help="Write trails to the PostgreSQL database",
    )
    common.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    bbox = subparsers.add_parser(
        "bbox", parents=[common], help="Ingest routes inside a bounding box"
    )
    bbox.add_argument("south", type=float)
    bbox.add_argument("west", type=float)
    bbox.add_argument("north", type=float)
    bbox.add_argument("east", type=float)

    nearby = subparsers.add_parser(
        "nearby", parents=[common], help="Ingest routes around a point"
    )
    nearby.add_argument("latitude", type=float)
    nearby.add_argument("longitude", type=float)
    nearby.add_argument("--radius-km", type=float, default=10.0)

    region = subparsers.add_parser(
        "region", parents=[common], help="Ingest a configured region preset"
    )
    region.add_argument("region", help=f"One of: {', '.join(sorted(config.INGEST_REGIONS))}")

    relation = subparsers.add_parser(
        "relation", parents=[common], help="Ingest a single route relation"
    )
    relation.add_argument("external_id", type=int)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main function for the orchestrator script.

    Returns:
        int: Exit code (0 for success, 1 for failure)
    """
    args = build_parser().parse_args(argv)

    try:
        orchestrator = TrailIngestionOrchestrator(
            write_db=args.write_db, log_level=args.log_level
        )
        return 0 if orchestrator.run(args) else 1

    except KeyboardInterrupt:
        print("\n🛑 Ingestion interrupted by user")
        return 1
    except Exception as e:
        print(f"💥 Orchestrator failed with unexpected error: {e!s}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
