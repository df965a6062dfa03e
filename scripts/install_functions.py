#!/usr/bin/env python3
"""Install the analytics and entity-search stored functions into Postgres."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from spending_analyst.core.config import get_settings  # noqa: E402  (import after sys.path manipulation)
from spending_analyst.core.logger import get_logger, init_logging, timeit  # noqa: E402
from spending_analyst.db.engine import create_sync_engine  # noqa: E402

SQL_PATH = PROJECT_ROOT / "spending_analyst" / "db" / "sql" / "analytics_functions.sql"

logger = get_logger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--sql", type=Path, default=SQL_PATH, help="SQL file to apply")
    parser.add_argument("--database-url", help="Override DATABASE_URL for this run")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_logging(level=args.log_level or settings.log_level, log_dir=settings.log_dir)

    script = args.sql.read_text(encoding="utf-8")
    engine = create_sync_engine(args.database_url)
    logger.info("Applying %s to %s", args.sql.name, settings.database.masked_url)

    # The file holds several dollar-quoted bodies; hand it to the driver unparsed.
    with timeit("Install stored functions", logger=logger):
        raw = engine.raw_connection()
        try:
            with raw.cursor() as cursor:
                cursor.execute(script)
            raw.commit()
        except Exception:
            logger.exception("Failed to apply %s", args.sql.name)
            raw.rollback()
            raise
        finally:
            raw.close()

    print(f"✅ Installed stored functions from {args.sql.name}")


if __name__ == "__main__":
    main()
