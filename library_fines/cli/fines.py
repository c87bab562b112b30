"""CLI entry point for the overdue fine generator.

Runs fine generation for the given circulations, or for every open overdue
circulation when none are given. Meant to be run periodically (cron).

Usage:
    python -m library_fines.cli.fines
    python -m library_fines.cli.fines --circ 1001 --circ 1002

Exit Codes:
    0 - Success: fines generated (or nothing was due)
    1 - Failure: error encountered; the failing circulation was rolled back

Logging:
    INFO level logs to both stdout and logs/fines.log
"""

import argparse
import logging
import sys

from sqlalchemy.orm import sessionmaker

from library_fines.services import make_engine
from library_fines.services.config import load_config
from library_fines.services.errors import BillingError
from library_fines.services.fine_service import FineService
from library_fines.services.logging import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate overdue fines")
    parser.add_argument(
        "--circ",
        type=int,
        action="append",
        default=[],
        help="Circulation ID to process (repeatable; default: all overdue)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the fine generator CLI.

    1. Load configuration
    2. Set up logging
    3. Generate fines for the requested or all overdue circulations

    Returns:
        Exit code: 0 for success, 1 for failure
    """
    args = parse_args(argv)

    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_file, config.log_level)
    logger.info("Starting fine generator...")

    engine = make_engine(config.database_url)
    db = sessionmaker(bind=engine)()
    try:
        service = FineService(db, requestor_id=config.requestor_id)
        if args.circ:
            created = 0
            for circ_id in args.circ:
                created += len(service.generate_fines_for_circ(circ_id))
            logger.info("Created %d fines for %d circulations", created, len(args.circ))
        else:
            results = service.generate_overdue_fines()
            logger.info(
                "Created %d fines across %d circulations",
                sum(results.values()),
                len(results),
            )
        return 0
    except KeyboardInterrupt:
        logger.warning("Fine generator interrupted by user")
        return 1
    except BillingError as e:
        logger.error("Fine generator failed: %s", e.message)
        return 1
    except Exception as e:
        logger.error(f"Fine generator failed: {e}", exc_info=True)
        return 1
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
