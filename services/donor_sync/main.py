"""
Main CLI module for the donor sync service.

Fetches donors from Stripe and every.org, applies donor_info.toml and
writes donors.toml and metrics.toml.
Example: python -m services.donor_sync --output-dir site/data
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from . import __version__
from .log_config import configure_logging, get_logger
from .models import DonorSyncError
from .orchestrator import run_donor_sync
from .report import write_report
from .settings import settings

logger = get_logger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Reconcile Stripe and every.org donors into donors.toml and metrics.toml",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m services.donor_sync
  python -m services.donor_sync --donor-info donor_info.toml --output-dir site/data
  python -m services.donor_sync --skip-stripe --every-org-csv export.csv --dry-run
        """
    )

    parser.add_argument(
        "--donor-info",
        type=str,
        help="Override file (default: DONOR_INFO_PATH or donor_info.toml)"
    )

    parser.add_argument(
        "--output-dir",
        type=str,
        help="Directory for donors.toml and metrics.toml (default: OUTPUT_DIR or .)"
    )

    parser.add_argument(
        "--every-org-csv",
        type=str,
        help="every.org CSV export; the API is used when the file does not exist"
    )

    parser.add_argument(
        "--skip-stripe",
        action="store_true",
        help="Do not fetch Stripe donors"
    )

    parser.add_argument(
        "--skip-every-org",
        action="store_true",
        help="Do not fetch every.org donors"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the run summary without writing any file"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from configuration"
    )

    parser.add_argument(
        "--log-format",
        choices=["json", "text"],
        help="Override log format from configuration"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Donor Sync {__version__}"
    )

    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI application.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = settings()
    except ValidationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 1

    if args.log_level or args.log_format:
        configure_logging(args.log_level, args.log_format)

    logger.info(
        "Service starting",
        service_name=config.service_name,
        version=__version__,
        environment=config.environment,
        log_level=config.log_level
    )

    now = datetime.now(timezone.utc)

    try:
        result = await run_donor_sync(
            now,
            config,
            donor_info_path=args.donor_info,
            every_org_csv=args.every_org_csv,
            include_stripe=not args.skip_stripe,
            include_every_org=not args.skip_every_org,
        )
    except DonorSyncError as e:
        # Nothing has been written; the previous report stays in place
        logger.error(
            "Donor sync aborted",
            error=str(e),
            error_type=type(e).__name__
        )
        return 1
    except KeyboardInterrupt:
        logger.warning("Service interrupted by user")
        return 1
    except Exception as e:
        logger.error(
            "Service failed with unexpected error",
            error=str(e),
            error_type=type(e).__name__
        )
        return 1

    if args.dry_run:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0

    try:
        donors_path, metrics_path = write_report(
            result.donors,
            result.metrics,
            args.output_dir or config.output_dir,
        )
    except OSError as e:
        logger.error("Failed to write report", error=str(e), error_type=type(e).__name__)
        return 1

    logger.info(
        "Service completed successfully",
        donors_file=str(donors_path),
        metrics_file=str(metrics_path),
        **result.metrics.to_dict()
    )
    return 0


def cli_main() -> int:
    """Synchronous entry point for setuptools console scripts."""
    return asyncio.run(main())


if __name__ == "__main__":
    sys.exit(cli_main())
