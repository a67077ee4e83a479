#!/usr/bin/env python3
"""
Entry point for the crypto market data collector.

Usage:
  python -m collector                   # Run all phases
  python -m collector --no-scrape       # Skip the browser scrape
  python -m collector --force-scrape    # Scrape even if the OHLC file exists
  python -m collector --force-backfill  # Re-collect CoinGecko history on a recurring run
  python -m collector --config my.yml   # Use another config file

Exit status is 1 when configuration is invalid or an output file cannot be
created; per-token and per-batch failures are logged and do not change it.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

# Ensure repo root on path
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

# Load environment
from dotenv import load_dotenv
load_dotenv()

from data_layer.storage import StorageError

from .config import ConfigError, load_config
from .logging_setup import configure_logging
from .orchestrator import CollectionOrchestrator
from .ui import ProgressReporter


def run(config_path: Path | None = None, scrape: bool = True, force_scrape: bool = False,
        force_backfill: bool = False, verbose: bool = False) -> int:
    """Load config, run every phase, return the process exit code."""
    configure_logging(verbose=verbose)
    reporter = ProgressReporter()
    try:
        config = load_config(config_path)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        reporter.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(log_path=config.outputs.log_file, verbose=verbose)
    if not scrape:
        config.scrape.enabled = False

    orchestrator = CollectionOrchestrator(
        config, reporter=reporter, force_scrape=force_scrape, force_backfill=force_backfill
    )
    try:
        orchestrator.run()
    except StorageError as e:
        logger.error(f"Aborting run: {e}")
        reporter.error(f"Aborting run: {e}")
        return 1
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crypto market data collector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML config file (default: configs/collector.yml if present)",
    )
    parser.add_argument(
        "--no-scrape",
        action="store_true",
        help="Skip the CoinMarketCap page scrape",
    )
    parser.add_argument(
        "--force-scrape",
        action="store_true",
        help="Scrape history even if the OHLC file already exists",
    )
    parser.add_argument(
        "--force-backfill",
        action="store_true",
        help="Collect CoinGecko history even when a previous run already did",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    sys.exit(run(
        config_path=args.config,
        scrape=not args.no_scrape,
        force_scrape=args.force_scrape,
        force_backfill=args.force_backfill,
        verbose=args.verbose,
    ))


if __name__ == "__main__":
    main()
