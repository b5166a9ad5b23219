#!/usr/bin/env python3
"""
Forum Import Tool - Main CLI Entry Point

This script provides the command-line interface for importing legacy forum
content (Flarum databases, CSV dumps, JSON exports) into a Discourse-style
discussion platform. Imports are resumable: re-running the same import skips
everything recorded in the identity map.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import yaml

from config_loader import PROFILES, ConfigLoader
from importers.discourse_client import DiscourseClient
from importers.identity_map import IdentityMap
from logger import log_config, log_section, setup_logging
from mappings import build_plan
from models import ImportToolError
from orchestrator import MigrationOrchestrator, MigrationReport

# Version
__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Import legacy forum content into a Discourse-style discussion platform",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Import a Flarum database
  python migrate.py --config config.yaml --profile flarum

  # Dry run: transcode everything, write inspection files, create nothing
  python migrate.py --profile flarum --dry-run --inspection-dir ./inspection

  # CSV dump with files from the environment
  CSV_USER_FILE=users.csv CSV_TOPICS=posts.csv python migrate.py --profile csv_dump

  # Resume an interrupted import (just run it again)
  python migrate.py --config config.yaml

  # Verbose logging
  python migrate.py -vv
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH} if present)'
    )

    parser.add_argument(
        '--profile',
        choices=list(PROFILES),
        help='Source mapping profile'
    )

    parser.add_argument(
        '--database-url',
        type=str,
        help='SQLAlchemy URL of the source database (flarum profile)'
    )

    parser.add_argument(
        '--import-prefix',
        type=str,
        default=None,
        help='Namespace separating imports that share one target'
    )

    parser.add_argument(
        '--batch-size',
        type=int,
        help='Records per batch (default: 1000)'
    )

    parser.add_argument(
        '--identity-map',
        type=str,
        help='Path of the identity map database (default: ./identity_map.sqlite3)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Transcode and resolve everything without creating anything'
    )

    parser.add_argument(
        '--inspection-dir',
        type=str,
        help='Directory for the dry-run before/after inspection files'
    )

    parser.add_argument(
        '--strict',
        action='store_true',
        help='Fail on leftover placeholder keys instead of logging them'
    )

    parser.add_argument(
        '--report',
        type=str,
        default=None,
        help='Write the JSON report to this path'
    )

    parser.add_argument(
        '--errors-csv',
        type=str,
        default=None,
        help='Write the failed records to this CSV file'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Also log to this file (rotated at 10MB)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    return parser


def _config_path(args: argparse.Namespace) -> Optional[str]:
    if args.config:
        return args.config
    if Path(DEFAULT_CONFIG_PATH).exists():
        return DEFAULT_CONFIG_PATH
    return None


def _install_stop_handler(orchestrator: MigrationOrchestrator, logger: logging.Logger) -> None:
    """First Ctrl-C stops after the current batch, the second one aborts."""
    def handle_interrupt(signum, frame):
        logger.warning("Interrupt received; stopping after the current batch (Ctrl-C again to abort)")
        orchestrator.request_stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handle_interrupt)


def run_migration(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """
    Run the import described by the configuration.

    Returns:
        Process exit code
    """
    dry_run = config['migration']['dry_run']
    plan = None

    try:
        plan = build_plan(config['source']['profile'], config)
        with IdentityMap.from_config(config) as identity_map:
            target = None if dry_run else DiscourseClient.from_config(config)
            orchestrator = MigrationOrchestrator(config, identity_map, target, logger)
            _install_stop_handler(orchestrator, logger)

            logger.info("Starting migration orchestration")
            report = orchestrator.orchestrate_migration(plan)
    except KeyboardInterrupt:
        logger.error("Migration interrupted by user")
        return EXIT_INTERRUPTED
    except ImportToolError as e:
        logger.error(f"Migration failed: {str(e)}")
        return EXIT_FAILED
    finally:
        if plan is not None:
            plan.close()

    report_generator = MigrationReport(logger)
    print("\n" + report_generator.format_console_report(report))

    report_path = args.report or config.get('migration', {}).get('report_path')
    if report_path:
        report_generator.export_json_report(report, report_path)

    errors_path = args.errors_csv or config.get('migration', {}).get('errors_csv_path')
    if errors_path:
        report_generator.export_csv_errors(report, errors_path)

    summary = report['summary']
    if summary['interrupted']:
        logger.warning("Migration stopped before completion; run again to resume")
        return EXIT_INTERRUPTED
    if summary['failed'] > 0:
        logger.warning(f"Migration completed with {summary['failed']} failed record(s)")
        return EXIT_FAILED

    logger.info("Migration completed successfully")
    return EXIT_OK


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    logger = setup_logging(verbosity=args.verbose, log_file=args.log_file)

    try:
        log_section("Forum Import Tool")
        logger.info(f"Version: {__version__}")

        config_path = _config_path(args)
        if config_path:
            logger.info(f"Loading configuration from {config_path}")
        config = ConfigLoader.resolve(config_path, args)
        ConfigLoader.validate(config)

        level = config.get('logging', {}).get('level')
        if level or config.get('logging', {}).get('file'):
            logger = setup_logging(
                verbosity=args.verbose,
                log_file=config['logging'].get('file'),
                level=level
            )

        log_config(config)

        return run_migration(config, args, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except yaml.YAMLError as e:
        print(f"ERROR: Invalid configuration file: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nMigration interrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
