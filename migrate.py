#!/usr/bin/env python3
"""
Azure DevOps Wiki to Confluence Migration Tool - Main CLI Entry Point

This script provides the command-line interface for publishing a cloned
Azure DevOps wiki repository to a Confluence space, validating page titles
before anything is written, and previewing the converted pages locally.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to Python path for relative imports
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

# Project imports
from config_loader import ConfigLoader, get_nested
from confluence_client import ConfluenceApiError, ConfluenceAuthError
from logger import log_config, log_section, setup_logging
from orchestrator import MigrationOrchestrator, MigrationReport
from orchestrator.migration_report import STATUS_CONFLICTS, STATUS_FAILED

# Version
__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'

# Commands that talk to Confluence
REMOTE_COMMANDS = ('migrate', 'validate')


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Migrate an Azure DevOps wiki to Confluence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check titles against the target space without publishing
  python migrate.py validate

  # Prefix conflicting titles with the project name
  python migrate.py fix-names

  # Publish the whole wiki
  python migrate.py migrate

  # Publish one page and its children under another parent
  python migrate.py migrate --single "Getting Started" --parent 123456

  # Fix conflicts in-process and publish
  python migrate.py migrate --auto-fix

  # Offline HTML preview
  python migrate.py --output ./preview local --wiki-path ../MyProject.wiki
        """
    )

    parser.add_argument(
        '--config',
        default=None,
        help=f'Path to configuration file (default: {DEFAULT_CONFIG_PATH} when present)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )
    parser.add_argument(
        '--output',
        help='Output directory for the local preview'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='command')
    subparsers.required = True

    migrate_parser = subparsers.add_parser('migrate', help='Validate and publish the wiki to Confluence')
    migrate_parser.add_argument(
        '--single',
        metavar='PAGE',
        help='Publish only the subtree rooted at this page title'
    )
    migrate_parser.add_argument(
        '--parent',
        metavar='ID',
        help='Confluence page id to publish under (overrides confluence.parent_page_id)'
    )
    migrate_parser.add_argument(
        '--auto-fix',
        action='store_true',
        help='Apply page name fixes for conflicts and re-validate before publishing'
    )
    migrate_parser.add_argument(
        '--clean',
        action='store_true',
        help='Delete existing child pages of the parent before publishing'
    )

    local_parser = subparsers.add_parser('local', help='Write an offline HTML preview')
    local_parser.add_argument(
        '--wiki-path',
        metavar='PATH',
        help='Wiki repository root (overrides wiki.root_dir)'
    )

    subparsers.add_parser('validate', help='Check page titles for conflicts without publishing')
    subparsers.add_parser('fix-names', help='Generate page name fixes for queued conflicts')

    return parser


def load_configuration(args: argparse.Namespace) -> dict:
    """Build the configuration from the file (or environment) and the CLI arguments."""
    config_path = args.config or DEFAULT_CONFIG_PATH
    if os.path.exists(config_path):
        config = ConfigLoader.load(config_path)
    elif args.config:
        raise FileNotFoundError(f"Configuration file not found: {args.config}")
    else:
        config = ConfigLoader.from_environment()

    config = ConfigLoader.merge_with_args(config, args)
    config = ConfigLoader.resolve_paths(config)
    ConfigLoader.validate(config, require_confluence=args.command in REMOTE_COMMANDS)
    return config


def run_command(config: dict, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Execute the selected command and print its report."""
    orchestrator = MigrationOrchestrator(config)

    if args.command == 'migrate':
        report = orchestrator.run_migration(
            single=args.single,
            parent_id=args.parent,
            clean=args.clean,
            auto_fix=args.auto_fix
        )
    elif args.command == 'validate':
        report = orchestrator.validate_only()
    elif args.command == 'fix-names':
        report = orchestrator.fix_names()
    else:
        report = orchestrator.run_local(output=args.output)

    report_generator = MigrationReport(logger)
    print("\n" + report_generator.format_console_report(report))

    status = report.get('summary', {}).get('status')
    if status == STATUS_CONFLICTS:
        logger.warning("Unresolved page title conflicts remain")
        return 1
    if status == STATUS_FAILED:
        logger.error(f"{args.command} failed: {report.get('error')}")
        return 1

    logger.info(f"{args.command} completed with status {status}")
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args()

    load_dotenv()

    try:
        config = load_configuration(args)

        setup_logging(
            verbosity=args.verbose,
            log_file=get_nested(config, 'logging.file'),
            level=get_nested(config, 'logging.level')
        )
        logger = logging.getLogger('wiki_confluence_migrator.cli')

        log_section("Azure DevOps Wiki to Confluence Migration Tool")
        logger.info(f"Version: {__version__}")
        log_config(config)

        return run_command(config, args, logger)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except ConfluenceAuthError as e:
        print(f"ERROR: Confluence authentication failed: {e}", file=sys.stderr)
        return 1
    except ConfluenceApiError as e:
        print(f"ERROR: Confluence request failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nMigration interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logging.getLogger('wiki_confluence_migrator.cli').debug("Unhandled error", exc_info=True)
        print(f"ERROR: Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
