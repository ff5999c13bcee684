#!/usr/bin/env python3
"""
OCO-2 Fluorescence Downloader CLI

Command-line interface for walking the OCO-2 IMAP-DOAS archive and appending
in-box fluorescence soundings to a CSV table.

Usage examples:
    # Download everything from today back to the configured start date
    oco-fluorescence run --config oco_config.yaml

    # Process a single date without touching the output table
    oco-fluorescence date 2020-01-15 --no-write

    # Show the archive listing URL for a date
    oco-fluorescence listing-url 2020-01-15
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict

from .config_manager import OCOConfig
from .downloaders.oco_downloader import OCODownloader
from .listing import RemoteListingResolver
from .logging_utils import OCOError, setup_oco_logging


def _add_common_arguments(parser):
    parser.add_argument(
        '--config', '-c',
        help='Path to YAML or JSON configuration file'
    )
    parser.add_argument(
        '--working-dir',
        help='Directory for ledgers, output table and scratch file'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Logging level (default: from configuration, INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Optional log file path'
    )
    parser.add_argument(
        '--no-write',
        action='store_true',
        help='Extract soundings but do not append them to the output table'
    )
    parser.add_argument(
        '--no-check-date',
        action='store_true',
        help='Process dates even if already recorded in the date ledger'
    )
    parser.add_argument(
        '--no-check-url',
        action='store_true',
        help='Fetch listings even if already recorded in the listing ledger'
    )
    parser.add_argument(
        '--no-check-file',
        action='store_true',
        help='Download files even if already recorded in the file ledger'
    )


def create_parser():
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog='oco-fluorescence',
        description="OCO-2 IMAP-DOAS Fluorescence Downloader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run --start-date 2019-12-31 --end-date 2020-02-01
  %(prog)s date 2020-01-15 --working-dir ./oco-download
  %(prog)s listing-url 2020-01-15
  %(prog)s create-config --output oco_config.yaml
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Process dates backwards from the end date to the start date'
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        '--start-date',
        help='Exclusive lower bound (YYYY-MM-DD). Default: 2014-09-07'
    )
    run_parser.add_argument(
        '--end-date',
        help='First date processed (YYYY-MM-DD). Default: today (UTC)'
    )
    run_parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable the progress bar'
    )

    date_parser = subparsers.add_parser(
        'date',
        help='Process a single date'
    )
    date_parser.add_argument('date', help='Date to process (YYYY-MM-DD)')
    _add_common_arguments(date_parser)

    url_parser = subparsers.add_parser(
        'listing-url',
        help='Print the archive listing URL for a date'
    )
    url_parser.add_argument('date', help='Date (YYYY-MM-DD)')
    url_parser.add_argument('--config', '-c', help='Path to YAML or JSON configuration file')

    template_parser = subparsers.add_parser(
        'create-config',
        help='Write a configuration template'
    )
    template_parser.add_argument(
        '--output', '-o',
        default='oco_config.yaml',
        help='Template path (default: oco_config.yaml)'
    )

    return parser


def build_cli_overrides(args) -> Dict[str, Any]:
    """Translate parsed arguments into configuration overrides."""
    overrides = {'processing': {}, 'pipeline': {}}

    if getattr(args, 'working_dir', None):
        overrides['processing']['working_directory'] = args.working_dir
    if getattr(args, 'log_level', None):
        overrides['processing']['log_level'] = args.log_level
    if getattr(args, 'log_file', None):
        overrides['processing']['log_file'] = args.log_file

    if getattr(args, 'start_date', None):
        overrides['pipeline']['start_date'] = args.start_date
    if getattr(args, 'end_date', None):
        overrides['pipeline']['end_date'] = args.end_date

    for flag, key in [('no_write', 'write'), ('no_check_date', 'check_date'),
                      ('no_check_url', 'check_url'), ('no_check_file', 'check_file')]:
        if getattr(args, flag, False):
            overrides['pipeline'][key] = False

    return {section: values for section, values in overrides.items() if values}


def _load_config(args) -> OCOConfig:
    config = OCOConfig(config_file=getattr(args, 'config', None), cli_args=build_cli_overrides(args))
    processing = config.get_processing_config()
    setup_oco_logging(processing['log_level'], processing.get('log_file'))
    return config


def _pipeline_flags(config: OCOConfig) -> Dict[str, bool]:
    pipeline = config.get_pipeline_config()
    return {key: pipeline[key] for key in ['write', 'check_date', 'check_url', 'check_file']}


def run_download(args) -> int:
    """Walk the archive backwards over the configured date range."""
    config = _load_config(args)
    pipeline = config.get_pipeline_config()

    downloader = OCODownloader.from_config(config)
    downloader.download_range(
        end_date=pipeline.get('end_date'),
        start_date=pipeline['start_date'],
        show_progress=not args.no_progress,
        **_pipeline_flags(config)
    )

    print(json.dumps(downloader.processing_logger.get_processing_summary(), indent=2))
    return 0


def run_single_date(args) -> int:
    """Process one date and print its outcome."""
    config = _load_config(args)

    downloader = OCODownloader.from_config(config)
    outcome = downloader.download_date(args.date, **_pipeline_flags(config))

    print(outcome if outcome is not None else "Completed")
    return 0


def print_listing_url(args) -> int:
    config = OCOConfig(config_file=args.config)
    archive = config.get_archive_config()
    resolver = RemoteListingResolver(
        base_url=archive['base_url'],
        product=archive['product'],
        day_of_year_offset=archive['day_of_year_offset'],
    )
    print(resolver.resolve_listing_url(args.date))
    return 0


def create_config_template(args) -> int:
    output_file = OCOConfig.create_template_config(args.output)
    print(f"Configuration template written: {output_file}")
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        'run': run_download,
        'date': run_single_date,
        'listing-url': print_listing_url,
        'create-config': create_config_template,
    }

    try:
        return commands[args.command](args)
    except (OCOError, ValueError, FileNotFoundError) as e:
        logging.getLogger(__name__).error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
