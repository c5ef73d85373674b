#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
"""
iOS Backup Extractor - media extraction script

This script extracts photos and videos from an unencrypted local iOS device
backup (iTunes, Apple Devices or Finder):
- Accepts a backup directory or a device serial number
- Organizes output by month, day or flat
- Incremental: files already present in the output directory are detected
  by content and skipped, so the same command can be re-run after every backup
- Restores the original creation/modification times of copied files

Copyright (C) 2024 iOS Backup Extractor Contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.
"""

import argparse
import sys
from pathlib import Path

from . import __version__
from .core.backups import (
    display_backup_list,
    display_backup_list_long,
    enumerate_backups,
    read_backup_descriptor,
    resolve_backup_argument,
    validate_backup,
)
from .core.errors import ExtractionError
from .core.extractor import (
    ExtractionConfig,
    Outcome,
    extract_media_files,
    summarize_decisions,
)
from .core.file_operations import DIRECTORY_LAYOUTS, PREPEND_DATE_FORMATS
from .core.utils import print_verbose, resolve_since_argument

APP_NAME = "ios-backup-extractor"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description=(
            "Extract media files from an unencrypted local backup of an iOS "
            "device made by iTunes, the Apple Devices application or Finder."
        ),
        epilog="""
Examples:
  List all available iOS backups to determine device serial numbers:
      %(prog)s --list

  Extract all media files of the device 'ABC123ABC123' into an existing
  directory 'My Photos and Videos':
      %(prog)s ABC123ABC123 -o "My Photos and Videos"
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "backup",
        nargs="?",
        metavar="DEVICE_SERIAL_ID | DEVICE_BACKUP_DIR",
        help="Device serial number or path to a device backup directory",
    )
    parser.add_argument(
        "-o", "--out", type=Path, help="Existing output directory for media files"
    )
    parser.add_argument(
        "-l", "--list", action="store_true", help="List available iOS device backups"
    )
    parser.add_argument(
        "--list-long", action="store_true", help="Like --list but prints more details"
    )
    parser.add_argument(
        "-f",
        "--format",
        type=str.lower,
        choices=DIRECTORY_LAYOUTS,
        default="ym",
        help="Output subdirectories: ym = YYYY-MM (default), ymd = YYYY-MM-DD, "
        "flat = none",
    )
    parser.add_argument(
        "-s",
        "--since",
        metavar="DATE",
        help="Extract only files created since DATE (YYYY-MM-DD, last-week "
        "or last-month)",
    )
    parser.add_argument(
        "--add-trash", action="store_true", help="Extract also items marked as deleted"
    )
    parser.add_argument(
        "--prepend-date",
        action="store_true",
        help="Prepend the media creation date to each exported filename",
    )
    parser.add_argument(
        "--prepend-date-separator",
        type=str.lower,
        choices=sorted(PREPEND_DATE_FORMATS),
        default="dash",
        help="Separator for --prepend-date: dash (default), underscore or none",
    )
    parser.add_argument(
        "-d", "--dry", action="store_true", help="Dry run, don't copy any files"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show more information while running",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    return parser


def build_config(args: argparse.Namespace) -> ExtractionConfig:
    """Validate extraction arguments into an ExtractionConfig."""
    if args.out is None:
        raise ExtractionError("--out OUT_DIRECTORY option not specified.")
    if not args.out.is_dir():
        raise ExtractionError(f"'{args.out}' is not a valid directory.")

    since_date = None
    if args.since is not None:
        try:
            since_date = resolve_since_argument(args.since)
        except ValueError as e:
            raise ExtractionError(str(e)) from e
        print_verbose(
            "Info: Extracting files since {:04d}-{:02d}-{:02d}".format(*since_date),
            args.verbose,
        )

    return ExtractionConfig(
        output_dir=args.out,
        directory_layout=args.format,
        since_date=since_date,
        include_trashed=args.add_trash,
        dry_run=args.dry,
        prepend_date=args.prepend_date,
        date_separator=args.prepend_date_separator,
        verbose=args.verbose,
    )


def list_backups(long_format: bool = False, verbose: bool = False) -> None:
    backups = enumerate_backups(verbose=verbose)
    if long_format:
        display_backup_list_long(backups)
    else:
        display_backup_list(backups)


def run_extraction(args: argparse.Namespace) -> None:
    config = build_config(args)

    backup_dir = resolve_backup_argument(args.backup, verbose=args.verbose)
    validate_backup(read_backup_descriptor(backup_dir))

    decisions = extract_media_files(backup_dir, config)
    counts = summarize_decisions(decisions)

    print()
    print(
        f"{'Would copy' if config.dry_run else 'Copied'}: {counts[Outcome.COPY]}, "
        f"duplicates: {counts[Outcome.SKIP_DUPLICATE]}, "
        f"in trash: {counts[Outcome.SKIP_TRASHED]}, "
        f"older than --since: {counts[Outcome.SKIP_OLDER_THAN_SINCE]}"
    )


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_long:
        args.list = True

    if not args.list and not args.backup:
        parser.print_help()
        return 1

    try:
        if args.list:
            list_backups(args.list_long, args.verbose)
        else:
            run_extraction(args)
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(
            "\nExtraction interrupted. Files copied so far are kept; run the same "
            "command again to continue.",
            file=sys.stderr,
        )
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
