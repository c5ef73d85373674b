# SPDX-License-Identifier: GPL-3.0-or-later
"""
Media extraction pipeline for iosextractor.

Walks the camera roll part of the backup catalog in relativePath order and
decides, per record, whether to copy it, or why it is skipped:

    classify path -> decode metadata -> trash filter -> since filter
        -> resolve destination (dedup) -> copy -> stamp timestamps

Running the pipeline again over the same backup and output directory copies
nothing new: every previously copied file resolves to a duplicate.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import re
import sys
import tempfile
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Set

from tqdm import tqdm

from .classifier import REASON_UNRECOGNIZED_LAYOUT, classify_path
from .database import (
    CatalogRecord,
    build_trash_set,
    count_catalog_records,
    iter_catalog_records,
    open_catalog,
)
from .errors import CopyError, ExtractionError
from .file_operations import copy_file_exclusive, resolve_destination
from .metadata import MediaTimestamps, decode_timestamps
from .stamping import TimestampStamper, get_timestamp_stamper, set_file_timestamps
from .utils import SinceDate, is_older_than_since, print_verbose

TEMP_DIR_PREFIX = "iOS-Backup-Extractor-"

# Attempts to re-resolve a destination that appeared between check and copy
MAX_RESOLVE_ATTEMPTS = 5


class Outcome(str, Enum):
    """What happened to a catalog record."""

    COPY = "copy"
    SKIP_TRASHED = "trashed"
    SKIP_DUPLICATE = "duplicate"
    SKIP_INELIGIBLE = "ineligible"
    SKIP_OLDER_THAN_SINCE = "older-than-since"


OUTCOME_MARKERS = {
    Outcome.SKIP_TRASHED: "<IN_TRASH>",
    Outcome.SKIP_DUPLICATE: "<DUPLICATE>",
}


class ExtractionConfig(NamedTuple):
    """Validated extraction options."""

    output_dir: Path
    directory_layout: str = "ym"
    since_date: Optional[SinceDate] = None
    include_trashed: bool = False
    dry_run: bool = False
    prepend_date: bool = False
    date_separator: str = "dash"
    verbose: bool = False


class ExtractionDecision(NamedTuple):
    """Outcome for one catalog record."""

    file_id: str
    relative_path: str
    outcome: Outcome
    filename: Optional[str] = None
    destination: Optional[Path] = None
    index: Optional[int] = None


def get_storage_key(file_id: str) -> str:
    """
    Map a catalog fileID to its blob location relative to the backup root.

    Raises:
        ExtractionError: for fileIDs that do not name a storage subdirectory
    """
    if not file_id or not re.match(r"^\w\w.+$", file_id):
        raise ExtractionError(f"Unexpected fileID: {file_id}")
    return f"{file_id[:2]}/{file_id}"


def format_progress_line(
    index: int, storage_key: str, filename: str, outcome_text: str
) -> str:
    return f"{index:3d}. ({storage_key}) {filename:<13} → {outcome_text}"


def summarize_decisions(decisions: List[ExtractionDecision]) -> Dict[Outcome, int]:
    """Count decisions per outcome."""
    counts = Counter(decision.outcome for decision in decisions)
    return {outcome: counts.get(outcome, 0) for outcome in Outcome}


class MediaExtractor:
    """
    Extracts camera roll media from one backup into an output directory.

    The trash set is built once per run and owned by the extractor; nothing
    is cached between runs or between extractor instances.
    """

    def __init__(
        self,
        backup_dir: Path,
        config: ExtractionConfig,
        stamper: Optional[TimestampStamper] = None,
    ):
        self.backup_dir = Path(backup_dir)
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.stamper = stamper or get_timestamp_stamper()
        self.trashed_paths: Set[str] = set()
        # Dry run only: destinations claimed so far, mapped to their blob
        self.planned_destinations: Dict[Path, Path] = {}
        self.file_index = 1

    def run(self) -> List[ExtractionDecision]:
        """
        Run the extraction over the whole catalog.

        Returns:
            One decision per camera roll catalog record

        Raises:
            ExtractionError: on any fatal failure; files copied before the
                failure are left in place
        """
        config = self.config
        if config.dry_run:
            tqdm.write(
                'Info: "--dry" mode enabled. No files will be copied.', file=sys.stderr
            )

        decisions = []
        self.file_index = 1
        self.planned_destinations = {}

        with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as temp_dir:
            print_verbose(f"Info: Temp directory: {temp_dir}", config.verbose)

            self.trashed_paths = build_trash_set(
                self.backup_dir, Path(temp_dir), config.verbose
            )

            with open_catalog(self.backup_dir, Path(temp_dir)) as catalog:
                total = count_catalog_records(catalog)

                with tqdm(
                    iter_catalog_records(catalog),
                    total=total,
                    desc="Extracting",
                    unit="files",
                    leave=False,
                    dynamic_ncols=True,
                    disable=None,
                ) as pbar:
                    for record in pbar:
                        decisions.append(self.process_record(record))

        return decisions

    def _emit(self, storage_key: str, filename: str, outcome_text: str) -> int:
        index = self.file_index
        tqdm.write(format_progress_line(index, storage_key, filename, outcome_text))
        self.file_index += 1
        return index

    def _emit_skip(self, storage_key: str, filename: str, outcome: Outcome) -> int:
        marker = OUTCOME_MARKERS[outcome]
        return self._emit(storage_key, filename, f"{marker}, Skipping...")

    def process_record(self, record: CatalogRecord) -> ExtractionDecision:
        """Decide on, and carry out, the extraction of one catalog record."""
        config = self.config
        is_trashed = record.relative_path in self.trashed_paths

        verdict = classify_path(
            record.relative_path,
            mark_deleted=is_trashed and config.include_trashed,
        )
        if not verdict.eligible:
            if verdict.reason == REASON_UNRECOGNIZED_LAYOUT:
                print_verbose(
                    f'Warning: Cannot determine filename from '
                    f'"{record.relative_path}"\n'
                    f"\tfileID: {record.file_id}",
                    config.verbose,
                )
            return ExtractionDecision(
                record.file_id, record.relative_path, Outcome.SKIP_INELIGIBLE
            )

        filename = verdict.filename
        storage_key = get_storage_key(record.file_id)
        timestamps = decode_timestamps(record.file_blob, record.file_id, config.verbose)

        if is_trashed and not config.include_trashed:
            index = self._emit_skip(storage_key, filename, Outcome.SKIP_TRASHED)
            return ExtractionDecision(
                record.file_id,
                record.relative_path,
                Outcome.SKIP_TRASHED,
                filename=filename,
                index=index,
            )

        if (
            config.since_date
            and timestamps.last_modified is not None
            and is_older_than_since(timestamps.last_modified, config.since_date)
        ):
            print_verbose(
                f"Info: Skipping {filename} ({storage_key}), last modified "
                f"{timestamps.last_modified:%Y-%m-%d}",
                config.verbose,
            )
            return ExtractionDecision(
                record.file_id,
                record.relative_path,
                Outcome.SKIP_OLDER_THAN_SINCE,
                filename=filename,
            )

        blob_path = self.backup_dir / storage_key
        if not blob_path.is_file():
            raise ExtractionError(f'"{blob_path}" doesn\'t exist')

        destination = self._copy_to_output(blob_path, filename, timestamps)

        if destination is None:
            index = self._emit_skip(storage_key, filename, Outcome.SKIP_DUPLICATE)
            return ExtractionDecision(
                record.file_id,
                record.relative_path,
                Outcome.SKIP_DUPLICATE,
                filename=filename,
                index=index,
            )

        index = self._emit(
            storage_key, filename, destination.relative_to(self.output_dir).as_posix()
        )
        return ExtractionDecision(
            record.file_id,
            record.relative_path,
            Outcome.COPY,
            filename=filename,
            destination=destination,
            index=index,
        )

    def _resolve(self, blob_path: Path, filename: str, timestamps: MediaTimestamps):
        config = self.config
        return resolve_destination(
            blob_path,
            filename,
            timestamps.last_modified,
            self.output_dir,
            config.directory_layout,
            config.date_separator if config.prepend_date else None,
            self.planned_destinations,
        )

    def _copy_to_output(
        self, blob_path: Path, filename: str, timestamps: MediaTimestamps
    ) -> Optional[Path]:
        """
        Resolve the destination and copy the blob there.

        Returns:
            The destination path, or None for a duplicate
        """
        config = self.config

        for _ in range(MAX_RESOLVE_ATTEMPTS):
            try:
                destination = self._resolve(blob_path, filename, timestamps)
            except OSError as e:
                raise ExtractionError(
                    f"Cannot resolve destination for {filename}: {e}"
                ) from e

            if destination is None:
                return None

            if config.dry_run:
                self.planned_destinations[destination] = blob_path
                return destination

            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise CopyError(
                    f"Cannot create directory {destination.parent}: {e}"
                ) from e

            try:
                copy_file_exclusive(blob_path, destination)
            except FileExistsError:
                # Appeared after resolution; resolve again against the new state
                continue
            except OSError as e:
                raise CopyError(
                    f"File copy failed: {blob_path} -> {destination}: {e}"
                ) from e

            set_file_timestamps(destination, timestamps, self.stamper, config.verbose)
            return destination

        raise CopyError(f"Could not find a free destination name for {filename}")


def extract_media_files(
    backup_dir: Path,
    config: ExtractionConfig,
    stamper: Optional[TimestampStamper] = None,
) -> List[ExtractionDecision]:
    """Extract camera roll media from `backup_dir` according to `config`."""
    return MediaExtractor(backup_dir, config, stamper).run()
