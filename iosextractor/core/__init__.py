# SPDX-License-Identifier: GPL-3.0-or-later
"""
iosextractor Core Modules

Core functionality modules for the iOS backup media extractor.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

# Import main functionality for easy access
from .backups import (
    BackupDescriptor,
    display_backup_list,
    display_backup_list_long,
    enumerate_backups,
    read_backup_descriptor,
    resolve_backup_argument,
    validate_backup,
)
from .classifier import MEDIA_EXTENSIONS, PathVerdict, classify_path
from .database import (
    CatalogRecord,
    build_trash_set,
    connect_db_readonly,
    iter_catalog_records,
    open_catalog,
)
from .errors import (
    BackupError,
    CatalogError,
    CopyError,
    EncryptedBackupError,
    ExtractionError,
    UnsupportedBackupError,
)
from .extractor import (
    ExtractionConfig,
    ExtractionDecision,
    MediaExtractor,
    Outcome,
    extract_media_files,
    summarize_decisions,
)
from .file_operations import (
    DIRECTORY_LAYOUTS,
    PREPEND_DATE_FORMATS,
    compute_file_checksum,
    find_unique_filename,
    resolve_destination,
)
from .metadata import MediaTimestamps, decode_timestamps
from .stamping import TimestampStamper, get_timestamp_stamper, set_file_timestamps
from .utils import resolve_since_argument

__all__ = [
    "BackupDescriptor",
    "display_backup_list",
    "display_backup_list_long",
    "enumerate_backups",
    "read_backup_descriptor",
    "resolve_backup_argument",
    "validate_backup",
    "MEDIA_EXTENSIONS",
    "PathVerdict",
    "classify_path",
    "CatalogRecord",
    "build_trash_set",
    "connect_db_readonly",
    "iter_catalog_records",
    "open_catalog",
    "BackupError",
    "CatalogError",
    "CopyError",
    "EncryptedBackupError",
    "ExtractionError",
    "UnsupportedBackupError",
    "ExtractionConfig",
    "ExtractionDecision",
    "MediaExtractor",
    "Outcome",
    "extract_media_files",
    "summarize_decisions",
    "DIRECTORY_LAYOUTS",
    "PREPEND_DATE_FORMATS",
    "compute_file_checksum",
    "find_unique_filename",
    "resolve_destination",
    "MediaTimestamps",
    "decode_timestamps",
    "TimestampStamper",
    "get_timestamp_stamper",
    "set_file_timestamps",
    "resolve_since_argument",
]
