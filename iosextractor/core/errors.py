# SPDX-License-Identifier: GPL-3.0-or-later
"""
Exceptions for iosextractor.

Everything raised here is fatal for an extraction run. Degraded conditions
(missing metadata, missing trash database, stamping failures) are handled
where they occur and never surface as exceptions.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""


class ExtractionError(Exception):
    """Base exception for fatal extraction failures."""

    pass


class BackupError(ExtractionError):
    """Device backup cannot be located or read."""

    pass


class EncryptedBackupError(BackupError):
    """Device backup is encrypted."""

    pass


class UnsupportedBackupError(BackupError):
    """Device backup format version is too old or unknown."""

    pass


class CatalogError(ExtractionError):
    """Backup file catalog (Manifest.db) cannot be opened or queried."""

    pass


class CopyError(ExtractionError):
    """Copying a media file into the output directory failed."""

    pass
