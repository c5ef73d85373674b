# SPDX-License-Identifier: GPL-3.0-or-later
"""
Database operations for iosextractor.

Reads the backup's file catalog (Manifest.db) and the Photos.sqlite asset
database. Both are only ever opened through a private, read-only copy in a
temporary directory so the original backup is never touched.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import os
import shutil
import sqlite3
import tempfile
from pathlib import Path
from typing import Iterator, NamedTuple, Optional, Set

from .errors import CatalogError
from .utils import print_verbose

CATALOG_DB_NAME = "Manifest.db"
CAMERA_ROLL_DOMAIN = "CameraRollDomain"

# Media/PhotoData/Photos.sqlite in CameraRollDomain
PHOTOS_DB_FILE_ID = "12b144c0bd44f2b3dffd9186d3f9c05b917cee25"
TRASH_PATH_PREFIX = "Media/"

CATALOG_QUERY = """
SELECT fileID, relativePath, file
FROM Files
WHERE domain = ?
ORDER BY relativePath ASC
"""

CATALOG_COUNT_QUERY = "SELECT COUNT(*) FROM Files WHERE domain = ?"

TRASH_QUERY = """
SELECT ZDIRECTORY, ZFILENAME
FROM ZASSET
WHERE ZTRASHEDSTATE = 1
"""


class CatalogRecord(NamedTuple):
    """One camera roll row of the backup file catalog."""

    file_id: str
    relative_path: str
    file_blob: Optional[bytes]


class ReadOnlyConnection:
    """Wrapper for sqlite3.Connection that owns the private database copy."""

    def __init__(self, conn: sqlite3.Connection, temp_db_path: str = None):
        self.conn = conn
        self.temp_db_path = temp_db_path

    def __getattr__(self, name):
        return getattr(self.conn, name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
        if self.temp_db_path:
            try:
                os.unlink(self.temp_db_path)
            except FileNotFoundError:
                pass
            self.temp_db_path = None


def connect_db_readonly(db_path: Path, temp_dir: Path = None) -> ReadOnlyConnection:
    """
    Copy a database to a temporary location and open the copy read-only.

    Args:
        db_path: Database file inside the backup
        temp_dir: Directory for the private copy (system temp dir if None)

    Raises:
        sqlite3.Error: if the database is missing, cannot be copied or opened
    """
    db_path = Path(db_path)
    if not db_path.is_file():
        raise sqlite3.Error(f"Database file does not exist: {db_path}")

    fd, temp_db_path = tempfile.mkstemp(suffix=".db", dir=temp_dir)
    os.close(fd)

    try:
        shutil.copyfile(db_path, temp_db_path)
        conn = sqlite3.connect(f"{Path(temp_db_path).as_uri()}?mode=ro", uri=True)
    except (OSError, sqlite3.Error) as e:
        os.unlink(temp_db_path)
        raise sqlite3.Error(f"Cannot access database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row
    return ReadOnlyConnection(conn, temp_db_path)


def table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    """Check whether a table exists in the database."""
    row = conn.execute(
        "SELECT count(*) FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    ).fetchone()
    return bool(row[0])


def open_catalog(backup_dir: Path, temp_dir: Path = None) -> ReadOnlyConnection:
    """Open a private read-only copy of the backup's Manifest.db."""
    catalog_path = Path(backup_dir) / CATALOG_DB_NAME
    try:
        conn = connect_db_readonly(catalog_path, temp_dir)
    except sqlite3.Error as e:
        raise CatalogError(str(e)) from e

    try:
        has_files_table = table_exists(conn, "Files")
    except sqlite3.Error as e:
        conn.close()
        raise CatalogError(
            f"Cannot open '{catalog_path}' as SQLite database: {e}"
        ) from e

    if not has_files_table:
        conn.close()
        raise CatalogError(f"'{catalog_path}' has no Files table")

    return conn


def count_catalog_records(conn: sqlite3.Connection) -> int:
    """Count catalog rows in the camera roll domain."""
    try:
        return conn.execute(CATALOG_COUNT_QUERY, (CAMERA_ROLL_DOMAIN,)).fetchone()[0]
    except sqlite3.Error as e:
        raise CatalogError(f"Catalog query failed: {e}") from e


def iter_catalog_records(conn: sqlite3.Connection) -> Iterator[CatalogRecord]:
    """
    Lazily iterate camera roll rows ordered by relativePath.

    The ordering follows the DCIM roll folders, which keeps the progress
    numbering roughly chronological.

    Raises:
        CatalogError: if the catalog cannot be queried
    """
    try:
        cursor = conn.execute(CATALOG_QUERY, (CAMERA_ROLL_DOMAIN,))
        for row in cursor:
            yield CatalogRecord(
                file_id=row["fileID"],
                relative_path=row["relativePath"] or "",
                file_blob=row["file"],
            )
    except sqlite3.Error as e:
        raise CatalogError(f"Catalog query failed: {e}") from e


def get_photos_db_path(backup_dir: Path) -> Path:
    """Location of the Photos.sqlite blob inside a backup."""
    return Path(backup_dir) / PHOTOS_DB_FILE_ID[:2] / PHOTOS_DB_FILE_ID


def build_trash_set(
    backup_dir: Path, temp_dir: Path = None, verbose: bool = False
) -> Set[str]:
    """
    Build the set of catalog paths that are marked as deleted on the device.

    Trash detection is best effort: a missing Photos.sqlite, a missing
    ZASSET table or a failing query all produce an empty set.

    Returns:
        Set of relativePath values such as 'Media/DCIM/103APPLE/IMG_0042.HEIC'
    """
    photos_db = get_photos_db_path(backup_dir)
    trashed = set()

    try:
        conn = connect_db_readonly(photos_db, temp_dir)
    except sqlite3.Error as e:
        print_verbose(
            f"Warning: Cannot copy or find Photos.sqlite database\n"
            f"\tfileID: {PHOTOS_DB_FILE_ID} ({e})",
            verbose,
        )
        return trashed

    with conn:
        try:
            if not table_exists(conn, "ZASSET"):
                print_verbose(
                    f"Warning: No ZASSET table in Photos.sqlite ({photos_db})",
                    verbose,
                )
                return trashed

            for row in conn.execute(TRASH_QUERY):
                directory, filename = row["ZDIRECTORY"], row["ZFILENAME"]
                if not directory or not filename:
                    continue

                relative_path = f"{TRASH_PATH_PREFIX}{directory}/{filename}"
                trashed.add(relative_path)
                print_verbose(f"Info: File marked as deleted: {relative_path}", verbose)
        except sqlite3.Error as e:
            print_verbose(
                f"Warning: Cannot read trashed assets from Photos.sqlite: {e}",
                verbose,
            )
            return set()

    return trashed
