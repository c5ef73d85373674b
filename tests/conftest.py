"""Pytest configuration and fixtures for iOS backup extractor tests."""

import hashlib
import os
import plistlib
import sqlite3
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

import pytest

# Add the package to the path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from iosextractor.core.extractor import ExtractionConfig
from iosextractor.core.stamping import UtimeTimestampStamper

CAMERA_ROLL_DOMAIN = "CameraRollDomain"
PHOTOS_DB_FILE_ID = "12b144c0bd44f2b3dffd9186d3f9c05b917cee25"

_DEFAULT = object()


def epoch(year, month, day, hour=10, minute=0):
    """Local-time epoch seconds, as stored in the per-file metadata blob."""
    return int(datetime(year, month, day, hour, minute).timestamp())


def make_file_plist(
    last_modified: Optional[int] = None,
    birth: Optional[int] = None,
    relative_path: str = "Media/DCIM/100APPLE/IMG_0001.JPG",
    size: int = 0,
) -> bytes:
    """Build an NSKeyedArchiver MBFile blob like the `file` column of Manifest.db."""
    attributes = {
        "$class": plistlib.UID(3),
        "RelativePath": plistlib.UID(2),
        "Size": size,
        "Mode": 33188,
        "InodeNumber": 123456,
        "UserID": 501,
        "GroupID": 501,
        "ProtectionClass": 3,
        "Flags": 0,
    }
    if last_modified is not None:
        attributes["LastModified"] = last_modified
        attributes["LastStatusChange"] = last_modified
    if birth is not None:
        attributes["Birth"] = birth

    archive = {
        "$version": 100000,
        "$archiver": "NSKeyedArchiver",
        "$top": {"root": plistlib.UID(1)},
        "$objects": [
            "$null",
            attributes,
            relative_path,
            {"$classname": "MBFile", "$classes": ["MBFile", "NSObject"]},
        ],
    }
    return plistlib.dumps(archive, fmt=plistlib.FMT_BINARY)


def make_file_id(relative_path: str, domain: str = CAMERA_ROLL_DOMAIN) -> str:
    """fileIDs are the SHA-1 of 'domain-relativePath'."""
    return hashlib.sha1(f"{domain}-{relative_path}".encode("utf-8")).hexdigest()


class MockBackup:
    """Synthetic unencrypted iOS backup directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.catalog_path = self.root / "Manifest.db"
        self._create_catalog()
        self.write_descriptors()

    def _create_catalog(self):
        conn = sqlite3.connect(self.catalog_path)
        conn.execute(
            """
            CREATE TABLE Files (
                fileID TEXT PRIMARY KEY,
                domain TEXT,
                relativePath TEXT,
                flags INTEGER,
                file BLOB
            )
            """
        )
        conn.execute("CREATE TABLE Properties (key TEXT PRIMARY KEY, value BLOB)")
        conn.commit()
        conn.close()

    def add_file(
        self,
        relative_path: str,
        content: Optional[bytes] = b"media content",
        last_modified: Optional[int] = None,
        birth=_DEFAULT,
        domain: str = CAMERA_ROLL_DOMAIN,
        blob=_DEFAULT,
        file_id: Optional[str] = None,
    ) -> str:
        """
        Add a catalog row and its content blob.

        `birth` defaults to `last_modified`; pass `blob` to store a raw
        metadata value instead of a generated MBFile plist.
        """
        file_id = file_id or make_file_id(relative_path, domain)
        if birth is _DEFAULT:
            birth = last_modified
        if blob is _DEFAULT:
            blob = make_file_plist(
                last_modified, birth, relative_path, len(content or b"")
            )

        if content is not None:
            blob_dir = self.root / file_id[:2]
            blob_dir.mkdir(exist_ok=True)
            (blob_dir / file_id).write_bytes(content)

        conn = sqlite3.connect(self.catalog_path)
        conn.execute(
            "INSERT INTO Files (fileID, domain, relativePath, flags, file) "
            "VALUES (?, ?, ?, 1, ?)",
            (file_id, domain, relative_path, blob),
        )
        conn.commit()
        conn.close()
        return file_id

    def blob_path(self, file_id: str) -> Path:
        return self.root / file_id[:2] / file_id

    def write_photos_db(
        self, trashed_paths: Iterable[str] = (), with_asset_table: bool = True
    ) -> Path:
        """Write Photos.sqlite with the given 'Media/...' paths in the trash."""
        photos_db = self.root / PHOTOS_DB_FILE_ID[:2] / PHOTOS_DB_FILE_ID
        photos_db.parent.mkdir(exist_ok=True)
        if photos_db.exists():
            photos_db.unlink()

        conn = sqlite3.connect(photos_db)
        if with_asset_table:
            conn.execute(
                """
                CREATE TABLE ZASSET (
                    Z_PK INTEGER PRIMARY KEY,
                    ZDIRECTORY VARCHAR,
                    ZFILENAME VARCHAR,
                    ZTRASHEDSTATE INTEGER,
                    ZTRASHEDDATE TIMESTAMP
                )
                """
            )
            # A non-trashed asset that must never show up in the trash set
            conn.execute(
                "INSERT INTO ZASSET (ZDIRECTORY, ZFILENAME, ZTRASHEDSTATE) "
                "VALUES ('DCIM/100APPLE', 'IMG_9999.JPG', 0)"
            )
            for path in trashed_paths:
                directory, filename = path[len("Media/") :].rsplit("/", 1)
                conn.execute(
                    "INSERT INTO ZASSET (ZDIRECTORY, ZFILENAME, ZTRASHEDSTATE, "
                    "ZTRASHEDDATE) VALUES (?, ?, 1, 742000000)",
                    (directory, filename),
                )
        else:
            conn.execute("CREATE TABLE ZGENERICASSET (Z_PK INTEGER PRIMARY KEY)")
        conn.commit()
        conn.close()
        return photos_db

    def write_descriptors(
        self,
        serial: str = "ABC123ABC123",
        encrypted: bool = False,
        version: str = "3.3",
        last_backup_date: datetime = datetime(2024, 7, 20, 8, 30),
        display_name: str = "Test iPhone",
    ):
        info = {
            "Build Version": "21F90",
            "Device Name": display_name,
            "Display Name": display_name,
            "GUID": "0123456789ABCDEF0123456789ABCDEF",
            "Last Backup Date": last_backup_date,
            "Product Name": "iPhone 13",
            "Product Type": "iPhone14,5",
            "Product Version": "17.5.1",
            "Serial Number": serial,
            "Target Identifier": "00008110-000A1B2C3D4E5F6A",
            "Target Type": "Device",
            "Unique Identifier": "00008110-000A1B2C3D4E5F6A",
            "iTunes Version": "12.13.2.3",
        }
        manifest = {
            "Version": "10.0",
            "SystemDomainsVersion": "24.0",
            "IsEncrypted": encrypted,
            "WasPasscodeSet": True,
            "Date": last_backup_date,
            "Lockdown": {
                "BuildVersion": "21F90",
                "DeviceName": display_name,
                "ProductType": "iPhone14,5",
                "ProductVersion": "17.5.1",
                "SerialNumber": serial,
                "UniqueDeviceID": "00008110000a1b2c3d4e5f6a",
            },
        }
        status = {
            "BackupState": "new",
            "Date": last_backup_date,
            "IsFullBackup": False,
            "SnapshotState": "finished",
            "UUID": "3A6E8D2C-1F0B-4C5A-9E7D-6B4A2C1D0E9F",
            "Version": version,
        }

        # Info.plist is XML in real backups, the other two are binary
        with open(self.root / "Info.plist", "wb") as f:
            plistlib.dump(info, f, fmt=plistlib.FMT_XML)
        with open(self.root / "Manifest.plist", "wb") as f:
            plistlib.dump(manifest, f, fmt=plistlib.FMT_BINARY)
        with open(self.root / "Status.plist", "wb") as f:
            plistlib.dump(status, f, fmt=plistlib.FMT_BINARY)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_backup(temp_dir):
    """Empty synthetic backup with descriptors and an empty catalog."""
    return MockBackup(temp_dir / "backup")


@pytest.fixture
def output_dir(temp_dir):
    """Existing, empty output directory."""
    path = temp_dir / "output"
    path.mkdir()
    return path


@pytest.fixture
def extraction_config(output_dir):
    """Default extraction options writing into `output_dir`."""
    return ExtractionConfig(output_dir=output_dir)


@pytest.fixture
def stamper():
    """Platform independent timestamp stamper."""
    return UtimeTimestampStamper()


def snapshot_tree(root: Path) -> dict:
    """Map of relative path -> bytes for every file below root."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
