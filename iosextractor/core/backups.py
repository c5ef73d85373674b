# SPDX-License-Identifier: GPL-3.0-or-later
"""
Backup discovery and descriptor handling for iosextractor.

Locates iTunes / Apple Devices / Finder backups on the host, reads the
Info.plist, Manifest.plist and Status.plist descriptors and prints backup
listings.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import os
import platform
import plistlib
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional
from xml.parsers.expat import ExpatError

from .database import CATALOG_DB_NAME
from .errors import BackupError, EncryptedBackupError, UnsupportedBackupError
from .utils import format_local_time, print_verbose

DESCRIPTOR_FILES = ("Info.plist", "Manifest.plist", "Status.plist")

MINIMUM_BACKUP_VERSION = (3, 3)

INFO_STRING_KEYS = (
    "Build Version",
    "Device Name",
    "Display Name",
    "GUID",
    "ICCID",
    "IMEI 2",
    "IMEI",
    "MEID",
    "Phone Number",
    "Product Name",
    "Product Type",
    "Product Version",
    "Serial Number",
    "Target Identifier",
    "Target Type",
    "Unique Identifier",
    "iTunes Version",
)

MANIFEST_STRING_KEYS = ("Version", "SystemDomainsVersion")
MANIFEST_BOOLEAN_KEYS = ("IsEncrypted", "WasPasscodeSet")
LOCKDOWN_STRING_KEYS = (
    "BuildVersion",
    "DeviceName",
    "ProductType",
    "ProductVersion",
    "SerialNumber",
    "UniqueDeviceID",
)

STATUS_STRING_KEYS = ("UUID", "BackupState", "Version", "SnapshotState")


class BackupDescriptor(NamedTuple):
    """Descriptor values of one device backup directory."""

    location: Path
    info: Dict[str, Any]
    manifest: Dict[str, Any]
    status: Dict[str, Any]

    @property
    def serial_number(self) -> str:
        return self.info.get("Serial Number", "")

    @property
    def is_encrypted(self) -> bool:
        return self.manifest.get("IsEncrypted") is True


def _load_plist(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            plist = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise BackupError(f'Unable to read "{path}": {e}') from e

    if not isinstance(plist, dict):
        raise BackupError(f'Unable to read "{path}": unexpected content')
    return plist


def _read_strings(plist: Any, keys) -> Dict[str, str]:
    if not isinstance(plist, dict):
        plist = {}
    return {
        key: plist[key] if isinstance(plist.get(key), str) else "" for key in keys
    }


def _read_boolean(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _read_date(value: Any) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


def read_info_plist(backup_dir: Path) -> Dict[str, Any]:
    """Read device identity values from Info.plist."""
    plist = _load_plist(Path(backup_dir) / "Info.plist")

    info = _read_strings(plist, INFO_STRING_KEYS)
    info["Last Backup Date"] = _read_date(plist.get("Last Backup Date"))
    return info


def read_manifest_plist(backup_dir: Path) -> Dict[str, Any]:
    """Read backup properties (encryption, lockdown info) from Manifest.plist."""
    plist = _load_plist(Path(backup_dir) / "Manifest.plist")

    manifest = _read_strings(plist, MANIFEST_STRING_KEYS)
    for key in MANIFEST_BOOLEAN_KEYS:
        manifest[key] = _read_boolean(plist.get(key))
    manifest["Date"] = _read_date(plist.get("Date"))

    lockdown = _read_strings(plist.get("Lockdown"), LOCKDOWN_STRING_KEYS)
    for key, value in lockdown.items():
        manifest[f"Lockdown/{key}"] = value

    return manifest


def read_status_plist(backup_dir: Path) -> Dict[str, Any]:
    """Read backup state and format version from Status.plist."""
    plist = _load_plist(Path(backup_dir) / "Status.plist")

    status = _read_strings(plist, STATUS_STRING_KEYS)
    status["IsFullBackup"] = _read_boolean(plist.get("IsFullBackup"))
    status["Date"] = _read_date(plist.get("Date"))
    return status


def read_backup_descriptor(backup_dir: Path) -> BackupDescriptor:
    """
    Read all three descriptor files of a backup directory.

    Raises:
        BackupError: if any descriptor is missing or unreadable
    """
    backup_dir = Path(backup_dir)
    return BackupDescriptor(
        location=backup_dir,
        info=read_info_plist(backup_dir),
        manifest=read_manifest_plist(backup_dir),
        status=read_status_plist(backup_dir),
    )


def parse_backup_version(version: str):
    """Parse the Status.plist version ('3.3', '2.4.1', ...) into (major, minor)."""
    match = re.match(r"^(\d+)\.(\d+)", version or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def validate_backup(descriptor: BackupDescriptor) -> None:
    """
    Ensure the backup can be extracted.

    Raises:
        EncryptedBackupError: if the backup is encrypted
        UnsupportedBackupError: if the backup format version is unknown or too old
    """
    if descriptor.is_encrypted:
        raise EncryptedBackupError(
            "Device backup is encrypted. Encrypted backups are not supported."
        )

    version = parse_backup_version(descriptor.status.get("Version", ""))
    if version is None:
        raise UnsupportedBackupError(
            "Unable to determine backup version from Status.plist"
        )

    if version < MINIMUM_BACKUP_VERSION:
        raise UnsupportedBackupError(
            "This tool supports iOS backups since version "
            f"{MINIMUM_BACKUP_VERSION[0]}.{MINIMUM_BACKUP_VERSION[1]}. "
            f"Found version: {version[0]}.{version[1]}"
        )


def get_mobilesync_backup_dirs(system: Optional[str] = None) -> List[Path]:
    """
    Get the MobileSync backup roots used on this platform.

    Raises:
        BackupError: on platforms without a known backup location
    """
    system = system or platform.system()
    backup_roots = []

    if system == "Windows":
        # Apple Devices app, then iTunes
        user_profile = os.environ.get("USERPROFILE")
        if user_profile:
            backup_roots.append(Path(user_profile) / "Apple" / "MobileSync" / "Backup")

        app_data = os.environ.get("APPDATA")
        if app_data:
            backup_roots.append(
                Path(app_data) / "Apple Computer" / "MobileSync" / "Backup"
            )

        if not user_profile and not app_data:
            raise BackupError(
                "Unable to determine %USERPROFILE% or %APPDATA% directory."
            )

        return [root for root in backup_roots if root.is_dir()]

    if system == "Darwin":
        return [
            Path.home() / "Library" / "Application Support" / "MobileSync" / "Backup"
        ]

    raise BackupError(
        'Unable to determine "Apple Computer/MobileSync/Backup" directory '
        f"on {system} platform."
    )


def list_backup_dirs(backup_root: Path) -> List[Path]:
    """List device backup directories (those with all descriptors) under a root."""
    backup_root = Path(backup_root)
    if not backup_root.is_dir():
        return []

    return sorted(
        entry
        for entry in backup_root.iterdir()
        if entry.is_dir()
        and all((entry / name).is_file() for name in DESCRIPTOR_FILES)
    )


def _is_newer(candidate: BackupDescriptor, current: BackupDescriptor) -> bool:
    candidate_date = candidate.info.get("Last Backup Date")
    current_date = current.info.get("Last Backup Date")
    if candidate_date is None:
        return False
    if current_date is None:
        return True
    return candidate_date > current_date


def enumerate_backups(
    backup_roots: Optional[List[Path]] = None, verbose: bool = False
) -> Dict[str, BackupDescriptor]:
    """
    Find all usable device backups, keeping the newest backup per device.

    Args:
        backup_roots: MobileSync roots to scan (platform defaults if None)
        verbose: Report each scanned directory on stderr

    Returns:
        Mapping of device serial number to BackupDescriptor

    Raises:
        BackupError: if no usable backup is found
    """
    if backup_roots is None:
        backup_roots = get_mobilesync_backup_dirs()

    device_backup_dirs = []
    for backup_root in backup_roots:
        print_verbose(
            f'Info: Found iOS Device backup directory: "{backup_root}"', verbose
        )
        device_backup_dirs.extend(list_backup_dirs(backup_root))

    if not device_backup_dirs:
        raise BackupError("There are no iOS device backups found on this computer.")

    backups = {}
    for backup_dir in device_backup_dirs:
        print_verbose(f"Info: Reading directory: {backup_dir}", verbose)

        try:
            descriptor = read_backup_descriptor(backup_dir)
        except BackupError as e:
            print(f"Warning: {e}", file=sys.stderr)
            continue

        serial = descriptor.serial_number
        if not serial:
            print(
                f'Warning: Unable to read "{backup_dir / "Info.plist"}".',
                file=sys.stderr,
            )
            continue

        if serial not in backups or _is_newer(descriptor, backups[serial]):
            backups[serial] = descriptor

    if not backups:
        raise BackupError(
            "There are no usable iOS device backups found on this computer."
        )

    return backups


def resolve_backup_argument(
    backup_dir_or_serial: str,
    backup_roots: Optional[List[Path]] = None,
    verbose: bool = False,
) -> Path:
    """
    Resolve a command line argument to a device backup directory.

    A directory containing Manifest.db is used directly; anything else is
    looked up as a device serial number among the discovered backups.

    Raises:
        BackupError: if the argument is neither
    """
    argument = backup_dir_or_serial.strip()

    candidate = Path(argument)
    if (candidate / CATALOG_DB_NAME).is_file():
        return candidate

    try:
        backups = enumerate_backups(backup_roots, verbose)
    except BackupError:
        backups = {}

    if argument in backups:
        backup_dir = backups[argument].location
        print_verbose(
            f'Info: Using iOS Device backup directory: "{backup_dir}"', verbose
        )
        return backup_dir

    raise BackupError(
        f"'{argument}' doesn't look like a device serial number "
        "or an iOS backup directory."
    )


def _truncate(value: str, width: int) -> str:
    if len(value) <= width:
        return value
    return value[: width - 3] + "..."


# (title, width) of the --list table columns
LIST_COLUMNS = (
    ("Serial Number", 15),
    ("Name", 15),
    ("Device", 14),
    ("Backup Date", 18),
    ("Encrypted", 11),
)


def _format_row(values) -> str:
    cells = []
    for (_, width), value in zip(LIST_COLUMNS, values):
        cells.append(" " + _truncate(value, width - 1).ljust(width - 1))
    return " ".join(cells)


def display_backup_list(backups: Dict[str, BackupDescriptor]) -> None:
    """Print a one-line-per-device table of available backups."""
    separator = " ".join("-" * width for _, width in LIST_COLUMNS)

    print()
    print("Available iOS Device Backups".center(len(separator)))
    print(separator)
    print(_format_row(title for title, _ in LIST_COLUMNS))
    print(separator)

    for serial in sorted(backups):
        descriptor = backups[serial]
        print(
            _format_row(
                (
                    serial,
                    descriptor.info.get("Display Name", ""),
                    descriptor.info.get("Product Name", ""),
                    format_local_time(descriptor.info.get("Last Backup Date")),
                    "Yes" if descriptor.is_encrypted else "No",
                )
            )
        )

    print()


def _format_descriptor_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return str(value)


def display_backup_list_long(backups: Dict[str, BackupDescriptor]) -> None:
    """Print every descriptor value of every available backup."""
    for counter, serial in enumerate(sorted(backups), start=1):
        descriptor = backups[serial]

        print(
            f'{counter:02d}. {serial}, "{descriptor.info.get("Display Name", "")}", '
            f'[{descriptor.info.get("Product Name", "")}]'
        )
        print("-" * 78)
        print(f'    Backup Dir: "{descriptor.location}"')

        for section in ("Info", "Manifest", "Status"):
            values = getattr(descriptor, section.lower())
            for key in sorted(values):
                value = _format_descriptor_value(values[key])
                print(f"    {section}.plist/{key}: {value}")

        print()
