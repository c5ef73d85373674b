# SPDX-License-Identifier: GPL-3.0-or-later
"""
Filesystem timestamp stamping for iosextractor.

Each platform gets one TimestampStamper. All of them try to set both the
creation and the modification time and fall back to the modification time
alone where creation time cannot be changed.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import os
import platform
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

from .metadata import MediaTimestamps
from .utils import print_verbose

SETFILE_PATH = "/usr/bin/SetFile"
SETFILE_DATE_FORMAT = "%m/%d/%Y %H:%M:%S"

# Seconds between 1601-01-01 (FILETIME epoch) and 1970-01-01
FILETIME_EPOCH_DELTA = 11644473600


class TimestampStamper(ABC):
    """Sets file timestamps on one platform."""

    name: str = ""

    @abstractmethod
    def stamp(self, path: Path, modified: datetime, birth: datetime) -> bool:
        """
        Set the timestamps of `path`.

        Returns:
            True if the creation time was set as well, False if only the
            modification time could be set

        Raises:
            OSError: if not even the modification time could be set
        """
        ...

    def stamp_modification(self, path: Path, modified: datetime) -> None:
        epoch = modified.timestamp()
        os.utime(path, (epoch, epoch))


class UtimeTimestampStamper(TimestampStamper):
    """Modification time only, via utime(2)."""

    name = "utime"

    def stamp(self, path: Path, modified: datetime, birth: datetime) -> bool:
        self.stamp_modification(path, modified)
        return False


class SetFileTimestampStamper(TimestampStamper):
    """macOS stamper using SetFile from the Command Line Developer Tools."""

    name = "setfile"

    def __init__(self, setfile_path: str = SETFILE_PATH):
        self.setfile_path = setfile_path
        self._available = None

    def is_available(self) -> bool:
        """Check once whether the SetFile command can be run."""
        if self._available is None:
            try:
                result = subprocess.run(
                    [self.setfile_path], capture_output=True, text=True, timeout=5
                )
                output = (result.stdout + result.stderr).strip().lower()
                self._available = output.startswith("usage")
            except (subprocess.TimeoutExpired, OSError):
                self._available = False
        return self._available

    def stamp(self, path: Path, modified: datetime, birth: datetime) -> bool:
        if self.is_available():
            try:
                result = subprocess.run(
                    [
                        self.setfile_path,
                        "-d",
                        birth.strftime(SETFILE_DATE_FORMAT),
                        "-m",
                        modified.strftime(SETFILE_DATE_FORMAT),
                        str(path),
                    ],
                    capture_output=True,
                    text=True,
                    timeout=30,
                )
                if result.returncode == 0:
                    return True
            except (subprocess.TimeoutExpired, OSError):
                pass

        # utime also moves 'Date Created' back when the new mtime is older
        self.stamp_modification(path, modified)
        return False


class WindowsTimestampStamper(TimestampStamper):
    """Windows stamper calling SetFileTime through ctypes."""

    name = "setfiletime"

    FILE_WRITE_ATTRIBUTES = 0x0100
    OPEN_EXISTING = 3
    FILE_FLAG_BACKUP_SEMANTICS = 0x02000000

    @staticmethod
    def _to_filetime(value: datetime):
        from ctypes import wintypes

        ticks = int((value.timestamp() + FILETIME_EPOCH_DELTA) * 10_000_000)
        return wintypes.FILETIME(ticks & 0xFFFFFFFF, ticks >> 32)

    def stamp(self, path: Path, modified: datetime, birth: datetime) -> bool:
        import ctypes
        from ctypes import wintypes

        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        kernel32.CreateFileW.restype = wintypes.HANDLE

        handle = kernel32.CreateFileW(
            str(path),
            self.FILE_WRITE_ATTRIBUTES,
            0,
            None,
            self.OPEN_EXISTING,
            self.FILE_FLAG_BACKUP_SEMANTICS,
            None,
        )
        if handle is None or handle == wintypes.HANDLE(-1).value:
            self.stamp_modification(path, modified)
            return False

        try:
            created_ft = self._to_filetime(birth)
            modified_ft = self._to_filetime(modified)
            ok = kernel32.SetFileTime(
                wintypes.HANDLE(handle),
                ctypes.byref(created_ft),
                ctypes.byref(modified_ft),
                ctypes.byref(modified_ft),
            )
        finally:
            kernel32.CloseHandle(wintypes.HANDLE(handle))

        if not ok:
            self.stamp_modification(path, modified)
            return False
        return True


def get_timestamp_stamper(system: Optional[str] = None) -> TimestampStamper:
    """Choose the stamper for the running (or given) platform."""
    system = system or platform.system()

    if system == "Windows":
        return WindowsTimestampStamper()
    if system == "Darwin":
        return SetFileTimestampStamper()
    return UtimeTimestampStamper()


def set_file_timestamps(
    path: Path,
    timestamps: MediaTimestamps,
    stamper: TimestampStamper,
    verbose: bool = False,
) -> bool:
    """
    Stamp a copied file with its recovered timestamps.

    Nothing is changed unless both LastModified and Birth are known.
    Failures, and platforms where only the modification time can be set,
    are reported in verbose mode; nothing is raised.

    Returns:
        True if the timestamps were applied
    """
    if timestamps.last_modified is None or timestamps.birth is None:
        return False

    try:
        birth_set = stamper.stamp(path, timestamps.last_modified, timestamps.birth)
    except (OSError, OverflowError, ValueError) as e:
        print_verbose(f"Warning: Could not set timestamps for {path}: {e}", verbose)
        return False

    if not birth_set:
        print_verbose(
            f"Info: Creation time not set for {path}, modification time only",
            verbose,
        )
    return True
