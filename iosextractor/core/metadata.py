# SPDX-License-Identifier: GPL-3.0-or-later
"""
Per-file metadata decoding for iosextractor.

Every Manifest.db row carries a binary property list (an NSKeyedArchiver
graph describing the backed-up file). Its object table holds the file's
attributes as the second entry; LastModified and Birth are whole seconds
since the Unix epoch.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import plistlib
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional
from xml.parsers.expat import ExpatError

from .utils import print_verbose

LAST_MODIFIED_KEY = "LastModified"
BIRTH_KEY = "Birth"


class MediaTimestamps(NamedTuple):
    """Timestamps recovered from a file's metadata blob (local time)."""

    last_modified: Optional[datetime] = None
    birth: Optional[datetime] = None


def _parse_blob(blob: bytes, file_id: str, verbose: bool) -> Optional[Any]:
    try:
        return plistlib.loads(bytes(blob))
    except (
        plistlib.InvalidFileException,
        ExpatError,
        ValueError,
        TypeError,
        IndexError,
        OverflowError,
    ) as e:
        print_verbose(
            f"Warning: Cannot parse bplist for fileID: {file_id} ({e})", verbose
        )
        return None


def _file_attributes(plist: Any) -> Optional[Dict[str, Any]]:
    """Return the attribute dictionary of the archived file, or None."""
    if not isinstance(plist, dict):
        return None

    objects = plist.get("$objects")
    if not isinstance(objects, list) or len(objects) <= 2:
        return None

    attributes = objects[1]
    if not isinstance(attributes, dict):
        return None

    return attributes


def _epoch_to_local(value: Any) -> Optional[datetime]:
    # bool is an int subclass; plist booleans are never timestamps
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None

    try:
        return datetime.fromtimestamp(value)
    except (OverflowError, OSError, ValueError):
        return None


def decode_timestamps(
    blob: Optional[bytes], file_id: str = "", verbose: bool = False
) -> MediaTimestamps:
    """
    Decode the LastModified and Birth timestamps from a metadata blob.

    Never raises: an empty blob, an unparsable blob, an unexpected object
    graph or a missing/non-integer field all yield None for the affected
    timestamp.

    Args:
        blob: Raw `file` column value from Manifest.db
        file_id: Catalog fileID, used in diagnostics only
        verbose: Whether to report decoding problems on stderr

    Returns:
        MediaTimestamps with naive local datetimes
    """
    if not blob:
        print_verbose(f"Warning: Missing file bplist for fileID: {file_id}", verbose)
        return MediaTimestamps()

    plist = _parse_blob(blob, file_id, verbose)
    if plist is None:
        return MediaTimestamps()

    attributes = _file_attributes(plist)
    if attributes is None:
        print_verbose(
            f"Warning: Unexpected bplist layout for fileID: {file_id}", verbose
        )
        return MediaTimestamps()

    decoded = {}
    for key in (LAST_MODIFIED_KEY, BIRTH_KEY):
        decoded[key] = _epoch_to_local(attributes.get(key))
        if decoded[key] is None:
            print_verbose(
                f"Warning: Cannot get {key} time for fileID: {file_id}", verbose
            )

    return MediaTimestamps(
        last_modified=decoded[LAST_MODIFIED_KEY], birth=decoded[BIRTH_KEY]
    )
