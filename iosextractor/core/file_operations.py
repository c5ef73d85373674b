# SPDX-License-Identifier: GPL-3.0-or-later
"""
File operations for iosextractor.

Handles destination layout, content-hash deduplication against the output
directory and copying blobs out of the backup.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import hashlib
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

DIRECTORY_LAYOUTS = ("ym", "ymd", "flat")

PREPEND_DATE_FORMATS = {
    "dash": "%Y-%m-%d_",
    "underscore": "%Y_%m_%d_",
    "none": "%Y%m%d_",
}

UNKNOWN_DATE_DIR = "Unknown_Date"

CHUNK_SIZE = 1024 * 1024


def get_date_subdir(last_modified: Optional[datetime], layout: str = "ym") -> str:
    """
    Get the output subdirectory name for a file.

    Args:
        last_modified: Recovered LastModified time, or None
        layout: One of DIRECTORY_LAYOUTS

    Returns:
        'YYYY-MM' (ym), 'YYYY-MM-DD' (ymd), '' (flat) or UNKNOWN_DATE_DIR
    """
    layout = layout.lower()
    if layout not in DIRECTORY_LAYOUTS:
        raise ValueError(f"Unknown directory layout: {layout}")

    if layout == "flat":
        return ""
    if last_modified is None:
        return UNKNOWN_DATE_DIR
    if layout == "ym":
        return last_modified.strftime("%Y-%m")
    return last_modified.strftime("%Y-%m-%d")


def prepend_date(
    filename: str, last_modified: Optional[datetime], separator: str = "dash"
) -> str:
    """Prefix a filename with its LastModified date; unchanged if unknown."""
    if last_modified is None:
        return filename

    return last_modified.strftime(PREPEND_DATE_FORMATS[separator.lower()]) + filename


def compute_file_checksum(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def split_extension(filename: str):
    """Split 'IMG_0042.heic' into ('IMG_0042', '.heic')."""
    match = re.match(r"^(.+)(\.[^.]+)$", filename)
    if not match:
        raise ValueError(f"Unexpected filename: {filename}")
    return match.group(1), match.group(2)


def _occupant(path: Path, planned: Dict[Path, Path]) -> Optional[Path]:
    """File whose content occupies `path`: a planned source or the file itself."""
    if path in planned:
        return planned[path]
    if path.exists():
        return path
    return None


def find_unique_filename(
    source: Path,
    filename: str,
    directory: Path,
    planned: Optional[Dict[Path, Path]] = None,
) -> Optional[str]:
    """
    Find a name in `directory` under which `source` can be stored.

    If `filename` is free it is returned without reading anything. Otherwise
    the existing file and then 'base.0.ext', 'base.1.ext', ... are compared
    by content hash until either an identical file is found (duplicate) or
    a free name is reached.

    Args:
        source: File to be stored
        filename: Preferred filename
        directory: Target directory
        planned: Destinations claimed without being written (dry run),
            mapped to the source file that would be copied there

    Returns:
        A filename that does not exist yet, or None if the content is
        already present under one of the candidate names
    """
    planned = planned or {}

    if _occupant(directory / filename, planned) is None:
        return filename

    source_checksum = compute_file_checksum(source)
    base_name, extension = split_extension(filename)

    candidate = filename
    index = 0
    occupant = _occupant(directory / candidate, planned)
    while occupant is not None:
        if compute_file_checksum(occupant) == source_checksum:
            return None

        candidate = f"{base_name}.{index}{extension}"
        index += 1
        occupant = _occupant(directory / candidate, planned)

    return candidate


def resolve_destination(
    source: Path,
    filename: str,
    last_modified: Optional[datetime],
    output_dir: Path,
    layout: str = "ym",
    prepend_date_separator: Optional[str] = None,
    planned: Optional[Dict[Path, Path]] = None,
) -> Optional[Path]:
    """
    Compute where a media file should be written inside the output directory.

    Args:
        source: Blob file inside the backup
        filename: Candidate filename from the path classifier
        last_modified: Recovered LastModified time, or None
        output_dir: Output root
        layout: Directory layout (ym, ymd, flat)
        prepend_date_separator: Date prefix style, or None for no prefix
        planned: Destinations claimed by earlier records of a dry run

    Returns:
        Absolute destination path, or None if the content already exists
    """
    target_dir = Path(output_dir)
    subdir = get_date_subdir(last_modified, layout)
    if subdir:
        target_dir = target_dir / subdir

    if prepend_date_separator:
        filename = prepend_date(filename, last_modified, prepend_date_separator)

    unique_filename = find_unique_filename(source, filename, target_dir, planned)
    if unique_filename is None:
        return None

    return target_dir / unique_filename


def copy_file_exclusive(source: Path, dest: Path) -> None:
    """
    Copy `source` to a new file at `dest`.

    The destination is created exclusively, so an existing file is never
    overwritten. If the copy fails or is interrupted after the destination
    was created, the incomplete file is removed.

    Raises:
        FileExistsError: if `dest` already exists
        OSError: on any other I/O failure
    """
    with open(source, "rb") as src:
        dst = open(dest, "xb")
        try:
            with dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
