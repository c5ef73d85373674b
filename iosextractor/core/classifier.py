# SPDX-License-Identifier: GPL-3.0-or-later
"""
Camera roll path classification for iosextractor.

Copyright (C) 2024 iOS Backup Extractor Contributors
Licensed under GPL-3.0-or-later
"""

import re
from typing import NamedTuple, Optional

MEDIA_EXTENSIONS = (
    "jpg",
    "jpeg",
    "heic",
    "dng",
    "png",
    "mov",
    "3gp",
    "mp4",
    "gif",
    "webp",
)

# Case-insensitive substrings marking derived (non-original) camera roll files
EXCLUDED_MARKERS = ("thumb", "metadata")

DELETED_SUFFIX = "_DELETED"

# Classification reasons for ineligible paths
REASON_EXCLUDED_MARKER = "excluded-marker"
REASON_UNSUPPORTED_EXTENSION = "unsupported-extension"
REASON_UNRECOGNIZED_LAYOUT = "unrecognized-layout"

_EXTENSIONS_ALTERNATION = "|".join(MEDIA_EXTENSIONS)

_EXTENSION_PATTERN = re.compile(
    r"\.(?:%s)$" % _EXTENSIONS_ALTERNATION, re.IGNORECASE
)

# e.g. Media/DCIM/103APPLE/IMG_0042.HEIC
_CAMERA_ROLL_PATTERN = re.compile(
    r"""
    ^ .+
    /DCIM
    /\d+APPLE
    /(?P<base_name>[^./]+)(?:\.|/)
    .*
    (?P<extension>(?i:%s))
    $
    """
    % _EXTENSIONS_ALTERNATION,
    re.VERBOSE,
)


class PathVerdict(NamedTuple):
    """Result of classifying a catalog relativePath."""

    eligible: bool
    filename: Optional[str] = None
    reason: Optional[str] = None


def classify_path(relative_path: str, mark_deleted: bool = False) -> PathVerdict:
    """
    Decide whether a catalog path is an original camera roll media file.

    Args:
        relative_path: Catalog relativePath, e.g. 'Media/DCIM/103APPLE/IMG_0042.HEIC'
        mark_deleted: Append DELETED_SUFFIX to the derived filename

    Returns:
        PathVerdict; for eligible paths `filename` is the base name, the
        optional deleted suffix and the lowercased extension
    """
    lowered = relative_path.lower()
    if any(marker in lowered for marker in EXCLUDED_MARKERS):
        return PathVerdict(False, reason=REASON_EXCLUDED_MARKER)

    if not _EXTENSION_PATTERN.search(relative_path):
        return PathVerdict(False, reason=REASON_UNSUPPORTED_EXTENSION)

    match = _CAMERA_ROLL_PATTERN.match(relative_path)
    if not match:
        return PathVerdict(False, reason=REASON_UNRECOGNIZED_LAYOUT)

    base_name = match.group("base_name")
    extension = match.group("extension").lower()
    suffix = DELETED_SUFFIX if mark_deleted else ""

    return PathVerdict(True, filename=f"{base_name}{suffix}.{extension}")
