# SPDX-License-Identifier: GPL-3.0-or-later
"""
iosextractor - Extract photos and videos from unencrypted local iOS device backups.

Copyright (C) 2024 iOS Backup Extractor Contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.
"""

__version__ = "1.2.4"
__license__ = "GPL-3.0-or-later"
