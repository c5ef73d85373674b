# SPDX-License-Identifier: GPL-3.0-or-later
"""Entry point: python -m iosextractor"""

import sys

from .extract_files import main

if __name__ == "__main__":
    sys.exit(main())
