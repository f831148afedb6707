"""
rrd-archive CLI entry point.
"""

import sys

from rrd_archive.cli import main

if __name__ == "__main__":
    sys.exit(main())
