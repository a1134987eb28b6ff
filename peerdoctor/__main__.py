"""Entry point for ``python -m peerdoctor``."""

import sys

from peerdoctor.cli import main

if __name__ == "__main__":
    sys.exit(main())
