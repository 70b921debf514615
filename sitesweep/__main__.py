# Allows the package to be run as a script using `python -m sitesweep`

from __future__ import annotations

import sys

from sitesweep.cli import main

if __name__ == "__main__":
    sys.exit(main())
