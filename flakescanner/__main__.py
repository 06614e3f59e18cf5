"""
Entry point for running the flaky test scanner as a module.

Usage:
    python -m flakescanner scan ./src
    python -m flakescanner --help
"""

import sys
from flakescanner.cli import main

if __name__ == "__main__":
    sys.exit(main())
