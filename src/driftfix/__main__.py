"""
Entry point for running DriftFix as a module.

Allows running DriftFix with:
    python -m driftfix classify --plan plan.json
"""

import sys

from driftfix.cli import main

if __name__ == "__main__":
    sys.exit(main())
