"""Entry point for running the engine CLI with ``python -m timekeeping_engine``."""

import sys

from timekeeping_engine.cli import main

if __name__ == "__main__":
    sys.exit(main())
