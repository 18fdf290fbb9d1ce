#!/usr/bin/env python3
"""
Recommendation launcher script.

Prints portfolio recommendations for a wallet using the dev.yaml configuration.
The dev profile never submits transactions.

Usage: scripts/run_recommend.py 0xWALLET [conservative|neutral|aggressive]
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from yieldnav.runner.pipeline import main


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)

    argv = [
        "--config",
        str(project_root / "configs" / "dev.yaml"),
        "--profile",
        "dev",
        "recommend",
        "--wallet",
        sys.argv[1],
    ]
    if len(sys.argv) > 2:
        argv += ["--risk", sys.argv[2]]

    try:
        sys.exit(asyncio.run(main(argv)))
    except KeyboardInterrupt:
        print("\nStopped by user.")
        sys.exit(0)
