#!/usr/bin/env python3
"""
Compute Engine Volume Resizer

Grows the boot disk of a Compute Engine instance (snapshot, new bigger disk,
swap, restart) and rolls every step back if a later one fails.

This script supports running directly from a source checkout that uses a
src/ layout: it adds the local `src/` directory to sys.path. For production
use, prefer installing the project and using the `volume-resizer` console
script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
