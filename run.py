#!/usr/bin/env python3
"""Lattice Energy Entrypoint

Sweeps the lattice energy calculator over dimensions 1..d and prints one row
per dimension.

Usage:
    python run.py                    # Run with defaults
    python run.py -d 5 -V 200        # Small sweep
    python run.py --profile          # Run with torch profiling
    python run.py --help             # Every parameter option
"""

from __future__ import annotations

import sys

from lattice_energy.cli import main

if __name__ == "__main__":
    sys.exit(main())
