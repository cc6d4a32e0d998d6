#!/usr/bin/env python3
"""
Entry point script for subgraph-based swap ingestion.
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dex_swap_fetcher.cli import main

if __name__ == "__main__":
    sys.exit(main())
