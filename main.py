#!/usr/bin/env python3
"""
quietcrawl - Budgeted site crawler with page stabilization

Main entry point for running the CLI from a source checkout.

Usage:
    python main.py crawl https://example.com
    python main.py audit https://example.com --max-pages 20 --output results/audit.json
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / "src"))

from quietcrawl.cli import cli


if __name__ == '__main__':
    cli()
