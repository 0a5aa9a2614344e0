"""
Shared pytest configuration.

Makes the src/ layout importable when the package is not installed.
"""

import sys
from pathlib import Path

SRC = Path(__file__).resolve().parent.parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: tests that launch a real browser")
