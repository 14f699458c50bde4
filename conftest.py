"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                      # everything
    python -m pytest -m "not realtime"    # skip the wall-clock scheduler tests

SDL is pointed at its dummy drivers so pygame never needs a real window
or sound card while the suite runs.
"""

import os

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "realtime: tests that run the threaded tick sources against the wall clock")
