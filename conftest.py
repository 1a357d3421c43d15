"""
Pytest configuration for the LC-3 test suite.

    python -m pytest                 # everything
    python -m pytest -m "not tty"    # skip pseudo-terminal tests

Tests marked ``tty`` open a pseudo-terminal to drive TerminalConsole; they
are skipped automatically where termios/pty are unavailable (Windows).
"""

import pytest

try:
    import pty      # noqa: F401
    import termios  # noqa: F401
    _TTY_OK = True
except ImportError:
    _TTY_OK = False


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "tty: tests that drive a pseudo-terminal (skipped without termios)")


def pytest_collection_modifyitems(config, items):
    if _TTY_OK:
        return
    skip_tty = pytest.mark.skip(reason="termios/pty not available")
    for item in items:
        if "tty" in item.keywords:
            item.add_marker(skip_tty)
