"""Audible completion notification."""

from __future__ import annotations

import sys


def play_chime() -> None:
    """Ring the terminal bell when stderr is an interactive terminal."""
    if sys.stderr.isatty():
        sys.stderr.write("\a")
        sys.stderr.flush()
