"""Tests for the CLI entry point (main.py)."""

from __future__ import annotations

import os
import subprocess
import sys

_MAIN = os.path.join(os.path.dirname(__file__), "..", "src", "main.py")


class TestCLI:

    def test_help_flag(self):
        """--help should print usage and exit 0."""
        result = subprocess.run(
            [sys.executable, _MAIN, "--help"],
            capture_output=True, text=True, timeout=10,
        )
        assert result.returncode == 0
        assert "--tx-hash" in result.stdout
        assert "--prefer" in result.stdout

    def test_missing_required_flags(self):
        """Missing --tx-hash should exit with error."""
        result = subprocess.run(
            [sys.executable, _MAIN],
            capture_output=True, text=True, timeout=10,
        )
        assert result.returncode != 0
        assert "required" in result.stderr.lower()

    def test_unknown_kind_rejected(self):
        result = subprocess.run(
            [sys.executable, _MAIN, "--tx-hash", "abc", "--from", "a", "--to", "b",
             "--amount", "1", "--kind", "tarot"],
            capture_output=True, text=True, timeout=10,
        )
        assert result.returncode == 2
        assert "invalid choice" in result.stderr

    def test_invalid_amount_exits_2(self):
        """Validation problems are printed and nothing is analysed."""
        result = subprocess.run(
            [sys.executable, _MAIN, "--tx-hash", "abc", "--from", "a", "--to", "b", "--amount=-5"],
            capture_output=True, text=True, timeout=30,
        )
        assert result.returncode == 2
        assert "error: amount" in result.stderr
