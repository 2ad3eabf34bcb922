"""Tests for the CLI entry point (main.py)."""

from __future__ import annotations

import os
import subprocess
import sys

ROOT = os.path.join(os.path.dirname(__file__), "..")


def _run(*args, **env):
    return subprocess.run(
        [sys.executable, "src/main.py", *args],
        capture_output=True, text=True, timeout=10, cwd=ROOT,
        env={**os.environ, **env},
    )


class TestCLI:

    def test_help_flag(self):
        """--help should print usage and exit 0."""
        result = _run("--help")
        assert result.returncode == 0
        for command in ("serve", "webhook", "parse"):
            assert command in result.stdout

    def test_missing_command(self):
        """No subcommand should exit with error."""
        result = _run()
        assert result.returncode != 0
        assert "required" in result.stderr.lower() or "command" in result.stderr.lower()

    def test_parse_requires_wallet(self):
        result = _run("parse")
        assert result.returncode != 0
        assert "wallet" in result.stderr.lower()

    def test_webhook_create_without_helius(self):
        result = _run("webhook", "create", "--url", "https://example.org/webhook/helius",
                      HELIUS_ENABLED="false", HELIUS_API_KEY="")
        assert result.returncode == 1
        assert "Helius is disabled" in result.stdout

    def test_webhook_delete_without_id(self):
        result = _run("webhook", "delete", WEBHOOK_ID="")
        assert result.returncode == 1
        assert "No webhook id" in result.stdout
