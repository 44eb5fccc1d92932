"""Harness Sessions - one index over Claude Code, Codex and OpenCode session logs."""

__version__ = "0.3.0"
