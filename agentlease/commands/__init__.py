"""Command implementations behind the agent-lease CLI.

Each module exposes run_* functions returning a process exit code. Argument
parsing lives in agentlease.cli.
"""

from __future__ import annotations
