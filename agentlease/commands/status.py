from __future__ import annotations

from pathlib import Path

from agentlease.commands.lease import lock_store_for
from agentlease.config import LeaseConfig
from agentlease.core.git_ops import git_short_revision
from agentlease.lease.base import LOCK_VALIDATED
from agentlease.templates import release_command


def _print_lock(topic: str, status: str, lock_path: Path) -> None:
    if status == LOCK_VALIDATED:
        print(f"[{topic}] Lock exists with audit proof. Next attempt will pass.")
    else:
        print(f"[{topic}] Lock exists. Validation required before {topic} can proceed.")
        print(f"  Release: {release_command(topic)}")
    print(f"  Lock: {lock_path}")


def run_status(config: LeaseConfig, *, topic: str | None = None) -> int:
    print(f"Project: {config.project_name}")
    if config.lock_key != config.project_name:
        print(f"Lock key: {config.lock_key} (linked worktree)")
    print(f"Config: {config.source.describe()}")

    store = lock_store_for(config, git_short_revision(config.project_root))
    if topic is not None:
        state = store.inspect(config.lock_key, topic)
        if not state.exists:
            print(f"[{topic}] No active lock. The next {topic} attempt will be gated.")
            print(f"  Lock dir: {config.lock_dir}")
            return 0
        _print_lock(topic, state.status, state.lock_path)
        return 0

    states = store.active_locks(config.lock_key)
    if not states:
        print("No active lock. The next gated operation will create one.")
        print(f"  Lock dir: {config.lock_dir}")
        return 0
    for state in states:
        _print_lock(state.topic, state.status, state.lock_path)
    return 0
