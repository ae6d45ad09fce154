from __future__ import annotations

from agentlease.commands.lease import lock_store_for
from agentlease.config import LeaseConfig
from agentlease.core.git_ops import NO_REVISION


def run_clear(config: LeaseConfig, *, topic: str | None = None) -> int:
    """Remove stuck locks for this project at any revision (optionally one topic)."""

    store = lock_store_for(config, NO_REVISION)
    outcome = store.clear_all(config.lock_key, topic)
    scope = f" for topic {topic}" if topic is not None else ""
    if outcome.cleared == 0:
        print(f"No locks found to clear{scope}.")
        return 0
    print(f"Cleared {outcome.cleared} lock(s){scope}:")
    for p in outcome.paths:
        print(f"  {p}")
    return 0
