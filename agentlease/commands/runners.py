from __future__ import annotations

import sys

from agentlease.config import LeaseConfig
from agentlease.lease.topics import unknown_topic_runners


def run_runners(config: LeaseConfig) -> int:
    print(f"Config: {config.source.describe()}")
    print("Runners:")
    if not config.runners:
        print("  (none)")
    for spec in config.runners:
        suffix = " (llm)" if spec.llm else ""
        print(f"  [{spec.on}] {spec.name}: {spec.command}{suffix}")

    if config.topics:
        print("Topics:")
        for topic in config.topics:
            names = [s.name for s in config.runners_for(topic)]
            print(f"  {topic}: {', '.join(names) if names else '(no runners)'}")
        for topic, name in unknown_topic_runners(config.runners, config.topics):
            print(f"[agent-lease runners] WARNING: topic {topic} names undefined runner {name!r}", file=sys.stderr)
    return 0
