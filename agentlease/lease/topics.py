"""Topic -> runner-set resolution.

Two configuration shapes reach this module:

- an explicit mapping, topic -> ordered runner names
  (values may be a list of names or {"runners": [name | {name, command}]})
- the legacy per-runner trigger phase, RunnerSpec.on = commit | push | both | <topic>

Both are normalized here; callers only ever see an ordered list of RunnerSpec.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from agentlease.lease.base import DEFAULT_TOPIC, RunnerSpec, stable_unique


PHASE_COMMIT = "commit"
PHASE_PUSH = "push"
PHASE_BOTH = "both"

_PHASE_TOPICS: dict[str, tuple[str, ...]] = {
    PHASE_COMMIT: (DEFAULT_TOPIC,),
    PHASE_PUSH: ("pre-push",),
    PHASE_BOTH: (DEFAULT_TOPIC, "pre-push"),
}


def phase_topics(on: str | None) -> tuple[str, ...]:
    """Topics a legacy trigger phase applies to. Unknown phases name a custom topic."""

    phase = (on or PHASE_COMMIT).strip() or PHASE_COMMIT
    return _PHASE_TOPICS.get(phase, (phase,))


def topic_phase(topic: str) -> str:
    """Legacy phase label for a topic (used for display)."""

    if topic == DEFAULT_TOPIC:
        return PHASE_COMMIT
    if topic == "pre-push":
        return PHASE_PUSH
    return topic


def topic_entry_names(entry: Any) -> list[str]:
    """Runner names from one topic mapping value; malformed entries yield []."""

    if isinstance(entry, Mapping):
        entry = entry.get("runners")
    if not isinstance(entry, (list, tuple)):
        return []
    names: list[str] = []
    for item in entry:
        if isinstance(item, str):
            name = item
        elif isinstance(item, Mapping) and isinstance(item.get("name"), str):
            name = item["name"]
        else:
            continue
        if name.strip():
            names.append(name.strip())
    return stable_unique(names)


def normalize_topic_map(raw: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(raw, Mapping):
        return {}
    out: dict[str, tuple[str, ...]] = {}
    for topic, entry in raw.items():
        if isinstance(topic, str) and topic.strip():
            out[topic.strip()] = tuple(topic_entry_names(entry))
    return out


def legacy_topic_map(runners: Iterable[RunnerSpec]) -> dict[str, tuple[str, ...]]:
    """Explicit mapping equivalent to the runners' legacy trigger phases."""

    acc: dict[str, list[str]] = {}
    for spec in runners:
        for topic in phase_topics(spec.on):
            names = acc.setdefault(topic, [])
            if spec.name not in names:
                names.append(spec.name)
    return {topic: tuple(names) for topic, names in acc.items()}


def runners_for_topic(
    runners: Sequence[RunnerSpec],
    topic_map: Mapping[str, Sequence[str]],
    topic: str,
) -> list[RunnerSpec]:
    """Ordered runner specs required for topic.

    An explicit mapping entry wins and fixes the order; names with no matching
    runner are skipped. Without one, runners are selected by trigger phase in
    configured order.
    """

    by_name: dict[str, RunnerSpec] = {}
    for spec in runners:
        by_name.setdefault(spec.name, spec)

    if topic in topic_map:
        return [by_name[n] for n in stable_unique(topic_map[topic]) if n in by_name]

    return [spec for name, spec in by_name.items() if topic in phase_topics(spec.on)]


def unknown_topic_runners(
    runners: Sequence[RunnerSpec],
    topic_map: Mapping[str, Sequence[str]],
) -> list[tuple[str, str]]:
    """(topic, name) pairs where the mapping names a runner nobody defined."""

    known = {spec.name for spec in runners}
    return [(topic, name) for topic, names in topic_map.items() for name in names if name not in known]
