"""Configuration discovery and normalization.

Source chain (first hit wins):
  1. --config PATH
  2. .agent-lease/config.json
  3. package.json["agent-lease"]
  4. .agent-lease.json (legacy)
  5. built-in defaults

Whatever the source, the result is one immutable LeaseConfig. Nothing below
the command layer looks at raw configuration data.
"""

from __future__ import annotations

import json
import os
import re
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from agentlease.core.git_ops import git_is_linked_worktree, git_toplevel
from agentlease.core.hash import sha256_text
from agentlease.lease.base import RunnerSpec
from agentlease.lease.runner import DEFAULT_MAX_OUTPUT
from agentlease.lease.topics import legacy_topic_map, normalize_topic_map, runners_for_topic, topic_phase


CONFIG_DIRNAME = ".agent-lease"
DIR_CONFIG = Path(CONFIG_DIRNAME) / "config.json"
LEGACY_CONFIG = Path(".agent-lease.json")
PACKAGE_JSON = Path("package.json")
PYPROJECT_TOML = Path("pyproject.toml")
PACKAGE_JSON_KEY = "agent-lease"

ENV_LOCK_DIR = "AGENT_LEASE_LOCK_DIR"
ENV_PROJECT = "AGENT_LEASE_PROJECT"
ENV_RUNNERS = "AGENT_LEASE_RUNNERS"
ENV_XDG_RUNTIME_DIR = "XDG_RUNTIME_DIR"

LOCK_DIR_AUTO = "auto"
LOCK_DIR_LOCAL = "local"
LOCK_DIR_XDG = "xdg"
FALLBACK_LOCK_DIR = Path("/tmp")

WORKTREE_KEY_LEN = 6

SOURCE_CLI = "cli"
SOURCE_DIR = "dir"
SOURCE_PACKAGE = "package"
SOURCE_LEGACY = "legacy"
SOURCE_DEFAULT = "default"

DEFAULT_RUNNERS: tuple[RunnerSpec, ...] = (
    RunnerSpec(name="build", command="npm run build", on="commit"),
    RunnerSpec(name="lint", command="npm run lint", on="commit"),
)

_PROJECT_NAME_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")


def _warn(message: str) -> None:
    print(f"[agent-lease config] WARNING: {message}", file=sys.stderr)


@dataclass(frozen=True)
class ConfigSource:
    kind: str  # cli | dir | package | legacy | default
    path: Path | None
    data: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        if self.path is None:
            return "built-in defaults"
        if self.kind == SOURCE_PACKAGE:
            return f'{self.path} ["{PACKAGE_JSON_KEY}"]'
        return str(self.path)


@dataclass(frozen=True)
class ProofSettings:
    capture: bool = True
    archive: bool = True
    max_length: int = DEFAULT_MAX_OUTPUT


@dataclass(frozen=True)
class LeaseConfig:
    project_root: Path
    project_name: str
    # Distinct from project_name in linked worktrees.
    lock_key: str
    lock_dir: Path
    runners: tuple[RunnerSpec, ...]
    topics: Mapping[str, tuple[str, ...]]
    proof: ProofSettings
    template_dir: Path
    source: ConfigSource

    def runners_for(self, topic: str) -> list[RunnerSpec]:
        return runners_for_topic(self.runners, self.topics, topic)


# ---------------------------------------------------------------------------
# discovery
# ---------------------------------------------------------------------------

def find_project_root(start: Path | None = None) -> Path:
    """git toplevel, else the nearest ancestor holding .git, else start itself."""

    base = Path(start) if start is not None else Path.cwd()
    top = git_toplevel(base)
    if top is not None:
        return top
    try:
        cur = base.resolve()
    except OSError:
        return base
    for d in (cur, *cur.parents):
        if (d / ".git").exists():
            return d
    return cur


def _read_json_object(path: Path) -> dict[str, Any] | None:
    """Parsed JSON object, or None when the file is missing. Raises ValueError when unparseable."""

    try:
        text = path.read_text(encoding="utf-8", errors="strict")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise ValueError(f"cannot read {path}: {e}") from e
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"could not parse {path}: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return obj


def resolve_config_source(project_root: Path, config_path: Path | None = None) -> ConfigSource:
    """First usable source in the chain. Unparseable files warn and fall through."""

    if config_path is not None:
        p = Path(config_path)
        if not p.is_absolute():
            p = project_root / p
        try:
            data = _read_json_object(p)
        except ValueError as e:
            _warn(str(e))
            data = None
        if data is not None:
            return ConfigSource(kind=SOURCE_CLI, path=p, data=data)
        if not p.exists():
            _warn(f"config file not found: {p}")

    for kind, rel in ((SOURCE_DIR, DIR_CONFIG), (SOURCE_PACKAGE, PACKAGE_JSON), (SOURCE_LEGACY, LEGACY_CONFIG)):
        p = project_root / rel
        try:
            data = _read_json_object(p)
        except ValueError as e:
            if kind != SOURCE_PACKAGE:
                _warn(str(e))
            continue
        if data is None:
            continue
        if kind == SOURCE_PACKAGE:
            section = data.get(PACKAGE_JSON_KEY)
            if not isinstance(section, dict):
                continue
            data = section
        return ConfigSource(kind=kind, path=p, data=data)

    return ConfigSource(kind=SOURCE_DEFAULT, path=None, data={})


def flatten_defaults(data: Mapping[str, Any]) -> dict[str, Any]:
    """Lift keys of a nested "defaults" object to top level unless already set."""

    out = dict(data)
    defaults = out.get("defaults")
    if isinstance(defaults, Mapping):
        for key, value in defaults.items():
            if out.get(key) is None:
                out[key] = value
    return out


# ---------------------------------------------------------------------------
# normalization
# ---------------------------------------------------------------------------

def migrate_config(data: Mapping[str, Any]) -> dict[str, Any]:
    """Convert legacy runners[].on phases into an explicit "topics" mapping.

    Configs that already carry "topics", or whose runners never set "on", are
    returned unchanged (as a copy).
    """

    out = dict(data)
    if isinstance(out.get("topics"), Mapping):
        return out
    raw_runners = out.get("runners")
    if not isinstance(raw_runners, list):
        return out
    entries = [r for r in raw_runners if isinstance(r, Mapping) and isinstance(r.get("name"), str)]
    if not any(r.get("on") for r in entries):
        return out

    specs = [
        RunnerSpec(name=r["name"].strip(), command=str(r.get("command") or ""), on=str(r.get("on") or "commit"))
        for r in entries
        if r["name"].strip()
    ]
    out["topics"] = {topic: list(names) for topic, names in legacy_topic_map(specs).items()}
    return out


def _str_env(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


def _runner_from_object(obj: Mapping[str, Any], *, default_on: str) -> RunnerSpec | None:
    name = obj.get("name")
    command = obj.get("command")
    if not isinstance(name, str) or not name.strip():
        name = "unnamed"
    if not isinstance(command, str) or not command.strip():
        _warn(f"runner {name!r} has no command; skipped")
        return None
    return RunnerSpec(
        name=name.strip(),
        command=command,
        on=str(obj.get("on") or default_on),
        env=_str_env(obj.get("env")),
        llm=bool(obj.get("llm", False)),
    )


def parse_env_runners(raw: str) -> list[RunnerSpec]:
    """Parse AGENT_LEASE_RUNNERS="name:cmd,name:cmd"."""

    out: list[RunnerSpec] = []
    for entry in raw.split(","):
        name, sep, command = entry.partition(":")
        if not sep or not name.strip():
            continue
        out.append(RunnerSpec(name=name.strip(), command=command.strip(), on="commit"))
    return out


def _dedupe_runners(specs: Sequence[RunnerSpec]) -> tuple[RunnerSpec, ...]:
    seen: set[str] = set()
    out: list[RunnerSpec] = []
    for spec in specs:
        if spec.name in seen:
            continue
        seen.add(spec.name)
        out.append(spec)
    return tuple(out)


def normalize_runners(data: Mapping[str, Any], environ: Mapping[str, str]) -> tuple[RunnerSpec, ...]:
    """Resolve the runner list from the first source that provides one.

    env AGENT_LEASE_RUNNERS -> "runners" array -> runner objects embedded in
    "topics" -> legacy "validation" map -> DEFAULT_RUNNERS. De-duplicated by
    name, first occurrence wins.
    """

    env_raw = environ.get(ENV_RUNNERS, "")
    if env_raw.strip():
        return _dedupe_runners(parse_env_runners(env_raw))

    raw_runners = data.get("runners")
    if isinstance(raw_runners, list):
        specs = [_runner_from_object(r, default_on="commit") for r in raw_runners if isinstance(r, Mapping)]
        return _dedupe_runners([s for s in specs if s is not None])

    topics = data.get("topics")
    if isinstance(topics, Mapping):
        embedded: list[RunnerSpec] = []
        for topic, entry in topics.items():
            items = entry.get("runners") if isinstance(entry, Mapping) else entry
            if not isinstance(items, list):
                continue
            for item in items:
                if isinstance(item, Mapping) and isinstance(item.get("name"), str) and item.get("command"):
                    spec = _runner_from_object(item, default_on=topic_phase(str(topic)))
                    if spec is not None:
                        embedded.append(spec)
        if embedded:
            return _dedupe_runners(embedded)

    validation = data.get("validation")
    if isinstance(validation, Mapping):
        return _dedupe_runners(
            [
                RunnerSpec(name=str(name), command=str(cmd), on="commit")
                for name, cmd in validation.items()
                if isinstance(cmd, str) and cmd.strip() and str(name).strip()
            ]
        )

    return DEFAULT_RUNNERS


def resolve_lock_dir(lock_dir_setting: Any, project_root: Path, environ: Mapping[str, str]) -> Path:
    env_dir = environ.get(ENV_LOCK_DIR, "")
    if env_dir:
        return Path(env_dir).expanduser()

    setting = lock_dir_setting if isinstance(lock_dir_setting, str) and lock_dir_setting.strip() else LOCK_DIR_AUTO
    if setting == LOCK_DIR_LOCAL:
        return project_root / CONFIG_DIRNAME / "locks"
    if setting in (LOCK_DIR_AUTO, LOCK_DIR_XDG):
        xdg = environ.get(ENV_XDG_RUNTIME_DIR, "")
        if xdg:
            return Path(xdg) / "agent-lease"
        return FALLBACK_LOCK_DIR

    custom = Path(setting).expanduser()
    return custom if custom.is_absolute() else project_root / custom


def sanitize_project_name(name: str) -> str:
    cleaned = _PROJECT_NAME_UNSAFE_RE.sub("-", name.strip())
    return cleaned or "project"


def _package_json_name(project_root: Path) -> str | None:
    try:
        data = _read_json_object(project_root / PACKAGE_JSON)
    except ValueError:
        return None
    name = (data or {}).get("name")
    return name if isinstance(name, str) and name.strip() else None


def _pyproject_name(project_root: Path) -> str | None:
    try:
        with (project_root / PYPROJECT_TOML).open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    project = data.get("project")
    name = project.get("name") if isinstance(project, dict) else None
    return name if isinstance(name, str) and name.strip() else None


def resolve_project_name(project_root: Path, data: Mapping[str, Any], environ: Mapping[str, str]) -> str:
    candidates = (
        environ.get(ENV_PROJECT, ""),
        data.get("projectName") if isinstance(data.get("projectName"), str) else "",
    )
    for c in candidates:
        if c and c.strip():
            return sanitize_project_name(c)
    name = _package_json_name(project_root) or _pyproject_name(project_root) or project_root.name
    return sanitize_project_name(name)


def worktree_lock_key(project_name: str, project_root: Path) -> str:
    try:
        root_text = str(project_root.resolve())
    except OSError:
        root_text = str(project_root)
    return f"{project_name}-wt{sha256_text(root_text)[:WORKTREE_KEY_LEN]}"


def _proof_settings(raw: Any) -> ProofSettings:
    if not isinstance(raw, Mapping):
        return ProofSettings()
    max_length = raw.get("maxLength", DEFAULT_MAX_OUTPUT)
    if isinstance(max_length, bool) or not isinstance(max_length, int) or max_length <= 0:
        _warn(f"proof.maxLength must be a positive integer; using {DEFAULT_MAX_OUTPUT}")
        max_length = DEFAULT_MAX_OUTPUT
    return ProofSettings(
        capture=bool(raw.get("capture", True)),
        archive=bool(raw.get("archive", True)),
        max_length=max_length,
    )


def load_config(
    project_root: Path | None = None,
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LeaseConfig:
    env = os.environ if environ is None else environ
    root = Path(project_root) if project_root is not None else find_project_root()
    source = resolve_config_source(root, config_path)
    data = migrate_config(flatten_defaults(source.data))

    project_name = resolve_project_name(root, data, env)
    lock_key = worktree_lock_key(project_name, root) if git_is_linked_worktree(root) else project_name
    topics = normalize_topic_map(data.get("topics"))

    return LeaseConfig(
        project_root=root,
        project_name=project_name,
        lock_key=lock_key,
        lock_dir=resolve_lock_dir(data.get("lockDir"), root, env),
        runners=normalize_runners(data, env),
        topics=topics,
        proof=_proof_settings(data.get("proof")),
        template_dir=root / CONFIG_DIRNAME,
        source=source,
    )


def default_config_payload(project_name: str) -> dict[str, Any]:
    """Starter .agent-lease.json written by `agent-lease init`."""

    return {
        "lockDir": LOCK_DIR_AUTO,
        "projectName": project_name,
        "runners": [{"name": s.name, "command": s.command, "on": s.on} for s in DEFAULT_RUNNERS],
        "proof": {"capture": True, "archive": True, "maxLength": DEFAULT_MAX_OUTPUT},
    }
