from __future__ import annotations

import shlex
import shutil
import stat
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from agentlease.core.git_ops import git_hooks_dir


KNOWN_GIT_HOOKS = (
    "pre-commit",
    "prepare-commit-msg",
    "commit-msg",
    "post-commit",
    "pre-push",
    "pre-rebase",
    "post-checkout",
    "post-merge",
)
DEFAULT_HOOKS = ("pre-commit", "pre-push")

HOOK_MARKER = "# agent-lease managed hook"
BACKUP_SUFFIX = ".agent-lease-backup"


@dataclass(frozen=True)
class HookInstall:
    hook: str
    path: Path
    backup_path: Path | None = None
    replaced_own: bool = False


def is_git_hook(topic: str) -> bool:
    return topic in KNOWN_GIT_HOOKS


def resolve_hooks_dir(project_root: Path) -> Path:
    """git's hooks path (honours core.hooksPath and worktrees), else <root>/.git/hooks."""

    return git_hooks_dir(project_root) or project_root / ".git" / "hooks"


def render_hook_script(hook: str, *, python: str) -> str:
    return (
        "#!/bin/sh\n"
        f"{HOOK_MARKER}\n"
        f"exec {shlex.quote(python)} -m agentlease lease {shlex.quote(hook)} \"$@\"\n"
    )


def _is_own_hook(path: Path) -> bool:
    try:
        return HOOK_MARKER in path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


def install_hooks(
    project_root: Path,
    hooks: Sequence[str] = DEFAULT_HOOKS,
    python: str = sys.executable,
) -> list[HookInstall]:
    """Write hook scripts that run `python -m agentlease lease <hook>`.

    A pre-existing hook not written by agent-lease is copied to
    <hook>.agent-lease-backup first. OSError propagates.
    """

    for hook in hooks:
        if not is_git_hook(hook):
            raise ValueError(f"unknown git hook: {hook!r}")

    hooks_dir = resolve_hooks_dir(project_root)
    hooks_dir.mkdir(parents=True, exist_ok=True)

    installed: list[HookInstall] = []
    for hook in hooks:
        dest = hooks_dir / hook
        backup: Path | None = None
        own = False
        if dest.exists():
            own = _is_own_hook(dest)
            if not own:
                backup = dest.with_name(dest.name + BACKUP_SUFFIX)
                shutil.copyfile(dest, backup)
        dest.write_text(render_hook_script(hook, python=python), encoding="utf-8", newline="\n")
        mode = dest.stat().st_mode
        dest.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH | stat.S_IRUSR | stat.S_IWUSR)
        installed.append(HookInstall(hook=hook, path=dest, backup_path=backup, replaced_own=own))
    return installed
