from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Sequence

from agentlease.core.git_ops import (
    NO_REVISION,
    git_branch,
    git_push_diff,
    git_push_files,
    git_short_revision,
    git_staged_diff,
    git_staged_files,
)
from agentlease.lease.base import is_push_topic


@dataclass(frozen=True)
class GitContext:
    """Values available to command templates and gate messages.

    Every field is best-effort: a failed lookup leaves it empty (or NO_REVISION
    for the revision) instead of aborting resolution.
    """

    diff: str = ""
    diff_push: str = ""
    push_base: str = ""
    files: tuple[str, ...] = ()
    files_push: tuple[str, ...] = ()
    branch: str = ""
    revision: str = NO_REVISION
    topic: str = ""
    args: tuple[str, ...] = ()

    def diff_for(self, topic: str) -> str:
        if is_push_topic(topic):
            return self.diff_push or self.diff
        return self.diff

    def files_for(self, topic: str) -> tuple[str, ...]:
        if is_push_topic(topic):
            return self.files_push or self.files
        return self.files

    def with_topic(self, topic: str, args: Sequence[str] = ()) -> GitContext:
        return replace(self, topic=topic, args=tuple(args))


def resolve_context(repo_root: Path, *, topic: str = "", args: Sequence[str] = ()) -> GitContext:
    """Gather staged diff, push-scope diff, changed files, branch and revision for repo_root."""

    push_base, diff_push = git_push_diff(repo_root)
    return GitContext(
        diff=git_staged_diff(repo_root),
        diff_push=diff_push,
        push_base=push_base,
        files=tuple(git_staged_files(repo_root)),
        files_push=tuple(git_push_files(repo_root, push_base)),
        branch=git_branch(repo_root),
        revision=git_short_revision(repo_root),
        topic=topic,
        args=tuple(args),
    )
