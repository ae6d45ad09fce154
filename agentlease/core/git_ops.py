from __future__ import annotations

import os
import subprocess
from pathlib import Path


NO_REVISION = "new"

# Candidate bases for the push-scope diff, tried in order.
PUSH_BASE_CANDIDATES = ("@{upstream}", "origin/main", "origin/master")


def _git_env() -> dict[str, str]:
    env = dict(os.environ)
    # Deterministic parsing: avoid localized output.
    env.setdefault("LANG", "C")
    env.setdefault("LC_ALL", "C")
    return env


def _run_git(repo_root: Path, args: list[str]) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(
        ["git", *args],
        cwd=str(repo_root),
        env=_git_env(),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=False,
    )


def git_output(repo_root: Path, args: list[str]) -> str | None:
    """Run git and return trimmed stdout, or None on any failure.

    Every lookup built on this helper is best-effort: a missing git binary,
    a directory that is not a repository, or a missing ref all yield None.
    """

    try:
        cp = _run_git(repo_root, args)
    except (OSError, ValueError):
        return None
    if cp.returncode != 0:
        return None
    return cp.stdout.decode("utf-8", errors="replace").strip()


def git_toplevel(start: Path) -> Path | None:
    out = git_output(start, ["rev-parse", "--show-toplevel"])
    if not out:
        return None
    return Path(out)


def git_short_revision(repo_root: Path) -> str:
    """Short HEAD hash, or NO_REVISION before the first commit exists."""

    out = git_output(repo_root, ["rev-parse", "--short", "HEAD"])
    return out or NO_REVISION


def git_branch(repo_root: Path) -> str:
    return git_output(repo_root, ["rev-parse", "--abbrev-ref", "HEAD"]) or ""


def git_staged_diff(repo_root: Path) -> str:
    return git_output(repo_root, ["diff", "--cached"]) or ""


def git_staged_files(repo_root: Path) -> list[str]:
    out = git_output(repo_root, ["-c", "core.quotePath=false", "diff", "--cached", "--name-only"])
    if not out:
        return []
    return [line for line in out.splitlines() if line.strip()]


def git_push_diff(repo_root: Path, candidates: tuple[str, ...] = PUSH_BASE_CANDIDATES) -> tuple[str, str]:
    """Return (base, diff) for the first candidate base that git can diff against.

    Returns ("", "") when no candidate resolves (no remote, detached clone, ...).
    """

    for base in candidates:
        out = git_output(repo_root, ["diff", f"{base}...HEAD"])
        if out is not None:
            return base, out
    return "", ""


def git_push_files(repo_root: Path, base: str) -> list[str]:
    if not base:
        return []
    out = git_output(repo_root, ["-c", "core.quotePath=false", "diff", "--name-only", f"{base}...HEAD"])
    if not out:
        return []
    return [line for line in out.splitlines() if line.strip()]


def git_hooks_dir(repo_root: Path) -> Path | None:
    out = git_output(repo_root, ["rev-parse", "--git-path", "hooks"])
    if not out:
        return None
    p = Path(out)
    return p if p.is_absolute() else repo_root / p


def git_is_linked_worktree(repo_root: Path) -> bool:
    """True when repo_root is a secondary worktree (its git dir differs from the common dir)."""

    git_dir = git_output(repo_root, ["rev-parse", "--absolute-git-dir"])
    common = git_output(repo_root, ["rev-parse", "--git-common-dir"])
    if not git_dir or not common:
        return False
    common_path = Path(common)
    if not common_path.is_absolute():
        common_path = repo_root / common_path
    try:
        return Path(git_dir).resolve() != common_path.resolve()
    except OSError:
        return False
