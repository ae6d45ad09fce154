from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from agentlease.hooks import BACKUP_SUFFIX, HOOK_MARKER, install_hooks, is_git_hook, render_hook_script


def test_render_hook_script_quotes_interpreter() -> None:
    text = render_hook_script("pre-push", python="/opt/my python/bin/python3")
    lines = text.splitlines()
    assert lines[0] == "#!/bin/sh"
    assert lines[1] == HOOK_MARKER
    assert lines[2] == "exec '/opt/my python/bin/python3' -m agentlease lease pre-push \"$@\""


def test_is_git_hook() -> None:
    assert is_git_hook("pre-commit")
    assert is_git_hook("commit-msg")
    assert not is_git_hook("deploy-prod")


def test_unknown_hook_is_rejected_before_writing(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        install_hooks(tmp_path, ["pre-commit", "deploy-prod"], python="python3")
    assert not (tmp_path / ".git" / "hooks" / "pre-commit").exists()


@pytest.mark.repo_local
@pytest.mark.skipif(shutil.which("git") is None, reason="requires git")
def test_foreign_hook_is_backed_up(tmp_path: Path) -> None:
    subprocess.run(["git", "init", "-q", str(tmp_path)], check=True)
    hooks_dir = tmp_path / ".git" / "hooks"
    hooks_dir.mkdir(parents=True, exist_ok=True)
    (hooks_dir / "pre-commit").write_text("#!/bin/sh\necho husky\n", encoding="utf-8")

    installed = {h.hook: h for h in install_hooks(tmp_path, python="python3")}

    backup = installed["pre-commit"].backup_path
    assert backup is not None
    assert backup.name == "pre-commit" + BACKUP_SUFFIX
    assert "echo husky" in backup.read_text(encoding="utf-8")
    assert installed["pre-push"].backup_path is None
    assert HOOK_MARKER in (hooks_dir / "pre-commit").read_text(encoding="utf-8")
    if os.name == "posix":
        assert os.access(hooks_dir / "pre-push", os.X_OK)

    again = {h.hook: h for h in install_hooks(tmp_path, python="python3")}
    assert again["pre-commit"].replaced_own is True
    assert again["pre-commit"].backup_path is None
    assert "echo husky" in backup.read_text(encoding="utf-8")
