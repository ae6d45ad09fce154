from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Mapping

from agentlease.config import LEGACY_CONFIG, SOURCE_DEFAULT, default_config_payload, resolve_config_source, resolve_project_name
from agentlease.core.git_ops import git_toplevel
from agentlease.hooks import DEFAULT_HOOKS, install_hooks


def run_init(project_root: Path, *, environ: Mapping[str, str], python: str = sys.executable) -> int:
    """Install the pre-commit/pre-push hooks and a starter config (idempotent)."""

    if git_toplevel(project_root) is None and not (project_root / ".git").exists():
        print(f"[agent-lease init] ERROR: not a git repository: {project_root}", file=sys.stderr)
        print("[agent-lease init] Remediation: Do run `git init` first, then re-run agent-lease init.", file=sys.stderr)
        return 3

    for inst in install_hooks(project_root, DEFAULT_HOOKS, python=python):
        if inst.backup_path is not None:
            print(f"  Backed up existing {inst.hook} -> {inst.backup_path.name}")
        verb = "Updated" if inst.replaced_own else "Installed"
        print(f"  {verb} {inst.hook}: {inst.path}")

    if resolve_config_source(project_root).kind == SOURCE_DEFAULT:
        config_path = project_root / LEGACY_CONFIG
        payload = default_config_payload(resolve_project_name(project_root, {}, environ))
        config_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n",
            encoding="utf-8",
            newline="\n",
        )
        print(f"  Created {LEGACY_CONFIG}")

    print("")
    print("agent-lease installed.")
    print("  The next commit or push creates a validation gate.")
    print("  Configured runners must pass (or be proven) before it goes through.")
    return 0
