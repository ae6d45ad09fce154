from __future__ import annotations

import ast
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

PACKAGE_ROOT = REPO_ROOT / "agentlease"

# layer -> module prefixes it must never import
FORBIDDEN = {
    "agentlease.core": (
        "agentlease.lease",
        "agentlease.config",
        "agentlease.templates",
        "agentlease.hooks",
        "agentlease.commands",
        "agentlease.cli",
    ),
    "agentlease.lease": (
        "agentlease.config",
        "agentlease.hooks",
        "agentlease.commands",
        "agentlease.cli",
    ),
}


@dataclass(frozen=True)
class Hit:
    path: str
    lineno: int
    module: str


def _module_name(p: Path) -> str:
    rel = p.relative_to(PACKAGE_ROOT.parent).with_suffix("")
    parts = list(rel.parts)
    if parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def _imported_modules(tree: ast.AST) -> Iterable[tuple[int, str]]:
    for node in ast.walk(tree):
        if isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            yield node.lineno, node.module
        elif isinstance(node, ast.Import):
            for alias in node.names:
                yield node.lineno, alias.name


def _matches(module: str, prefix: str) -> bool:
    return module == prefix or module.startswith(prefix + ".")


def find_violations() -> list[Hit]:
    hits: list[Hit] = []
    for p in sorted(PACKAGE_ROOT.rglob("*.py")):
        if "__pycache__" in p.parts:
            continue
        name = _module_name(p)
        rules = [forbidden for layer, forbidden in FORBIDDEN.items() if _matches(name, layer)]
        if not rules:
            continue
        tree = ast.parse(p.read_text(encoding="utf-8"), filename=str(p))
        for lineno, module in _imported_modules(tree):
            for forbidden in rules:
                if any(_matches(module, f) for f in forbidden):
                    hits.append(Hit(path=p.as_posix(), lineno=lineno, module=module))
    return hits


def test_layers_only_import_downward() -> None:
    hits = find_violations()
    if hits:
        msg = "\n".join(f"{h.path}:{h.lineno} imports {h.module}" for h in hits)
        raise AssertionError("Dependency direction violated:\n" + msg)


def test_import_graph_sanity() -> None:
    # These should import without any circular dependency errors.
    import agentlease.cli  # noqa: F401
    import agentlease.lease.controller  # noqa: F401
    import agentlease.templates  # noqa: F401
