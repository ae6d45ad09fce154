"""agent-lease: git hooks that hold a lease until validation proof is recorded."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def __getattr__(name: str):
    if name == "__version__":
        try:
            return version("agent-lease")
        except PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)
