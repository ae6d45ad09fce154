from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from agentlease.lease.base import DEFAULT_TOPIC, LockStoreError


def _load_config(args: argparse.Namespace):
    from agentlease.config import load_config

    config_path = getattr(args, "config", None)
    return load_config(config_path=Path(config_path) if config_path else None, environ=os.environ)


def _storage_error(label: str, e: LockStoreError) -> int:
    print(f"[agent-lease {label}] ERROR: {e}", file=sys.stderr)
    print(
        f"[agent-lease {label}] Remediation: Do make the lock directory writable (or set AGENT_LEASE_LOCK_DIR), then re-run.",
        file=sys.stderr,
    )
    return 3


# ---------------------------------------------------------------------------
# lease / commit / push
# ---------------------------------------------------------------------------

def cmd_lease(args: argparse.Namespace) -> int:
    from agentlease.commands.lease import run_lease

    topic = str(args.topic or "").strip()
    if not topic:
        print("[agent-lease lease] ERROR: topic missing/empty", file=sys.stderr)
        return 3

    proof = args.audit_proof
    # Bare --audit-proof (or an empty value) asks agent-lease to run the runners itself.
    self_run = proof is not None and not proof.strip()
    try:
        config = _load_config(args)
        return run_lease(
            config,
            topic=topic,
            args=[str(a) for a in (args.hook_args or [])],
            proof=None if self_run else proof,
            self_run=self_run,
            template_path=Path(args.template) if args.template else None,
            environ=os.environ,
        )
    except LockStoreError as e:
        return _storage_error("lease", e)
    except (OSError, ValueError) as e:
        print(f"[agent-lease lease] ERROR: {e}", file=sys.stderr)
        return 3


def cmd_release(args: argparse.Namespace) -> int:
    from agentlease.commands.lease import run_lease

    if not args.audit_proof:
        print("[agent-lease release] ERROR: must pass --audit-proof to confirm intentional release", file=sys.stderr)
        print("Usage: agent-lease release --audit-proof [--topic TOPIC]", file=sys.stderr)
        return 1
    try:
        config = _load_config(args)
        return run_lease(config, topic=args.topic or DEFAULT_TOPIC, self_run=True, environ=os.environ)
    except LockStoreError as e:
        return _storage_error("release", e)
    except (OSError, ValueError) as e:
        print(f"[agent-lease release] ERROR: {e}", file=sys.stderr)
        return 3


# ---------------------------------------------------------------------------
# status / clear / runners / init
# ---------------------------------------------------------------------------

def cmd_status(args: argparse.Namespace) -> int:
    from agentlease.commands.status import run_status

    try:
        return run_status(_load_config(args), topic=args.topic)
    except LockStoreError as e:
        return _storage_error("status", e)
    except (OSError, ValueError) as e:
        print(f"[agent-lease status] ERROR: {e}", file=sys.stderr)
        return 3


def cmd_clear(args: argparse.Namespace) -> int:
    from agentlease.commands.clear import run_clear

    try:
        return run_clear(_load_config(args), topic=args.topic)
    except LockStoreError as e:
        return _storage_error("clear", e)
    except (OSError, ValueError) as e:
        print(f"[agent-lease clear] ERROR: {e}", file=sys.stderr)
        return 3


def cmd_runners(args: argparse.Namespace) -> int:
    from agentlease.commands.runners import run_runners

    return run_runners(_load_config(args))


def cmd_init(args: argparse.Namespace) -> int:
    from agentlease.commands.init import run_init
    from agentlease.config import find_project_root

    try:
        return run_init(find_project_root(), environ=os.environ)
    except (OSError, ValueError) as e:
        print(f"[agent-lease init] ERROR: {e}", file=sys.stderr)
        print("[agent-lease init] Remediation: Do check that the hooks directory is writable, then re-run agent-lease init.", file=sys.stderr)
        return 3


def _add_lease_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("hook_args", nargs="*", metavar="args", help="Extra arguments (hook arguments), available as {{args}}")
    p.add_argument(
        "--audit-proof",
        nargs="?",
        const="",
        default=None,
        metavar="TEXT",
        help="Release the lease: with TEXT, reconcile submitted proof; bare, run every runner and stamp on success",
    )
    p.add_argument("--config", default=None, help="Config file path (overrides the discovery chain)")
    p.add_argument("--template", default=None, help="Gate message template path")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="agent-lease",
        description="agent-lease: git hooks that block commits and pushes until validation proof is recorded",
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    # lease
    p_lease = subparsers.add_parser("lease", help="Gate check or release for a topic")
    p_lease.add_argument("topic", help="Topic name (git hook name or custom gate)")
    _add_lease_options(p_lease)

    # commit / push aliases
    p_commit = subparsers.add_parser("commit", help="Alias of: lease pre-commit")
    _add_lease_options(p_commit)
    p_commit.set_defaults(topic="pre-commit")
    p_push = subparsers.add_parser("push", help="Alias of: lease pre-push")
    _add_lease_options(p_push)
    p_push.set_defaults(topic="pre-push")

    # release (legacy self-run)
    p_release = subparsers.add_parser("release", help="Run every runner and release the lock")
    p_release.add_argument("--audit-proof", action="store_true", help="Required: confirms an intentional release")
    p_release.add_argument("--topic", default=None, help=f"Topic (default: {DEFAULT_TOPIC})")
    p_release.add_argument("--config", default=None, help="Config file path")

    p_status = subparsers.add_parser("status", help="Show lock state")
    p_status.add_argument("--topic", default=None, help="Only this topic")
    p_status.add_argument("--config", default=None, help="Config file path")

    p_clear = subparsers.add_parser("clear", help="Remove stuck locks for this project")
    p_clear.add_argument("--topic", default=None, help="Only this topic")
    p_clear.add_argument("--config", default=None, help="Config file path")

    p_runners = subparsers.add_parser("runners", help="List configured runners and topics")
    p_runners.add_argument("--config", default=None, help="Config file path")

    subparsers.add_parser("init", help="Install git hooks and a starter config")

    args = parser.parse_args(argv)

    if args.command in ("lease", "commit", "push"):
        return cmd_lease(args)
    elif args.command == "release":
        return cmd_release(args)
    elif args.command == "status":
        return cmd_status(args)
    elif args.command == "clear":
        return cmd_clear(args)
    elif args.command == "runners":
        return cmd_runners(args)
    elif args.command == "init":
        return cmd_init(args)
    else:
        parser.print_help()
        return 3


if __name__ == "__main__":
    sys.exit(main())
