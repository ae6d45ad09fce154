from __future__ import annotations

import sys
from pathlib import Path
from typing import Mapping, Sequence

from agentlease.config import LeaseConfig
from agentlease.lease.context import GitContext, resolve_context
from agentlease.lease.controller import GateController, GateOutcome
from agentlease.lease.lock_store import LockStore
from agentlease.templates import load_topic_template


def lock_store_for(config: LeaseConfig, revision: str) -> LockStore:
    return LockStore(
        config.lock_dir,
        revision=revision,
        audit_root=config.project_root,
        archive_proofs=config.proof.archive,
    )


def build_controller(
    config: LeaseConfig,
    context: GitContext,
    *,
    environ: Mapping[str, str],
    template_path: Path | None = None,
) -> GateController:
    return GateController(
        project=config.lock_key,
        display_name=config.project_name,
        runners=config.runners,
        topic_map=config.topics,
        store=lock_store_for(config, context.revision),
        context=context,
        template_for=lambda topic: load_topic_template(topic, config.template_dir, template_path),
        environ=environ,
        cwd=config.project_root,
        capture_output=config.proof.capture,
        max_output=config.proof.max_length,
    )


def emit_outcome(outcome: GateOutcome) -> int:
    """ALLOW text goes to stdout, DENY text to stderr."""

    if outcome.message:
        stream = sys.stdout if outcome.allowed else sys.stderr
        print(outcome.message, end="" if outcome.message.endswith("\n") else "\n", file=stream)
    return outcome.exit_code


def run_lease(
    config: LeaseConfig,
    *,
    topic: str,
    args: Sequence[str] = (),
    proof: str | None = None,
    self_run: bool = False,
    template_path: Path | None = None,
    environ: Mapping[str, str],
) -> int:
    """Gate check (no proof), external-proof release (proof text) or self-run release."""

    context = resolve_context(config.project_root, topic=topic, args=args)
    controller = build_controller(config, context, environ=environ, template_path=template_path)
    if self_run:
        outcome = controller.release(topic, args=args)
    else:
        outcome = controller.check(topic, proof=proof, args=args)
    return emit_outcome(outcome)
