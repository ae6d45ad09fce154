"""Gate controller: the per-topic lock state machine.

    UNLOCKED --check--> PENDING --release--> VALIDATED --check--> UNLOCKED (archived)

check(topic) without proof
    UNLOCKED   create lock, DENY with the rendered gate message
    PENDING    DENY again with the same message
    VALIDATED  archive the lock, ALLOW

check(topic, proof) / release(topic)
    UNLOCKED   ALLOW, nothing to release
    VALIDATED  ALLOW, already released (no second stamp)
    PENDING    reconcile the proof (external mode) or execute every runner
               (self-run mode); stamp on success, DENY otherwise

Every DENY maps to a non-zero exit code, every ALLOW to zero. Filesystem
failures surface as LockStoreError and are never folded into a DENY.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Mapping, Sequence

from agentlease.lease.base import (
    LOCK_VALIDATED,
    PROOF_MODE_AGENT,
    PROOF_MODE_SELF,
    RunAllResult,
    RunnerSpec,
)
from agentlease.lease.context import GitContext
from agentlease.lease.lock_store import LockStore
from agentlease.lease.proof import Decision, parse_proof, proof_template, reconcile
from agentlease.lease.runner import DEFAULT_MAX_OUTPUT, RUNNER_TIMEOUT_S, execute_all, format_results
from agentlease.lease.topics import runners_for_topic
from agentlease.templates import render_deny_message


KIND_BLOCKED = "blocked"
KIND_CONSUMED = "consumed"
KIND_NO_LOCK = "no-lock"
KIND_ALREADY_VALIDATED = "already-validated"
KIND_ACCEPTED = "accepted"
KIND_REJECTED = "rejected"
KIND_RELEASED = "released"
KIND_RUNNER_FAILED = "runner-failed"

EXIT_ALLOW = 0
EXIT_DENY = 1


@dataclass(frozen=True)
class GateOutcome:
    allowed: bool
    kind: str
    topic: str
    lock_path: Path
    message: str = ""
    decision: Decision | None = None
    run: RunAllResult | None = None
    archive_path: Path | None = None
    report_path: Path | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_ALLOW if self.allowed else EXIT_DENY


class GateController:
    """Decides DENY/ALLOW for one project. All inputs are passed in explicitly.

    project:    lock key for the project (worktree-distinct)
    runners:    every configured runner, in configured order
    topic_map:  explicit topic -> runner-name mapping (may be empty)
    template_for: topic -> template text, used only when rendering a DENY
    """

    def __init__(
        self,
        *,
        project: str,
        display_name: str | None = None,
        runners: Sequence[RunnerSpec],
        topic_map: Mapping[str, Sequence[str]],
        store: LockStore,
        context: GitContext,
        template_for: Callable[[str], str],
        environ: Mapping[str, str],
        cwd: Path | None = None,
        capture_output: bool = True,
        max_output: int = DEFAULT_MAX_OUTPUT,
        timeout_s: float = RUNNER_TIMEOUT_S,
    ) -> None:
        self.project = project
        self.display_name = display_name or project
        self.runners = tuple(runners)
        self.topic_map = topic_map
        self.store = store
        self.context = context
        self.template_for = template_for
        self.environ = environ
        self.cwd = cwd
        self.capture_output = capture_output
        self.max_output = max_output
        self.timeout_s = timeout_s

    def required_runners(self, topic: str) -> list[RunnerSpec]:
        return runners_for_topic(self.runners, self.topic_map, topic)

    # -----------------------------------------------------------------------
    # gate check
    # -----------------------------------------------------------------------

    def check(self, topic: str, proof: str | None = None, args: Sequence[str] = ()) -> GateOutcome:
        _validate_topic(topic)
        if proof is not None:
            return self.release_with_proof(topic, proof)

        state = self.store.inspect(self.project, topic)
        if state.status == LOCK_VALIDATED:
            archived = self.store.archive(self.project, topic)
            return GateOutcome(
                allowed=True,
                kind=KIND_CONSUMED,
                topic=topic,
                lock_path=state.lock_path,
                message=f"Validation proof found for {topic}. Lock archived, proceeding.",
                archive_path=archived.archive_path,
            )

        record = self.store.create(self.project, topic)
        required = self.required_runners(topic)
        message = render_deny_message(
            topic=topic,
            template=self.template_for(topic),
            context=self.context.with_topic(topic, args),
            project_name=self.display_name,
            runners=required,
            environ=self.environ,
            lock_path=record.lock_path,
        )
        return GateOutcome(allowed=False, kind=KIND_BLOCKED, topic=topic, lock_path=record.lock_path, message=message)

    # -----------------------------------------------------------------------
    # release
    # -----------------------------------------------------------------------

    def _release_precheck(self, topic: str) -> GateOutcome | None:
        state = self.store.inspect(self.project, topic)
        if not state.exists:
            return GateOutcome(
                allowed=True,
                kind=KIND_NO_LOCK,
                topic=topic,
                lock_path=state.lock_path,
                message=f"No active lock for {topic}. Nothing to release.",
            )
        if state.status == LOCK_VALIDATED:
            return GateOutcome(
                allowed=True,
                kind=KIND_ALREADY_VALIDATED,
                topic=topic,
                lock_path=state.lock_path,
                message=f"Lock for {topic} already has audit proof. Re-run the git operation to proceed.",
            )
        return None

    def release_with_proof(self, topic: str, proof: str) -> GateOutcome:
        """External-proof mode: reconcile submitted text against the topic's runners."""

        _validate_topic(topic)
        early = self._release_precheck(topic)
        if early is not None:
            return early

        required = self.required_runners(topic)
        parsed = parse_proof(proof)
        decision = reconcile(parsed.runners, required)
        lock_path = self.store.locate(self.project, topic)

        if not decision.accepted:
            return GateOutcome(
                allowed=False,
                kind=KIND_REJECTED,
                topic=topic,
                lock_path=lock_path,
                message=_render_rejection(topic, decision, required, lock_path),
                decision=decision,
            )

        outcome = self.store.stamp(
            self.project,
            topic,
            parsed.runners,
            proof_mode=PROOF_MODE_AGENT,
            proof_text=proof,
            parsed=parsed,
        )
        lines = [
            f"[agent-lease] {topic}: proof accepted ({len(parsed.runners)} runner(s) reported).",
        ]
        lines.extend(f"  [{r.status or '?'}] {r.name}" + (f": {r.output}" if r.output else "") for r in parsed.runners)
        if parsed.summary:
            lines.append(f"  Summary: {parsed.summary}")
        if outcome.report_path is not None:
            lines.append(f"  Report: {outcome.report_path}")
        lines.append(f"[agent-lease] {topic}: lock released. Re-run the git operation to proceed.")
        return GateOutcome(
            allowed=True,
            kind=KIND_ACCEPTED,
            topic=topic,
            lock_path=outcome.lock_path,
            message="\n".join(lines) + "\n",
            decision=decision,
            report_path=outcome.report_path,
        )

    def release(self, topic: str, args: Sequence[str] = ()) -> GateOutcome:
        """Self-run mode: execute the topic's runners in order, stopping at the first failure."""

        _validate_topic(topic)
        early = self._release_precheck(topic)
        if early is not None:
            return early

        required = self.required_runners(topic)
        run = execute_all(
            required,
            self.display_name,
            topic,
            context=self.context.with_topic(topic, args),
            environ=self.environ,
            cwd=self.cwd,
            timeout_s=self.timeout_s,
            max_output=self.max_output,
        )
        lock_path = self.store.locate(self.project, topic)
        listing = format_results(run.results)

        if not run.all_passed:
            failed = run.failed
            not_reached = [spec.name for spec in required[len(run.results):]]
            lines = [f"[agent-lease] {topic}: running {len(required)} runner(s)", listing, ""]
            if failed is not None:
                lines.append(f"Validation failed: runner '{failed.name}' failed ({failed.error or 'failed'}).")
            if not_reached:
                lines.append(f"Not attempted: {', '.join(not_reached)}")
            lines.extend(
                [
                    f"Lock remains: {lock_path}",
                    "",
                    f"Remediation: Do fix the failure, then re-run: agent-lease lease {topic} --audit-proof",
                    "--no-verify is FORBIDDEN without explicit human approval.",
                ]
            )
            return GateOutcome(
                allowed=False,
                kind=KIND_RUNNER_FAILED,
                topic=topic,
                lock_path=lock_path,
                message="\n".join(lines) + "\n",
                run=run,
            )

        results = run.results if self.capture_output else [replace(r, proof=None) for r in run.results]
        outcome = self.store.stamp(self.project, topic, results, proof_mode=PROOF_MODE_SELF)
        lines = [f"[agent-lease] {topic}: running {len(required)} runner(s)"]
        if listing:
            lines.append(listing)
        lines.append("")
        lines.append(f"All runners passed ({run.total_duration_ms / 1000:.1f}s). Lock released with audit proof.")
        if outcome.report_path is not None:
            lines.append(f"Report: {outcome.report_path}")
        lines.append("Re-run the git operation to proceed.")
        return GateOutcome(
            allowed=True,
            kind=KIND_RELEASED,
            topic=topic,
            lock_path=outcome.lock_path,
            message="\n".join(lines) + "\n",
            run=run,
            report_path=outcome.report_path,
        )


def _validate_topic(topic: str) -> None:
    if not isinstance(topic, str) or not topic.strip():
        raise ValueError("topic missing/empty")


def _render_rejection(topic: str, decision: Decision, required: Sequence[RunnerSpec], lock_path: Path) -> str:
    lines = [f"[agent-lease] {topic}: proof rejected ({decision.outcome})."]
    if decision.missing:
        lines.append("Missing runners:")
        lines.extend(f"  - {name}" for name in decision.missing)
    if decision.failed:
        lines.append("Failing runners:")
        lines.extend(f"  - {name} (status: {decision.failed_status.get(name, '?')})" for name in decision.failed)
    lines.extend(
        [
            "",
            "Required proof format:",
            "",
            proof_template(required),
            "",
            f"Lock remains: {lock_path}",
            f"Remediation: Do run every listed runner, fix failures, then resubmit: agent-lease lease {topic} --audit-proof='<proof>'",
            "--no-verify is FORBIDDEN without explicit human approval.",
        ]
    )
    return "\n".join(lines) + "\n"
