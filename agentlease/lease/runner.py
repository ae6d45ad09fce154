"""Runner engine: expand command templates and execute them through a shell.

Runner contract:
- exit 0 = pass, anything else = fail
- stdout + stderr = review text (captured for the audit trail)

TRUST BOUNDARY: runner commands are user-authored shell strings. They execute
with the full privileges of the invoking user or agent. Nothing here sandboxes,
sanitizes or allow-lists them.

Template variables:
  {{diff}}     staged diff (push-scope diff for pre-push/push topics)
               Diffs over INLINE_DIFF_LIMIT are streamed on stdin instead and
               {{diff}} becomes $(cat). stdin is read once, so only the first
               {{diff}} in such a command receives the diff.
  {{files}}    space-separated changed files
  {{project}}  project name
  {{branch}}   current branch
  {{hash}}     short HEAD revision (or "new")
  {{topic}}    topic name
  {{args}}     extra positional arguments (e.g. hook arguments)
  {{env:VAR}}  environment variable, "" when unset
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

from agentlease.core.hash import short_sha256
from agentlease.core.placeholders import substitute_placeholders
from agentlease.core.time import monotonic_millis
from agentlease.lease.base import OutputProof, ReviewVerdict, RunAllResult, RunnerResult, RunnerSpec
from agentlease.lease.context import GitContext


DIFF_PLACEHOLDER = "{{diff}}"
STDIN_DIFF_MARKER = "$(cat)"
INLINE_DIFF_LIMIT = 100_000
RUNNER_TIMEOUT_S = 600
DEFAULT_MAX_OUTPUT = 10_000

REVIEW_START = "<AGENT_LEASE_START>"
REVIEW_END = "<AGENT_LEASE_END>"


def template_values(context: GitContext, project_name: str, topic: str) -> dict[str, str]:
    return {
        "diff": context.diff_for(topic),
        "files": " ".join(context.files_for(topic)),
        "project": project_name,
        "branch": context.branch,
        "hash": context.revision,
        "topic": topic or context.topic,
        "args": " ".join(context.args),
    }


def expand_command(
    template: str,
    context: GitContext,
    project_name: str,
    topic: str,
    *,
    environ: Mapping[str, str],
) -> str:
    return substitute_placeholders(template, template_values(context, project_name, topic), environ=environ)


def _shell_executable() -> str | None:
    # bash when available; None lets subprocess use /bin/sh.
    return shutil.which("bash")


def _kill_process_tree(proc: subprocess.Popen[bytes]) -> None:
    # The shell runs in its own session, so killing the group also reaps its children.
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    proc.kill()


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8", errors="replace")


def _capture_proof(output: str, *, max_output: int) -> OutputProof:
    summary = next((line.strip() for line in output.splitlines() if line.strip()), "")
    return OutputProof(summary=summary, hash=short_sha256(output), output=output[:max_output])


def _parse_count(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        return 0


def parse_review_output(output: str) -> ReviewVerdict:
    """Parse a structured review block emitted by an LLM runner.

    Expected between REVIEW_START and REVIEW_END:
      VERDICT: PASS | FAIL
      CRITICAL|HIGH|MEDIUM|LOW: <count>
      FINDINGS:
      - <finding>
      SUMMARY: <one line>

    Without markers the first output line becomes the summary.
    """

    start = output.find(REVIEW_START)
    end = output.find(REVIEW_END)
    if start == -1 or end == -1 or end <= start:
        first = output.strip().split("\n")[0] if output.strip() else ""
        return ReviewVerdict(verdict=None, critical=0, high=0, medium=0, low=0, findings=[], summary=first)

    counts = {"CRITICAL": 0, "HIGH": 0, "MEDIUM": 0, "LOW": 0}
    verdict: str | None = None
    summary = ""
    findings: list[str] = []
    in_findings = False

    for line in output[start + len(REVIEW_START):end].strip().splitlines():
        s = line.strip()
        label, sep, rest = s.partition(":")
        if sep and label == "VERDICT":
            verdict = rest.strip().upper()
            in_findings = False
        elif sep and label in counts:
            counts[label] = _parse_count(rest)
            in_findings = False
        elif sep and label == "FINDINGS":
            in_findings = True
        elif sep and label == "SUMMARY":
            summary = rest.strip()
            in_findings = False
        elif in_findings and s.startswith("-"):
            findings.append(s[1:].strip())

    return ReviewVerdict(
        verdict=verdict,
        critical=counts["CRITICAL"],
        high=counts["HIGH"],
        medium=counts["MEDIUM"],
        low=counts["LOW"],
        findings=findings,
        summary=summary,
    )


def execute_runner(
    spec: RunnerSpec,
    context: GitContext,
    project_name: str,
    topic: str,
    *,
    environ: Mapping[str, str],
    cwd: Path | None = None,
    timeout_s: float = RUNNER_TIMEOUT_S,
    max_output: int = DEFAULT_MAX_OUTPUT,
) -> RunnerResult:
    """Execute one runner through the shell and classify it by exit status.

    Never raises for runner problems: spawn errors and timeouts become failed results.
    """

    start = monotonic_millis()
    template = spec.command
    stdin_data: bytes | None = None

    # Very large diffs go through stdin to stay under OS argument-length limits.
    diff = context.diff_for(topic)
    if DIFF_PLACEHOLDER in template and len(diff) > INLINE_DIFF_LIMIT:
        template = template.replace(DIFF_PLACEHOLDER, STDIN_DIFF_MARKER)
        stdin_data = diff.encode("utf-8", errors="surrogateescape")

    expanded = expand_command(template, context, project_name, topic, environ=environ)

    env = dict(environ)
    env.update({str(k): str(v) for k, v in spec.env.items()})

    error: str | None
    try:
        proc = subprocess.Popen(
            expanded,
            shell=True,
            executable=_shell_executable(),
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=(os.name == "posix"),
        )
    except (OSError, ValueError) as e:
        proc = None
        output = ""
        passed = False
        error = str(e) or e.__class__.__name__

    if proc is not None:
        try:
            raw, _ = proc.communicate(input=stdin_data, timeout=timeout_s)
            output = _decode(raw).strip()
            passed = proc.returncode == 0
            error = None if passed else f"Exit code {proc.returncode}"
        except subprocess.TimeoutExpired:
            _kill_process_tree(proc)
            raw, _ = proc.communicate()
            output = _decode(raw).strip()
            passed = False
            error = f"Timed out after {timeout_s:g}s (process killed)"
        except BaseException:
            # The runner has its own session, so Ctrl-C never reaches it.
            _kill_process_tree(proc)
            proc.wait()
            raise

    return RunnerResult(
        name=spec.name,
        command=spec.command,
        expanded_command=expanded,
        passed=passed,
        output=output[:max_output],
        error=error,
        duration_ms=monotonic_millis() - start,
        proof=_capture_proof(output, max_output=max_output),
        review=parse_review_output(output) if spec.llm else None,
    )


def execute_all(
    specs: Sequence[RunnerSpec],
    project_name: str,
    topic: str,
    *,
    context: GitContext,
    environ: Mapping[str, str],
    cwd: Path | None = None,
    timeout_s: float = RUNNER_TIMEOUT_S,
    max_output: int = DEFAULT_MAX_OUTPUT,
) -> RunAllResult:
    """Run specs in configured order, stopping at the first failure.

    Runners after a failure are not attempted and do not appear in the results.
    """

    start = monotonic_millis()
    results: list[RunnerResult] = []
    all_passed = True
    for spec in specs:
        result = execute_runner(
            spec,
            context,
            project_name,
            topic,
            environ=environ,
            cwd=cwd,
            timeout_s=timeout_s,
            max_output=max_output,
        )
        results.append(result)
        if not result.passed:
            all_passed = False
            break
    return RunAllResult(all_passed=all_passed, results=results, total_duration_ms=monotonic_millis() - start)


def format_results(results: Sequence[RunnerResult]) -> str:
    lines: list[str] = []
    for r in results:
        token = "PASS" if r.passed else "FAIL"
        lines.append(f"  [{token}] {r.name}: {r.command} ({r.duration_ms / 1000:.1f}s)")
        if r.review is not None:
            rv = r.review
            if rv.verdict:
                lines.append(f"     Verdict: {rv.verdict}")
            for label, count in (("Critical", rv.critical), ("High", rv.high), ("Medium", rv.medium), ("Low", rv.low)):
                if count > 0:
                    lines.append(f"     {label}: {count}")
            if rv.findings:
                lines.append("     Findings:")
                lines.extend(f"       - {f}" for f in rv.findings)
            if rv.summary:
                lines.append(f"     Summary: {rv.summary}")
        if r.output and not r.passed:
            lines.extend(f"     {l}" for l in r.output.split("\n"))
        if not r.passed and r.error and not r.output:
            lines.append(f"     {r.error}")
    return "\n".join(lines)
