"""Proof reconciliation: parse externally submitted proof text and decide acceptance.

Proof text format:

    Runner: <name>
    Status: PASS|FAIL
    Output: <one-line output summary>

    Runner: <name>
    Status: PASS|FAIL

    Summary: <one-line overall assessment>

Nothing here re-executes a runner. Acceptance rests on the submitter reporting
in good faith; the reconciler only checks that every required runner is
accounted for and that nothing reported a failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from agentlease.lease.base import STATUS_FAIL, ParsedProof, ProofRecord, RunnerSpec, stable_unique


LABEL_RUNNER = "Runner:"
LABEL_STATUS = "Status:"
LABEL_OUTPUT = "Output:"
LABEL_SUMMARY = "Summary:"

_QUOTES = ("'", '"')

ACCEPTED = "ACCEPTED"
REJECTED_INCOMPLETE = "REJECTED-INCOMPLETE"
REJECTED_FAILED = "REJECTED-FAILED"


@dataclass(frozen=True)
class Decision:
    outcome: str
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    # name -> reported status for every entry in `failed`
    failed_status: dict[str, str] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.outcome == ACCEPTED


def _strip_wrapping_quotes(text: str) -> str:
    s = text.strip()
    while len(s) >= 2 and s[0] in _QUOTES and s[-1] == s[0]:
        s = s[1:-1].strip()
    return s


def parse_proof(text: str | None) -> ParsedProof:
    """Best-effort, line-oriented proof parser. Never raises.

    Labels are matched case-sensitively at the start of a (left-trimmed) line;
    status values are upper-cased. A Runner line always starts a new record.
    Field lines before the first Runner line, and any unrecognized line, are
    dropped.
    """

    if not isinstance(text, str):
        return ParsedProof(runners=[], summary="")

    records: list[ProofRecord] = []
    summary = ""
    name: str | None = None
    status = ""
    output = ""

    def flush() -> None:
        if name:
            records.append(ProofRecord(name=name, status=status, output=output))

    body = _strip_wrapping_quotes(text)
    if "\n" not in body and "\\n" in body:
        # Single-line shell argument with escaped newlines.
        body = body.replace("\\n", "\n")

    for raw in body.splitlines():
        line = raw.strip()
        if line.startswith(LABEL_RUNNER):
            flush()
            name = line[len(LABEL_RUNNER):].strip() or None
            status = ""
            output = ""
        elif line.startswith(LABEL_STATUS):
            if name:
                status = line[len(LABEL_STATUS):].strip().upper()
        elif line.startswith(LABEL_OUTPUT):
            if name:
                output = line[len(LABEL_OUTPUT):].strip()
        elif line.startswith(LABEL_SUMMARY):
            summary = line[len(LABEL_SUMMARY):].strip()
    flush()

    return ParsedProof(runners=records, summary=summary)


def reconcile(records: Iterable[ProofRecord], required: Iterable[RunnerSpec]) -> Decision:
    """Match submitted records against the required runner set (case-insensitive names).

    Every missing and every failing runner is enumerated, so a single
    resubmission can address all of them.
    """

    submitted = list(records)
    reported = {rec.name.lower() for rec in submitted}

    required_names = stable_unique(spec.name for spec in required)
    missing = [n for n in required_names if n.lower() not in reported]

    failed: list[str] = []
    failed_status: dict[str, str] = {}

    # Any FAIL counts, required or not. Other status tokens are not failures.
    for rec in submitted:
        if rec.status == STATUS_FAIL and rec.name not in failed_status:
            failed.append(rec.name)
            failed_status[rec.name] = rec.status

    if missing:
        return Decision(outcome=REJECTED_INCOMPLETE, missing=missing, failed=failed, failed_status=failed_status)
    if failed:
        return Decision(outcome=REJECTED_FAILED, missing=[], failed=failed, failed_status=failed_status)
    return Decision(outcome=ACCEPTED)


def proof_template(required: Iterable[RunnerSpec]) -> str:
    """Proof text skeleton listing every required runner, for remediation messages."""

    blocks = [f"{LABEL_RUNNER} {spec.name}\n{LABEL_STATUS} PASS\n{LABEL_OUTPUT} <one-line result>" for spec in required]
    blocks.append(f"{LABEL_SUMMARY} <one-line overall assessment>")
    return "\n\n".join(blocks)
