from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping


DEFAULT_TOPIC = "pre-commit"
PUSH_TOPICS = ("pre-push", "push")

Status = str  # "PASS" | "FAIL" (proof records may carry other tokens)
STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"

LOCK_PENDING = "PENDING"
LOCK_VALIDATED = "VALIDATED"

PROOF_MODE_SELF = "self"
PROOF_MODE_AGENT = "agent"


class LockStoreError(RuntimeError):
    """Raised when lock state cannot be read or written (environment problem, not a validation failure)."""


@dataclass(frozen=True)
class RunnerSpec:
    name: str
    command: str
    on: str = "commit"  # legacy trigger phase: commit | push | both | <topic>
    env: Mapping[str, str] = field(default_factory=dict)
    llm: bool = False  # free-form reviewer rather than a deterministic tool

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("runner name missing/empty")
        if not isinstance(self.command, str):
            raise ValueError(f"runner {self.name!r}: command must be a string")


@dataclass(frozen=True)
class ReviewVerdict:
    """Structured review block parsed from an LLM runner's output."""

    verdict: str | None
    critical: int
    high: int
    medium: int
    low: int
    findings: list[str]
    summary: str


@dataclass(frozen=True)
class OutputProof:
    summary: str
    hash: str
    output: str


@dataclass(frozen=True)
class RunnerResult:
    name: str
    command: str
    expanded_command: str
    passed: bool
    output: str
    error: str | None
    duration_ms: int
    proof: OutputProof | None = None
    review: ReviewVerdict | None = None


@dataclass(frozen=True)
class RunAllResult:
    all_passed: bool
    results: list[RunnerResult]
    total_duration_ms: int

    @property
    def failed(self) -> RunnerResult | None:
        for r in self.results:
            if not r.passed:
                return r
        return None


@dataclass(frozen=True)
class ProofRecord:
    name: str
    status: Status
    output: str = ""


@dataclass(frozen=True)
class ParsedProof:
    runners: list[ProofRecord]
    summary: str


@dataclass(frozen=True)
class LockState:
    exists: bool
    lock_path: Path
    topic: str
    validated: bool = False
    data: Mapping[str, str] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.exists:
            return "UNLOCKED"
        return LOCK_VALIDATED if self.validated else LOCK_PENDING


@dataclass(frozen=True)
class LockRecord:
    lock_path: Path
    guid: str
    topic: str
    created: bool  # False when an existing lock was left in place


@dataclass(frozen=True)
class ReleaseOutcome:
    released: bool
    lock_path: Path
    topic: str
    reason: str | None = None
    report_path: Path | None = None
    proof_hash: str | None = None


@dataclass(frozen=True)
class ArchiveOutcome:
    archived: bool
    topic: str
    archive_path: Path | None = None


@dataclass(frozen=True)
class ClearOutcome:
    cleared: int
    paths: list[Path]
    topic: str | None


def stable_unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for x in items:
        if x not in seen:
            seen.add(x)
            out.append(x)
    return out


def is_push_topic(topic: str) -> bool:
    return topic in PUSH_TOPICS


def runner_record_dict(r: RunnerResult) -> dict[str, Any]:
    return {
        "name": r.name,
        "passed": r.passed,
        "duration": r.duration_ms,
        "summary": r.proof.summary if r.proof else None,
        "hash": r.proof.hash if r.proof else None,
    }
