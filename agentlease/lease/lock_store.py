"""File-backed lock store.

One lock file per (project, topic, revision) under the configured lock
directory, named:

    agent-lease-<project>-<topic>-<revision>.lock
    agent-lease-<project>-<revision>.lock          (default topic, pre-commit)

The body is flat KEY=VALUE text. Creation writes the PENDING record; stamping
appends to it and never rewrites earlier lines. The validated marker
(AUDIT_PROOF_PASSED) is the last thing a stamp appends, so an interrupted
stamp never reads back as validated.
"""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path
from typing import Sequence, Union

from agentlease.core.git_ops import NO_REVISION
from agentlease.core.hash import short_sha256
from agentlease.core.kv_text import parse_kv_text, render_kv_lines
from agentlease.core.time import epoch_millis, utc_timestamp_iso
from agentlease.lease.base import (
    DEFAULT_TOPIC,
    LOCK_PENDING,
    LOCK_VALIDATED,
    PROOF_MODE_AGENT,
    PROOF_MODE_SELF,
    STATUS_PASS,
    ArchiveOutcome,
    ClearOutcome,
    LockRecord,
    LockState,
    LockStoreError,
    ParsedProof,
    ProofRecord,
    ReleaseOutcome,
    RunnerResult,
)
from agentlease.lease.report import PROOFS_SUBDIR, write_agent_report, write_execution_report


LOCK_PREFIX = "agent-lease"
LOCK_SUFFIX = ".lock"
VALIDATED_MARKER = "AUDIT_PROOF_PASSED"
AUDIT_SUBDIR = PROOFS_SUBDIR.parent / "audit"
AGENT_SUMMARY_MAX = 200

StampEntry = Union[RunnerResult, ProofRecord]


def _validate_component(value: str, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} missing/empty")
    if any(c in value for c in ("/", "\\", "\x00", "\n")) or value in (".", ".."):
        raise ValueError(f"{label} must be a plain name: {value!r}")
    return value


def lock_filename(project: str, topic: str, revision: str) -> str:
    _validate_component(project, "project")
    _validate_component(topic, "topic")
    suffix = "" if topic == DEFAULT_TOPIC else f"{topic}-"
    return f"{LOCK_PREFIX}-{project}-{suffix}{revision or NO_REVISION}{LOCK_SUFFIX}"


def _new_guid() -> str:
    return f"{epoch_millis():x}{secrets.token_hex(3)}"


def _trailer_pairs(results: Sequence[StampEntry]) -> list[tuple[str, object]]:
    """One-line summaries a prepare-commit-msg hook can copy into commit trailers."""

    parts: list[str] = []
    total_ms = 0
    for entry in results:
        if isinstance(entry, RunnerResult):
            total_ms += entry.duration_ms
            part = f"{entry.name}({entry.duration_ms / 1000:.1f}s)"
            parts.append(f"{part}:{entry.proof.hash}" if entry.proof is not None else part)
        else:
            parts.append(f"{entry.name}:{entry.status or '?'}")
    pairs: list[tuple[str, object]] = [("GIT_TRAILER_PROOF", " ".join(parts))]
    if any(isinstance(entry, RunnerResult) for entry in results):
        pairs.append(("GIT_TRAILER_DURATION", f"{total_ms / 1000:.1f}s"))
    return pairs


def _stamp_entry_pairs(i: int, entry: StampEntry) -> list[tuple[str, object]]:
    pairs: list[tuple[str, object]] = [(f"RUNNER_{i}_NAME", entry.name)]
    if isinstance(entry, RunnerResult):
        pairs.append((f"RUNNER_{i}_PASSED", entry.passed))
        pairs.append((f"RUNNER_{i}_DURATION", f"{entry.duration_ms}ms"))
        if entry.proof is not None:
            pairs.append((f"RUNNER_{i}_HASH", entry.proof.hash))
    else:
        pairs.append((f"RUNNER_{i}_PASSED", entry.status == STATUS_PASS))
        pairs.append((f"RUNNER_{i}_STATUS", entry.status))
    return pairs


class LockStore:
    """Sole owner of lock files for one invocation.

    lock_dir:   directory holding active lock files
    revision:   short revision hint for this invocation (NO_REVISION before the first commit)
    audit_root: project root; audit copies and proof reports live under <audit_root>/.agent-lease/
    archive_proofs: write consolidated reports and captured output on stamp
    """

    def __init__(
        self,
        lock_dir: Path,
        *,
        revision: str = NO_REVISION,
        audit_root: Path | None = None,
        archive_proofs: bool = True,
    ) -> None:
        self.lock_dir = Path(lock_dir)
        self.revision = revision or NO_REVISION
        self.audit_root = Path(audit_root) if audit_root is not None else None
        self.archive_proofs = archive_proofs

    # -----------------------------------------------------------------------
    # queries
    # -----------------------------------------------------------------------

    def locate(self, project: str, topic: str = DEFAULT_TOPIC) -> Path:
        return self.lock_dir / lock_filename(project, topic, self.revision)

    def inspect(self, project: str, topic: str = DEFAULT_TOPIC) -> LockState:
        return self.read_state(self.locate(project, topic), topic)

    def read_state(self, lock_path: Path, topic: str | None = None) -> LockState:
        """Parse one lock file. topic defaults to the TOPIC recorded in the file."""

        try:
            content = lock_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return LockState(exists=False, lock_path=lock_path, topic=topic or DEFAULT_TOPIC)
        except OSError as e:
            raise LockStoreError(f"cannot read lock file {lock_path}: {e}") from e
        data = parse_kv_text(content)
        return LockState(
            exists=True,
            lock_path=lock_path,
            topic=topic or data.get("TOPIC", DEFAULT_TOPIC),
            validated=VALIDATED_MARKER in data,
            data=data,
        )

    def _candidate_paths(self, project: str) -> list[Path]:
        _validate_component(project, "project")
        prefix = f"{LOCK_PREFIX}-{project}-"
        try:
            candidates = sorted(
                p for p in self.lock_dir.iterdir() if p.name.startswith(prefix) and p.name.endswith(LOCK_SUFFIX)
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise LockStoreError(f"cannot list lock directory {self.lock_dir}: {e}") from e
        return candidates

    def list_locks(self, project: str, topic: str | None = None) -> list[Path]:
        """Active lock files for project (optionally one topic), sorted by name."""

        return [s.lock_path for s in self.active_locks(project, topic)]

    def active_locks(self, project: str, topic: str | None = None) -> list[LockState]:
        out: list[LockState] = []
        for p in self._candidate_paths(project):
            state = self.read_state(p)
            if not state.exists:
                continue
            # The name prefix alone cannot tell "demo" from "demo-web".
            if state.data.get("PROJECT", project) != project:
                continue
            if topic is not None and state.topic != topic:
                continue
            out.append(state)
        return out

    # -----------------------------------------------------------------------
    # mutations
    # -----------------------------------------------------------------------

    def create(self, project: str, topic: str = DEFAULT_TOPIC) -> LockRecord:
        """Create a PENDING lock; an existing lock is left untouched."""

        lock_path = self.locate(project, topic)
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockStoreError(f"cannot create lock directory {self.lock_dir}: {e}") from e

        guid = _new_guid()
        body = render_kv_lines(
            [
                ("LOCK_GUID", guid),
                ("CREATED", utc_timestamp_iso()),
                ("PROJECT", project),
                ("TOPIC", topic),
                ("STATUS", LOCK_PENDING),
            ]
        )
        try:
            with lock_path.open("x", encoding="utf-8", newline="\n") as f:
                f.write(body)
        except FileExistsError:
            existing = self.inspect(project, topic)
            return LockRecord(lock_path=lock_path, guid=existing.data.get("LOCK_GUID", ""), topic=topic, created=False)
        except OSError as e:
            raise LockStoreError(f"cannot write lock file {lock_path}: {e}") from e
        return LockRecord(lock_path=lock_path, guid=guid, topic=topic, created=True)

    def stamp(
        self,
        project: str,
        topic: str,
        results: Sequence[StampEntry],
        *,
        proof_mode: str = PROOF_MODE_SELF,
        proof_text: str | None = None,
        parsed: ParsedProof | None = None,
    ) -> ReleaseOutcome:
        """Append runner results and the validated marker to an existing lock.

        Returns released=False when there is no lock to stamp (a caller error,
        distinct from a validation failure). Filesystem failures raise
        LockStoreError.
        """

        if proof_mode not in (PROOF_MODE_SELF, PROOF_MODE_AGENT):
            raise ValueError(f"invalid proof_mode: {proof_mode!r}")

        state = self.inspect(project, topic)
        if not state.exists:
            return ReleaseOutcome(released=False, lock_path=state.lock_path, topic=topic, reason="No lock found")
        if state.validated:
            return ReleaseOutcome(released=False, lock_path=state.lock_path, topic=topic, reason="Lock already validated")

        pairs: list[tuple[str, object]] = [("PROOF_MODE", proof_mode), ("RUNNERS_COUNT", len(results))]
        for i, entry in enumerate(results):
            pairs.extend(_stamp_entry_pairs(i, entry))
        pairs.extend(_trailer_pairs(results))

        report_path: Path | None = None
        proof_hash: str | None = None
        if proof_mode == PROOF_MODE_AGENT:
            text = proof_text or ""
            parsed = parsed if parsed is not None else ParsedProof(runners=[r for r in results if isinstance(r, ProofRecord)], summary="")
            proof_hash = short_sha256(text)
            pairs.append(("PROOF_HASH", proof_hash))
            if parsed.summary:
                pairs.append(("AGENT_SUMMARY", " ".join(parsed.summary.split())[:AGENT_SUMMARY_MAX]))

        if self.archive_proofs and self.audit_root is not None:
            proofs_dir = self.audit_root / PROOFS_SUBDIR
            try:
                if proof_mode == PROOF_MODE_AGENT:
                    report_path, proof_hash = write_agent_report(
                        proofs_dir,
                        topic=topic,
                        revision=self.revision,
                        proof_text=proof_text or "",
                        parsed=parsed,  # type: ignore[arg-type]
                    )
                else:
                    report_path = write_execution_report(
                        proofs_dir,
                        topic=topic,
                        revision=self.revision,
                        results=[r for r in results if isinstance(r, RunnerResult)],
                    )
            except OSError as e:
                raise LockStoreError(f"cannot write proof report under {proofs_dir}: {e}") from e
            pairs.append(("REPORT", report_path.name))

        pairs.append(("STATUS", LOCK_VALIDATED))
        pairs.append((VALIDATED_MARKER, utc_timestamp_iso()))

        try:
            with state.lock_path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(render_kv_lines(pairs))
        except OSError as e:
            raise LockStoreError(f"cannot append to lock file {state.lock_path}: {e}") from e

        return ReleaseOutcome(
            released=True,
            lock_path=state.lock_path,
            topic=topic,
            report_path=report_path,
            proof_hash=proof_hash,
        )

    def archive(self, project: str, topic: str = DEFAULT_TOPIC, project_root: Path | None = None) -> ArchiveOutcome:
        """Copy the lock into the append-only audit trail and remove it. No lock is a no-op."""

        lock_path = self.locate(project, topic)
        if not lock_path.exists():
            return ArchiveOutcome(archived=False, topic=topic)

        root = project_root if project_root is not None else self.audit_root
        if root is None:
            raise ValueError("archive requires a project root")
        audit_dir = Path(root) / AUDIT_SUBDIR
        topic_prefix = "" if topic == DEFAULT_TOPIC else f"{topic}-"
        stamp = epoch_millis()
        archive_path = audit_dir / f"{topic_prefix}{stamp}.lock"
        n = 1
        try:
            audit_dir.mkdir(parents=True, exist_ok=True)
            while archive_path.exists():
                archive_path = audit_dir / f"{topic_prefix}{stamp}-{n}.lock"
                n += 1
            shutil.copyfile(lock_path, archive_path)
            lock_path.unlink()
        except FileNotFoundError:
            # Lock vanished between the existence check and the copy.
            return ArchiveOutcome(archived=False, topic=topic)
        except OSError as e:
            raise LockStoreError(f"cannot archive lock file {lock_path}: {e}") from e
        return ArchiveOutcome(archived=True, topic=topic, archive_path=archive_path)

    def clear(self, project: str, topic: str = DEFAULT_TOPIC) -> ClearOutcome:
        lock_path = self.locate(project, topic)
        removed = self._unlink(lock_path)
        return ClearOutcome(cleared=1 if removed else 0, paths=[lock_path] if removed else [], topic=topic)

    def clear_all(self, project: str, topic: str | None = None) -> ClearOutcome:
        """Remove every active lock for project (optionally one topic), at any revision."""

        removed = [p for p in self.list_locks(project, topic) if self._unlink(p)]
        return ClearOutcome(cleared=len(removed), paths=removed, topic=topic)

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise LockStoreError(f"cannot remove lock file {path}: {e}") from e
        return True
