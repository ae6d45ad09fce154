"""Tests for the file-backed lock store.

These tests verify:
- Lock location is deterministic and omits the topic only for pre-commit
- create is idempotent and stamp is append-only with the validated marker last
- archive moves the lock into the audit trail with every stamped field intact
- clear/list filter by project and topic and never fail on missing files
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from agentlease.core.hash import short_sha256
from agentlease.core.kv_text import parse_kv_text
from agentlease.lease.base import (
    LockStoreError,
    OutputProof,
    ParsedProof,
    ProofRecord,
    RunnerResult,
)
from agentlease.lease.lock_store import AUDIT_SUBDIR, LockStore, lock_filename
from agentlease.lease.report import PROOFS_SUBDIR


def _result(name: str, *, passed: bool = True, output: str = "ok", duration_ms: int = 12) -> RunnerResult:
    return RunnerResult(
        name=name,
        command=f"run {name}",
        expanded_command=f"run {name}",
        passed=passed,
        output=output,
        error=None if passed else "Exit code 1",
        duration_ms=duration_ms,
        proof=OutputProof(summary=output.splitlines()[0] if output else "", hash=short_sha256(output), output=output),
    )


def _store(tmp_path: Path, *, revision: str = "abc1234", archive_proofs: bool = True) -> LockStore:
    return LockStore(
        tmp_path / "locks",
        revision=revision,
        audit_root=tmp_path / "repo",
        archive_proofs=archive_proofs,
    )


# ---------------------------------------------------------------------------
# location
# ---------------------------------------------------------------------------

class TestLockLocation:
    def test_default_topic_is_omitted_from_filename(self) -> None:
        assert lock_filename("demo", "pre-commit", "abc1234") == "agent-lease-demo-abc1234.lock"

    def test_custom_topic_is_included(self) -> None:
        assert lock_filename("demo", "deploy-prod", "abc1234") == "agent-lease-demo-deploy-prod-abc1234.lock"

    def test_missing_revision_falls_back_to_sentinel(self) -> None:
        assert lock_filename("demo", "pre-push", "") == "agent-lease-demo-pre-push-new.lock"

    def test_location_is_deterministic_across_instances(self, tmp_path: Path) -> None:
        a = _store(tmp_path).locate("demo", "pre-push")
        b = _store(tmp_path).locate("demo", "pre-push")
        assert a == b
        assert a.parent == tmp_path / "locks"

    def test_revision_changes_location(self, tmp_path: Path) -> None:
        assert _store(tmp_path, revision="aaa1111").locate("demo") != _store(tmp_path, revision="bbb2222").locate("demo")

    @pytest.mark.parametrize("project", ["", "a/b", "..", "a\\b"])
    def test_unsafe_project_rejected(self, tmp_path: Path, project: str) -> None:
        with pytest.raises(ValueError):
            _store(tmp_path).locate(project)


# ---------------------------------------------------------------------------
# create / inspect
# ---------------------------------------------------------------------------

class TestCreateAndInspect:
    def test_inspect_without_lock(self, tmp_path: Path) -> None:
        state = _store(tmp_path).inspect("demo", "pre-commit")
        assert state.exists is False
        assert state.validated is False
        assert state.status == "UNLOCKED"

    def test_create_writes_pending_record(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        record = store.create("demo", "pre-commit")
        assert record.created is True
        assert record.lock_path.is_file()

        data = parse_kv_text(record.lock_path.read_text(encoding="utf-8"))
        assert data["LOCK_GUID"] == record.guid
        assert data["PROJECT"] == "demo"
        assert data["TOPIC"] == "pre-commit"
        assert data["STATUS"] == "PENDING"
        assert data["CREATED"].endswith("Z")

        state = store.inspect("demo", "pre-commit")
        assert state.exists is True
        assert state.status == "PENDING"

    def test_create_is_idempotent(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        first = store.create("demo", "pre-commit")
        before = first.lock_path.read_text(encoding="utf-8")

        second = store.create("demo", "pre-commit")
        assert second.created is False
        assert second.guid == first.guid
        assert first.lock_path.read_text(encoding="utf-8") == before
        assert len(list((tmp_path / "locks").iterdir())) == 1

    def test_topics_are_independent(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        a = store.create("demo", "pre-commit")
        b = store.create("demo", "deploy-prod")
        assert a.lock_path != b.lock_path
        assert store.inspect("demo", "deploy-prod").status == "PENDING"

    def test_unwritable_lock_dir_raises_storage_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x", encoding="utf-8")
        store = LockStore(blocker, revision="abc1234")
        with pytest.raises(LockStoreError):
            store.create("demo", "pre-commit")


# ---------------------------------------------------------------------------
# stamp
# ---------------------------------------------------------------------------

class TestStamp:
    def test_stamp_without_lock_is_a_caller_error(self, tmp_path: Path) -> None:
        outcome = _store(tmp_path).stamp("demo", "pre-commit", [_result("build")])
        assert outcome.released is False
        assert outcome.reason == "No lock found"

    def test_self_stamp_appends_runner_fields(self, tmp_path: Path) -> None:
        store = _store(tmp_path, archive_proofs=False)
        record = store.create("demo", "pre-commit")
        created_text = record.lock_path.read_text(encoding="utf-8")

        outcome = store.stamp("demo", "pre-commit", [_result("build", duration_ms=42), _result("lint")])
        assert outcome.released is True
        assert outcome.report_path is None

        text = record.lock_path.read_text(encoding="utf-8")
        assert text.startswith(created_text)
        data = parse_kv_text(text)
        assert data["PROOF_MODE"] == "self"
        assert data["RUNNERS_COUNT"] == "2"
        assert data["RUNNER_0_NAME"] == "build"
        assert data["RUNNER_0_PASSED"] == "true"
        assert data["RUNNER_0_DURATION"] == "42ms"
        assert data["RUNNER_0_HASH"] == short_sha256("ok")
        assert data["RUNNER_1_NAME"] == "lint"
        assert data["STATUS"] == "VALIDATED"
        assert text.splitlines()[-1].startswith("AUDIT_PROOF_PASSED=")

        assert store.inspect("demo", "pre-commit").status == "VALIDATED"

    def test_stamp_records_commit_trailers(self, tmp_path: Path) -> None:
        store = _store(tmp_path, archive_proofs=False)
        store.create("demo", "pre-commit")
        store.stamp("demo", "pre-commit", [_result("build", duration_ms=1500), _result("lint", duration_ms=300)])
        data = store.inspect("demo", "pre-commit").data
        ok = short_sha256("ok")
        assert data["GIT_TRAILER_PROOF"] == f"build(1.5s):{ok} lint(0.3s):{ok}"
        assert data["GIT_TRAILER_DURATION"] == "1.8s"

        store.create("demo", "pre-push")
        records = [ProofRecord(name="build", status="PASS"), ProofRecord(name="review", status="")]
        store.stamp("demo", "pre-push", records, proof_mode="agent", proof_text="Runner: build\nStatus: PASS")
        data = store.inspect("demo", "pre-push").data
        assert data["GIT_TRAILER_PROOF"] == "build:PASS review:?"
        assert "GIT_TRAILER_DURATION" not in data

    def test_second_stamp_is_refused(self, tmp_path: Path) -> None:
        store = _store(tmp_path, archive_proofs=False)
        record = store.create("demo", "pre-commit")
        assert store.stamp("demo", "pre-commit", [_result("build")]).released is True

        again = store.stamp("demo", "pre-commit", [_result("build")])
        assert again.released is False
        assert "already validated" in (again.reason or "")
        assert record.lock_path.read_text(encoding="utf-8").count("AUDIT_PROOF_PASSED=") == 1

    def test_self_stamp_writes_report_and_output(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.create("demo", "pre-commit")
        result = _result("build", output="compiled 3 files")

        outcome = store.stamp("demo", "pre-commit", [result])
        proofs_dir = tmp_path / "repo" / PROOFS_SUBDIR
        assert outcome.report_path == proofs_dir / "pre-commit-abc1234.json"

        report = json.loads(outcome.report_path.read_text(encoding="utf-8"))
        assert report["proof_mode"] == "self"
        assert report["topic"] == "pre-commit"
        assert report["revision"] == "abc1234"
        assert report["runners"] == [
            {
                "name": "build",
                "passed": True,
                "duration": 12,
                "summary": "compiled 3 files",
                "hash": short_sha256("compiled 3 files"),
            }
        ]
        assert (proofs_dir / f"{short_sha256('compiled 3 files')}.txt").read_text(encoding="utf-8") == "compiled 3 files"

        data = store.inspect("demo", "pre-commit").data
        assert data["REPORT"] == "pre-commit-abc1234.json"

    def test_agent_stamp_records_proof_metadata(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.create("demo", "pre-push")
        proof_text = "Runner: build\nStatus: PASS\nOutput: ok\n\nSummary: all good\nreally"
        parsed = ParsedProof(runners=[ProofRecord(name="build", status="PASS", output="ok")], summary="all good")

        outcome = store.stamp(
            "demo",
            "pre-push",
            parsed.runners,
            proof_mode="agent",
            proof_text=proof_text,
            parsed=parsed,
        )
        assert outcome.released is True
        assert outcome.proof_hash == short_sha256(proof_text)

        data = store.inspect("demo", "pre-push").data
        assert data["PROOF_MODE"] == "agent"
        assert data["PROOF_HASH"] == short_sha256(proof_text)
        assert data["AGENT_SUMMARY"] == "all good"
        assert data["RUNNER_0_NAME"] == "build"
        assert data["RUNNER_0_STATUS"] == "PASS"
        assert data["RUNNER_0_PASSED"] == "true"

        proofs_dir = tmp_path / "repo" / PROOFS_SUBDIR
        assert (proofs_dir / f"{short_sha256(proof_text)}-agent.txt").read_text(encoding="utf-8") == proof_text
        report = json.loads((proofs_dir / "pre-push-abc1234.json").read_text(encoding="utf-8"))
        assert report["proof_mode"] == "agent"
        assert report["summary"] == "all good"
        assert report["runners"] == [{"name": "build", "status": "PASS", "output": "ok"}]

    def test_agent_summary_is_single_line_and_bounded(self, tmp_path: Path) -> None:
        store = _store(tmp_path, archive_proofs=False)
        store.create("demo", "pre-commit")
        parsed = ParsedProof(runners=[], summary="x" * 500)
        store.stamp("demo", "pre-commit", [], proof_mode="agent", proof_text="Summary: x", parsed=parsed)
        assert len(store.inspect("demo", "pre-commit").data["AGENT_SUMMARY"]) == 200

    def test_invalid_proof_mode_rejected(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.create("demo", "pre-commit")
        with pytest.raises(ValueError):
            store.stamp("demo", "pre-commit", [], proof_mode="trusted")


# ---------------------------------------------------------------------------
# archive
# ---------------------------------------------------------------------------

class TestArchive:
    def test_archive_round_trips_stamped_fields(self, tmp_path: Path) -> None:
        store = _store(tmp_path, archive_proofs=False)
        record = store.create("demo", "pre-commit")
        results = [_result("build", duration_ms=7), _result("lint", duration_ms=9)]
        store.stamp("demo", "pre-commit", results)

        outcome = store.archive("demo", "pre-commit")
        assert outcome.archived is True
        assert outcome.archive_path is not None
        assert outcome.archive_path.parent == tmp_path / "repo" / AUDIT_SUBDIR
        assert not record.lock_path.exists()
        assert store.inspect("demo", "pre-commit").status == "UNLOCKED"

        data = parse_kv_text(outcome.archive_path.read_text(encoding="utf-8"))
        assert data["RUNNERS_COUNT"] == "2"
        for i, r in enumerate(results):
            assert data[f"RUNNER_{i}_NAME"] == r.name
            assert data[f"RUNNER_{i}_PASSED"] == "true"
            assert data[f"RUNNER_{i}_DURATION"] == f"{r.duration_ms}ms"

    def test_custom_topic_archive_name_carries_topic(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.create("demo", "deploy-prod")
        outcome = store.archive("demo", "deploy-prod")
        assert outcome.archive_path is not None
        assert outcome.archive_path.name.startswith("deploy-prod-")

    def test_archive_never_overwrites_history(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        paths = []
        for _ in range(3):
            store.create("demo", "pre-commit")
            paths.append(store.archive("demo", "pre-commit").archive_path)
        assert len(set(paths)) == 3
        assert all(p is not None and p.exists() for p in paths)

    def test_archive_without_lock_is_noop(self, tmp_path: Path) -> None:
        outcome = _store(tmp_path).archive("demo", "pre-commit")
        assert outcome.archived is False
        assert not (tmp_path / "repo" / AUDIT_SUBDIR).exists()


# ---------------------------------------------------------------------------
# list / clear
# ---------------------------------------------------------------------------

class TestListAndClear:
    def test_list_filters_project_and_topic(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        store.create("demo", "pre-commit")
        store.create("demo", "deploy-prod")
        store.create("demo-web", "pre-commit")

        assert len(store.list_locks("demo")) == 2
        only = store.list_locks("demo", "deploy-prod")
        assert [p.name for p in only] == ["agent-lease-demo-deploy-prod-abc1234.lock"]
        assert len(store.list_locks("demo-web")) == 1

    def test_lock_without_topic_line_counts_as_pre_commit(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        lock_dir = tmp_path / "locks"
        lock_dir.mkdir()
        (lock_dir / "agent-lease-demo-old0000.lock").write_text("LOCK_GUID=x\nPROJECT=demo\n", encoding="utf-8")
        assert len(store.list_locks("demo", "pre-commit")) == 1
        assert store.list_locks("demo", "pre-push") == []

    def test_clear_all_with_topic_leaves_other_topics(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        commit_lock = store.create("demo", "pre-commit").lock_path
        store.create("demo", "deploy-prod")

        outcome = store.clear_all("demo", "deploy-prod")
        assert outcome.cleared == 1
        assert commit_lock.exists()
        assert store.inspect("demo", "deploy-prod").exists is False

    def test_clear_all_spans_revisions(self, tmp_path: Path) -> None:
        _store(tmp_path, revision="aaa1111").create("demo")
        _store(tmp_path, revision="bbb2222").create("demo")
        outcome = _store(tmp_path).clear_all("demo")
        assert outcome.cleared == 2
        assert list((tmp_path / "locks").iterdir()) == []

    def test_clear_on_missing_directory_is_zero(self, tmp_path: Path) -> None:
        store = _store(tmp_path)
        assert store.clear_all("demo").cleared == 0
        assert store.clear("demo", "pre-commit").cleared == 0
