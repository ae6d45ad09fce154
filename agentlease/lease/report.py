from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Sequence

from agentlease.core.hash import short_sha256
from agentlease.core.time import utc_timestamp_iso
from agentlease.lease.base import PROOF_MODE_AGENT, PROOF_MODE_SELF, ParsedProof, RunnerResult, runner_record_dict


PROOFS_SUBDIR = Path(".agent-lease") / "proofs"


def report_name(topic: str, revision: str) -> str:
    return f"{topic}-{revision}.json"


def render_report_bytes(payload: dict[str, Any]) -> bytes:
    return (json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode(
        "utf-8", errors="strict"
    )


def build_execution_report(*, topic: str, revision: str, results: Sequence[RunnerResult]) -> dict[str, Any]:
    return {
        "timestamp": utc_timestamp_iso(),
        "topic": topic,
        "revision": revision,
        "proof_mode": PROOF_MODE_SELF,
        "total_duration": sum(r.duration_ms for r in results),
        "runners": [runner_record_dict(r) for r in results],
    }


def build_agent_report(*, topic: str, revision: str, parsed: ParsedProof, proof_hash: str) -> dict[str, Any]:
    return {
        "timestamp": utc_timestamp_iso(),
        "topic": topic,
        "revision": revision,
        "proof_mode": PROOF_MODE_AGENT,
        "proof_hash": proof_hash,
        "runners": [{"name": r.name, "status": r.status, "output": r.output or None} for r in parsed.runners],
        "summary": parsed.summary,
    }


def write_execution_report(
    proofs_dir: Path,
    *,
    topic: str,
    revision: str,
    results: Sequence[RunnerResult],
) -> Path:
    """Write each runner's captured output as <hash>.txt plus the consolidated JSON report.

    OSError propagates to the caller.
    """

    proofs_dir.mkdir(parents=True, exist_ok=True)
    for r in results:
        if r.proof is not None and r.proof.output:
            (proofs_dir / f"{r.proof.hash}.txt").write_text(r.proof.output, encoding="utf-8", errors="replace")
    out = proofs_dir / report_name(topic, revision)
    out.write_bytes(render_report_bytes(build_execution_report(topic=topic, revision=revision, results=results)))
    return out


def write_agent_report(
    proofs_dir: Path,
    *,
    topic: str,
    revision: str,
    proof_text: str,
    parsed: ParsedProof,
) -> tuple[Path, str]:
    """Archive the raw proof text as <hash>-agent.txt and write the consolidated JSON report.

    Returns (report_path, proof_hash). OSError propagates to the caller.
    """

    proofs_dir.mkdir(parents=True, exist_ok=True)
    proof_hash = short_sha256(proof_text)
    (proofs_dir / f"{proof_hash}-agent.txt").write_text(proof_text, encoding="utf-8", errors="replace")
    out = proofs_dir / report_name(topic, revision)
    out.write_bytes(
        render_report_bytes(build_agent_report(topic=topic, revision=revision, parsed=parsed, proof_hash=proof_hash))
    )
    return out, proof_hash
