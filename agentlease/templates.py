"""Gate message templates.

Lookup order for a topic's template:
  1. --template PATH
  2. <template_dir>/<topic>.md
  3. <template_dir>/commit.md | push.md for pre-commit | pre-push
     (falling back to the built-in commit/push template)
  4. <template_dir>/default.md
  5. built-in generic template
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Sequence

from agentlease.core.placeholders import substitute_placeholders
from agentlease.lease.base import DEFAULT_TOPIC, RunnerSpec
from agentlease.lease.context import GitContext
from agentlease.lease.proof import proof_template
from agentlease.lease.runner import template_values
from agentlease.lease.topics import topic_phase


CLI_NAME = "agent-lease"
BANNER_RULE = "=" * 62
SECTION_RULE = "-" * 62
NO_VERIFY_STATEMENT = "--no-verify is FORBIDDEN without explicit human approval."

DEFAULT_COMMIT_TEMPLATE = """# Commit Validation Gate

## Standards Check
- [ ] Did you update docs if you changed public APIs?
- [ ] Did you add tests for new functionality?
- [ ] No debug prints left in production code?
- [ ] Following conventional commits?

## Changed Files
{{files}}

## Runners
{{runners}}

When everything checks out:
  agent-lease commit --audit-proof='<proof text>'
"""

DEFAULT_PUSH_TEMPLATE = """# Push Validation Gate

## Standards Check
- [ ] Did you update docs if you changed public APIs?
- [ ] Did you add tests for new functionality?
- [ ] No debug prints left in production code?
- [ ] All commits follow conventional commits?

## Changed Files
{{files}}

## Runners
{{runners}}

When everything checks out:
  agent-lease push --audit-proof='<proof text>'
"""

GENERIC_TEMPLATE = """# {{topic}} Validation Gate

## Checklist
- [ ] Verified all requirements for this gate

## Changed Files
{{files}}

## Runners
{{runners}}

When everything checks out:
  agent-lease lease {{topic}} --audit-proof='<proof text>'
"""

_LEGACY_TEMPLATES = {
    DEFAULT_TOPIC: ("commit.md", DEFAULT_COMMIT_TEMPLATE),
    "pre-push": ("push.md", DEFAULT_PUSH_TEMPLATE),
}


def _read_template(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def load_topic_template(topic: str, template_dir: Path, cli_template_path: Path | None = None) -> str:
    if cli_template_path is not None:
        text = _read_template(Path(cli_template_path))
        if text is not None:
            return text

    text = _read_template(template_dir / f"{topic}.md")
    if text is not None:
        return text

    legacy = _LEGACY_TEMPLATES.get(topic)
    if legacy is not None:
        filename, builtin = legacy
        text = _read_template(template_dir / filename)
        return text if text is not None else builtin

    text = _read_template(template_dir / "default.md")
    if text is not None:
        return text
    return GENERIC_TEMPLATE


def format_runner_listing(runners: Sequence[RunnerSpec]) -> str:
    if not runners:
        return "  (no runners configured for this topic)"
    return "\n".join(f"  {r.name}    {r.command}    [{r.on}]" for r in runners)


def interpolate_template(
    template: str,
    context: GitContext,
    *,
    project_name: str,
    topic: str,
    runners: Sequence[RunnerSpec],
    environ: Mapping[str, str],
) -> str:
    values = template_values(context, project_name, topic)
    values["files"] = "\n".join(context.files_for(topic))
    values["runners"] = format_runner_listing(runners)
    return substitute_placeholders(template, values, environ=environ)


def blocked_label(topic: str) -> str:
    phase = topic_phase(topic)
    return phase.upper() if phase in ("commit", "push") else topic.upper()


def release_command(topic: str, *, proof: str | None = None) -> str:
    base = f"{CLI_NAME} lease {topic} --audit-proof"
    if proof is None:
        return base
    return f"{base}='{proof}'"


def render_deny_message(
    *,
    topic: str,
    template: str,
    context: GitContext,
    project_name: str,
    runners: Sequence[RunnerSpec],
    environ: Mapping[str, str],
    lock_path: Path,
) -> str:
    """Full DENY text for a blocked gate: banner, bypass prohibition, rendered
    template, pre-filled proof format, self-run command and lock location."""

    body = interpolate_template(
        template,
        context,
        project_name=project_name,
        topic=topic,
        runners=runners,
        environ=environ,
    )
    lines = [
        BANNER_RULE,
        f"  {blocked_label(topic)} BLOCKED: validation required ({CLI_NAME})",
        BANNER_RULE,
        "",
        f"  {NO_VERIFY_STATEMENT}",
        "  Do not bypass this gate. Run the checks and record proof instead.",
        "",
        body.rstrip("\n"),
        "",
        SECTION_RULE,
        "Release with proof (list every runner below):",
        "",
        f"  {release_command(topic, proof=proof_template(runners))}",
        "",
        f"Or let {CLI_NAME} run the runners itself:",
        "",
        f"  {release_command(topic)}",
        "",
        f"Lock: {lock_path}",
    ]
    return "\n".join(lines) + "\n"

