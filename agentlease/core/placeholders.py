from __future__ import annotations

import re
from typing import Mapping


PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+)\}\}")
ENV_PREFIX = "env:"


def substitute_placeholders(template: str, values: Mapping[str, str], *, environ: Mapping[str, str]) -> str:
    """Replace {{name}} and {{env:VAR}} placeholders in a single pass.

    - Known names are replaced with values[name].
    - {{env:VAR}} expands to environ[VAR], or "" when VAR is unset.
    - Unknown placeholders are left exactly as written.

    Substituted text is never re-scanned, so a value containing "{{...}}"
    (a diff, for instance) is inserted verbatim.
    """

    def repl(m: re.Match[str]) -> str:
        name = m.group(1)
        if name.startswith(ENV_PREFIX):
            var = name[len(ENV_PREFIX):]
            return environ.get(var, "") if var else m.group(0)
        if name in values:
            return values[name]
        return m.group(0)

    return PLACEHOLDER_RE.sub(repl, template)
