from __future__ import annotations

from typing import Iterable


def render_kv_lines(pairs: Iterable[tuple[str, object]]) -> str:
    """Render KEY=VALUE pairs, one per line, with a trailing LF.

    Values are flattened to a single line so an appended record can never
    inject extra keys.
    """

    out: list[str] = []
    for key, value in pairs:
        if not key or "=" in key or "\n" in key:
            raise ValueError(f"invalid key: {key!r}")
        text = _format_value(value)
        out.append(f"{key}={text}")
    return "".join(line + "\n" for line in out)


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = "" if value is None else str(value)
    return " ".join(text.splitlines()).strip() if ("\n" in text or "\r" in text) else text


def parse_kv_text(text: str) -> dict[str, str]:
    """Parse KEY=VALUE lines; later keys override earlier ones.

    Lines without '=' or with an empty key are ignored. Only the first '='
    separates key from value.
    """

    data: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep or not key:
            continue
        data[key] = value
    return data
