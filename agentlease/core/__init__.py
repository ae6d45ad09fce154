"""Lowest-level agent-lease utilities.

Dependency direction rules:
- agentlease.core must not import agentlease.lease, agentlease.commands or agentlease.cli
"""

from agentlease.core.git_ops import NO_REVISION
from agentlease.core.hash import sha256_bytes, sha256_text, short_sha256
from agentlease.core.kv_text import parse_kv_text, render_kv_lines
from agentlease.core.placeholders import substitute_placeholders
from agentlease.core.time import epoch_millis, monotonic_millis, utc_timestamp_iso

__all__ = [
	"NO_REVISION",
	"epoch_millis",
	"monotonic_millis",
	"parse_kv_text",
	"render_kv_lines",
	"sha256_bytes",
	"sha256_text",
	"short_sha256",
	"substitute_placeholders",
	"utc_timestamp_iso",
]
