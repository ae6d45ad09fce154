"""Lock/lease state machine: lock store, runner engine, proof reconciler and gate controller.

Dependency direction rules:
- agentlease.lease may import agentlease.core and agentlease.templates
- agentlease.lease must not import agentlease.config, agentlease.commands or agentlease.cli
"""

from __future__ import annotations
