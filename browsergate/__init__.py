"""
browsergate core package.

Workflow-gated, self-recovering browser tool calls for automated agents:
a per-session workflow validator that rejects tools called out of order, a
bounded recovery engine that retries classified driver failures, and the
gateway that wraps both around every tool call.
"""

__all__ = [
    "driver",
    "exceptions",
    "gateway",
    "progress",
    "recovery",
    "registry",
    "schemas",
    "session",
    "tools",
    "utils",
    "workflow",
]
