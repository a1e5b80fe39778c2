"""Built-in browser tools."""

import importlib

from browsergate.registry import TOOL_REGISTRY

BUILTIN_TOOL_MODULES = ("browsergate.tools.browser",)


def discover_builtin_tools() -> None:
    """Import (or, after a registry reset, re-import) the built-in tool modules."""
    for name in BUILTIN_TOOL_MODULES:
        module = importlib.import_module(name)
        if not any(entry.func.__module__ == name for entry in TOOL_REGISTRY.values()):
            importlib.reload(module)
