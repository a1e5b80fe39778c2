# browsergate/registry.py
"""
Central tool registry and decorator for browsergate.

- Idempotent registration (safe during module reloads).
- Typed ToolEntry surface consumed by the gateway.
- `recoverable` marks tools whose failures the gateway may hand to the
  recovery engine; the rest run exactly once.
"""
from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, Optional, Tuple, Type

from pydantic import BaseModel

from browsergate.exceptions import ToolNotFoundError
from browsergate.utils.logger import setup_logger

logger = setup_logger(__name__)

TOOL_REGISTRY: Dict[str, "ToolEntry"] = {}

# Synchronizes concurrent registrations (e.g., parallel imports)
_REG_LOCK = threading.RLock()

_discovered = False


@dataclass(frozen=True)
class ToolEntry:
    """Shape consumed by the gateway when executing tools.

    Required:
      - name: canonical tool name used by the agent
      - input_model: Pydantic model for argument validation
      - func: async callable `(input_data, driver) -> output`

    Optional:
      - timeout: per-tool timeout in seconds
      - description, category, tags: metadata for tool listings
      - recoverable: wrap calls in the recovery engine by default
    """

    name: str
    input_model: Type[BaseModel]
    func: Callable[..., object]
    timeout: Optional[float] = None

    description: str = ""
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    recoverable: bool = False


def _same_signature(a: ToolEntry, b: ToolEntry) -> bool:
    # Metadata changes should not spam warnings during hot-reloads.
    return (
        a.name == b.name
        and a.input_model is b.input_model
        and a.func is b.func
        and a.timeout == b.timeout
    )


def register_tool(entry: ToolEntry) -> None:
    """Register a ToolEntry.

    Idempotent: re-registering the *same* tool only refreshes metadata. If a
    different callable/model claims the same name, it replaces the old one
    with a warning.
    """
    with _REG_LOCK:
        existing = TOOL_REGISTRY.get(entry.name)
        if existing is not None:
            if _same_signature(existing, entry):
                TOOL_REGISTRY[entry.name] = replace(
                    existing,
                    description=entry.description or existing.description,
                    category=entry.category or existing.category,
                    tags=entry.tags or existing.tags,
                    recoverable=entry.recoverable,
                )
                return
            logger.warning(
                "Re-registering tool '%s' with a different implementation.",
                entry.name,
            )
        TOOL_REGISTRY[entry.name] = entry
        logger.debug("Registered tool: %s", entry.name)


def tool(
    name: str,
    input_model: Type[BaseModel],
    *,
    timeout: Optional[float] = None,
    description: str = "",
    category: Optional[str] = None,
    tags: Iterable[str] = (),
    recoverable: bool = False,
):
    """Decorator to register a function as a browser tool.

    Usage:
        @tool("navigate", NavigateInput, recoverable=True, category="navigation")
        async def navigate(input_data, driver): ...
    """
    tags_tuple: Tuple[str, ...] = tuple(tags or ())

    def _decorator(func: Callable[..., object]) -> Callable[..., object]:
        if not inspect.isfunction(func) and not inspect.iscoroutinefunction(func):
            raise TypeError("@tool can only decorate functions/coroutines")
        register_tool(
            ToolEntry(
                name=name,
                input_model=input_model,
                func=func,
                timeout=timeout,
                description=description or (inspect.getdoc(func) or "").split("\n")[0],
                category=category,
                tags=tags_tuple,
                recoverable=bool(recoverable),
            )
        )
        return func

    return _decorator


def get_tool(name: str) -> ToolEntry:
    try:
        return TOOL_REGISTRY[name]
    except KeyError:
        available = ", ".join(sorted(TOOL_REGISTRY)) or "none"
        raise ToolNotFoundError(
            f"Tool '{name}' not found in registry. Available: {available}"
        )


def list_tools() -> Iterable[ToolEntry]:
    return list(TOOL_REGISTRY.values())


def ensure_discovered(importer: Optional[Callable[[], None]] = None) -> None:
    """Ensure tools are discovered exactly once in-process.

    - If `importer` is provided, it is called the first time to perform discovery.
    - Subsequent calls are no-ops.
    """
    global _discovered
    with _REG_LOCK:
        if _discovered:
            return
        if importer is not None:
            importer()
        _discovered = True


def reset_registry_for_tests() -> None:
    """Clear the registry and discovery guard (intended for tests only)."""
    global _discovered
    with _REG_LOCK:
        TOOL_REGISTRY.clear()
        _discovered = False
