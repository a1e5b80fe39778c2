# browsergate/workflow/guards.py
"""
Tool preconditions and state effects.

A `ToolGuard` lists the requirements a tool has on the session, in the order
they should be satisfied; validation reports the first unmet one so the
suggested action always names the exact missing prerequisite tool. Tools
without a guard are always allowed: the table is additive configuration, not
an allow-list.

`DEFAULT_EFFECTS` holds what a *successful* call does to the session state.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from browsergate.schemas.session import SessionState


@dataclass(frozen=True)
class GuardEnv:
    """Inputs to a guard besides the state itself."""

    now: float
    content_stale_after_s: Optional[float] = None


@dataclass(frozen=True)
class Requirement:
    """One precondition.

    :ivar name: Short identifier, e.g. "page_navigated".
    :ivar description: Completes "requires ... to have completed first".
    :ivar prerequisite: The tool that satisfies this requirement.
    :ivar remedy: Suggested action shown to the agent.
    :ivar check: Predicate over (state, env); must not mutate either.
    :ivar explain: Optional custom message builder (tool, state, env) -> str.
    """

    name: str
    description: str
    prerequisite: str
    remedy: str
    check: Callable[[SessionState, GuardEnv], bool]
    explain: Optional[Callable[[str, SessionState, GuardEnv], str]] = None

    def message_for(self, tool_name: str, state: SessionState, env: GuardEnv) -> str:
        if self.explain is not None:
            return self.explain(tool_name, state, env)
        return (
            f"Tool '{tool_name}' requires {self.description} "
            f"({self.prerequisite}) to have completed first."
        )


@dataclass(frozen=True)
class ToolGuard:
    tool_name: str
    requirements: Tuple[Requirement, ...] = field(default_factory=tuple)

    def first_unmet(self, state: SessionState, env: GuardEnv) -> Optional[Requirement]:
        for req in self.requirements:
            if not req.check(state, env):
                return req
        return None


def _content_is_fresh(state: SessionState, env: GuardEnv) -> bool:
    if not env.content_stale_after_s:
        return True
    age = state.content_age(env.now)
    return age is not None and age <= env.content_stale_after_s


def _explain_stale(tool_name: str, state: SessionState, env: GuardEnv) -> str:
    age = state.content_age(env.now) or 0.0
    return (
        f"Tool '{tool_name}' requires a fresh content analysis: the last get_content "
        f"ran {age:.0f}s ago (limit {env.content_stale_after_s:.0f}s) and the page "
        "may have changed since."
    )


BROWSER_READY = Requirement(
    name="browser_initialized",
    description="browser initialization",
    prerequisite="browser_init",
    remedy="Call browser_init to start the browser first.",
    check=lambda s, _env: s.browser_initialized,
)

PAGE_LOADED = Requirement(
    name="page_navigated",
    description="page navigation",
    prerequisite="navigate",
    remedy="Call navigate with a URL to load a page first.",
    check=lambda s, _env: s.page_navigated,
)

CONTENT_ANALYZED = Requirement(
    name="content_analyzed",
    description="content analysis",
    prerequisite="get_content",
    remedy=(
        "Call get_content to analyze the page first, then use find_selector to "
        "locate elements by their text. This prevents blind selector guessing."
    ),
    check=lambda s, _env: s.content_analyzed,
)

CONTENT_FRESH = Requirement(
    name="content_fresh",
    description="a recent content analysis",
    prerequisite="get_content",
    remedy="Call get_content again to refresh the page analysis, then retry.",
    check=_content_is_fresh,
    explain=_explain_stale,
)

ELEMENT_LOCATED = Requirement(
    name="element_located",
    description="content analysis or selector discovery",
    prerequisite="get_content",
    remedy=(
        "Call get_content to analyze the page, then find_selector to get a "
        "reliable selector before interacting with elements."
    ),
    check=lambda s, _env: s.content_analyzed or s.selector_found,
)


def _guard(tool_name: str, *requirements: Requirement) -> ToolGuard:
    return ToolGuard(tool_name=tool_name, requirements=tuple(requirements))


DEFAULT_GUARDS: Dict[str, ToolGuard] = {
    g.tool_name: g
    for g in (
        _guard("navigate", BROWSER_READY),
        _guard("get_content", BROWSER_READY, PAGE_LOADED),
        _guard("screenshot", BROWSER_READY, PAGE_LOADED),
        _guard("wait", BROWSER_READY, PAGE_LOADED),
        _guard("solve_captcha", BROWSER_READY, PAGE_LOADED),
        _guard("search_content", BROWSER_READY, PAGE_LOADED),
        _guard("find_selector", BROWSER_READY, PAGE_LOADED, CONTENT_ANALYZED, CONTENT_FRESH),
        _guard("click", BROWSER_READY, PAGE_LOADED, ELEMENT_LOCATED),
        _guard("type", BROWSER_READY, PAGE_LOADED, ELEMENT_LOCATED),
        _guard("select_option", BROWSER_READY, PAGE_LOADED, ELEMENT_LOCATED),
    )
}


# ---- State effects (applied only on success) ----

# (state, args, now, output); `output` is what the tool returned, None when unknown.
StateEffect = Callable[[SessionState, Mapping[str, Any], float, Any], None]


def _browser_init(state: SessionState, _args: Mapping[str, Any], _now: float, _output: Any) -> None:
    state.browser_initialized = True


def _navigate(state: SessionState, args: Mapping[str, Any], _now: float, _output: Any) -> None:
    state.page_navigated = True
    state.last_url = args.get("url") or state.last_url
    # A new page invalidates whatever was discovered on the previous one.
    state.content_analyzed = False
    state.content_analyzed_at = None
    state.selector_found = False
    state.last_selector = None


def _get_content(state: SessionState, _args: Mapping[str, Any], now: float, _output: Any) -> None:
    state.content_analyzed = True
    state.content_analyzed_at = now


def _find_selector(state: SessionState, args: Mapping[str, Any], _now: float, output: Any) -> None:
    state.selector_found = True
    # Keep the selector the lookup returned, never the search text.
    if isinstance(output, str) and output:
        state.last_selector = output
    elif args.get("selector"):
        state.last_selector = args["selector"]


DEFAULT_EFFECTS: Dict[str, StateEffect] = {
    "browser_init": _browser_init,
    "navigate": _navigate,
    "get_content": _get_content,
    "find_selector": _find_selector,
}
