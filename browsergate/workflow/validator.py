# browsergate/workflow/validator.py
"""
Workflow state validator for one browser session.

Every tool call goes through the same pair:

    result = validator.validate("find_selector", args)
    if not result.is_valid: ...  # tell the agent which tool to run first
    ...run the tool...
    validator.record("find_selector", args, success=True)

`validate` is a pure read of the session state; `record` appends to the
history and, for successful calls, applies the tool's state effect.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from browsergate.schemas.session import ExecutionRecord, SessionState, ValidationResult
from browsergate.schemas.settings import WorkflowSettings
from browsergate.utils.logger import setup_logger
from browsergate.utils.redact import redact_for_log
from browsergate.workflow.guards import (
    DEFAULT_EFFECTS,
    DEFAULT_GUARDS,
    GuardEnv,
    StateEffect,
    ToolGuard,
)
from browsergate.workflow.history import ExecutionHistory

logger = setup_logger(__name__)


def _args_dict(args: Any) -> Dict[str, Any]:
    if args is None:
        return {}
    if isinstance(args, BaseModel):
        return args.model_dump(exclude_none=True)
    if isinstance(args, Mapping):
        return dict(args)
    return {"value": args}


class WorkflowValidator:
    """Gates tool calls on session milestones and records their outcomes."""

    def __init__(
        self,
        guards: Optional[Mapping[str, ToolGuard]] = None,
        effects: Optional[Mapping[str, StateEffect]] = None,
        *,
        history_limit: int = 50,
        content_stale_after_s: Optional[float] = None,
        summary_records: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self._guards: Dict[str, ToolGuard] = dict(DEFAULT_GUARDS if guards is None else guards)
        self._effects: Dict[str, StateEffect] = dict(
            DEFAULT_EFFECTS if effects is None else effects
        )
        self.content_stale_after_s = content_stale_after_s
        self.summary_records = summary_records
        self._clock = clock
        self.state = SessionState()
        self.history = ExecutionHistory(history_limit)

    @classmethod
    def from_settings(cls, settings: WorkflowSettings, **kwargs: Any) -> "WorkflowValidator":
        return cls(
            history_limit=settings.history_limit,
            content_stale_after_s=settings.content_stale_after_s,
            summary_records=settings.summary_records,
            **kwargs,
        )

    def add_guard(self, guard: ToolGuard) -> None:
        self._guards[guard.tool_name] = guard

    def add_effect(self, tool_name: str, effect: StateEffect) -> None:
        self._effects[tool_name] = effect

    def guard_for(self, tool_name: str) -> Optional[ToolGuard]:
        return self._guards.get(tool_name)

    def validate(self, tool_name: str, args: Any = None) -> ValidationResult:
        """Check whether `tool_name` may run now. Never raises, never mutates.

        :param tool_name: Registered tool name.
        :type tool_name: str
        :param args: Tool arguments (unused by the default guards).
        :type args: Any
        :return: Validity plus, when invalid, an error and the prerequisite to run.
        :rtype: ValidationResult
        """
        guard = self._guards.get(tool_name)
        if guard is None:
            return ValidationResult.ok()

        env = GuardEnv(now=self._clock(), content_stale_after_s=self.content_stale_after_s)
        try:
            unmet = guard.first_unmet(self.state, env)
        except Exception as e:
            logger.error("Guard for '%s' raised: %s", tool_name, e)
            return ValidationResult(
                is_valid=False,
                error_message=f"Precondition check for '{tool_name}' failed: {e}",
                suggested_action="Inspect the session state before retrying.",
            )
        if unmet is None:
            return ValidationResult.ok()

        logger.debug(
            "Workflow check rejected '%s'",
            tool_name,
            extra={"requirement": unmet.name, "phase": self.state.phase.value},
        )
        return ValidationResult(
            is_valid=False,
            error_message=unmet.message_for(tool_name, self.state, env),
            suggested_action=unmet.remedy,
        )

    def record(
        self,
        tool_name: str,
        args: Any = None,
        success: bool = True,
        message: Optional[str] = None,
        output: Any = None,
    ) -> ExecutionRecord:
        """Append an execution record; on success apply the tool's state effect.

        Failures are recorded and logged but never change the state flags.
        `output` is the tool's return value, used by effects such as
        `find_selector` that remember what the call produced.
        """
        raw_args = _args_dict(args)
        now = self._clock()
        entry = ExecutionRecord(
            tool_name=tool_name,
            args=redact_for_log(raw_args),
            timestamp=now,
            success=success,
            message=message,
        )
        self.history.append(entry)

        if not success:
            logger.info(
                "Tool '%s' failed", tool_name, extra={"message": message, "args": entry.args}
            )
            return entry

        effect = self._effects.get(tool_name)
        if effect is not None:
            effect(self.state, raw_args, now, output)
            logger.debug(
                "Applied state effect for '%s'",
                tool_name,
                extra={"phase": self.state.phase.value},
            )
        return entry

    def get_validation_summary(self) -> str:
        """Render flags, phase and recent calls for an agent to self-correct from."""
        s = self.state
        lines = [
            f"Workflow state: {s.phase.value}",
            f"  browser initialized: {'yes' if s.browser_initialized else 'no'}",
            f"  page navigated: {'yes' if s.page_navigated else 'no'}"
            + (f" ({s.last_url})" if s.last_url else ""),
            f"  content analyzed: {'yes' if s.content_analyzed else 'no'}",
            f"  selector found: {'yes' if s.selector_found else 'no'}"
            + (f" ({s.last_selector})" if s.last_selector else ""),
        ]
        recent = self.history.recent(self.summary_records)
        if recent:
            lines.append("Recent tool calls:")
            lines.extend(f"  - {r.one_line()}" for r in recent)
            last = recent[-1]
            if not last.success and self.history.repeated_failure(last.tool_name, last.args):
                lines.append(
                    f"Note: '{last.tool_name}' has failed repeatedly with the same "
                    "arguments; change the arguments or the approach."
                )
        else:
            lines.append("Recent tool calls: none")
        return "\n".join(lines)

    def diagnostics(self) -> Dict[str, Any]:
        return {
            "state": self.state.model_dump(),
            "phase": self.state.phase.value,
            "history": self.history.stats(),
        }

    def reset(self) -> None:
        """Back to a fresh session: initial flags, empty history."""
        self.state = SessionState()
        self.history.clear()
        logger.info("Workflow state reset")
