# browsergate/gateway.py
"""
The per-tool-call seam between an agent and the browser.

`Gateway.invoke()` runs every call through the same steps:

1. look the tool up and validate its arguments against the input model,
2. ask the session's workflow validator whether the call may run now,
3. run the tool body (or a caller-supplied operation), wrapped in the
   session's recovery engine when the tool is recoverable,
4. record the final outcome in the validator, whatever the path,
5. hand back a `ToolResult`; exceptions never escape to the agent.

Calls against one session are serialized on that session's lock.
"""
from __future__ import annotations

import asyncio
import functools
import inspect
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from browsergate.exceptions import (
    ConfigurationError,
    ToolExecutionError,
    ToolValidationError,
    WorkflowViolationError,
)
from browsergate.registry import TOOL_REGISTRY, ToolEntry, ensure_discovered, get_tool, list_tools
from browsergate.schemas.recovery import Exhausted, Operation, RecoveryContext
from browsergate.schemas.tool_result import ToolResult
from browsergate.session import DEFAULT_SESSION_ID, SessionContext, SessionRegistry
from browsergate.tools import discover_builtin_tools
from browsergate.utils.aio import call_maybe_async
from browsergate.utils.config import get_config
from browsergate.utils.log_sinks import bind_call
from browsergate.utils.logger import enable_session_files, setup_logger
from browsergate.utils.redact import redact_for_log

logger = setup_logger(__name__)

# A closed browser leaves nothing for the validator or the budgets to refer to.
RESET_ON_SUCCESS = frozenset({"browser_close"})


def _parse_args(entry: ToolEntry, args: Any) -> BaseModel:
    if isinstance(args, entry.input_model):
        return args
    try:
        return entry.input_model(**dict(args or {}))
    except ValidationError as e:
        raise ToolValidationError(
            f"Invalid input for '{entry.name}': {e}",
            suggested_action=f"Fix the arguments to match the '{entry.name}' input schema.",
            context={"tool_name": entry.name},
        ) from e


async def _run_tool(entry: ToolEntry, input_data: BaseModel, ctx: SessionContext) -> Any:
    """Run the tool body, passing only the collaborators its signature asks for."""
    params = inspect.signature(entry.func).parameters
    kwargs: Dict[str, Any] = {"input_data": input_data}
    if "driver" in params:
        if ctx.driver is None:
            raise ConfigurationError(
                f"Tool '{entry.name}' needs a browser driver but session "
                f"'{ctx.session_id}' has none."
            )
        kwargs["driver"] = ctx.driver
    if "session" in params:
        kwargs["session"] = ctx
    if "config" in params:
        kwargs["config"] = get_config()

    coro = call_maybe_async(entry.func, **kwargs)
    if entry.timeout is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout=entry.timeout)
    except asyncio.TimeoutError:
        raise ToolExecutionError(
            f"Tool '{entry.name}' timed out after {entry.timeout} seconds."
        )


class Gateway:
    """Runs tool calls through validation, recovery and recording."""

    def __init__(self, sessions: Optional[SessionRegistry] = None, *, discover: bool = True):
        self.sessions = sessions or SessionRegistry()
        logs_dir = self.sessions.settings.logging.session_logs_dir
        if logs_dir:
            enable_session_files(logs_dir)
        if discover:
            ensure_discovered(discover_builtin_tools)

    async def invoke(
        self,
        tool_name: str,
        args: Any = None,
        operation: Optional[Operation] = None,
        *,
        session_id: str = DEFAULT_SESSION_ID,
        recover: Optional[bool] = None,
        fallback: Optional[Operation] = None,
        progress_token: Optional[str] = None,
    ) -> ToolResult:
        """Validate, run and record one tool call.

        :param tool_name: Tool name used for guards, history and (without
            `operation`) the registry lookup.
        :type tool_name: str
        :param args: Tool arguments, a mapping or the tool's input model.
        :param operation: Zero-argument callable to run instead of the registered
            tool body; unregistered names are allowed in that case.
        :param session_id: Which session's state, budgets and driver to use.
        :param recover: Wrap the call in the recovery engine. Defaults to the
            tool's `recoverable` flag, or False for unregistered names.
        :param fallback: Operation for strategies whose action is `fallback`.
        :param progress_token: Token for progress notifications; defaults to the tool name.
        :return: The outcome; failures are reported, never raised.
        :rtype: ToolResult
        """
        ctx = self.sessions.get(session_id)
        started = time.perf_counter()
        with bind_call(session_id, tool_name):
            async with ctx.lock:
                result = await self._invoke_locked(
                    ctx, tool_name, args, operation, recover, fallback, progress_token
                )

        result.tool_name = tool_name
        result.session_id = session_id
        result.latency_ms = int((time.perf_counter() - started) * 1000)
        return result

    async def _invoke_locked(
        self,
        ctx: SessionContext,
        tool_name: str,
        args: Any,
        operation: Optional[Operation],
        recover: Optional[bool],
        fallback: Optional[Operation],
        progress_token: Optional[str],
    ) -> ToolResult:
        validator = ctx.validator
        entry: Optional[ToolEntry] = None
        input_data: Any = args
        try:
            if operation is None:
                entry = get_tool(tool_name)
            else:
                entry = TOOL_REGISTRY.get(tool_name)
            if entry is not None:
                input_data = _parse_args(entry, args)

            check = validator.validate(tool_name, input_data)
            if not check.is_valid:
                raise WorkflowViolationError(
                    tool_name,
                    check.error_message or f"Tool '{tool_name}' cannot run yet.",
                    suggested_action=check.suggested_action,
                    summary=validator.get_validation_summary(),
                )

            if operation is None:
                operation = functools.partial(_run_tool, entry, input_data, ctx)
            should_recover = recover if recover is not None else bool(entry and entry.recoverable)
            output, attempts, last_action = await self._execute(
                ctx, tool_name, operation, should_recover, fallback, progress_token
            )
        except Exception as e:
            if isinstance(e, (WorkflowViolationError, ToolValidationError)):
                logger.info("Rejected '%s': %s", tool_name, e.message)
            else:
                logger.error(
                    "Tool '%s' failed: %s",
                    tool_name,
                    e,
                    extra={"args": redact_for_log(args) if args is not None else None},
                )
            validator.record(tool_name, input_data, success=False, message=str(e))
            return ToolResult.from_exception(e)

        validator.record(tool_name, input_data, success=True, output=output)
        if tool_name in RESET_ON_SUCCESS:
            ctx.reset()
        return ToolResult.ok_result(
            output=output,
            recovery_attempts=attempts,
            last_action=last_action,
        )

    async def _execute(
        self,
        ctx: SessionContext,
        tool_name: str,
        operation: Operation,
        recover: bool,
        fallback: Optional[Operation],
        progress_token: Optional[str],
    ) -> Tuple[Any, int, Optional[str]]:
        if not recover:
            return await call_maybe_async(operation), 0, None

        driver = ctx.driver
        rctx = RecoveryContext(
            label=tool_name,
            on_refresh=driver.reload if driver is not None else None,
            on_restart=driver.restart if driver is not None else None,
            fallback=fallback,
            progress=ctx.notifier,
            progress_token=progress_token or tool_name,
        )
        outcome = await ctx.engine.execute(operation, rctx)
        if not outcome.success:
            if isinstance(outcome.outcome, Exhausted):
                # The call that spent the budget is over; later calls start fresh.
                ctx.engine.reset_state()
            raise outcome.to_exception(tool_name)
        # A fully successful call starts the next one with fresh budgets.
        ctx.engine.reset_state()
        last_action = outcome.last_action.value if outcome.last_action else None
        return outcome.result, outcome.recovery_attempts, last_action

    # ------------------------------------------------------------ introspection

    def list_tool_specs(self) -> List[Dict[str, Any]]:
        """Name, description and JSON schema of every registered tool."""
        return [
            {
                "name": entry.name,
                "description": entry.description,
                "inputSchema": entry.input_model.model_json_schema(),
            }
            for entry in sorted(list_tools(), key=lambda e: e.name)
        ]

    def summary(self, session_id: str = DEFAULT_SESSION_ID) -> str:
        return self.sessions.get(session_id).validator.get_validation_summary()

    def diagnostics(self, session_id: str = DEFAULT_SESSION_ID) -> Dict[str, Any]:
        ctx = self.sessions.get(session_id)
        info = ctx.validator.diagnostics()
        info["recovery"] = ctx.engine.state.model_dump()
        info["active_operations"] = [
            {"token": u.progress_token, "progress": u.progress, "message": u.message}
            for u in ctx.notifier.get_active_operations()
        ]
        return info
