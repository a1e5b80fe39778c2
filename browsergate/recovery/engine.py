# browsergate/recovery/engine.py
"""
Bounded, typed error recovery around a single operation.

`RecoveryEngine.execute()` runs an operation; when it raises, the error is
classified against the ordered strategy table and, budget permitting, one
recovery action is performed before the operation is attempted again:

    idle -> attempting -> success
                       -> classifying -> recovering -> attempting ...
                                      -> unrecoverable (no match, skip)
                                      -> exhausted (strategy or global budget)

Both budgets are checked before an action runs, so neither counter can pass
its ceiling. Counters persist across calls until `reset_state()`; the caller
resets them after a fully successful higher-level cycle.
"""
from __future__ import annotations

import asyncio
import itertools
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from browsergate.exceptions import ConfigurationError
from browsergate.recovery.taxonomy import SKIP_HINTS, default_strategies
from browsergate.schemas.recovery import (
    Exhausted,
    FellBack,
    Operation,
    RecoveryAction,
    RecoveryConfig,
    RecoveryContext,
    RecoveryFailure,
    RecoveryOutcome,
    RecoveryPhase,
    RecoveryResult,
    RecoveryState,
    RecoveryStrategy,
    Skipped,
    Succeeded,
    Unclassified,
    error_text,
)
from browsergate.schemas.settings import RecoverySettings
from browsergate.utils.aio import call_maybe_async
from browsergate.utils.logger import setup_logger

logger = setup_logger(__name__)

StrategyLike = Union[RecoveryStrategy, Mapping[str, Any]]


class _Attempt:
    """Per-call bookkeeping; the engine's counters live in RecoveryState."""

    def __init__(self) -> None:
        self.attempts = 0
        self.last_action: Optional[RecoveryAction] = None
        self.action_errors: List[BaseException] = []


class RecoveryEngine:
    """Executes operations with classified, budgeted recovery."""

    def __init__(
        self,
        config: Optional[RecoveryConfig] = None,
        strategies: Optional[Iterable[StrategyLike]] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        :param config: Enabled flag, global ceiling and default delay.
        :type config: Optional[RecoveryConfig]
        :param strategies: Initial strategy table; the default taxonomy when omitted.
        :type strategies: Optional[Iterable[StrategyLike]]
        :param sleep: Coroutine used for recovery delays (injectable for tests).
        """
        self.config = config or RecoveryConfig()
        self._ids = itertools.count(1)
        self._strategies: List[RecoveryStrategy] = []
        initial = default_strategies() if strategies is None else strategies
        for strategy in initial:
            self._strategies.append(self._register(strategy))
        self.state = RecoveryState()
        self.phase = RecoveryPhase.IDLE
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: RecoverySettings, **kwargs: Any) -> "RecoveryEngine":
        config = RecoveryConfig(**settings.model_dump())
        return cls(config, **kwargs)

    # ------------------------------------------------------------------ config

    @property
    def strategies(self) -> List[RecoveryStrategy]:
        return list(self._strategies)

    def _register(
        self, strategy: StrategyLike, pending: Iterable[RecoveryStrategy] = ()
    ) -> RecoveryStrategy:
        if isinstance(strategy, Mapping):
            try:
                strategy = RecoveryStrategy(**strategy)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid recovery strategy: {e}") from e
        if strategy.strategy_id is None:
            strategy = strategy.model_copy(
                update={"strategy_id": f"strategy-{next(self._ids)}"}
            )
        elif any(
            s.strategy_id == strategy.strategy_id
            for s in itertools.chain(self._strategies, pending)
        ):
            raise ConfigurationError(
                f"Duplicate recovery strategy id '{strategy.strategy_id}'"
            )
        return strategy

    def configure(self, partial: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> None:
        """Merge configuration; extra `strategies` are prepended in the given order.

        All-or-nothing: on error neither the settings nor the table change.

        :raises ConfigurationError: On unknown keys or invalid values.
        """
        updates = dict(partial or {})
        updates.update(kwargs)
        new_strategies = updates.pop("strategies", None) or []

        unknown = set(updates) - set(RecoveryConfig.model_fields)
        if unknown:
            raise ConfigurationError(
                f"Unknown recovery setting(s): {', '.join(sorted(unknown))}"
            )
        try:
            config = RecoveryConfig(**{**self.config.model_dump(), **updates})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid recovery settings: {e}") from e

        registered: List[RecoveryStrategy] = []
        for strategy in new_strategies:
            registered.append(self._register(strategy, registered))

        self.config = config
        self._strategies[:0] = registered
        logger.debug(
            "Recovery engine configured",
            extra={
                "enabled": self.config.enabled,
                "max_global_retries": self.config.max_global_retries,
                "added_strategies": [s.strategy_id for s in registered],
            },
        )

    def add_strategy(self, strategy: StrategyLike) -> RecoveryStrategy:
        """Insert a strategy at the head of the table and return it with its id."""
        registered = self._register(strategy)
        self._strategies.insert(0, registered)
        return registered

    def classify(self, error: BaseException) -> Optional[RecoveryStrategy]:
        """First strategy matching `error`, or None."""
        for strategy in self._strategies:
            if strategy.matches(error):
                return strategy
        return None

    def reset_state(self) -> None:
        """Zero the global and per-strategy counters."""
        self.state = RecoveryState()
        self.phase = RecoveryPhase.IDLE

    # --------------------------------------------------------------- execution

    def _set_phase(self, phase: RecoveryPhase) -> None:
        self.phase = phase

    def _delay_for(self, strategy: RecoveryStrategy) -> float:
        return strategy.delay if strategy.delay is not None else self.config.default_delay

    async def execute(
        self, operation: Operation, context: Optional[RecoveryContext] = None
    ) -> RecoveryResult:
        """Run `operation`, recovering from classified failures within budget.

        Errors raised by the operation are returned inside the result, never
        raised. `asyncio.CancelledError` is not an `Exception` and propagates.

        :param operation: Zero-argument callable, sync or async.
        :type operation: Operation
        :param context: Recovery callbacks, progress sink and label.
        :type context: Optional[RecoveryContext]
        :return: The outcome, with the number of recovery actions performed.
        :rtype: RecoveryResult
        """
        ctx = context or RecoveryContext()
        run = _Attempt()
        await self._emit(ctx, "start", message=f"Running {ctx.label}")

        if not self.config.enabled:
            self._set_phase(RecoveryPhase.ATTEMPTING)
            try:
                result = await call_maybe_async(operation)
            except Exception as e:
                self._set_phase(RecoveryPhase.UNRECOVERABLE)
                return await self._finish_failure(
                    ctx, run, e, Unclassified(e), RecoveryFailure.RECOVERY_DISABLED
                )
            return await self._finish_success(ctx, run, Succeeded(result), result)

        while True:
            self._set_phase(RecoveryPhase.ATTEMPTING)
            try:
                result = await call_maybe_async(operation)
            except Exception as e:
                error = e
            else:
                return await self._finish_success(ctx, run, Succeeded(result), result)

            self._set_phase(RecoveryPhase.CLASSIFYING)
            strategy = self.classify(error)
            if strategy is None:
                self._set_phase(RecoveryPhase.UNRECOVERABLE)
                logger.info(
                    "No recovery strategy matches failure of '%s': %s",
                    ctx.label,
                    error_text(error),
                )
                return await self._finish_failure(
                    ctx, run, error, Unclassified(error), RecoveryFailure.NO_MATCHING_STRATEGY
                )

            sid = strategy.strategy_id
            if strategy.action is RecoveryAction.SKIP:
                self._set_phase(RecoveryPhase.UNRECOVERABLE)
                run.last_action = RecoveryAction.SKIP
                reason = SKIP_HINTS.get(sid) or (
                    f"'{strategy.label}' failures cannot be fixed by retrying; "
                    "hand off to a specialised handler."
                )
                logger.info("Skipping recovery of '%s' via %s", ctx.label, sid)
                return await self._finish_failure(
                    ctx, run, error, Skipped(reason, sid), RecoveryFailure.SKIPPED
                )

            if self.state.count_for(sid) >= strategy.max_retries:
                self._set_phase(RecoveryPhase.EXHAUSTED)
                logger.warning(
                    "Recovery budget for %s exhausted (%d/%d) on '%s'",
                    sid,
                    self.state.count_for(sid),
                    strategy.max_retries,
                    ctx.label,
                )
                return await self._finish_failure(
                    ctx,
                    run,
                    error,
                    Exhausted("strategy", sid),
                    RecoveryFailure.PATTERN_BUDGET_EXHAUSTED,
                )

            if self.state.global_retry_count >= self.config.max_global_retries:
                self._set_phase(RecoveryPhase.EXHAUSTED)
                logger.warning(
                    "Global recovery budget exhausted (%d/%d) on '%s'",
                    self.state.global_retry_count,
                    self.config.max_global_retries,
                    ctx.label,
                )
                return await self._finish_failure(
                    ctx,
                    run,
                    error,
                    Exhausted("global", sid),
                    RecoveryFailure.GLOBAL_BUDGET_EXHAUSTED,
                )

            self._set_phase(RecoveryPhase.RECOVERING)
            self.state.charge(sid)
            run.attempts += 1
            run.last_action = strategy.action
            logger.info(
                "Recovering '%s' with %s (attempt %d)",
                ctx.label,
                strategy.action.value,
                run.attempts,
                extra={
                    "strategy_id": sid,
                    "error": error_text(error),
                    "strategy_count": self.state.count_for(sid),
                    "global_count": self.state.global_retry_count,
                },
            )
            await self._emit(
                ctx,
                "update",
                progress=self._progress_pct(),
                message=f"{strategy.action.value} after: {error}",
                metadata={"strategy_id": sid, "attempt": run.attempts},
            )

            fell_back = await self._perform(strategy, ctx, run)
            if fell_back is not None:
                return await self._finish_success(ctx, run, fell_back, fell_back.result)

            delay = self._delay_for(strategy)
            if delay > 0:
                await self._sleep(delay)

    async def _perform(
        self, strategy: RecoveryStrategy, ctx: RecoveryContext, run: _Attempt
    ) -> Optional[FellBack]:
        """Carry out one recovery action. Only a successful fallback returns a value."""
        action = strategy.action
        if action is RecoveryAction.RETRY:
            return None
        if action is RecoveryAction.REFRESH:
            await self._run_callback(ctx.on_refresh, action, ctx, run)
            return None
        if action is RecoveryAction.RESTART_BROWSER:
            await self._run_callback(ctx.on_restart, action, ctx, run)
            return None
        if action is RecoveryAction.FALLBACK:
            fallback = strategy.fallback or ctx.fallback
            if fallback is None:
                logger.warning(
                    "Strategy %s wants a fallback but none was supplied for '%s'",
                    strategy.strategy_id,
                    ctx.label,
                )
                return None
            try:
                value = await call_maybe_async(fallback)
            except Exception as e:
                run.action_errors.append(e)
                logger.warning("Fallback for '%s' failed: %s", ctx.label, e)
                await self._emit(
                    ctx,
                    "update",
                    progress=self._progress_pct(),
                    message=f"fallback failed: {e}",
                    metadata={"action_error": True},
                )
                return None
            return FellBack(value, strategy.strategy_id)
        raise ConfigurationError(f"Unhandled recovery action: {action}")

    async def _run_callback(
        self,
        callback: Optional[Operation],
        action: RecoveryAction,
        ctx: RecoveryContext,
        run: _Attempt,
    ) -> None:
        # The action's own failure is not fatal; the budget was already charged.
        if callback is None:
            logger.warning(
                "No %s callback supplied for '%s'; retrying without it",
                action.value,
                ctx.label,
            )
            return
        try:
            await call_maybe_async(callback)
        except Exception as e:
            run.action_errors.append(e)
            logger.warning("%s callback failed for '%s': %s", action.value, ctx.label, e)
            await self._emit(
                ctx,
                "update",
                progress=self._progress_pct(),
                message=f"{action.value} failed: {e}",
                metadata={"action_error": True, "action": action.value},
            )

    def _progress_pct(self) -> float:
        ceiling = max(self.config.max_global_retries, 1)
        return min(99.0, 100.0 * self.state.global_retry_count / (ceiling + 1))

    async def _finish_success(
        self, ctx: RecoveryContext, run: _Attempt, outcome: RecoveryOutcome, value: Any
    ) -> RecoveryResult:
        self._set_phase(RecoveryPhase.SUCCESS)
        await self._emit(
            ctx,
            "complete",
            message=f"{ctx.label} succeeded after {run.attempts} recovery attempt(s)",
        )
        return RecoveryResult(
            success=True,
            outcome=outcome,
            result=value,
            recovery_attempts=run.attempts,
            last_action=run.last_action,
            action_errors=run.action_errors,
        )

    async def _finish_failure(
        self,
        ctx: RecoveryContext,
        run: _Attempt,
        error: BaseException,
        outcome: RecoveryOutcome,
        failure: RecoveryFailure,
    ) -> RecoveryResult:
        await self._emit(ctx, "fail", error=f"{failure.value}: {error}")
        return RecoveryResult(
            success=False,
            outcome=outcome,
            error=error,
            recovery_attempts=run.attempts,
            failure=failure,
            last_action=run.last_action,
            action_errors=run.action_errors,
        )

    async def _emit(self, ctx: RecoveryContext, kind: str, **kwargs: Any) -> None:
        sink = ctx.progress
        if sink is None:
            return
        token = ctx.progress_token or ctx.label
        try:
            if kind == "start":
                await call_maybe_async(sink.start_operation, token, kwargs.get("message"))
            elif kind == "update":
                await call_maybe_async(
                    sink.update_progress,
                    token,
                    kwargs.get("progress", 0),
                    message=kwargs.get("message"),
                    metadata=kwargs.get("metadata"),
                )
            elif kind == "complete":
                await call_maybe_async(sink.complete_operation, token, kwargs.get("message"))
            elif kind == "fail":
                await call_maybe_async(sink.fail_operation, token, kwargs.get("error", ""))
        except Exception as e:
            # The sink is write-only telemetry; it must not change the outcome.
            logger.error("Progress sink raised on %s for '%s': %s", kind, ctx.label, e)

    async def execute_with_backoff(
        self,
        operation: Operation,
        context: Optional[RecoveryContext] = None,
        *,
        rounds: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
    ) -> RecoveryResult:
        """Compose several `execute()` rounds with exponential backoff between them.

        Budgets are reset between rounds and after success. Rounds stop early on
        outcomes another round cannot change (no matching strategy, skipped,
        recovery disabled).
        """
        if rounds < 1:
            raise ConfigurationError("rounds must be at least 1")
        final_rounds = {
            RecoveryFailure.NO_MATCHING_STRATEGY,
            RecoveryFailure.SKIPPED,
            RecoveryFailure.RECOVERY_DISABLED,
        }
        total_attempts = 0
        result: Optional[RecoveryResult] = None
        for round_no in range(rounds):
            result = await self.execute(operation, context)
            total_attempts += result.recovery_attempts
            if result.success:
                self.reset_state()
                break
            if result.failure in final_rounds or round_no + 1 == rounds:
                break
            self.reset_state()
            delay = min(base_delay * (multiplier**round_no), max_delay)
            logger.info(
                "Backing off %.2fs before round %d of %d", delay, round_no + 2, rounds
            )
            await self._sleep(delay)
        result.recovery_attempts = total_attempts
        return result
