# browsergate/tests/recovery/test_engine.py
"""
Tests for the recovery engine: classification, both budgets, every recovery
action, progress reporting and the backoff wrapper.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from browsergate.exceptions import (
    BudgetExhaustedError,
    ConfigurationError,
    DriverError,
    ErrorKind,
    SkippedFailureError,
    UnclassifiedFailureError,
)
from browsergate.progress import ProgressNotifier
from browsergate.recovery.engine import RecoveryEngine
from browsergate.schemas.recovery import (
    Exhausted,
    FellBack,
    RecoveryAction,
    RecoveryConfig,
    RecoveryContext,
    RecoveryFailure,
    RecoveryPhase,
    RecoveryStrategy,
    Skipped,
    Succeeded,
    Unclassified,
)


class FlakyOperation:
    """Raises the scripted errors in order, then returns `result`."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class AlwaysFails:
    def __init__(self, message):
        self.message = message
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        raise RuntimeError(self.message)


@pytest.fixture
def sleep():
    return AsyncMock(return_value=None)


def _engine(strategies, sleep, **config):
    return RecoveryEngine(RecoveryConfig(**config), strategies, sleep=sleep)


TIMEOUT_RETRY = {"pattern": "timeout", "action": "retry", "max_retries": 2, "delay": 0}


@pytest.mark.asyncio
async def test_recovers_after_two_timeouts(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    op = FlakyOperation(RuntimeError("Timeout"), RuntimeError("timeout again"))

    result = await engine.execute(op)

    assert result.success is True
    assert result.recovery_attempts == 2
    assert result.result == "ok"
    assert isinstance(result.outcome, Succeeded)
    assert op.calls == 3
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_stops_after_strategy_budget(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    op = AlwaysFails("navigation timeout")

    result = await engine.execute(op)

    assert result.success is False
    assert result.recovery_attempts == 2
    assert op.calls == 3
    assert result.failure is RecoveryFailure.PATTERN_BUDGET_EXHAUSTED
    assert result.outcome == Exhausted("strategy", "strategy-1")
    assert engine.state.count_for("strategy-1") == 2
    assert engine.phase is RecoveryPhase.EXHAUSTED


@pytest.mark.asyncio
async def test_unmatched_error_returns_immediately(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    op = AlwaysFails("TypeError: cannot read properties of undefined")

    result = await engine.execute(op)

    assert result.success is False
    assert result.recovery_attempts == 0
    assert result.failure is RecoveryFailure.NO_MATCHING_STRATEGY
    assert result.failure.value == "no matching strategy"
    assert isinstance(result.outcome, Unclassified)
    assert op.calls == 1
    assert engine.state.global_retry_count == 0


@pytest.mark.asyncio
async def test_global_budget_is_never_exceeded(sleep):
    engine = _engine(
        [{"pattern": "flaky", "action": "retry", "max_retries": 100, "delay": 0}],
        sleep,
        max_global_retries=3,
    )
    op = AlwaysFails("flaky backend")

    result = await engine.execute(op)

    assert result.success is False
    assert result.failure is RecoveryFailure.GLOBAL_BUDGET_EXHAUSTED
    assert result.outcome.scope == "global"
    assert engine.state.global_retry_count == 3
    assert op.calls == 4


@pytest.mark.asyncio
async def test_budgets_persist_until_reset(sleep):
    engine = _engine(
        [{"pattern": "flaky", "action": "retry", "max_retries": 10, "delay": 0}],
        sleep,
        max_global_retries=2,
    )
    await engine.execute(AlwaysFails("flaky"))
    starved = FlakyOperation(RuntimeError("flaky"))

    result = await engine.execute(starved)
    # The operation still runs once; only recovery is refused.
    assert starved.calls == 1
    assert result.failure is RecoveryFailure.GLOBAL_BUDGET_EXHAUSTED

    engine.reset_state()
    result = await engine.execute(FlakyOperation(RuntimeError("flaky")))
    assert result.success and result.recovery_attempts == 1


@pytest.mark.asyncio
async def test_exhausted_pattern_does_not_fall_through_to_catch_all(sleep):
    engine = _engine(
        [
            {"pattern": "ECONNREFUSED", "action": "retry", "max_retries": 1, "delay": 0},
            {"pattern": ".*", "action": "skip"},
        ],
        sleep,
    )
    op = AlwaysFails("connect ECONNREFUSED 127.0.0.1:9222")

    result = await engine.execute(op)

    assert result.success is False
    assert result.recovery_attempts == 1
    assert result.failure is RecoveryFailure.PATTERN_BUDGET_EXHAUSTED
    assert not isinstance(result.outcome, Skipped)
    assert op.calls == 2


@pytest.mark.asyncio
async def test_skip_strategy_is_immediate_and_free(sleep):
    engine = RecoveryEngine(sleep=sleep)
    op = AlwaysFails("Please verify you are human (Cloudflare)")

    result = await engine.execute(op)

    assert result.success is False
    assert result.failure is RecoveryFailure.SKIPPED
    assert result.last_action is RecoveryAction.SKIP
    assert isinstance(result.outcome, Skipped)
    assert "solve_captcha" in result.outcome.reason
    assert result.recovery_attempts == 0
    assert engine.state.global_retry_count == 0
    assert op.calls == 1


@pytest.mark.asyncio
async def test_tagged_driver_errors_match_by_kind(sleep):
    engine = RecoveryEngine(sleep=sleep)
    op = FlakyOperation(DriverError(ErrorKind.RATE_LIMITED, "backend said no"))

    result = await engine.execute(op)

    assert result.success is True
    assert engine.state.per_strategy_retry_count == {"default:rate-limit": 1}
    sleep.assert_awaited_once_with(5.0)


@pytest.mark.asyncio
async def test_refresh_and_restart_call_injected_callbacks(sleep):
    engine = RecoveryEngine(sleep=sleep)
    ctx = RecoveryContext(label="navigate", on_refresh=AsyncMock(), on_restart=AsyncMock())
    op = FlakyOperation(
        DriverError(ErrorKind.NAVIGATION_TIMEOUT, "Navigation timeout of 30000 ms exceeded"),
        RuntimeError("Protocol error: Target closed."),
    )

    result = await engine.execute(op, ctx)

    assert result.success is True
    assert result.recovery_attempts == 2
    assert result.last_action is RecoveryAction.RESTART_BROWSER
    ctx.on_refresh.assert_awaited_once()
    ctx.on_restart.assert_awaited_once()
    assert [c.args[0] for c in sleep.await_args_list] == [2.0, 2.0]


@pytest.mark.asyncio
async def test_failing_recovery_action_still_consumes_budget(sleep):
    engine = _engine(
        [{"pattern": "stale", "action": "refresh", "max_retries": 2, "delay": 0}], sleep
    )
    progress = ProgressNotifier()
    updates = []
    progress.subscribe_all(updates.append)
    ctx = RecoveryContext(
        label="get_content",
        on_refresh=AsyncMock(side_effect=RuntimeError("reload crashed")),
        progress=progress,
    )

    result = await engine.execute(AlwaysFails("stale element"), ctx)

    assert result.failure is RecoveryFailure.PATTERN_BUDGET_EXHAUSTED
    assert result.recovery_attempts == 2
    assert [str(e) for e in result.action_errors] == ["reload crashed", "reload crashed"]
    assert any(u.metadata.get("action_error") for u in updates)
    assert updates[-1].failed


@pytest.mark.asyncio
async def test_missing_callback_degrades_to_plain_retry(sleep):
    engine = _engine(
        [{"pattern": "detached", "action": "restart_browser", "max_retries": 1, "delay": 0}],
        sleep,
    )
    op = FlakyOperation(RuntimeError("frame detached"))

    result = await engine.execute(op)

    assert result.success is True
    assert result.last_action is RecoveryAction.RESTART_BROWSER
    assert result.action_errors == []


@pytest.mark.asyncio
async def test_fallback_success_returns_its_result(sleep):
    engine = _engine(
        [{"pattern": "unsupported", "action": "fallback", "max_retries": 1, "delay": 0}],
        sleep,
    )
    ctx = RecoveryContext(fallback=AsyncMock(return_value="from fallback"))

    result = await engine.execute(AlwaysFails("unsupported selector engine"), ctx)

    assert result.success is True
    assert result.result == "from fallback"
    assert result.outcome == FellBack("from fallback", "strategy-1")
    assert result.recovery_attempts == 1


@pytest.mark.asyncio
async def test_strategy_fallback_wins_over_context_fallback(sleep):
    engine = _engine(
        [
            RecoveryStrategy(
                pattern="unsupported",
                action=RecoveryAction.FALLBACK,
                fallback=lambda: "strategy fallback",
                delay=0,
            )
        ],
        sleep,
    )
    ctx = RecoveryContext(fallback=MagicMock(return_value="context fallback"))

    result = await engine.execute(AlwaysFails("unsupported"), ctx)

    assert result.result == "strategy fallback"
    ctx.fallback.assert_not_called()


@pytest.mark.asyncio
async def test_failed_fallback_continues_the_loop(sleep):
    engine = _engine(
        [{"pattern": "unsupported", "action": "fallback", "max_retries": 2, "delay": 0.25}],
        sleep,
    )
    ctx = RecoveryContext(fallback=AsyncMock(side_effect=RuntimeError("fallback broke")))
    op = FlakyOperation(RuntimeError("unsupported"), RuntimeError("unsupported"))

    result = await engine.execute(op, ctx)

    assert result.success is True
    assert isinstance(result.outcome, Succeeded)
    assert result.recovery_attempts == 2
    assert len(result.action_errors) == 2
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_default_delay_applies_when_strategy_has_none(sleep):
    engine = _engine([{"pattern": "busy", "action": "retry"}], sleep, default_delay=0.75)
    await engine.execute(FlakyOperation(RuntimeError("busy")))
    sleep.assert_awaited_once_with(0.75)


@pytest.mark.asyncio
async def test_disabled_engine_runs_once(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep, enabled=False)
    op = AlwaysFails("timeout")

    result = await engine.execute(op)

    assert op.calls == 1
    assert result.failure is RecoveryFailure.RECOVERY_DISABLED
    assert result.recovery_attempts == 0

    ok = await engine.execute(FlakyOperation())
    assert ok.success and ok.result == "ok"


@pytest.mark.asyncio
async def test_sync_operations_are_supported(sleep):
    engine = RecoveryEngine(sleep=sleep)
    result = await engine.execute(lambda: 42)
    assert result.success and result.result == 42


@pytest.mark.asyncio
async def test_cancellation_propagates(sleep):
    engine = RecoveryEngine(sleep=sleep)

    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await engine.execute(cancelled)


@pytest.mark.asyncio
async def test_progress_lifecycle_is_reported(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    progress = ProgressNotifier()
    seen = []
    progress.subscribe("click", seen.append)
    ctx = RecoveryContext(label="click", progress=progress)

    await engine.execute(FlakyOperation(RuntimeError("timeout")), ctx)

    assert seen[0].progress == 0
    assert seen[1].metadata == {"strategy_id": "strategy-1", "attempt": 1}
    assert seen[-1].progress == 100
    assert progress.get_active_operations() == []


@pytest.mark.asyncio
async def test_broken_progress_sink_does_not_change_outcome(sleep):
    sink = MagicMock()
    sink.start_operation = AsyncMock(side_effect=RuntimeError("sink down"))
    sink.update_progress = AsyncMock(side_effect=RuntimeError("sink down"))
    sink.complete_operation = AsyncMock(side_effect=RuntimeError("sink down"))
    engine = _engine([TIMEOUT_RETRY], sleep)

    result = await engine.execute(
        FlakyOperation(RuntimeError("timeout")), RecoveryContext(progress=sink)
    )

    assert result.success is True


def test_classify_first_match_wins():
    engine = RecoveryEngine()
    strategy = engine.classify(RuntimeError("net::ERR_CONNECTION_RESET"))
    assert strategy.strategy_id == "default:network"
    assert engine.classify(ValueError("something else entirely")) is None


def test_configure_prepends_strategies_in_order():
    engine = RecoveryEngine()
    engine.configure(
        max_global_retries=9,
        strategies=[
            {"pattern": "first", "action": "retry"},
            {"pattern": "second", "action": "retry", "strategy_id": "mine"},
        ],
    )
    ids = [s.strategy_id for s in engine.strategies]
    assert ids[:2] == ["strategy-1", "mine"]
    assert ids[2] == "default:network"
    assert engine.config.max_global_retries == 9


def test_configure_rejects_unknown_and_invalid_settings():
    engine = RecoveryEngine()
    with pytest.raises(ConfigurationError, match="Unknown recovery setting"):
        engine.configure(max_retries=3)
    with pytest.raises(ConfigurationError):
        engine.configure(max_global_retries=-1)
    with pytest.raises(ConfigurationError, match="Invalid recovery strategy"):
        engine.configure(strategies=[{"pattern": "x", "action": "teleport"}])


def test_duplicate_strategy_ids_rejected():
    engine = RecoveryEngine(strategies=[])
    engine.add_strategy({"pattern": "a", "action": "retry", "strategy_id": "same"})
    with pytest.raises(ConfigurationError, match="Duplicate"):
        engine.add_strategy({"pattern": "b", "action": "retry", "strategy_id": "same"})



def test_failed_configure_changes_nothing():
    engine = RecoveryEngine()
    before = [s.strategy_id for s in engine.strategies]

    with pytest.raises(ConfigurationError, match="Duplicate"):
        engine.configure(
            max_global_retries=9,
            strategies=[
                {"pattern": "first", "action": "retry", "strategy_id": "twice"},
                {"pattern": "second", "action": "retry", "strategy_id": "twice"},
            ],
        )
    with pytest.raises(ConfigurationError, match="Invalid recovery strategy"):
        engine.configure(
            default_delay=7.0,
            strategies=[
                {"pattern": "fine", "action": "retry"},
                {"pattern": "broken", "action": "teleport"},
            ],
        )

    assert [s.strategy_id for s in engine.strategies] == before
    assert engine.config.max_global_retries == 5
    assert engine.config.default_delay == 1.0

@pytest.mark.asyncio
async def test_identical_patterns_keep_separate_budgets(sleep):
    engine = _engine(
        [
            {"pattern": "boom", "action": "retry", "max_retries": 1, "delay": 0},
            {"pattern": "boom", "action": "retry", "max_retries": 1, "delay": 0},
        ],
        sleep,
    )
    await engine.execute(AlwaysFails("boom"))
    assert engine.state.per_strategy_retry_count == {"strategy-1": 1}


@pytest.mark.asyncio
async def test_results_map_to_typed_exceptions(sleep):
    engine = _engine(
        [
            {"pattern": "limit", "action": "retry", "max_retries": 1, "delay": 0},
            {"pattern": "captcha", "action": "skip"},
        ],
        sleep,
    )
    exhausted = await engine.execute(AlwaysFails("limit"))
    exc = exhausted.to_exception("navigate")
    assert isinstance(exc, BudgetExhaustedError)
    assert exc.scope == "strategy"
    assert exc.attempts == 1
    assert exc.last_action == "retry"
    assert "pattern budget exhausted" in exc.message

    skipped = await engine.execute(AlwaysFails("captcha shown"))
    assert isinstance(skipped.to_exception("navigate"), SkippedFailureError)

    unmatched = await engine.execute(AlwaysFails("weird"))
    exc = unmatched.to_exception("navigate")
    assert isinstance(exc, UnclassifiedFailureError)
    assert isinstance(exc.original, RuntimeError)

    ok = await engine.execute(FlakyOperation())
    assert ok.to_exception() is None


@pytest.mark.asyncio
async def test_backoff_rounds_reset_budgets_and_sum_attempts(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    # 3 failures exhaust round one (2 recoveries); round two succeeds after one more.
    op = FlakyOperation(*[RuntimeError("timeout")] * 4)

    result = await engine.execute_with_backoff(op, rounds=3, base_delay=1.0, multiplier=2.0)

    assert result.success is True
    assert result.recovery_attempts == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0]
    assert engine.state.global_retry_count == 0


@pytest.mark.asyncio
async def test_backoff_stops_early_when_no_strategy_matches(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    op = AlwaysFails("weird")

    result = await engine.execute_with_backoff(op, rounds=5)

    assert op.calls == 1
    assert result.failure is RecoveryFailure.NO_MATCHING_STRATEGY
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_backoff_caps_delay(sleep):
    engine = _engine([TIMEOUT_RETRY], sleep)
    result = await engine.execute_with_backoff(
        AlwaysFails("timeout"), rounds=4, base_delay=10, multiplier=3, max_delay=20
    )
    assert result.success is False
    assert result.recovery_attempts == 8
    assert [c.args[0] for c in sleep.await_args_list] == [10, 20, 20]


@pytest.mark.asyncio
async def test_backoff_rejects_zero_rounds(sleep):
    with pytest.raises(ConfigurationError):
        await RecoveryEngine(sleep=sleep).execute_with_backoff(lambda: None, rounds=0)
