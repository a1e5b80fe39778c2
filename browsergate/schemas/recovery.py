# browsergate/schemas/recovery.py
"""
Data models for the recovery engine.

- RecoveryStrategy: one row of the error taxonomy (pattern -> action).
- RecoveryState: retry counters for one session.
- RecoveryContext: the callbacks a caller injects for one execute() call.
- RecoveryResult + outcome variants: what execute() hands back.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from browsergate.exceptions import (
    BudgetExhaustedError,
    DriverError,
    ErrorKind,
    RecoveryError,
    SkippedFailureError,
    UnclassifiedFailureError,
)

# Zero-arg callables; sync or async.
Operation = Callable[[], Union[Any, Awaitable[Any]]]


class RecoveryAction(str, Enum):
    RETRY = "retry"
    REFRESH = "refresh"
    RESTART_BROWSER = "restart_browser"
    SKIP = "skip"
    FALLBACK = "fallback"


class RecoveryPhase(str, Enum):
    """Where the engine currently is in its per-call state machine."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    CLASSIFYING = "classifying"
    RECOVERING = "recovering"
    SUCCESS = "success"
    UNRECOVERABLE = "unrecoverable"
    EXHAUSTED = "exhausted"


class RecoveryFailure(str, Enum):
    """Distinguishable terminal failure markers."""

    NO_MATCHING_STRATEGY = "no matching strategy"
    PATTERN_BUDGET_EXHAUSTED = "pattern budget exhausted"
    GLOBAL_BUDGET_EXHAUSTED = "global budget exhausted"
    SKIPPED = "skipped"
    RECOVERY_DISABLED = "recovery disabled"


def error_text(error: BaseException) -> str:
    """The text strategies match against: exception class name plus message."""
    return f"{type(error).__name__}: {error}"


class RecoveryStrategy(BaseModel):
    """
    Maps a class of failures to a bounded recovery action.

    :ivar pattern: Regular expression (text or compiled) searched
        case-insensitively in the error text.
    :ivar literal: Treat a text `pattern` as a plain substring.
    :ivar kinds: Tagged driver error kinds this strategy handles directly.
    :ivar max_retries: Per-strategy ceiling on recovery actions.
    :ivar delay: Flat pause in seconds after each action; None uses the engine default.
    :ivar fallback: Alternative operation for the `fallback` action.
    :ivar strategy_id: Budget key, assigned at registration when left empty.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    pattern: Optional[Union[str, re.Pattern]] = None
    action: RecoveryAction
    max_retries: int = Field(1, ge=0)
    delay: Optional[float] = Field(None, ge=0)
    fallback: Optional[Callable[..., Any]] = None
    kinds: Tuple[ErrorKind, ...] = ()
    literal: bool = False
    description: str = ""
    strategy_id: Optional[str] = None

    _compiled: Optional[re.Pattern] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        if self.pattern is None:
            return
        if isinstance(self.pattern, re.Pattern):
            self._compiled = re.compile(
                self.pattern.pattern, self.pattern.flags | re.IGNORECASE
            )
        elif self.literal:
            self._compiled = re.compile(re.escape(self.pattern), re.IGNORECASE)
        else:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)

    @property
    def pattern_text(self) -> str:
        if isinstance(self.pattern, re.Pattern):
            return self.pattern.pattern
        return self.pattern or ""

    @property
    def label(self) -> str:
        return self.description or self.pattern_text or ",".join(k.value for k in self.kinds)

    def matches(self, error: BaseException) -> bool:
        if isinstance(error, DriverError) and error.kind in self.kinds:
            return True
        if self._compiled is None:
            return False
        return self._compiled.search(error_text(error)) is not None


class RecoveryConfig(BaseModel):
    enabled: bool = True
    max_global_retries: int = Field(5, ge=0)
    default_delay: float = Field(1.0, ge=0)


class RecoveryState(BaseModel):
    """Retry counters for one session, keyed by strategy id."""

    global_retry_count: int = 0
    per_strategy_retry_count: Dict[str, int] = Field(default_factory=dict)
    last_recovery_at: Optional[float] = None

    def charge(self, strategy_id: str) -> None:
        self.global_retry_count += 1
        self.per_strategy_retry_count[strategy_id] = (
            self.per_strategy_retry_count.get(strategy_id, 0) + 1
        )
        self.last_recovery_at = time.time()

    def count_for(self, strategy_id: str) -> int:
        return self.per_strategy_retry_count.get(strategy_id, 0)


@dataclass
class RecoveryContext:
    """
    Callbacks and labels for one `RecoveryEngine.execute()` call.

    The engine never constructs or owns any of these.
    """

    label: str = "operation"
    on_refresh: Optional[Operation] = None
    on_restart: Optional[Operation] = None
    fallback: Optional[Operation] = None
    progress: Optional[Any] = None  # a ProgressSink
    progress_token: Optional[str] = None


# ---- Outcome variants ----


@dataclass(frozen=True)
class Succeeded:
    result: Any


@dataclass(frozen=True)
class FellBack:
    result: Any
    strategy_id: Optional[str] = None


@dataclass(frozen=True)
class Skipped:
    reason: str
    strategy_id: Optional[str] = None


@dataclass(frozen=True)
class Unclassified:
    error: BaseException


@dataclass(frozen=True)
class Exhausted:
    scope: str  # "strategy" | "global"
    strategy_id: Optional[str] = None


RecoveryOutcome = Union[Succeeded, FellBack, Skipped, Unclassified, Exhausted]


@dataclass
class RecoveryResult:
    """What `RecoveryEngine.execute()` returns; it never raises for operation errors."""

    success: bool
    outcome: RecoveryOutcome
    result: Any = None
    error: Optional[BaseException] = None
    recovery_attempts: int = 0
    failure: Optional[RecoveryFailure] = None
    last_action: Optional[RecoveryAction] = None
    action_errors: list = field(default_factory=list)

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    def to_exception(self, label: str = "operation") -> Optional[RecoveryError]:
        """The typed exception matching a failed result; None on success."""
        if self.success:
            return None
        detail = self.error_message or "unknown error"
        common = dict(
            attempts=self.recovery_attempts,
            original=self.error,
            last_action=self.last_action.value if self.last_action else None,
            context={"label": label, "failure": self.failure.value if self.failure else None},
        )
        outcome = self.outcome
        if isinstance(outcome, Skipped):
            return SkippedFailureError(
                f"{label} failed and was skipped as unrecoverable: {detail}",
                suggested_action=outcome.reason,
                **common,
            )
        if isinstance(outcome, Exhausted):
            return BudgetExhaustedError(
                f"{label} failed after {self.recovery_attempts} recovery attempt(s), "
                f"{self.failure.value if self.failure else 'budget exhausted'}: {detail}",
                scope=outcome.scope,
                **common,
            )
        return UnclassifiedFailureError(
            f"{label} failed ({self.failure.value if self.failure else 'unclassified'}): {detail}",
            **common,
        )
