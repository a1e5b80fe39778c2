# browsergate/exceptions.py
"""
Defines custom exception classes for browsergate.

The hierarchy mirrors the ways a tool call can end badly: the agent called a
tool too early (a workflow violation), the call failed in a way no recovery
strategy recognises, the recovery budget ran out, or the failure belongs to a
subsystem recovery cannot help with. Each carries enough context for an
automated caller to correct itself.
"""
from enum import Enum
from typing import Any, Dict, Optional


class BrowserGateError(Exception):
    """Base exception class for all custom errors in browsergate.

    :ivar suggested_action: Remediation hint for the calling agent.
    :ivar context: Structured details (tool name, url, counters, ...).
    :ivar last_action: The last recovery action attempted, if any.
    """

    error_type = "Runtime"

    def __init__(
        self,
        message: str,
        *,
        suggested_action: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        last_action: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggested_action = suggested_action
        self.context = dict(context or {})
        self.last_action = last_action


class ConfigurationError(BrowserGateError):
    """Raised when browsergate.yaml or a runtime `configure()` call is invalid."""

    error_type = "Configuration"


class ToolError(BrowserGateError):
    """Base exception for errors related to tool handling."""


class ToolNotFoundError(ToolError, KeyError):
    """Raised when a requested tool cannot be found in the registry.

    Inherits from `KeyError` so dict-style callers keep working.
    """

    error_type = "NotFound"

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.message


class ToolExecutionError(ToolError):
    """Raised when a tool fails during its execution for reasons other than
    invalid input or a workflow violation."""


class ToolValidationError(ToolError, ValueError):
    """Raised when tool arguments fail the tool's input model validation."""

    error_type = "Validation"


class WorkflowViolationError(ToolError):
    """Raised when a tool is invoked before its prerequisite has completed.

    Never retried automatically: the remedy is for the caller to run the
    prerequisite tool named in `suggested_action`.
    """

    error_type = "WorkflowViolation"

    def __init__(
        self,
        tool_name: str,
        message: str,
        *,
        suggested_action: Optional[str] = None,
        summary: Optional[str] = None,
    ):
        super().__init__(
            message,
            suggested_action=suggested_action,
            context={"tool_name": tool_name, "summary": summary},
        )
        self.tool_name = tool_name
        self.summary = summary

    def __str__(self) -> str:
        parts = [self.message]
        if self.suggested_action:
            parts.append(f"Next steps: {self.suggested_action}")
        if self.summary:
            parts.append(self.summary)
        return "\n\n".join(parts)


class RecoveryError(ToolExecutionError):
    """Base for terminal outcomes of the recovery engine.

    :ivar attempts: Recovery actions performed during the call.
    :ivar original: The last exception raised by the wrapped operation.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        original: Optional[BaseException] = None,
        last_action: Optional[str] = None,
        suggested_action: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            suggested_action=suggested_action,
            context=context,
            last_action=last_action,
        )
        self.attempts = attempts
        self.original = original


class UnclassifiedFailureError(RecoveryError):
    """No recovery strategy matched the failure; surfaced immediately."""

    error_type = "Unclassified"


class BudgetExhaustedError(RecoveryError):
    """A strategy matched but its own ceiling, or the global one, was reached.

    :ivar scope: "strategy" or "global".
    """

    error_type = "BudgetExhausted"

    def __init__(self, message: str, *, scope: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.scope = scope


class SkippedFailureError(RecoveryError):
    """The failure matched a skip strategy; a specialised subsystem should take over."""

    error_type = "Skipped"


class ErrorKind(str, Enum):
    """Closed set of failure kinds a well-behaved driver reports."""

    NETWORK = "network"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    SESSION_LOST = "session_lost"
    ELEMENT_NOT_FOUND = "element_not_found"
    RATE_LIMITED = "rate_limited"
    BOT_DETECTED = "bot_detected"


class DriverError(BrowserGateError):
    """A tagged failure raised by the browser driver.

    Strategies match on `kind` directly; the text patterns are only a
    fallback for exceptions from less controlled sources.
    """

    def __init__(self, kind: ErrorKind, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = ErrorKind(kind)
        self.error_type = self.kind.value
