# browsergate/schemas/tool_result.py
"""
Standard ToolResult returned by the gateway for every tool call.

Success and failure share one shape so the calling agent always gets:
- the output (or the error message and its category),
- the remediation hint and session summary for workflow violations,
- how many recovery attempts were spent and the last action taken.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from browsergate.exceptions import BrowserGateError, RecoveryError, WorkflowViolationError


class ToolResult(BaseModel):
    # Basic outcome
    success: bool = Field(..., description="True on success, False on error")
    output: Any = Field(None, description="Value returned by the tool")
    error: Optional[str] = Field(None, description="Error message on failure")
    error_type: Optional[str] = Field(
        None,
        description="Short error category (WorkflowViolation|Validation|Unclassified|BudgetExhausted|Skipped|...)",
    )
    suggested_action: Optional[str] = Field(
        None, description="What the agent should do next"
    )
    summary: Optional[str] = Field(
        None, description="Session state summary attached to workflow violations"
    )
    latency_ms: int = Field(0, description="Milliseconds spent in the call")
    meta: Optional[Dict[str, Any]] = Field(default=None, description="Supplemental metadata")

    # Provenance
    tool_name: Optional[str] = Field(None, description="Registry tool key (e.g., navigate)")
    session_id: Optional[str] = Field(None, description="Browser session the call ran in")

    # Recovery
    recovery_attempts: int = Field(0, description="Recovery actions performed")
    last_action: Optional[str] = Field(None, description="Last recovery action attempted")

    # ----- Builders -----

    @classmethod
    def ok_result(
        cls,
        *,
        output: Any = None,
        latency_ms: int = 0,
        recovery_attempts: int = 0,
        last_action: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        return cls(
            success=True,
            output=output,
            latency_ms=latency_ms,
            recovery_attempts=recovery_attempts,
            last_action=last_action,
            meta=meta or None,
        )

    @classmethod
    def err_result(
        cls,
        *,
        error_type: str,
        error: Optional[str] = None,
        suggested_action: Optional[str] = None,
        summary: Optional[str] = None,
        latency_ms: int = 0,
        recovery_attempts: int = 0,
        last_action: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        return cls(
            success=False,
            error=error,
            error_type=error_type,
            suggested_action=suggested_action,
            summary=summary,
            latency_ms=latency_ms,
            recovery_attempts=recovery_attempts,
            last_action=last_action,
            meta=meta or None,
        )

    @classmethod
    def from_exception(cls, exc: BaseException, *, latency_ms: int = 0) -> "ToolResult":
        """Map any exception onto a failed result, keeping browsergate context."""
        if isinstance(exc, WorkflowViolationError):
            return cls.err_result(
                error_type=exc.error_type,
                error=exc.message,
                suggested_action=exc.suggested_action,
                summary=exc.summary,
                latency_ms=latency_ms,
            )
        if isinstance(exc, RecoveryError):
            return cls.err_result(
                error_type=exc.error_type,
                error=exc.message,
                suggested_action=exc.suggested_action,
                latency_ms=latency_ms,
                recovery_attempts=exc.attempts,
                last_action=exc.last_action,
                meta=exc.context or None,
            )
        if isinstance(exc, BrowserGateError):
            return cls.err_result(
                error_type=exc.error_type,
                error=exc.message,
                suggested_action=exc.suggested_action,
                latency_ms=latency_ms,
                last_action=exc.last_action,
                meta=exc.context or None,
            )
        return cls.err_result(
            error_type="Runtime",
            error=f"{type(exc).__name__}: {exc}",
            latency_ms=latency_ms,
        )

    @property
    def ok(self) -> bool:
        return bool(self.success)

    def to_text(self) -> str:
        """Human/agent-readable rendering, one block per populated field."""
        if self.success:
            if isinstance(self.output, str):
                body = self.output
            else:
                body = json.dumps(self.output, indent=2, default=str)
            if self.recovery_attempts:
                body += (
                    f"\n\n(recovered after {self.recovery_attempts} attempt(s), "
                    f"last action: {self.last_action})"
                )
            return body

        parts = [f"Error: {self.error}", f"Category: {self.error_type}"]
        if self.recovery_attempts or self.last_action:
            parts.append(
                f"Recovery attempts: {self.recovery_attempts}"
                + (f" (last action: {self.last_action})" if self.last_action else "")
            )
        if self.suggested_action:
            parts.append(f"Suggested action:\n{self.suggested_action}")
        if self.summary:
            parts.append(self.summary)
        return "\n\n".join(parts)
