# browsergate/schemas/session.py
"""Data models for a browser session's workflow state and audit trail."""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class WorkflowPhase(str, Enum):
    """The furthest milestone a session has reached."""

    INITIAL = "initial"
    BROWSER_READY = "browser_ready"
    PAGE_LOADED = "page_loaded"
    CONTENT_ANALYZED = "content_analyzed"
    SELECTOR_AVAILABLE = "selector_available"


class SessionState(BaseModel):
    """
    Milestone flags for one browser session.

    Mutated only through `WorkflowValidator.record()`; restored to these
    defaults by `WorkflowValidator.reset()`.
    """

    browser_initialized: bool = False
    page_navigated: bool = False
    content_analyzed: bool = False
    selector_found: bool = False
    last_url: Optional[str] = None
    last_selector: Optional[str] = None
    content_analyzed_at: Optional[float] = None

    @property
    def phase(self) -> WorkflowPhase:
        if self.selector_found:
            return WorkflowPhase.SELECTOR_AVAILABLE
        if self.content_analyzed:
            return WorkflowPhase.CONTENT_ANALYZED
        if self.page_navigated:
            return WorkflowPhase.PAGE_LOADED
        if self.browser_initialized:
            return WorkflowPhase.BROWSER_READY
        return WorkflowPhase.INITIAL

    def content_age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last successful content analysis, if any."""
        if self.content_analyzed_at is None:
            return None
        return (now if now is not None else time.time()) - self.content_analyzed_at


class ExecutionRecord(BaseModel):
    """Audit-log entry for one tool invocation attempt.

    :ivar args: Redacted snapshot of the arguments, never the live dict.
    """

    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)
    success: bool
    message: Optional[str] = None

    def one_line(self) -> str:
        mark = "ok" if self.success else "FAILED"
        line = f"{self.tool_name} [{mark}]"
        if self.message:
            first = self.message.strip().splitlines()[0] if self.message.strip() else ""
            if first:
                line += f": {first[:120]}"
        return line


class ValidationResult(BaseModel):
    """Verdict of `WorkflowValidator.validate()`."""

    is_valid: bool
    error_message: Optional[str] = None
    suggested_action: Optional[str] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(is_valid=True)
