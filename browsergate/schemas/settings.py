# browsergate/schemas/settings.py
"""
Typed view over browsergate.yaml.

The raw YAML (plus environment overrides, see `browsergate.utils.config`) is
validated into these models once per session so that a typo in a budget or a
negative delay fails loudly at startup rather than in the middle of a retry
loop.
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class RecoverySettings(BaseModel):
    """Knobs for the recovery engine.

    :ivar enabled: When False, operations run exactly once.
    :vartype enabled: bool
    :ivar max_global_retries: Ceiling on recovery actions across all strategies.
    :vartype max_global_retries: int
    :ivar default_delay: Delay in seconds for strategies that do not set one.
    :vartype default_delay: float
    """

    enabled: bool = True
    max_global_retries: int = Field(5, ge=0)
    default_delay: float = Field(1.0, ge=0)


class WorkflowSettings(BaseModel):
    """Knobs for the workflow validator.

    :ivar history_limit: Maximum number of execution records kept per session.
    :vartype history_limit: int
    :ivar content_stale_after_s: Seconds after which a content analysis no longer
        satisfies `find_selector`. Off by default; None or 0 disables the check.
    :vartype content_stale_after_s: Optional[float]
    :ivar summary_records: How many recent records the validation summary shows.
    :vartype summary_records: int
    """

    history_limit: int = Field(50, ge=1)
    content_stale_after_s: Optional[float] = Field(None, ge=0)
    summary_records: int = Field(5, ge=0)

    @field_validator("content_stale_after_s")
    @classmethod
    def _zero_disables(cls, v: Optional[float]) -> Optional[float]:
        return v or None


class LoggingSettings(BaseModel):
    level: str = "info"
    session_logs_dir: Optional[str] = None


class GatewaySettings(BaseModel):
    recovery: RecoverySettings = Field(default_factory=RecoverySettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
