from browsergate.workflow.guards import DEFAULT_GUARDS, Requirement, ToolGuard
from browsergate.workflow.history import ExecutionHistory
from browsergate.workflow.validator import WorkflowValidator

__all__ = [
    "DEFAULT_GUARDS",
    "ExecutionHistory",
    "Requirement",
    "ToolGuard",
    "WorkflowValidator",
]
