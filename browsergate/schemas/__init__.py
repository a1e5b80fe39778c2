# browsergate/schemas/__init__.py
"""
The `schemas` package defines the data models shared across browsergate:
session state and execution records, recovery strategies and results,
validated settings, and the `ToolResult` every gateway call returns.
"""
